"""Hume EVI (Empathic Voice Interface) adapter.

Bidirectional audio streaming with Hume's EVI chat API:

1. WebSocket connection to the EVI chat endpoint
2. Session settings with audio format, prompt, voice and tools
3. Audio input as base64 linear16 chunks
4. Decoded upstream messages handed to the bridge as-is

Audio Flow:
- Input: PCM16 @ 48kHz chunks -> base64 -> audio_input
- Output: audio_output -> base64 WAV (decoded by the bridge)

Resampling and WAV handling live in the Provider Bridge; this client only
speaks the wire protocol.
"""

import asyncio
import base64
import json
from typing import Any, AsyncIterator, Dict, Optional, Union
from urllib.parse import urlencode

import structlog
import websockets
from websockets.asyncio.client import ClientConnection

from evi_bridge.ai.duplex_base import AiDuplexBase, SessionConfig


class HumeEviClient(AiDuplexBase):
    """Hume EVI chat client for bidirectional audio streaming."""

    # Hume EVI chat WebSocket endpoint
    WS_URL = "wss://api.hume.ai/v0/evi/chat"

    def __init__(
        self,
        api_key: str,
        endpoint: Optional[str] = None,
        config_id: Optional[str] = None,
        connect_timeout: float = 10.0
    ) -> None:
        """Initialize Hume EVI client.

        Args:
            api_key: Hume API key
            endpoint: WebSocket endpoint (defaults to WS_URL)
            config_id: Optional EVI configuration id
            connect_timeout: Seconds allowed for the WebSocket handshake
        """
        super().__init__()

        if not api_key:
            raise ValueError("Hume API key not provided")

        self._api_key = api_key
        self._endpoint = endpoint or self.WS_URL
        self._config_id = config_id
        self._connect_timeout = connect_timeout
        self._ws: Optional[ClientConnection] = None

        # One sender at a time on the socket
        self._send_lock = asyncio.Lock()

        # Stats
        self._audio_chunks_sent = 0

        self._logger = structlog.get_logger(__name__)

    def build_url(self) -> str:
        """Build the connection URL with query parameters."""
        params = {"api_key": self._api_key}
        if self._config_id:
            params["config_id"] = self._config_id
        return f"{self._endpoint}?{urlencode(params)}"

    @staticmethod
    def build_session_settings(session_config: SessionConfig) -> Dict[str, Any]:
        """Build the session_settings message.

        Args:
            session_config: Session configuration

        Returns:
            session_settings message
        """
        settings: Dict[str, Any] = {
            "type": "session_settings",
            "custom_session_id": session_config.session_id,
            "audio": {
                "encoding": session_config.encoding,
                "channels": session_config.channels,
                "sample_rate": session_config.sample_rate
            }
        }
        if session_config.system_prompt:
            settings["system_prompt"] = session_config.system_prompt
        if session_config.voice_id:
            settings["voice_id"] = session_config.voice_id
        if session_config.tools:
            settings["tools"] = session_config.tools
        return settings

    async def connect(self, session_config: SessionConfig) -> None:
        """Connect to Hume EVI and send session settings."""
        if self._connected:
            return

        self._session_config = session_config

        try:
            # Connect WebSocket with timeout
            async with asyncio.timeout(self._connect_timeout):
                self._ws = await websockets.connect(
                    self.build_url(),
                    open_timeout=self._connect_timeout,
                    max_size=None
                )

            self._connected = True

            settings = self.build_session_settings(session_config)
            self._logger.info(
                "Sending Hume session settings",
                session_id=session_config.session_id,
                sample_rate=session_config.sample_rate,
                has_prompt=session_config.system_prompt is not None,
                voice_id=session_config.voice_id,
                tools=[tool["name"] for tool in session_config.tools]
            )
            await self._send(settings)

            self._logger.info(
                "Hume EVI connected",
                session_id=session_config.session_id,
                config_id=self._config_id
            )

        except Exception as e:
            self._connected = False
            if self._ws is not None:
                await self._ws.close()
                self._ws = None
            raise ConnectionError(f"Failed to connect to Hume EVI: {e}") from e

    async def close(self) -> None:
        """Close connection."""
        if self._ws is None:
            return

        self._connected = False
        ws, self._ws = self._ws, None
        await ws.close()

        self._logger.info(
            "Hume EVI disconnected",
            audio_chunks_sent=self._audio_chunks_sent
        )

    async def send_audio_input(self, chunk: Union[bytes, memoryview], session_id: str) -> None:
        """Send one PCM16 chunk as audio_input."""
        await self._send({
            "type": "audio_input",
            "data": base64.b64encode(chunk).decode("ascii"),
            "custom_session_id": session_id
        })

        self._audio_chunks_sent += 1
        if self._audio_chunks_sent % 50 == 0:  # Log every 5 seconds
            self._logger.debug(f"Sent {self._audio_chunks_sent} audio chunks to Hume")

    async def send_assistant_input(self, text: str) -> None:
        """Send priming text as assistant_input."""
        await self._send({"type": "assistant_input", "text": text})
        self._logger.info("Assistant input sent", text_preview=text[:50])

    async def send_tool_response(self, tool_call_id: str, content: str) -> None:
        """Send a tool_response correlated by call id."""
        await self._send({
            "type": "tool_response",
            "tool_call_id": tool_call_id,
            "content": content
        })

    async def messages(self) -> AsyncIterator[Dict[str, Any]]:
        """Yield decoded messages from Hume until the socket closes.

        Undecodable frames are logged and skipped.

        Raises:
            ConnectionError: If the socket closes with an error
        """
        if self._ws is None:
            raise ConnectionError("Not connected")

        ws = self._ws
        try:
            async for raw in ws:
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as e:
                    self._logger.error("Failed to decode message", error=str(e))
                    continue

                if not isinstance(data, dict):
                    self._logger.warning("Ignoring non-object message", kind=type(data).__name__)
                    continue

                yield data

        except websockets.exceptions.ConnectionClosedError as e:
            self._connected = False
            raise ConnectionError(f"Hume connection lost: {e}") from e

        self._connected = False
        self._logger.info(
            "Hume connection closed",
            code=ws.close_code,
            reason=ws.close_reason
        )

    async def _send(self, message: Dict[str, Any]) -> None:
        """Serialize and send one message."""
        ws = self._ws
        if not self._connected or ws is None:
            raise ConnectionError("Not connected")

        async with self._send_lock:
            try:
                await ws.send(json.dumps(message))
            except websockets.exceptions.ConnectionClosed as e:
                self._connected = False
                raise ConnectionError(f"Hume connection closed: {e}") from e
