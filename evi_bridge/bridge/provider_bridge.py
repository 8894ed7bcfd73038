"""Provider bridge between a client session and Hume EVI.

Data flow:
- Outbound: client PCM16 @ 8kHz -> resample to 48kHz -> 100ms chunks -> audio_input
- Inbound: audio_output (base64 WAV) -> strip container -> resample to 8kHz -> client audio;
  assistant_end flushes the filter tail, user_interruption discards it
- Transcripts and interruptions are relayed 1:1
- tool_call messages go through the ToolDispatcher; responses are correlated by call id
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import structlog

from evi_bridge.ai.duplex_base import AiDuplexClient, SessionConfig, UpstreamMessageType
from evi_bridge.bridge.events import SessionEvent, SessionEventType
from evi_bridge.core.audio_queue import AudioFrame
from evi_bridge.core.chunker import chunk_pcm, frame_size_bytes
from evi_bridge.core.constants import AudioConstants
from evi_bridge.core.resampler import Resampler, create_resampler
from evi_bridge.core.wav import parse_wav
from evi_bridge.tools.dispatcher import ToolCall, ToolDispatcher
from evi_bridge.tools.registry import ToolRegistry
from evi_bridge.utils.codec import (
    MessageDecodeError,
    b64decode_audio,
    encode_audio,
    encode_error,
    encode_interruption,
    encode_transcript,
)


class ProviderBridge:
    """Upstream side of one session.

    Owns the upstream client and its resamplers. Upstream messages are posted
    to the owning session's inbox rather than handled in place, so the session
    worker sees both peers as one ordered stream.
    """

    def __init__(
        self,
        session_id: str,
        inbox: "asyncio.Queue[SessionEvent]",
        client: AiDuplexClient,
        registry: ToolRegistry,
        client_sample_rate: int = AudioConstants.CLIENT_SAMPLE_RATE,
        upstream_sample_rate: int = AudioConstants.UPSTREAM_SAMPLE_RATE,
        chunk_ms: int = AudioConstants.CHUNK_MS,
        instructions: Optional[str] = None,
        voice_id: Optional[str] = None,
        greeting: Optional[str] = None
    ) -> None:
        """Initialize provider bridge.

        Args:
            session_id: Session identity from the client's init message
            inbox: Owning session's event queue
            client: Upstream client (not yet connected)
            registry: Tool registry
            client_sample_rate: Client PCM rate
            upstream_sample_rate: Upstream PCM input rate
            chunk_ms: Outbound chunk duration
            instructions: Optional system prompt
            voice_id: Optional voice id
            greeting: Optional priming text sent once connected
        """
        self._session_id = session_id
        self._inbox = inbox
        self._client = client
        self._registry = registry
        self._client_rate = client_sample_rate
        self._upstream_rate = upstream_sample_rate
        self._frame_size = frame_size_bytes(upstream_sample_rate, duration_ms=chunk_ms)
        self._instructions = instructions
        self._voice_id = voice_id
        self._greeting = greeting

        self._dispatcher = ToolDispatcher(registry, session_id, self._send_tool_response)
        # Outbound and inbound streams are kept apart; inbound ones are reset per turn
        self._outbound_resamplers: Dict[int, Resampler] = {}
        self._inbound_resamplers: Dict[int, Resampler] = {}
        self._receive_task: Optional[asyncio.Task[None]] = None
        self._closed = False

        # Stats
        self._chunks_sent = 0
        self._audio_outputs = 0

        self._logger = structlog.get_logger(__name__).bind(session_id=session_id)

    @property
    def session_id(self) -> str:
        """Session identity."""
        return self._session_id

    @property
    def is_open(self) -> bool:
        """True while the upstream link is usable."""
        return not self._closed and self._client.is_connected

    @property
    def is_closed(self) -> bool:
        """True once close() has run."""
        return self._closed

    @property
    def dispatcher(self) -> ToolDispatcher:
        """Tool dispatcher for this session."""
        return self._dispatcher

    def build_session_config(self) -> SessionConfig:
        """Session settings announced at dial time."""
        return SessionConfig(
            session_id=self._session_id,
            sample_rate=self._upstream_rate,
            channels=AudioConstants.CHANNELS,
            voice_id=self._voice_id,
            system_prompt=self._instructions,
            tools=self._registry.schemas()
        )

    async def connect(self) -> None:
        """Dial the upstream and announce the session.

        Raises:
            ConnectionError: If the dial fails or the bridge is closed
        """
        if self._closed:
            raise ConnectionError("Provider bridge is closed")

        self._logger.info(
            "Connecting to provider",
            upstream_rate=self._upstream_rate,
            tools=self._registry.names
        )
        await self._client.connect(self.build_session_config())

        if self._greeting:
            await self._client.send_assistant_input(self._greeting)

    def start(self) -> None:
        """Start relaying upstream messages into the session inbox."""
        if self._receive_task is not None or self._closed:
            return

        self._receive_task = asyncio.create_task(
            self._receive_loop(),
            name=f"bridge-receive-{self._session_id}"
        )

    async def send_audio(self, frame: AudioFrame) -> None:
        """Resample, chunk and send one client frame upstream, in order.

        Args:
            frame: Client audio frame

        Raises:
            ConnectionError: If the upstream is not open or the send fails
        """
        if not self.is_open:
            raise ConnectionError("Upstream not connected")

        pcm = frame.pcm
        if frame.sample_rate != self._upstream_rate:
            pcm = self._resampler_for(
                self._outbound_resamplers, frame.sample_rate, self._upstream_rate
            ).resample(pcm)

        for chunk in chunk_pcm(pcm, self._frame_size):
            await self._client.send_audio_input(chunk, self._session_id)
            self._chunks_sent += 1

            if self._chunks_sent % AudioConstants.LOG_INTERVAL_CHUNKS == 0:
                self._logger.debug("Audio chunks sent upstream", count=self._chunks_sent)

    async def handle_upstream(self, message: Dict[str, Any]) -> List[str]:
        """Translate one upstream message.

        Args:
            message: Decoded upstream message

        Returns:
            Client envelopes to forward, in order (possibly none)
        """
        if not isinstance(message, dict):
            self._logger.warning("Dropping non-object upstream message", kind=type(message).__name__)
            return []

        try:
            msg_type = UpstreamMessageType(message.get("type"))
        except (ValueError, TypeError):
            self._logger.debug("Unhandled upstream message", type=message.get("type"))
            return []

        if msg_type is UpstreamMessageType.AUDIO_OUTPUT:
            return self._translate_audio(message)

        if msg_type in (UpstreamMessageType.USER_MESSAGE, UpstreamMessageType.ASSISTANT_MESSAGE):
            body = message.get("message")
            content = body.get("content") if isinstance(body, dict) else None
            if not isinstance(content, str) or not content:
                return []
            role = "user" if msg_type is UpstreamMessageType.USER_MESSAGE else "agent"
            self._logger.info(f"{role.capitalize()}: {content}")
            return [encode_transcript(role, content)]

        if msg_type is UpstreamMessageType.USER_INTERRUPTION:
            self._logger.info("User interruption (barge-in)")
            self._discard_inbound()
            return [encode_interruption()]

        if msg_type is UpstreamMessageType.ASSISTANT_END:
            self._logger.debug("Assistant turn complete")
            return self._flush_inbound()

        if msg_type is UpstreamMessageType.TOOL_CALL:
            await self._dispatch_tool_call(message)
            return []

        if msg_type is UpstreamMessageType.ERROR:
            self._logger.error(
                "Error from Hume",
                code=message.get("code"),
                slug=message.get("slug"),
                message=message.get("message")
            )
            text = message.get("message") or message.get("slug") or "provider error"
            return [encode_error(text)]

        self._logger.info(
            "Chat started",
            chat_id=message.get("chat_id"),
            chat_group_id=message.get("chat_group_id")
        )
        return []

    async def close(self) -> None:
        """Tear down the upstream link. Safe to call more than once.

        In-flight tool handlers keep running; their responses are discarded.
        """
        if self._closed:
            return
        self._closed = True

        if self._receive_task and self._receive_task is not asyncio.current_task():
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                self._logger.debug("Receive task cancelled")

        try:
            await self._client.close()
        except Exception as e:
            self._logger.warning("Error closing upstream client", error=str(e))

        self._logger.info(
            "Provider bridge closed",
            chunks_sent=self._chunks_sent,
            audio_outputs=self._audio_outputs,
            tools_in_flight=self._dispatcher.in_flight
        )

    def _resampler_for(
        self,
        cache: Dict[int, Resampler],
        source_rate: int,
        target_rate: int
    ) -> Resampler:
        """Get or create the resampler for one direction and source rate."""
        resampler = cache.get(source_rate)
        if resampler is None:
            resampler = create_resampler(source_rate, target_rate)
            cache[source_rate] = resampler
            self._logger.info("Resampler created", source_rate=source_rate, target_rate=target_rate)
        return resampler

    def _flush_inbound(self) -> List[str]:
        """End the assistant turn: emit the samples still held in the filters."""
        tail = b"".join(r.flush() for r in self._inbound_resamplers.values())
        self._inbound_resamplers.clear()

        if not tail:
            return []
        self._logger.debug("Flushed inbound audio tail", size=f"{len(tail)}B")
        return [encode_audio(tail)]

    def _discard_inbound(self) -> None:
        """Drop inbound filter state so interrupted speech is never replayed."""
        if self._inbound_resamplers:
            self._inbound_resamplers.clear()
            self._logger.debug("Inbound resampler state discarded")

    def _translate_audio(self, message: Dict[str, Any]) -> List[str]:
        """Convert an audio_output payload into client audio."""
        data = message.get("data")
        if not isinstance(data, str) or not data:
            self._logger.warning("audio_output without data")
            return []

        try:
            payload = b64decode_audio(data)
        except MessageDecodeError as e:
            self._logger.warning("Dropping undecodable audio_output", error=str(e))
            return []

        info = parse_wav(payload)
        if info.bits_per_sample not in (None, 16) or (info.channels or 1) != 1:
            self._logger.warning(
                "Dropping unsupported audio format",
                bits_per_sample=info.bits_per_sample,
                channels=info.channels
            )
            return []

        source_rate = info.sample_rate or self._upstream_rate
        pcm = self._resampler_for(
            self._inbound_resamplers, source_rate, self._client_rate
        ).resample(info.pcm_data)

        self._audio_outputs += 1
        if self._audio_outputs % AudioConstants.LOG_INTERVAL_OUTPUT == 0 or self._audio_outputs <= 3:
            self._logger.info(
                f"Audio output #{self._audio_outputs}",
                source_rate=source_rate,
                wav=info.is_container,
                input_size=f"{len(info.pcm_data)}B",
                output_size=f"{len(pcm)}B"
            )

        if not pcm:
            return []
        return [encode_audio(pcm)]

    async def _dispatch_tool_call(self, message: Dict[str, Any]) -> None:
        """Route a tool_call to the dispatcher."""
        call_id = message.get("tool_call_id")
        if not isinstance(call_id, str) or not call_id:
            self._logger.warning("tool_call without tool_call_id", name=message.get("name"))
            return

        name = message.get("name")
        if name is None:
            name = ""
        elif not isinstance(name, str):
            # Never matches a registered tool; answered as not found
            self._logger.warning("tool_call with non-string name", call_id=call_id)
            name = json.dumps(name)

        parameters = message.get("parameters")
        if parameters is None:
            parameters = ""
        elif not isinstance(parameters, str):
            parameters = json.dumps(parameters)

        await self._dispatcher.dispatch(
            ToolCall(call_id=call_id, name=name, parameters=parameters)
        )

    async def _send_tool_response(self, tool_call_id: str, content: str) -> None:
        """Send a tool_response unless the session has already closed."""
        if self._closed:
            self._logger.debug("Discarding late tool response", call_id=tool_call_id)
            return
        await self._client.send_tool_response(tool_call_id, content)

    async def _receive_loop(self) -> None:
        """Forward upstream messages to the session inbox until the link ends."""
        reason = "provider closed the connection"
        try:
            async for message in self._client.messages():
                await self._inbox.put(
                    SessionEvent(SessionEventType.UPSTREAM_MESSAGE, payload=message)
                )
        except Exception as e:
            self._logger.error("Upstream receive error", error=str(e))
            reason = str(e)

        await self._inbox.put(SessionEvent(SessionEventType.UPSTREAM_CLOSED, error=reason))
