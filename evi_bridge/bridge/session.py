"""Per-connection session state machine.

States:
    INIT --init--> CONNECTING --provider_open--> READY
    any --close/error--> CLOSED

The client reader and the upstream receive loop both post SessionEvents to
one inbox; a single worker applies every transition, so queue pushes, drains
and state changes never interleave.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Optional

import structlog
import websockets

from evi_bridge.bridge.events import SessionEvent, SessionEventType
from evi_bridge.bridge.provider_bridge import ProviderBridge
from evi_bridge.core.audio_queue import AudioFrame, PendingAudioQueue
from evi_bridge.core.constants import AudioConstants
from evi_bridge.utils.codec import (
    ClientMessage,
    ClientMessageType,
    MessageDecodeError,
    decode_client_message,
    encode_error,
)


# (session_id, inbox) -> unconnected provider bridge
BridgeFactory = Callable[[str, "asyncio.Queue[SessionEvent]"], ProviderBridge]


class SessionState(Enum):
    """Session lifecycle states."""

    INIT = "init"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


class Session:
    """One client connection bridged to one upstream connection."""

    def __init__(
        self,
        websocket: Any,
        bridge_factory: BridgeFactory,
        client_sample_rate: int = AudioConstants.CLIENT_SAMPLE_RATE
    ) -> None:
        """Initialize session.

        Args:
            websocket: Client connection (async iterable of frames with send/close)
            bridge_factory: Creates the provider bridge on init
            client_sample_rate: Sample rate of client audio
        """
        self._ws = websocket
        self._bridge_factory = bridge_factory
        self._client_rate = client_sample_rate

        self._state = SessionState.INIT
        self._session_id: Optional[str] = None
        self._bridge: Optional[ProviderBridge] = None
        self._pending = PendingAudioQueue()
        self._pre_init_dropped = 0
        self._inbox: asyncio.Queue[SessionEvent] = asyncio.Queue()

        self._reader_task: Optional[asyncio.Task[None]] = None
        self._dial_task: Optional[asyncio.Task[None]] = None

        self._logger = structlog.get_logger(__name__)

    @property
    def state(self) -> SessionState:
        """Current state."""
        return self._state

    @property
    def session_id(self) -> Optional[str]:
        """Session id from the init message, None before init."""
        return self._session_id

    @property
    def bridge(self) -> Optional[ProviderBridge]:
        """Provider bridge, None before init."""
        return self._bridge

    @property
    def pending_frames(self) -> int:
        """Frames waiting for the upstream link."""
        return len(self._pending)

    async def run(self) -> None:
        """Process events until the session closes."""
        self._logger.info("Client session started")
        self._reader_task = asyncio.create_task(
            self._read_client(),
            name="session-client-reader"
        )

        try:
            while self._state is not SessionState.CLOSED:
                event = await self._inbox.get()
                await self._handle_event(event)
        finally:
            await self.close()
            tasks = [t for t in (self._reader_task, self._dial_task) if t is not None]
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Tear down both peers. Idempotent; callable from either side."""
        if self._state is SessionState.CLOSED:
            return

        previous = self._state
        self._state = SessionState.CLOSED
        dropped = self._pending.clear()

        current = asyncio.current_task()
        for task in (self._dial_task, self._reader_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

        if self._bridge is not None:
            await self._bridge.close()

        try:
            await self._ws.close()
        except Exception as e:
            self._logger.debug("Error closing client socket", error=str(e))

        # Wake the worker if the close came from outside it
        self._inbox.put_nowait(SessionEvent(SessionEventType.SHUTDOWN))

        self._logger.info(
            "Session closed",
            previous_state=previous.value,
            dropped_frames=dropped
        )

    async def _handle_event(self, event: SessionEvent) -> None:
        """Apply one event to the state machine."""
        if event.type is SessionEventType.CLIENT_MESSAGE:
            await self._on_client_message(event.payload)
        elif event.type is SessionEventType.PROVIDER_OPEN:
            await self._on_provider_open()
        elif event.type is SessionEventType.PROVIDER_FAILED:
            await self._fail(f"Failed to connect to provider: {event.error}")
        elif event.type is SessionEventType.UPSTREAM_MESSAGE:
            await self._on_upstream_message(event.payload)
        elif event.type is SessionEventType.UPSTREAM_CLOSED:
            await self._fail(f"Provider connection closed: {event.error}")
        elif event.type is SessionEventType.CLIENT_CLOSED:
            self._logger.info("Client disconnected", reason=event.error)
            await self.close()

    async def _on_client_message(self, raw: Any) -> None:
        try:
            message = decode_client_message(raw)
        except MessageDecodeError as e:
            self._logger.warning("Dropping malformed client message", error=str(e))
            return

        if message.type is ClientMessageType.INIT:
            self._on_init(message)
        else:
            await self._on_audio(message)

    def _on_init(self, message: ClientMessage) -> None:
        if self._state is not SessionState.INIT:
            self._logger.info("Ignoring repeated init", state=self._state.value)
            return

        self._session_id = message.uuid
        self._logger = self._logger.bind(session_id=self._session_id)
        self._logger.info("Received init from client")

        self._state = SessionState.CONNECTING
        self._bridge = self._bridge_factory(self._session_id, self._inbox)
        self._dial_task = asyncio.create_task(
            self._dial(self._bridge),
            name=f"session-dial-{self._session_id}"
        )

    async def _dial(self, bridge: ProviderBridge) -> None:
        """Connect upstream and report the outcome through the inbox."""
        try:
            await bridge.connect()
        except Exception as e:
            self._logger.error("Provider dial failed", error=str(e))
            await self._inbox.put(SessionEvent(SessionEventType.PROVIDER_FAILED, error=str(e)))
            return

        await self._inbox.put(SessionEvent(SessionEventType.PROVIDER_OPEN))

    async def _on_audio(self, message: ClientMessage) -> None:
        if message.audio is None:
            return

        frame = AudioFrame(pcm=message.audio, sample_rate=self._client_rate)

        if self._state is SessionState.READY and self._pending.is_empty():
            await self._forward(frame)
            return

        self._pending.push(frame)
        if self._state is SessionState.INIT:
            dropped = self._pending.trim_to(AudioConstants.PRE_INIT_BUFFER_MS)
            previous, self._pre_init_dropped = self._pre_init_dropped, self._pre_init_dropped + dropped
            if dropped and previous % AudioConstants.LOG_INTERVAL_CHUNKS == 0:
                self._logger.warning(
                    "Audio before init exceeds buffer, dropping oldest",
                    dropped_frames=self._pre_init_dropped,
                    buffered_ms=round(self._pending.duration_ms)
                )
        if len(self._pending) % AudioConstants.LOG_INTERVAL_CHUNKS == 1:
            self._logger.debug(
                "Audio queued until provider is ready",
                state=self._state.value,
                queued_frames=len(self._pending),
                queued_bytes=self._pending.total_bytes
            )

    async def _on_provider_open(self) -> None:
        if self._state is not SessionState.CONNECTING or self._bridge is None:
            return

        self._state = SessionState.READY
        self._bridge.start()

        frames = self._pending.drain()
        self._logger.info("Provider ready", flushed_frames=len(frames))

        for frame in frames:
            await self._forward(frame)
            if self._state is SessionState.CLOSED:
                break

    async def _on_upstream_message(self, message: Any) -> None:
        if self._bridge is None:
            return

        for envelope in await self._bridge.handle_upstream(message):
            await self._send_client(envelope)

    async def _forward(self, frame: AudioFrame) -> None:
        try:
            await self._bridge.send_audio(frame)
        except ConnectionError as e:
            await self._fail(f"Failed to send audio to provider: {e}")

    async def _fail(self, message: str) -> None:
        """Report a connection error to the client, then close."""
        if self._state is SessionState.CLOSED:
            return

        self._logger.error("Session failed", error=message)
        await self._send_client(encode_error(message))
        await self.close()

    async def _send_client(self, text: str) -> None:
        if self._state is SessionState.CLOSED:
            self._logger.debug("Session closed, dropping client message")
            return

        try:
            await self._ws.send(text)
        except websockets.exceptions.ConnectionClosed:
            self._logger.debug("Client socket closed, message not delivered")

    async def _read_client(self) -> None:
        """Post client frames to the inbox until the socket closes."""
        reason = None
        try:
            async for raw in self._ws:
                await self._inbox.put(SessionEvent(SessionEventType.CLIENT_MESSAGE, payload=raw))
        except websockets.exceptions.ConnectionClosedError as e:
            reason = str(e)
        except Exception as e:
            self._logger.error("Client receive error", error=str(e))
            reason = str(e)

        await self._inbox.put(SessionEvent(SessionEventType.CLIENT_CLOSED, error=reason))
