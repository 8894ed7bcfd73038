"""WebSocket listener accepting client connections.

Each accepted connection runs one Session until either peer closes.
"""

import asyncio
from typing import Any, Optional, Set

import structlog
import websockets
from websockets.asyncio.server import Server, ServerConnection

from evi_bridge.bridge.session import BridgeFactory, Session
from evi_bridge.core.constants import AudioConstants


logger = structlog.get_logger(__name__)


class Listener:
    """WebSocket server creating one Session per client connection."""

    def __init__(
        self,
        bridge_factory: BridgeFactory,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 6035,
        client_sample_rate: int = AudioConstants.CLIENT_SAMPLE_RATE,
        max_message_size: int = 2**20
    ) -> None:
        """Initialize listener.

        Args:
            bridge_factory: Creates a provider bridge per session
            host: Bind host address
            port: Bind port
            client_sample_rate: Sample rate of client audio
            max_message_size: Largest accepted client frame in bytes
        """
        self._bridge_factory = bridge_factory
        self._host = host
        self._port = port
        self._client_rate = client_sample_rate
        self._max_message_size = max_message_size
        self._server: Optional[Server] = None
        self._sessions: Set[Session] = set()

    @property
    def is_running(self) -> bool:
        """Check if the server is accepting connections."""
        return self._server is not None

    @property
    def port(self) -> int:
        """Bound port once running (resolves port 0), else the configured port."""
        if self._server is not None:
            for sock in self._server.sockets:
                return sock.getsockname()[1]
        return self._port

    @property
    def active_sessions(self) -> int:
        """Number of sessions currently running."""
        return len(self._sessions)

    async def start(self) -> None:
        """Bind and start accepting connections.

        Raises:
            RuntimeError: If already running
            OSError: If port binding fails
        """
        if self._server is not None:
            raise RuntimeError("Listener is already running")

        try:
            self._server = await websockets.serve(
                self._handle_connection,
                self._host,
                self._port,
                max_size=self._max_message_size
            )
        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                host=self._host,
                port=self._port,
                error=str(e)
            )
            raise

        logger.info("WebSocket server is listening", host=self._host, port=self._port)

    async def stop(self) -> None:
        """Close every session and stop the server."""
        if self._server is None:
            return

        logger.info("Stopping WebSocket server", active_sessions=len(self._sessions))

        await asyncio.gather(
            *(session.close() for session in list(self._sessions)),
            return_exceptions=True
        )

        server, self._server = self._server, None
        server.close()
        await server.wait_closed()

        logger.info("WebSocket server closed")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Run a session for one client connection."""
        remote: Any = websocket.remote_address
        logger.info("New client connected", remote=remote)

        session = Session(
            websocket,
            self._bridge_factory,
            client_sample_rate=self._client_rate
        )
        self._sessions.add(session)
        try:
            await session.run()
        except Exception as e:
            logger.error("Session error", remote=remote, error=str(e), exc_info=True)
        finally:
            self._sessions.discard(session)
            logger.info(
                "Client connection finished",
                remote=remote,
                session_id=session.session_id,
                active_sessions=len(self._sessions)
            )
