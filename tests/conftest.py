"""Shared test fixtures and configuration."""

import asyncio
from typing import Any, AsyncGenerator, Callable, List, Tuple

import pytest
import pytest_asyncio

from evi_bridge.bridge import BridgeFactory, ProviderBridge, Session, SessionEvent
from evi_bridge.tools import ToolDefinition, ToolRegistry
from tests.fakes import FakeClientSocket, echo_handler
from tests.mock_ai_client import MockEviClient


# Session tests run the client and upstream at one rate so audio passes through unchanged
TEST_RATE = 8000


@pytest.fixture
def sample_rate() -> int:
    """Sample rate for tests."""
    return TEST_RATE


@pytest.fixture
def pcm_100ms(sample_rate: int) -> bytes:
    """100ms of PCM16 silence."""
    return b"\x00\x00" * (sample_rate // 10)


@pytest.fixture
def echo_tool() -> ToolDefinition:
    """Tool with one required string parameter."""
    return ToolDefinition(
        name="echo",
        description="Echo the input",
        input_schema={
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
        handler=echo_handler,
    )


@pytest.fixture
def registry(echo_tool: ToolDefinition) -> ToolRegistry:
    """Registry with the echo tool."""
    return ToolRegistry([echo_tool])


@pytest.fixture
def client_socket() -> FakeClientSocket:
    """In-memory client socket."""
    return FakeClientSocket()


class BridgeRecorder:
    """Bridge factory that builds ProviderBridges over MockEviClients."""

    def __init__(self, registry: ToolRegistry, **client_kwargs: Any) -> None:
        self._registry = registry
        self._client_kwargs = client_kwargs
        self.clients: List[MockEviClient] = []
        self.bridges: List[ProviderBridge] = []

    @property
    def client(self) -> MockEviClient:
        """Most recently created upstream client."""
        return self.clients[-1]

    def __call__(self, session_id: str, inbox: "asyncio.Queue[SessionEvent]") -> ProviderBridge:
        client = MockEviClient(**self._client_kwargs)
        bridge = ProviderBridge(
            session_id,
            inbox,
            client,
            self._registry,
            client_sample_rate=TEST_RATE,
            upstream_sample_rate=TEST_RATE,
        )
        self.clients.append(client)
        self.bridges.append(bridge)
        return bridge


@pytest.fixture
def make_recorder(registry: ToolRegistry) -> Callable[..., BridgeRecorder]:
    """Create a bridge recorder; keyword arguments go to MockEviClient."""

    def factory(tool_registry: ToolRegistry = registry, **client_kwargs: Any) -> BridgeRecorder:
        return BridgeRecorder(tool_registry, **client_kwargs)

    return factory


@pytest_asyncio.fixture
async def run_session(
    client_socket: FakeClientSocket
) -> AsyncGenerator[Callable[[BridgeFactory], Tuple[Session, "asyncio.Task[None]"]], None]:
    """Start Session.run() in a task; the session is closed on teardown."""
    started: List[Session] = []
    tasks: List["asyncio.Task[None]"] = []

    def start(factory: BridgeFactory) -> Tuple[Session, "asyncio.Task[None]"]:
        session = Session(client_socket, factory, client_sample_rate=TEST_RATE)
        started.append(session)
        task = asyncio.create_task(session.run())
        tasks.append(task)
        return session, task

    yield start

    for session in started:
        await session.close()
    await asyncio.gather(*tasks, return_exceptions=True)
