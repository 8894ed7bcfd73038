"""Base protocol and types for upstream voice AI communication."""

from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union, runtime_checkable


class UpstreamMessageType(str, Enum):
    """Upstream message types consumed by the bridge."""

    AUDIO_OUTPUT = "audio_output"
    USER_MESSAGE = "user_message"
    ASSISTANT_MESSAGE = "assistant_message"
    USER_INTERRUPTION = "user_interruption"
    TOOL_CALL = "tool_call"
    ERROR = "error"

    # Informational only
    CHAT_METADATA = "chat_metadata"
    ASSISTANT_END = "assistant_end"


@dataclass
class SessionConfig:
    """Session configuration announced once when dialling upstream."""

    session_id: str

    # Audio configuration
    sample_rate: int = 48000
    channels: int = 1
    encoding: str = "linear16"

    # Voice configuration
    voice_id: Optional[str] = None

    # Custom instructions
    system_prompt: Optional[str] = None

    # Tool schemas in the upstream's format
    tools: List[Dict[str, Any]] = field(default_factory=list)


@runtime_checkable
class AiDuplexClient(Protocol):
    """Protocol for upstream voice AI client implementations."""

    @property
    def is_connected(self) -> bool:
        """Check if connected."""
        ...

    @abstractmethod
    async def connect(self, session_config: SessionConfig) -> None:
        """Connect to the AI service and announce the session settings.

        Args:
            session_config: Session configuration

        Raises:
            ConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close connection to AI service. Safe to call more than once."""
        ...

    @abstractmethod
    async def send_audio_input(self, chunk: Union[bytes, memoryview], session_id: str) -> None:
        """Send one chunk of PCM16 audio at the upstream rate.

        Args:
            chunk: PCM16 audio chunk
            session_id: Session identity tag

        Raises:
            ConnectionError: If not connected
        """
        ...

    @abstractmethod
    async def send_assistant_input(self, text: str) -> None:
        """Send priming text for the assistant to speak.

        Raises:
            ConnectionError: If not connected
        """
        ...

    @abstractmethod
    async def send_tool_response(self, tool_call_id: str, content: str) -> None:
        """Send the result of a tool invocation.

        Args:
            tool_call_id: Call id echoed from the tool_call message
            content: JSON-encoded result

        Raises:
            ConnectionError: If not connected
        """
        ...

    @abstractmethod
    def messages(self) -> AsyncIterator[Dict[str, Any]]:
        """Iterate over decoded upstream messages until the link closes.

        Yields:
            Parsed JSON messages

        Raises:
            ConnectionError: If the connection fails abnormally
        """
        ...


class AiDuplexBase:
    """Base class for upstream clients with common functionality."""

    def __init__(self) -> None:
        """Initialize base client."""
        self._connected = False
        self._session_config: Optional[SessionConfig] = None

    @property
    def is_connected(self) -> bool:
        """Check if connected."""
        return self._connected

    @property
    def session_config(self) -> Optional[SessionConfig]:
        """Session configuration sent at connect time."""
        return self._session_config

    def ensure_connected(self) -> None:
        """Raise if the client is not connected.

        Raises:
            ConnectionError: If not connected
        """
        if not self._connected:
            raise ConnectionError("Not connected")
