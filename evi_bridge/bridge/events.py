"""Events funnelled through a session's inbox."""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Optional


class SessionEventType(Enum):
    """Session event types."""

    # Client socket
    CLIENT_MESSAGE = auto()
    CLIENT_CLOSED = auto()

    # Upstream dial outcome
    PROVIDER_OPEN = auto()
    PROVIDER_FAILED = auto()

    # Upstream socket
    UPSTREAM_MESSAGE = auto()
    UPSTREAM_CLOSED = auto()

    # Wakes the worker after an out-of-band close
    SHUTDOWN = auto()


@dataclass(frozen=True)
class SessionEvent:
    """Session event data."""

    type: SessionEventType
    payload: Any = None
    error: Optional[str] = None
