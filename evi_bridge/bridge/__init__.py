"""Session bridge between telephony clients and Hume EVI.

This module provides the bridging layer between the client protocol and the upstream API:
- Session: per-connection state machine with an ordered event inbox
- ProviderBridge: upstream lifecycle, audio pipeline and tool routing
- Listener: WebSocket accept loop running one Session per connection
"""

__all__ = [
    "BridgeFactory",
    "Listener",
    "ProviderBridge",
    "Session",
    "SessionEvent",
    "SessionEventType",
    "SessionState",
]

from evi_bridge.bridge.events import SessionEvent, SessionEventType
from evi_bridge.bridge.provider_bridge import ProviderBridge
from evi_bridge.bridge.session import BridgeFactory, Session, SessionState
from evi_bridge.bridge.listener import Listener
