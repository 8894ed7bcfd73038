"""Tools exposed to the upstream model.

- ToolRegistry: immutable name -> tool catalogue built at startup
- ToolDispatcher: per-session invocation and call-id correlation
"""

__all__ = [
    "ToolCall",
    "ToolDefinition",
    "ToolDispatcher",
    "ToolRegistry",
    "build_default_registry",
]

from pathlib import Path

from evi_bridge.tools.dispatcher import ToolCall, ToolDispatcher
from evi_bridge.tools.message_store import JsonlMessageStore
from evi_bridge.tools.registry import ToolDefinition, ToolRegistry
from evi_bridge.tools.take_message import build_take_message_tool


def build_default_registry(message_store_path: str | Path) -> ToolRegistry:
    """Build the registry of built-in tools.

    Args:
        message_store_path: JSON-lines file used by take_message

    Returns:
        Tool registry
    """
    return ToolRegistry([
        build_take_message_tool(JsonlMessageStore(message_store_path)),
    ])
