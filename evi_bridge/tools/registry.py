"""
Tool registry - fixed catalogue of tools available to every session.

Built once at startup from a declarative list of tool definitions and
read-only afterwards. Lookup is by exact, case-sensitive name.
"""

import json
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import structlog


logger = structlog.get_logger(__name__)

# Handler signature: (session_id, validated parameters) -> result
ToolHandler = Callable[[str, Dict[str, Any]], Awaitable[Any]]

# JSON schema type name -> accepted Python types
_JSON_TYPES: Dict[str, tuple] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
    "null": (type(None),),
}


class ToolValidationError(ValueError):
    """Raised when tool parameters do not match the input schema."""


def _matches_type(value: Any, type_name: str) -> bool:
    accepted = _JSON_TYPES.get(type_name)
    if accepted is None:
        return True
    # bool is an int subclass; keep them apart
    if isinstance(value, bool) and type_name in ("integer", "number"):
        return False
    return isinstance(value, accepted)


@dataclass(frozen=True)
class ToolDefinition:
    """
    Declarative tool definition.

    Fields:
        name: Unique tool name the upstream will call
        description: Description announced to the upstream model
        input_schema: JSON schema of the parameters object
        handler: Coroutine function invoked with (session_id, parameters)
    """

    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: ToolHandler

    def to_hume_schema(self) -> Dict[str, Any]:
        """
        Convert to Hume EVI session_settings tool format.

        Hume expects the parameters schema as a JSON string:
        {
            "type": "function",
            "name": "tool_name",
            "description": "Tool description",
            "parameters": "{\"type\": \"object\", ...}"
        }
        """
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": json.dumps(self.input_schema),
        }

    def validate(self, parameters: Dict[str, Any]) -> None:
        """
        Validate parameters against the top-level input schema.

        Checks required properties, declared types (including nullable type
        lists such as ["string", "null"]) and enum membership.

        Raises:
            ToolValidationError: With the first violation found
        """
        if not isinstance(parameters, dict):
            raise ToolValidationError("Parameters must be a JSON object")

        for name in self.input_schema.get("required", []):
            if name not in parameters:
                raise ToolValidationError(f"Missing required parameter: {name}")

        properties = self.input_schema.get("properties", {})
        for name, value in parameters.items():
            prop = properties.get(name)
            if prop is None:
                continue

            declared = prop.get("type")
            if declared is not None:
                types = declared if isinstance(declared, list) else [declared]
                if not any(_matches_type(value, t) for t in types):
                    raise ToolValidationError(
                        f"Invalid type for {name}: expected {' or '.join(types)}"
                    )

            allowed = prop.get("enum")
            if allowed is not None and value not in allowed:
                raise ToolValidationError(
                    f"Invalid value for {name}. "
                    f"Must be one of: {', '.join(str(v) for v in allowed)}"
                )


class ToolRegistry:
    """
    Immutable name -> tool mapping.

    Also produces the tool schemas announced to the upstream at dial time.
    """

    def __init__(self, tools: Iterable[ToolDefinition] = ()) -> None:
        """
        Build the registry.

        Args:
            tools: Tool definitions

        Raises:
            ValueError: If two tools share a name
        """
        by_name: Dict[str, ToolDefinition] = {}
        for tool in tools:
            if tool.name in by_name:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            by_name[tool.name] = tool

        self._tools = MappingProxyType(by_name)
        logger.info("Tool registry built", tools=list(self._tools))

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    @property
    def names(self) -> List[str]:
        """Registered tool names in registration order."""
        return list(self._tools)

    def resolve(self, name: str) -> Optional[ToolDefinition]:
        """
        Look up a tool by exact name.

        Returns:
            Tool definition, or None if not registered
        """
        return self._tools.get(name)

    def schemas(self) -> List[Dict[str, Any]]:
        """Tool schemas in Hume session_settings format."""
        return [tool.to_hume_schema() for tool in self._tools.values()]
