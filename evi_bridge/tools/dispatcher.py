"""Per-session tool invocation and response correlation."""

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import structlog

from evi_bridge.tools.registry import ToolDefinition, ToolRegistry, ToolValidationError


# (tool_call_id, JSON content) -> sends one tool_response upstream
ResponseSender = Callable[[str, str], Awaitable[None]]


@dataclass
class ToolCall:
    """One upstream tool invocation awaiting its response."""

    call_id: str
    name: str
    parameters: str
    dispatched_at: float = field(default_factory=time.monotonic)


def error_content(message: str) -> str:
    """JSON content for an error tool_response."""
    return json.dumps({"error": message})


def result_content(result: Any) -> str:
    """JSON content for a successful tool_response."""
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


class ToolDispatcher:
    """Invokes tool handlers for one session.

    Every call gets exactly one response carrying its own call id. Handlers
    run in their own tasks, so slow tools never block the session or each
    other; responses go out in completion order.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        session_id: str,
        send_response: ResponseSender
    ) -> None:
        """Initialize dispatcher.

        Args:
            registry: Tool registry
            session_id: Session identity passed to handlers
            send_response: Coroutine sending one tool_response upstream
        """
        self._registry = registry
        self._session_id = session_id
        self._send_response = send_response
        self._tasks: Set[asyncio.Task[None]] = set()

        self._logger = structlog.get_logger(__name__).bind(session_id=session_id)

    @property
    def in_flight(self) -> int:
        """Number of handler invocations still running."""
        return len(self._tasks)

    async def dispatch(self, call: ToolCall) -> Optional[asyncio.Task[None]]:
        """Dispatch a tool call.

        Unknown tools are answered immediately with an error response.

        Args:
            call: Tool call record

        Returns:
            Handler task for known tools, None when answered inline
        """
        tool = self._registry.resolve(call.name)
        if tool is None:
            self._logger.warning(
                "Tool not found",
                tool=call.name,
                call_id=call.call_id
            )
            await self._respond(call, error_content(f"tool {call.name} not found"))
            return None

        self._logger.info("Dispatching tool call", tool=call.name, call_id=call.call_id)

        task = asyncio.create_task(
            self._invoke(call, tool),
            name=f"tool-{call.name}-{call.call_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until every in-flight handler has completed."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _invoke(self, call: ToolCall, tool: ToolDefinition) -> None:
        """Run the handler and send its response."""
        try:
            parameters = json.loads(call.parameters) if call.parameters else {}
        except json.JSONDecodeError as e:
            self._logger.warning("Invalid tool parameters", tool=call.name, error=str(e))
            await self._respond(call, error_content(f"invalid parameters: {e}"))
            return

        try:
            tool.validate(parameters)
            result = await tool.handler(self._session_id, parameters)
            content = result_content(result)
        except ToolValidationError as e:
            self._logger.warning("Tool parameters rejected", tool=call.name, error=str(e))
            content = error_content(str(e))
        except Exception as e:
            self._logger.error(
                "Tool handler failed",
                tool=call.name,
                call_id=call.call_id,
                error=str(e),
                exc_info=True
            )
            content = error_content(f"tool {call.name} failed: {e}")
        else:
            self._logger.info(
                "Tool call completed",
                tool=call.name,
                call_id=call.call_id,
                elapsed_ms=round((time.monotonic() - call.dispatched_at) * 1000, 1)
            )

        await self._respond(call, content)

    async def _respond(self, call: ToolCall, content: str) -> None:
        """Send the response; failures are logged, never raised."""
        try:
            await self._send_response(call.call_id, content)
        except ConnectionError as e:
            self._logger.warning(
                "Tool response not delivered",
                tool=call.name,
                call_id=call.call_id,
                error=str(e)
            )
