"""Dispatch table for server-side functions requested by the realtime model."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from ..errors import ToolError

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ToolCallContext:
    """Call-scoped context handed to every tool handler.

    Attributes:
        call_id: Telephony call id of the owning session.
        tool_call_id: Model-issued id correlating the output event.
        metadata: Caller metadata supplied when the call was accepted.
    """

    call_id: str
    tool_call_id: str
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ToolResult:
    """Tool output plus an optional request to end the session afterwards."""

    payload: dict[str, Any]
    end_session: bool = False
    end_reason: str | None = None


ToolHandler = Callable[[Any, ToolCallContext], Awaitable[ToolResult | dict[str, Any]]]


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """One tool exposed to the model.

    Attributes:
        name: Function name the model calls.
        description: Human-readable purpose shown to the model.
        arguments_model: Pydantic model validating the call arguments; its
            JSON schema is advertised as the function parameters.
        handler: Coroutine receiving the validated model and call context.
    """

    name: str
    description: str
    arguments_model: type[BaseModel]
    handler: ToolHandler

    def schema(self) -> dict[str, Any]:
        """Returns the realtime ``function`` tool definition."""
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.arguments_model.model_json_schema(),
        }


class ToolDispatcher:
    """Executes named tools and always returns a JSON-serializable result.

    A malformed or unsupported tool request never raises into the session:
    unknown names, undecodable arguments and handler failures all become
    ``{"error": ...}`` payloads sent back to the model.
    """

    def __init__(self, tools: Iterable[ToolSpec] = ()) -> None:
        self._tools: dict[str, ToolSpec] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolSpec) -> None:
        """Adds or replaces one tool in the dispatch table."""
        self._tools[tool.name] = tool
        _LOGGER.debug("Registered tool.", extra={"tool_name": tool.name})

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._tools)

    def schemas(self) -> list[dict[str, Any]]:
        """Returns function definitions for every registered tool."""
        return [tool.schema() for tool in self._tools.values()]

    async def invoke(self, name: str, arguments_json: str | None, context: ToolCallContext) -> ToolResult:
        """Runs one tool call.

        Args:
            name: Function name chosen by the model.
            arguments_json: Raw JSON argument string from the model.
            context: Owning call context.

        Returns:
            Tool result; failures are reported inside ``payload``.
        """
        tool = self._tools.get(name)
        if tool is None:
            _LOGGER.warning(
                "Unknown tool requested.",
                extra={"call_id": context.call_id, "tool_name": name},
            )
            return ToolResult(payload={"error": "unknown function", "function": name})

        started = time.monotonic()
        try:
            arguments = self._parse_arguments(tool, arguments_json)
            outcome = await tool.handler(arguments, context)
        except ToolError as exc:
            _LOGGER.info(
                "Tool call rejected.",
                extra={"call_id": context.call_id, "tool_name": name, "error_message": str(exc)},
            )
            return ToolResult(payload={"error": str(exc), "function": name})
        except Exception:
            _LOGGER.exception(
                "Tool call failed.",
                extra={"call_id": context.call_id, "tool_name": name},
            )
            return ToolResult(payload={"error": "tool execution failed", "function": name})

        result = outcome if isinstance(outcome, ToolResult) else ToolResult(payload=outcome)
        _LOGGER.debug(
            "Tool call succeeded.",
            extra={
                "call_id": context.call_id,
                "tool_name": name,
                "latency_ms": int((time.monotonic() - started) * 1000),
                "end_session": result.end_session,
            },
        )
        return result

    @staticmethod
    def _parse_arguments(tool: ToolSpec, arguments_json: str | None) -> BaseModel:
        """Decodes and validates raw model arguments.

        Raises:
            ToolError: If arguments are not a JSON object or fail validation.
        """
        raw: Any = {}
        if arguments_json and arguments_json.strip():
            try:
                raw = json.loads(arguments_json)
            except ValueError as exc:
                raise ToolError(f"invalid JSON arguments: {exc}") from exc
        if not isinstance(raw, dict):
            raise ToolError("arguments must be a JSON object")
        try:
            return tool.arguments_model.model_validate(raw)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or 'arguments'}: {error['msg']}"
                for error in exc.errors()
            )
            raise ToolError(f"invalid arguments: {problems}") from exc
