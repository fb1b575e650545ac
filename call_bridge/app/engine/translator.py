"""Interprets inbound realtime events and produces outbound ones.

The translator owns the event vocabulary of the realtime protocol: it builds
the one-time ``session.update`` configuration, applies inbound events to the
``CallSession`` in arrival order, and routes function calls through the tool
dispatcher before sending their output back over the link.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from ..tools.dispatcher import ToolCallContext, ToolDispatcher
from ..errors import ProtocolError
from .providers.types import RealtimeEvent
from .types import CallSession, SessionDefaults, SessionState

_LOGGER = logging.getLogger(__name__)

# Callback used by the translator to emit one outbound realtime event.
SendEvent = Callable[[RealtimeEvent], Awaitable[None]]
_EventHandler = Callable[[CallSession, RealtimeEvent, SendEvent], Awaitable[bool]]


class EventTranslator:
    """Maps realtime protocol events onto session state and tool calls."""

    def __init__(
        self,
        *,
        defaults: SessionDefaults,
        dispatcher: ToolDispatcher | None = None,
        verbose: bool = False,
    ) -> None:
        """Initializes the translator.

        Args:
            defaults: Process-wide session configuration.
            dispatcher: Tool dispatcher; required for tool calls to succeed.
            verbose: Logs unrecognized event types when enabled.
        """
        self._defaults = defaults
        self._dispatcher = dispatcher
        self._verbose = verbose
        self._handlers: dict[str, _EventHandler] = {
            "session.created": self._on_session_created,
            "session.updated": self._on_session_updated,
            "conversation.item.created": self._on_conversation_item_created,
            "response.function_call_arguments.done": self._on_function_call,
            "response.done": self._on_response_done,
            "error": self._on_error,
        }

    def build_session_update(self, session: CallSession) -> RealtimeEvent:
        """Builds the single ``session.update`` sent after a link connects."""
        defaults = self._defaults
        overrides = session.overrides
        tools: list[dict[str, Any]] = []
        if defaults.tools_enabled and self._dispatcher is not None:
            tools = self._dispatcher.schemas()
        return {
            "type": "session.update",
            "session": {
                "modalities": ["text", "audio"],
                "instructions": overrides.instructions or defaults.instructions,
                "voice": overrides.voice or defaults.voice,
                "input_audio_format": defaults.audio_format,
                "output_audio_format": defaults.audio_format,
                "input_audio_transcription": {"model": defaults.transcription_model},
                "turn_detection": {
                    "type": "server_vad",
                    "threshold": defaults.vad_threshold,
                    "prefix_padding_ms": defaults.prefix_padding_ms,
                    "silence_duration_ms": defaults.silence_duration_ms,
                },
                "tools": tools,
                "tool_choice": defaults.tool_choice,
                "temperature": defaults.temperature,
                "max_response_output_tokens": defaults.max_output_tokens,
            },
        }

    async def handle(self, session: CallSession, event: RealtimeEvent, send: SendEvent) -> bool:
        """Applies one inbound event to ``session``.

        Returns:
            ``True`` to keep consuming events, ``False`` when the session
            should stop (error event or a tool asked to end the call).
        """
        event_type = str(event.get("type") or "unknown")
        session.record_event(event_type)
        handler = self._handlers.get(event_type)
        if handler is None:
            if self._verbose:
                _LOGGER.debug(
                    "Unhandled realtime event.",
                    extra={"call_id": session.call_id, "event_type": event_type, "event_id": event.get("event_id")},
                )
            return True
        try:
            return await handler(session, event, send)
        except ProtocolError as exc:
            _LOGGER.warning(
                "Skipping malformed realtime event.",
                extra={"call_id": session.call_id, "event_type": event_type, "error": str(exc)},
            )
            return True

    async def _on_session_created(self, session: CallSession, event: RealtimeEvent, send: SendEvent) -> bool:
        del send
        remote = event.get("session")
        remote_id = remote.get("id") if isinstance(remote, dict) else None
        if remote_id:
            session.openai_session_id = str(remote_id)
        if session.state is SessionState.CONNECTING:
            session.transition(SessionState.ACTIVE)
        session.last_activity = time.monotonic()
        _LOGGER.info(
            "Realtime session active.",
            extra={"call_id": session.call_id, "openai_session_id": session.openai_session_id},
        )
        return True

    async def _on_session_updated(self, session: CallSession, event: RealtimeEvent, send: SendEvent) -> bool:
        del event, send
        _LOGGER.debug("Realtime session configuration acknowledged.", extra={"call_id": session.call_id})
        return True

    async def _on_conversation_item_created(
        self, session: CallSession, event: RealtimeEvent, send: SendEvent
    ) -> bool:
        del event, send
        session.last_activity = time.monotonic()
        return True

    async def _on_function_call(self, session: CallSession, event: RealtimeEvent, send: SendEvent) -> bool:
        name = event.get("name")
        tool_call_id = event.get("call_id")
        if not isinstance(name, str) or not name or not isinstance(tool_call_id, str) or not tool_call_id:
            raise ProtocolError("function call event is missing name or call_id")
        arguments = event.get("arguments")
        if arguments is not None and not isinstance(arguments, str):
            arguments = json.dumps(arguments)

        _LOGGER.info(
            "Function call requested.",
            extra={"call_id": session.call_id, "function_name": name, "tool_call_id": tool_call_id},
        )
        context = ToolCallContext(call_id=session.call_id, tool_call_id=tool_call_id, metadata=session.metadata)
        session.pending_tool_calls.add(tool_call_id)
        try:
            if self._dispatcher is None:
                payload: dict[str, Any] = {"error": "unknown function", "function": name}
                end_session, end_reason = False, None
            else:
                result = await self._dispatcher.invoke(name, arguments, context)
                payload, end_session, end_reason = result.payload, result.end_session, result.end_reason
        finally:
            session.pending_tool_calls.discard(tool_call_id)

        if session.is_closed or (session.link is not None and session.link.closed):
            _LOGGER.info(
                "Discarding tool result for closed session.",
                extra={"call_id": session.call_id, "tool_call_id": tool_call_id},
            )
            return False

        await send(
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "function_call_output",
                    "call_id": tool_call_id,
                    "output": json.dumps(payload, default=str),
                },
            }
        )
        session.record_event("conversation.item.create", direction="OUT")
        session.last_activity = time.monotonic()
        if end_session:
            session.end_reason = end_reason
            return False
        return True

    async def _on_response_done(self, session: CallSession, event: RealtimeEvent, send: SendEvent) -> bool:
        del send
        response = event.get("response")
        usage = response.get("usage") if isinstance(response, dict) else None
        if isinstance(usage, dict):
            for key in ("total_tokens", "input_tokens", "output_tokens"):
                value = usage.get(key)
                if isinstance(value, int):
                    session.usage[key] += value
        session.usage["responses"] += 1
        session.last_activity = time.monotonic()
        return True

    async def _on_error(self, session: CallSession, event: RealtimeEvent, send: SendEvent) -> bool:
        del send
        error = event.get("error")
        if isinstance(error, dict):
            message = str(error.get("message") or error.get("code") or error)
        else:
            message = str(error or "unknown realtime error")
        session.last_error = message
        session.transition(SessionState.ERRORING)
        _LOGGER.error(
            "Realtime backend reported an error for call %s: %s",
            session.call_id,
            message,
            extra={"call_id": session.call_id},
        )
        return False
