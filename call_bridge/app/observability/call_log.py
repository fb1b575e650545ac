"""Per-call lifecycle log lines."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..engine.types import SessionSnapshot

_LOGGER = logging.getLogger("call_bridge.calls")


def log_call_event(call_id: str, event: str, **data: Any) -> None:
    """Logs one ``[CALL <id>] <event>`` line with structured context."""
    _LOGGER.info(
        "[CALL %s] %s",
        call_id,
        event,
        extra={"call_id": call_id, "call_event": event, "call_data": data},
    )


def log_session_summary(snapshot: SessionSnapshot) -> None:
    """Logs the end-of-call summary (duration, token usage, event count)."""
    _LOGGER.info(
        "[CALL %s] session_summary duration_s=%.2f total_tokens=%d events=%d end_reason=%s",
        snapshot.call_id,
        snapshot.duration_s,
        snapshot.usage.get("total_tokens", 0),
        len(snapshot.events),
        snapshot.end_reason,
        extra={
            "call_id": snapshot.call_id,
            "call_event": "session_summary",
            "openai_session_id": snapshot.openai_session_id,
            "connect_attempts": snapshot.connect_attempts,
            "last_error": snapshot.last_error,
        },
    )
