"""Shared type definitions for call sessions and their public snapshots."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .providers.base import RealtimeLink


def _utcnow() -> datetime:
    """Returns current UTC wall clock time."""
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    CONNECTING = "connecting"
    ACTIVE = "active"
    ERRORING = "erroring"
    CLOSED = "closed"


# ERRORING -> CONNECTING is reserved for a reconnect policy; the baseline
# controller never takes it.
_ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.INITIALIZING: frozenset({SessionState.CONNECTING, SessionState.CLOSED}),
    SessionState.CONNECTING: frozenset(
        {SessionState.ACTIVE, SessionState.ERRORING, SessionState.CLOSED}
    ),
    SessionState.ACTIVE: frozenset({SessionState.ERRORING, SessionState.CLOSED}),
    SessionState.ERRORING: frozenset({SessionState.CONNECTING, SessionState.CLOSED}),
    SessionState.CLOSED: frozenset(),
}


class InvalidTransition(RuntimeError):
    """Raised when a session is asked to move along an undefined edge."""


@dataclass(slots=True, frozen=True)
class EventLogEntry:
    """One observed event on a session.

    Attributes:
        event_type: Realtime protocol event type (or a local marker).
        timestamp: Monotonic clock reading when the event was recorded.
        direction: ``IN`` for backend events, ``OUT`` for sent events.
    """

    event_type: str
    timestamp: float
    direction: str = "IN"


@dataclass(slots=True, frozen=True)
class SessionOverrides:
    """Per-call overrides applied on top of process-wide session defaults."""

    instructions: str | None = None
    voice: str | None = None


@dataclass(slots=True, frozen=True)
class SessionDefaults:
    """Process-wide realtime session configuration.

    Attributes:
        instructions: Default system instructions.
        voice: Default voice identity.
        audio_format: Audio encoding for input and output audio.
        tools_enabled: Whether tool schemas are offered to the model.
        transcription_model: Input transcription model.
        vad_threshold: Server VAD activation threshold.
        prefix_padding_ms: Audio kept before detected speech.
        silence_duration_ms: Silence that ends a caller turn.
        tool_choice: Tool-choice policy.
        temperature: Sampling temperature.
        max_output_tokens: Output-token cap per response.
    """

    instructions: str
    voice: str = "alloy"
    audio_format: str = "pcm16"
    tools_enabled: bool = False
    transcription_model: str = "whisper-1"
    vad_threshold: float = 0.5
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 200
    tool_choice: str = "auto"
    temperature: float = 0.8
    max_output_tokens: int = 4096


@dataclass(slots=True, frozen=True)
class SessionSnapshot:
    """Point-in-time, read-only copy of a call session."""

    call_id: str
    state: SessionState
    openai_session_id: str | None
    metadata: dict[str, Any]
    created_at: datetime
    started_at: float
    connected_at: float | None
    ended_at: float | None
    last_activity: float | None
    connect_attempts: int
    usage: dict[str, int]
    last_error: str | None
    pending_tool_calls: tuple[str, ...]
    events: tuple[EventLogEntry, ...]
    end_reason: str | None = None

    @property
    def duration_s(self) -> float:
        """Seconds elapsed since the session started (or until it ended)."""
        end = self.ended_at if self.ended_at is not None else time.monotonic()
        return max(0.0, end - self.started_at)

    def to_dict(self) -> dict[str, Any]:
        """Serializes the snapshot for JSON API responses."""
        return {
            "call_id": self.call_id,
            "state": self.state.value,
            "openai_session_id": self.openai_session_id,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
            "duration_s": round(self.duration_s, 3),
            "connected": self.connected_at is not None,
            "connect_attempts": self.connect_attempts,
            "usage": dict(self.usage),
            "last_error": self.last_error,
            "pending_tool_calls": list(self.pending_tool_calls),
            "event_count": len(self.events),
            "end_reason": self.end_reason,
        }


@dataclass(slots=True, eq=False)
class CallSession:
    """Mutable per-call state owned by one session task.

    Only the owning task mutates these fields; external callers interact
    through ``SessionController`` and read ``SessionSnapshot`` copies.
    """

    call_id: str
    metadata: dict[str, Any] = field(default_factory=dict)
    overrides: SessionOverrides = field(default_factory=SessionOverrides)
    state: SessionState = SessionState.INITIALIZING
    link: RealtimeLink | None = None
    openai_session_id: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    started_at: float = field(default_factory=time.monotonic)
    connected_at: float | None = None
    ended_at: float | None = None
    last_activity: float | None = None
    connect_attempts: int = 0
    event_log: list[EventLogEntry] = field(default_factory=list)
    usage: dict[str, int] = field(
        default_factory=lambda: {
            "total_tokens": 0,
            "input_tokens": 0,
            "output_tokens": 0,
            "responses": 0,
        }
    )
    last_error: str | None = None
    pending_tool_calls: set[str] = field(default_factory=set)
    end_reason: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def transition(self, new_state: SessionState) -> None:
        """Moves the session to ``new_state``.

        Re-entering the current state is a no-op.

        Raises:
            InvalidTransition: If the edge is not part of the state machine.
        """
        if new_state is self.state:
            return
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"{self.call_id}: {self.state.value} -> {new_state.value} is not allowed"
            )
        self.state = new_state

    def record_event(self, event_type: str, *, direction: str = "IN") -> EventLogEntry:
        """Appends one entry to the ordered event log."""
        entry = EventLogEntry(event_type=event_type, timestamp=time.monotonic(), direction=direction)
        self.event_log.append(entry)
        return entry

    def snapshot(self) -> SessionSnapshot:
        """Returns a detached copy safe to hand outside the session task."""
        return SessionSnapshot(
            call_id=self.call_id,
            state=self.state,
            openai_session_id=self.openai_session_id,
            metadata=dict(self.metadata),
            created_at=self.created_at,
            started_at=self.started_at,
            connected_at=self.connected_at,
            ended_at=self.ended_at,
            last_activity=self.last_activity,
            connect_attempts=self.connect_attempts,
            usage=dict(self.usage),
            last_error=self.last_error,
            pending_tool_calls=tuple(sorted(self.pending_tool_calls)),
            events=tuple(self.event_log),
            end_reason=self.end_reason,
        )
