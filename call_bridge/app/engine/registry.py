"""Keyed store of live call sessions."""

from __future__ import annotations

import logging
import threading
from typing import Any

from ..errors import SessionAlreadyExists, SessionCapacityExceeded, SessionNotFound
from .types import CallSession, SessionOverrides, SessionSnapshot

_LOGGER = logging.getLogger(__name__)


class SessionRegistry:
    """Concurrent map of ``call_id`` to ``CallSession``.

    Every operation holds one lock, so create/remove/list are atomic with
    respect to each other whether they come from session tasks or from HTTP
    handlers running in a threadpool.
    """

    def __init__(self, *, max_sessions: int | None = None) -> None:
        """Initializes an empty registry.

        Args:
            max_sessions: Optional cap on live sessions.
        """
        self._sessions: dict[str, CallSession] = {}
        self._lock = threading.Lock()
        self._max_sessions = max_sessions

    @property
    def max_sessions(self) -> int | None:
        return self._max_sessions

    def create(
        self,
        call_id: str,
        metadata: dict[str, Any] | None = None,
        overrides: SessionOverrides | None = None,
    ) -> CallSession:
        """Registers a new session in ``INITIALIZING`` state.

        A closed session still present under ``call_id`` is replaced.

        Raises:
            SessionAlreadyExists: If a live session already uses ``call_id``.
            SessionCapacityExceeded: If ``max_sessions`` live sessions exist.
        """
        with self._lock:
            existing = self._sessions.get(call_id)
            if existing is not None and not existing.is_closed:
                raise SessionAlreadyExists(call_id)
            live = sum(1 for session in self._sessions.values() if not session.is_closed)
            if self._max_sessions is not None and live >= self._max_sessions:
                raise SessionCapacityExceeded(self._max_sessions)
            session = CallSession(
                call_id=call_id,
                metadata=dict(metadata or {}),
                overrides=overrides or SessionOverrides(),
            )
            self._sessions[call_id] = session
        _LOGGER.debug("Session registered.", extra={"call_id": call_id, "live_sessions": live + 1})
        return session

    def get(self, call_id: str) -> CallSession:
        """Returns the live session for ``call_id``.

        Raises:
            SessionNotFound: If no session is registered under ``call_id``.
        """
        with self._lock:
            session = self._sessions.get(call_id)
        if session is None:
            raise SessionNotFound(call_id)
        return session

    def list(self) -> list[SessionSnapshot]:
        """Returns point-in-time snapshots of every registered session."""
        with self._lock:
            return [session.snapshot() for session in self._sessions.values()]

    def remove(self, call_id: str, *, expected: CallSession | None = None) -> bool:
        """Removes ``call_id`` from the registry.

        Args:
            call_id: Session key.
            expected: When given, only this exact session object is removed,
                so a finished task never evicts a newer session for the same
                call id.

        Returns:
            True when an entry was removed.
        """
        with self._lock:
            current = self._sessions.get(call_id)
            if current is None or (expected is not None and current is not expected):
                return False
            del self._sessions[call_id]
        _LOGGER.debug("Session removed from registry.", extra={"call_id": call_id})
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
