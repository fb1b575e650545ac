"""Per-call lifecycle orchestration for realtime sessions.

The controller owns one asyncio task per accepted call. That task connects
the realtime link on the fixed retry schedule, sends the session
configuration, then consumes inbound events strictly in arrival order until
the link closes, an error arrives, or a tool asks to end the call. External
callers (telephony webhooks, the HTTP API) only ever cancel the task; they
never mutate session fields directly.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from ..errors import LinkUnavailable, SessionNotFound, TelephonyError
from ..observability.call_log import log_call_event, log_session_summary
from ..tools.builtin import TRANSFER_END_REASON
from .providers.base import LinkConnector, RealtimeLink
from .providers.types import LinkClosed
from .registry import SessionRegistry
from .retry import DEFAULT_CONNECT_SCHEDULE_S, Sleep, connect_with_retry
from .translator import EventTranslator
from .types import CallSession, SessionOverrides, SessionSnapshot, SessionState

_LOGGER = logging.getLogger(__name__)


class TelephonyControl(Protocol):
    """Call-control operations the controller needs from the telephony side."""

    async def end_call(self, call_sid: str) -> Any: ...

    async def transfer_call(self, call_sid: str, destination: str) -> Any: ...


class SessionController:
    """Coordinates registry, realtime link and translator for every call."""

    def __init__(
        self,
        *,
        registry: SessionRegistry,
        connector: LinkConnector,
        translator: EventTranslator,
        endpoint: str,
        headers: Mapping[str, str],
        telephony: TelephonyControl | None = None,
        retry_schedule: Sequence[float] = DEFAULT_CONNECT_SCHEDULE_S,
        sleep: Sleep = asyncio.sleep,
        human_agent_number: str | None = None,
    ) -> None:
        """Initializes the controller.

        Args:
            registry: Store of live sessions.
            connector: Opens one realtime link per connect attempt.
            translator: Applies inbound events and builds the session config.
            endpoint: Realtime websocket URL.
            headers: Realtime handshake headers.
            telephony: Optional call-control client used for hang-up and
                transfer requests.
            retry_schedule: Delay before each connect attempt.
            sleep: Awaitable sleep used by the retry loop.
            human_agent_number: Destination dialed when the model requests a
                human transfer.
        """
        self.registry = registry
        self._connector = connector
        self._translator = translator
        self._endpoint = endpoint
        self._headers = dict(headers)
        self._telephony = telephony
        self._retry_schedule = tuple(retry_schedule)
        self._sleep = sleep
        self._human_agent_number = human_agent_number
        self._tasks: dict[CallSession, asyncio.Task[None]] = {}
        self._expected_calls: dict[str, tuple[dict[str, Any], SessionOverrides]] = {}

    async def accept(
        self,
        call_id: str,
        metadata: Mapping[str, Any] | None = None,
        overrides: SessionOverrides | None = None,
    ) -> SessionSnapshot:
        """Registers a call and starts connecting its realtime link.

        Raises:
            SessionAlreadyExists: If a live session already uses ``call_id``.
            SessionCapacityExceeded: If the registry is full.

        Returns:
            Snapshot taken right after registration.
        """
        session = self.registry.create(call_id, metadata=metadata, overrides=overrides)
        log_call_event(call_id, "session_accepted", metadata=dict(session.metadata))
        task = asyncio.create_task(self._run_session(session), name=f"call-session-{call_id}")
        self._tasks[session] = task
        task.add_done_callback(lambda _task, owner=session: self._tasks.pop(owner, None))
        return session.snapshot()

    async def terminate(self, call_id: str, reason: str = "terminated") -> None:
        """Forces a session to ``CLOSED``.

        Absent and already-closed sessions are ignored, so repeated calls are
        harmless.
        """
        try:
            session = self.registry.get(call_id)
        except SessionNotFound:
            _LOGGER.debug("Terminate ignored for unknown call.", extra={"call_id": call_id})
            return
        if session.is_closed:
            return
        if session.end_reason is None:
            session.end_reason = reason
        log_call_event(call_id, "terminate_requested", reason=reason)
        await self._cancel_task(self._tasks.get(session))
        await self._finalize(session, reason)

    def describe(self, call_id: str) -> SessionSnapshot:
        """Returns a snapshot of one live session.

        Raises:
            SessionNotFound: If the call is unknown or already closed.
        """
        session = self.registry.get(call_id)
        if session.is_closed:
            raise SessionNotFound(call_id)
        return session.snapshot()

    def list_sessions(self) -> list[SessionSnapshot]:
        """Returns snapshots of every live session."""
        return [snapshot for snapshot in self.registry.list() if snapshot.state is not SessionState.CLOSED]

    async def end_session(self, call_id: str) -> None:
        """Hangs up the call (when telephony is configured) and terminates it.

        Raises:
            SessionNotFound: If the call is unknown.
            TelephonyError: If the hang-up request fails; the session is kept.
        """
        self.describe(call_id)
        if self._telephony is not None:
            await self._telephony.end_call(call_id)
        await self.terminate(call_id, reason="ended_by_api")

    async def transfer_session(self, call_id: str, destination: str) -> None:
        """Redirects the call to ``destination`` and terminates the session.

        Raises:
            SessionNotFound: If the call is unknown.
            TelephonyError: If no telephony client is configured or the
                transfer request fails; the session is kept.
        """
        self.describe(call_id)
        if self._telephony is None:
            raise TelephonyError("telephony client is not configured")
        await self._telephony.transfer_call(call_id, destination)
        log_call_event(call_id, "call_transferred", destination=destination)
        await self.terminate(call_id, reason="transferred")

    @property
    def active_count(self) -> int:
        return len(self.registry)

    def at_capacity(self) -> bool:
        max_sessions = self.registry.max_sessions
        return max_sessions is not None and self.active_count >= max_sessions

    def expect_call(
        self,
        call_id: str,
        metadata: Mapping[str, Any] | None = None,
        overrides: SessionOverrides | None = None,
    ) -> None:
        """Stores per-call settings applied when ``call_id`` is answered.

        Outbound calls are created before Twilio reports them back to the
        voice webhook, so their instructions and voice are parked here until
        ``on_call_ringing`` accepts the call.
        """
        self._expected_calls[call_id] = (dict(metadata or {}), overrides or SessionOverrides())
        log_call_event(call_id, "call_expected", overrides=overrides is not None)

    async def on_call_ringing(self, call_id: str, metadata: Mapping[str, Any] | None = None) -> SessionSnapshot:
        """Accepts a call, applying settings registered by ``expect_call``."""
        expected = self._expected_calls.get(call_id)
        if expected is None:
            return await self.accept(call_id, metadata)
        expected_metadata, overrides = expected
        merged = {**expected_metadata, **{key: value for key, value in (metadata or {}).items() if value is not None}}
        snapshot = await self.accept(call_id, merged, overrides)
        self._expected_calls.pop(call_id, None)
        return snapshot

    async def on_call_completed(self, call_id: str) -> None:
        self._expected_calls.pop(call_id, None)
        await self.terminate(call_id, reason="call_completed")

    async def on_call_failed(self, call_id: str) -> None:
        self._expected_calls.pop(call_id, None)
        await self.terminate(call_id, reason="call_failed")

    async def shutdown(self) -> None:
        """Terminates every live session."""
        snapshots = self.registry.list()
        _LOGGER.info("Shutting down session controller.", extra={"session_count": len(snapshots)})
        for snapshot in snapshots:
            await self.terminate(snapshot.call_id, reason="shutdown")

    async def _run_session(self, session: CallSession) -> None:
        """Owns one call from connect through finalization."""
        reason = "completed"
        try:
            session.transition(SessionState.CONNECTING)
            log_call_event(session.call_id, "connecting")
            await self._release_link(session)
            try:
                link, attempts = await connect_with_retry(
                    self._connector,
                    self._endpoint,
                    self._headers,
                    schedule=self._retry_schedule,
                    sleep=self._sleep,
                    call_id=session.call_id,
                )
            except LinkUnavailable as exc:
                session.connect_attempts = exc.attempts
                session.last_error = str(exc.last_error or exc)
                session.transition(SessionState.ERRORING)
                reason = "link_unavailable"
                log_call_event(session.call_id, "link_unavailable", attempts=exc.attempts)
                return

            session.connect_attempts = attempts
            session.link = link
            session.connected_at = time.monotonic()
            await link.send(self._translator.build_session_update(session))
            session.record_event("session.update", direction="OUT")
            log_call_event(session.call_id, "session_configured", attempts=attempts)

            reason = await self._consume(session, link)
            if session.end_reason == TRANSFER_END_REASON:
                await self._transfer_to_human(session)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            _LOGGER.exception("Session task failed.", extra={"call_id": session.call_id})
            session.last_error = str(exc)
            if session.state in (SessionState.CONNECTING, SessionState.ACTIVE):
                session.transition(SessionState.ERRORING)
            reason = "internal_error"
        finally:
            await self._finalize(session, session.end_reason or reason)

    async def _consume(self, session: CallSession, link: RealtimeLink) -> str:
        """Feeds inbound events to the translator until the session stops.

        Returns:
            End reason describing why consumption stopped.
        """
        async with contextlib.aclosing(link.receive()) as messages:
            async for message in messages:
                if isinstance(message, LinkClosed):
                    session.record_event("link.closed")
                    if message.clean:
                        log_call_event(session.call_id, "link_closed", code=message.code)
                        return "link_closed"
                    session.last_error = f"link closed abnormally (code={message.code}): {message.reason}"
                    session.transition(SessionState.ERRORING)
                    log_call_event(session.call_id, "link_error", code=message.code, reason=message.reason)
                    return "link_error"
                if not await self._translator.handle(session, message, link.send):
                    if session.state is SessionState.ERRORING:
                        return "realtime_error"
                    return session.end_reason or "stopped"
        return "link_closed"

    async def _release_link(self, session: CallSession) -> None:
        """Closes and detaches the session's current link, if any."""
        previous, session.link = session.link, None
        if previous is not None:
            with contextlib.suppress(Exception):
                await previous.close()

    async def _transfer_to_human(self, session: CallSession) -> None:
        if not self._human_agent_number or self._telephony is None:
            _LOGGER.info(
                "Human transfer requested but no agent number or telephony client configured.",
                extra={"call_id": session.call_id},
            )
            return
        try:
            await self._telephony.transfer_call(session.call_id, self._human_agent_number)
        except TelephonyError as exc:
            _LOGGER.error(
                "Human transfer failed for call %s: %s",
                session.call_id,
                exc,
                extra={"call_id": session.call_id, "status_code": exc.status_code},
            )
            return
        log_call_event(session.call_id, "call_transferred", destination=self._human_agent_number)

    async def _finalize(self, session: CallSession, reason: str) -> None:
        """Closes the session exactly once and removes it from the registry."""
        if session.ended_at is not None:
            return
        session.ended_at = time.monotonic()
        if session.end_reason is None:
            session.end_reason = reason
        link, session.link = session.link, None
        session.transition(SessionState.CLOSED)
        self.registry.remove(session.call_id, expected=session)
        if link is not None:
            with contextlib.suppress(Exception):
                await link.close()
        log_call_event(session.call_id, "session_closed", reason=session.end_reason)
        log_session_summary(session.snapshot())

    async def _cancel_task(self, task: asyncio.Task[None] | None) -> None:
        """Cancels and drains one session task if active."""
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if task and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
