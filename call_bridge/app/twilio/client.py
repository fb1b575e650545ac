"""Async Twilio REST client for call control."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime
from typing import Any, TypeVar

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from ..errors import TelephonyError
from .twiml import build_transfer_twiml

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")

_FAILED_CALL_STATUSES = frozenset({"failed", "busy", "no-answer"})
_STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]


def _isoformat(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _call_details(call: Any) -> dict[str, Any]:
    """Selects the call fields exposed by the API from an SDK call instance."""
    return {
        "sid": call.sid,
        "from": getattr(call, "_from", None),
        "to": call.to,
        "status": call.status,
        "direction": call.direction,
        "duration": call.duration,
        "start_time": _isoformat(call.start_time),
        "end_time": _isoformat(call.end_time),
    }


def summarize_calls(calls: Iterable[Any]) -> dict[str, Any]:
    """Aggregates call records into volume, outcome and cost totals.

    Args:
        calls: SDK call instances (anything with ``direction``, ``status``,
            ``duration`` and ``price`` attributes).

    Returns:
        Counts per direction and outcome, total and average duration of
        completed calls in seconds, total cost and success rate in percent.
    """
    stats: dict[str, Any] = {
        "total_calls": 0,
        "inbound_calls": 0,
        "outbound_calls": 0,
        "completed_calls": 0,
        "failed_calls": 0,
        "total_duration_s": 0,
        "total_cost": 0.0,
        "average_duration_s": 0,
        "success_rate": 0,
    }
    for call in calls:
        stats["total_calls"] += 1
        if call.direction == "inbound":
            stats["inbound_calls"] += 1
        else:
            stats["outbound_calls"] += 1

        if call.status == "completed":
            stats["completed_calls"] += 1
            try:
                stats["total_duration_s"] += int(call.duration or 0)
            except (TypeError, ValueError):
                pass
        elif call.status in _FAILED_CALL_STATUSES:
            stats["failed_calls"] += 1

        if call.price:
            try:
                stats["total_cost"] += abs(float(call.price))
            except (TypeError, ValueError):
                pass

    if stats["completed_calls"]:
        stats["average_duration_s"] = round(stats["total_duration_s"] / stats["completed_calls"])
    if stats["total_calls"]:
        stats["success_rate"] = round(stats["completed_calls"] / stats["total_calls"] * 100)
    stats["total_cost"] = round(stats["total_cost"], 4)
    return stats


class TwilioClient:
    """Async facade over the Twilio SDK ``Calls`` resource.

    The SDK is blocking, so every request runs in a worker thread. Every
    failure surfaces as ``TelephonyError``.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        *,
        from_number: str | None = None,
        timeout_s: float = 15.0,
        rest_client: Any | None = None,
    ) -> None:
        """Initializes the Twilio client.

        Args:
            account_sid: Twilio account SID.
            auth_token: Twilio auth token.
            from_number: Caller ID used for outbound calls.
            timeout_s: Per-request timeout.
            rest_client: Optional pre-built SDK client (tests).
        """
        self.account_sid = account_sid
        self.from_number = from_number
        self._rest = rest_client or Client(
            account_sid,
            auth_token,
            http_client=TwilioHttpClient(timeout=timeout_s),
        )

    async def _call(self, operation: str, call_sid: str | None, fn: Callable[[], _T]) -> _T:
        """Runs one blocking SDK request in a worker thread.

        Raises:
            TelephonyError: On SDK, HTTP and transport failures.
        """
        started = time.monotonic()
        _LOGGER.debug(
            "Starting Twilio request.",
            extra={"operation": operation, "call_id": call_sid},
        )
        try:
            result = await asyncio.to_thread(fn)
        except TwilioRestException as exc:
            raise TelephonyError(
                f"Twilio {operation} failed with HTTP {exc.status}: {exc.msg}",
                status_code=exc.status,
            ) from exc
        except (TwilioException, OSError) as exc:
            raise TelephonyError(f"Twilio {operation} failed: {exc!r}") from exc
        _LOGGER.debug(
            "Twilio request completed.",
            extra={
                "operation": operation,
                "call_id": call_sid,
                "latency_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return result

    async def end_call(self, call_sid: str) -> dict[str, Any]:
        """Hangs up an in-progress call."""
        call = await self._call("end_call", call_sid, lambda: self._rest.calls(call_sid).update(status="completed"))
        _LOGGER.info("Twilio call ended.", extra={"call_id": call_sid})
        return _call_details(call)

    async def transfer_call(self, call_sid: str, destination: str) -> dict[str, Any]:
        """Redirects a live call to ``destination`` with a short hold message."""
        twiml = build_transfer_twiml(destination)
        call = await self._call("transfer_call", call_sid, lambda: self._rest.calls(call_sid).update(twiml=twiml))
        _LOGGER.info("Twilio call transferred.", extra={"call_id": call_sid, "destination": destination})
        return _call_details(call)

    async def get_call(self, call_sid: str) -> dict[str, Any]:
        """Fetches call details (status, direction, numbers, duration)."""
        call = await self._call("get_call", call_sid, lambda: self._rest.calls(call_sid).fetch())
        return _call_details(call)

    async def originate_call(
        self,
        to: str,
        *,
        answer_url: str,
        status_callback_url: str,
        record: bool = False,
        timeout_s: int = 30,
    ) -> dict[str, Any]:
        """Places an outbound call that fetches its TwiML from ``answer_url``.

        Raises:
            TelephonyError: If no caller ID is configured or Twilio rejects
                the call.
        """
        if not self.from_number:
            raise TelephonyError("Twilio caller ID (TWILIO_PHONE_NUMBER) is not configured")
        call = await self._call(
            "originate_call",
            None,
            lambda: self._rest.calls.create(
                to=to,
                from_=self.from_number,
                url=answer_url,
                method="POST",
                status_callback=status_callback_url,
                status_callback_event=_STATUS_CALLBACK_EVENTS,
                status_callback_method="POST",
                record=record,
                timeout=timeout_s,
                machine_detection="Enable",
            ),
        )
        _LOGGER.info("Twilio outbound call created.", extra={"call_id": call.sid, "to": to, "status": call.status})
        return _call_details(call)

    async def list_calls(
        self,
        *,
        started_after: datetime | None = None,
        started_before: datetime | None = None,
        limit: int = 1000,
    ) -> list[Any]:
        """Lists call records, optionally bounded by start time."""
        filters: Mapping[str, Any] = {
            key: value
            for key, value in (("start_time_after", started_after), ("start_time_before", started_before))
            if value is not None
        }
        return await self._call("list_calls", None, lambda: list(self._rest.calls.list(limit=limit, **filters)))
