from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from shared import schemas

from call_bridge.app.tools.builtin import TRANSFER_END_REASON, BuiltinTools
from call_bridge.app.tools.dispatcher import ToolCallContext, ToolDispatcher


def run(coro):
    return asyncio.run(coro)


class _FakeScheduler:
    def __init__(self) -> None:
        self.requests: list[dict[str, object]] = []

    async def schedule(self, **kwargs) -> str:  # noqa: ANN003
        self.requests.append(dict(kwargs))
        return "cb-123"


CONTEXT = ToolCallContext(call_id="CA1", tool_call_id="call_1")


def _tools(scheduler: _FakeScheduler | None = None, timezone_name: str = "UTC") -> BuiltinTools:
    return BuiltinTools(
        scheduler=scheduler or _FakeScheduler(),  # type: ignore[arg-type]
        timezone_name=timezone_name,
        now=lambda tz: datetime(2024, 7, 4, 18, 5, tzinfo=timezone.utc).astimezone(tz),
    )


def test_get_current_time_formats_in_configured_timezone() -> None:
    result = run(_tools(timezone_name="America/New_York").get_current_time(schemas.GetCurrentTimeRequest(), CONTEXT))

    assert result == {
        "current_time": "Thursday, July 04, 2024 02:05 PM",
        "iso_time": "2024-07-04T14:05:00-04:00",
        "timezone": "America/New_York",
    }


def test_schedule_callback_forwards_request_and_reports_id() -> None:
    scheduler = _FakeScheduler()
    request = schemas.ScheduleCallbackRequest(
        phone_number="+1 555-123-4567",
        preferred_time="tomorrow at 10am",
        reason="billing",
    )

    result = run(_tools(scheduler).schedule_callback(request, CONTEXT))

    assert scheduler.requests == [
        {
            "call_id": "CA1",
            "phone_number": "+15551234567",
            "preferred_time": "tomorrow at 10am",
            "reason": "billing",
        }
    ]
    assert result == {
        "success": True,
        "message": "Callback scheduled successfully",
        "callback_id": "cb-123",
        "scheduled_time": "tomorrow at 10am",
    }


def test_transfer_to_human_requests_session_end() -> None:
    request = schemas.TransferToHumanRequest(reason="angry caller")

    result = run(_tools().transfer_to_human(request, CONTEXT))

    assert result.end_session is True
    assert result.end_reason == TRANSFER_END_REASON
    assert result.payload == {
        "success": True,
        "message": "Transfer to human agent initiated",
        "reason": "angry caller",
        "urgency": "medium",
    }


def test_specs_register_in_dispatcher() -> None:
    dispatcher = ToolDispatcher(_tools().specs())

    assert dispatcher.names == ("get_current_time", "schedule_callback", "transfer_to_human")
    transfer_schema = dispatcher.schemas()[2]
    assert transfer_schema["parameters"]["required"] == ["reason"]


def test_schedule_callback_validation_error_goes_back_to_model() -> None:
    dispatcher = ToolDispatcher(_tools().specs())

    result = run(dispatcher.invoke("schedule_callback", '{"phone_number": "call me"}', CONTEXT))

    assert result.payload["function"] == "schedule_callback"
    assert result.payload["error"].startswith("invalid arguments")
