"""Built-in tools offered to the realtime model."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from zoneinfo import ZoneInfo

from shared import schemas

from .callbacks import CallbackScheduler
from .dispatcher import ToolCallContext, ToolResult, ToolSpec

_LOGGER = logging.getLogger(__name__)

TRANSFER_END_REASON = "transferred_to_human"


class BuiltinTools:
    """Time lookup, callback scheduling and human-transfer signaling."""

    def __init__(
        self,
        *,
        scheduler: CallbackScheduler,
        timezone_name: str = "UTC",
        now: Callable[[ZoneInfo], datetime] | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._timezone_name = timezone_name
        self._timezone = ZoneInfo(timezone_name)
        self._now = now or (lambda tz: datetime.now(tz))

    def specs(self) -> list[ToolSpec]:
        """Returns the tool specs in the order they are advertised."""
        return [
            ToolSpec(
                name="get_current_time",
                description="Get the current time and date",
                arguments_model=schemas.GetCurrentTimeRequest,
                handler=self.get_current_time,
            ),
            ToolSpec(
                name="schedule_callback",
                description="Schedule a callback for the user",
                arguments_model=schemas.ScheduleCallbackRequest,
                handler=self.schedule_callback,
            ),
            ToolSpec(
                name="transfer_to_human",
                description="Transfer the call to a human agent",
                arguments_model=schemas.TransferToHumanRequest,
                handler=self.transfer_to_human,
            ),
        ]

    async def get_current_time(
        self, request: schemas.GetCurrentTimeRequest, context: ToolCallContext
    ) -> dict[str, str]:
        del request, context
        now = self._now(self._timezone)
        return {
            "current_time": now.strftime("%A, %B %d, %Y %I:%M %p"),
            "iso_time": now.isoformat(),
            "timezone": self._timezone_name,
        }

    async def schedule_callback(
        self, request: schemas.ScheduleCallbackRequest, context: ToolCallContext
    ) -> dict[str, object]:
        callback_id = await self._scheduler.schedule(
            call_id=context.call_id,
            phone_number=request.phone_number,
            preferred_time=request.preferred_time,
            reason=request.reason,
        )
        return {
            "success": True,
            "message": "Callback scheduled successfully",
            "callback_id": callback_id,
            "scheduled_time": request.preferred_time,
        }

    async def transfer_to_human(
        self, request: schemas.TransferToHumanRequest, context: ToolCallContext
    ) -> ToolResult:
        """Acknowledges the transfer; the session ends once the ack is sent."""
        _LOGGER.info(
            "Transfer to human requested.",
            extra={"call_id": context.call_id, "reason": request.reason, "urgency": request.urgency.value},
        )
        return ToolResult(
            payload={
                "success": True,
                "message": "Transfer to human agent initiated",
                "reason": request.reason,
                "urgency": request.urgency.value,
            },
            end_session=True,
            end_reason=TRANSFER_END_REASON,
        )
