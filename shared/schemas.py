from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TransferUrgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class GetCurrentTimeRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ScheduleCallbackRequest(BaseModel):
    phone_number: str = Field(min_length=3, description="The phone number to call back")
    preferred_time: str = Field(min_length=1, description="Preferred callback time")
    reason: Optional[str] = Field(default=None, description="Reason for callback")

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, value: str) -> str:
        digits = value.strip().replace(" ", "").replace("-", "")
        if not digits.lstrip("+").isdigit():
            raise ValueError("phone_number must contain digits only")
        return digits


class TransferToHumanRequest(BaseModel):
    reason: str = Field(min_length=1, description="Reason for transfer")
    urgency: TransferUrgency = Field(default=TransferUrgency.MEDIUM, description="Urgency level")


class TransferCallRequest(BaseModel):
    to: str = Field(min_length=1, description="Number or SIP URI that receives the call")
    reason: Optional[str] = None


class ActiveCallsResponse(BaseModel):
    success: bool = True
    count: int
    calls: list[dict[str, Any]]
    timestamp: str


class CallResponse(BaseModel):
    success: bool = True
    call: dict[str, Any]


class ActionResponse(BaseModel):
    success: bool = True
    message: str


RealtimeVoice = Literal["alloy", "ash", "ballad", "coral", "echo", "sage", "shimmer", "verse"]


class OutboundCallRequest(BaseModel):
    to: str = Field(min_length=3, description="Destination phone number")
    instructions: Optional[str] = Field(default=None, max_length=1000, description="Per-call system instructions")
    voice: Optional[RealtimeVoice] = Field(default=None, description="Per-call voice")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Caller-supplied call metadata")

    @field_validator("to")
    @classmethod
    def validate_to(cls, value: str) -> str:
        digits = value.strip().replace(" ", "").replace("-", "")
        if not digits.startswith("+") or not digits[1:].isdigit():
            raise ValueError("to must be an E.164 phone number")
        return digits


class OutboundCallResponse(BaseModel):
    success: bool = True
    call: dict[str, Any]
    message: str


class CallStatsResponse(BaseModel):
    success: bool = True
    stats: dict[str, Any]
    active_calls: int
    timestamp: str
