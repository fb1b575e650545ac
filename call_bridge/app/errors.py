"""Error taxonomy for the call session bridge."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all call bridge errors."""


class ConnectError(BridgeError):
    """One realtime connect attempt failed; retried per the connect schedule."""


class LinkUnavailable(BridgeError):
    """Every realtime connect attempt failed."""

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        super().__init__(f"Realtime link unavailable after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class ProtocolError(BridgeError):
    """An inbound realtime message could not be interpreted."""


class ToolError(BridgeError):
    """A tool invocation failed; reported back to the model as a payload."""


class SessionNotFound(BridgeError):
    """No live session exists for the requested call id."""

    def __init__(self, call_id: str) -> None:
        super().__init__(f"Session not found: {call_id}")
        self.call_id = call_id


class SessionAlreadyExists(BridgeError):
    """A live session already exists for the requested call id."""

    def __init__(self, call_id: str) -> None:
        super().__init__(f"Session already exists: {call_id}")
        self.call_id = call_id


class SessionCapacityExceeded(BridgeError):
    """The registry already holds the maximum number of live sessions."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Maximum concurrent sessions reached: {limit}")
        self.limit = limit


class TelephonyError(BridgeError):
    """A telephony REST operation failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
