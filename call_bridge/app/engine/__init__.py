"""Session lifecycle engine bridging telephony calls to realtime sessions."""

from .factory import create_session_controller
from .registry import SessionRegistry
from .session_controller import SessionController, TelephonyControl
from .translator import EventTranslator
from .types import CallSession, SessionDefaults, SessionOverrides, SessionSnapshot, SessionState

__all__ = [
    "CallSession",
    "EventTranslator",
    "SessionController",
    "SessionDefaults",
    "SessionOverrides",
    "SessionRegistry",
    "SessionSnapshot",
    "SessionState",
    "TelephonyControl",
    "create_session_controller",
]
