"""Factory for constructing a fully wired session controller."""

from __future__ import annotations

import logging
from functools import partial

from ..config import Settings
from ..tools.builtin import BuiltinTools
from ..tools.callbacks import CallbackScheduler
from ..tools.dispatcher import ToolDispatcher
from ..twilio.client import TwilioClient
from .providers.openai_realtime_link import WebSocketRealtimeLink
from .registry import SessionRegistry
from .session_controller import SessionController
from .translator import EventTranslator
from .types import SessionDefaults

_LOGGER = logging.getLogger(__name__)


def build_session_defaults(config: Settings) -> SessionDefaults:
    """Maps process-wide settings onto the realtime session defaults."""
    return SessionDefaults(
        instructions=config.DEFAULT_INSTRUCTIONS,
        voice=config.OPENAI_REALTIME_VOICE,
        audio_format=config.AUDIO_FORMAT,
        tools_enabled=config.ENABLE_FUNCTION_CALLING,
    )


def create_twilio_client(config: Settings) -> TwilioClient | None:
    """Builds the Twilio REST client, or ``None`` without account credentials."""
    if not config.TWILIO_ACCOUNT_SID or not config.TWILIO_AUTH_TOKEN:
        _LOGGER.info("Twilio credentials not configured; call control disabled.")
        return None
    return TwilioClient(
        config.TWILIO_ACCOUNT_SID,
        config.TWILIO_AUTH_TOKEN,
        from_number=config.TWILIO_PHONE_NUMBER,
    )


def create_session_controller(
    config: Settings,
    *,
    scheduler: CallbackScheduler | None = None,
    telephony: TwilioClient | None = None,
) -> SessionController:
    """Builds the session controller from settings.

    Args:
        config: Runtime settings.
        scheduler: Callback scheduler used by the ``schedule_callback`` tool.
        telephony: Twilio client used for hang-up and transfer.

    Returns:
        A ``SessionController`` connecting through the OpenAI realtime
        websocket.
    """
    scheduler = scheduler or CallbackScheduler(config.CALLBACK_WEBHOOK_URL)
    tools = BuiltinTools(scheduler=scheduler, timezone_name=config.TOOL_TIMEZONE)
    dispatcher = ToolDispatcher(tools.specs())
    translator = EventTranslator(
        defaults=build_session_defaults(config),
        dispatcher=dispatcher,
        verbose=config.VERBOSE_OPENAI_RAW_EVENTS,
    )
    _LOGGER.debug(
        "Creating session controller from config.",
        extra={
            "model": config.OPENAI_REALTIME_MODEL,
            "max_sessions": config.MAX_CONCURRENT_CALLS,
            "tools_enabled": config.ENABLE_FUNCTION_CALLING,
            "tool_names": list(dispatcher.names),
            "telephony_configured": telephony is not None,
        },
    )
    return SessionController(
        registry=SessionRegistry(max_sessions=config.MAX_CONCURRENT_CALLS),
        connector=partial(WebSocketRealtimeLink.connect, open_timeout=config.CONNECT_TIMEOUT_S),
        translator=translator,
        endpoint=config.realtime_endpoint,
        headers=config.realtime_headers,
        telephony=telephony,
        retry_schedule=config.CONNECT_RETRY_SCHEDULE_S,
        human_agent_number=config.HUMAN_AGENT_NUMBER,
    )
