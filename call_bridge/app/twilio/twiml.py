from __future__ import annotations

import html
import logging
from collections.abc import Mapping

_LOGGER = logging.getLogger(__name__)

_XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>\n'

UNAVAILABLE_MESSAGE = (
    "Sorry, our AI assistant is temporarily unavailable. Please leave a message after the beep."
)
FALLBACK_MESSAGE = "We are experiencing technical difficulties. Please call back later or leave a message."
ERROR_MESSAGE = "Sorry, there was an error processing your call. Please try again later."
RECORDING_THANKS_MESSAGE = "Thank you for your message. We will get back to you soon."
TRANSFER_HOLD_MESSAGE = "Please hold while we transfer your call."


def _say(message: str) -> str:
    return f"  <Say>{html.escape(message)}</Say>\n"


def build_connect_stream_twiml(
    stream_url: str,
    *,
    name: str | None = None,
    parameters: Mapping[str, str | None] | None = None,
) -> str:
    """Builds TwiML payload that instructs Twilio to open a media stream."""
    _LOGGER.debug(
        "Building Connect/Stream TwiML.",
        extra={"stream_url": stream_url, "stream_name": name, "parameter_count": len(parameters or {})},
    )
    name_attr = f' name="{html.escape(name)}"' if name else ""
    params = [
        f'      <Parameter name="{html.escape(key)}" value="{html.escape(value)}" />\n'
        for key, value in (parameters or {}).items()
        if value
    ]
    return (
        f"{_XML_HEADER}"
        "<Response>\n"
        "  <Connect>\n"
        f'    <Stream url="{html.escape(stream_url)}"{name_attr}>\n'
        f"{''.join(params)}"
        "    </Stream>\n"
        "  </Connect>\n"
        "</Response>"
    )


def build_say_and_record_twiml(message: str, *, action_url: str, max_length_s: int = 120) -> str:
    """Builds voicemail TwiML: a spoken message followed by ``<Record>``."""
    return (
        f"{_XML_HEADER}"
        "<Response>\n"
        f"{_say(message)}"
        f'  <Record maxLength="{max_length_s}" action="{html.escape(action_url)}" method="POST" />\n'
        "</Response>"
    )


def build_say_and_hangup_twiml(message: str) -> str:
    return f"{_XML_HEADER}<Response>\n{_say(message)}  <Hangup />\n</Response>"


def build_transfer_twiml(destination: str, *, message: str = TRANSFER_HOLD_MESSAGE) -> str:
    """Builds TwiML that announces a transfer and dials ``destination``."""
    return f"{_XML_HEADER}<Response>\n{_say(message)}  <Dial>{html.escape(destination)}</Dial>\n</Response>"


def build_empty_twiml() -> str:
    return f"{_XML_HEADER}<Response />"
