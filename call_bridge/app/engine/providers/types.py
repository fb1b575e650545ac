"""Types exchanged across the realtime link boundary."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

from ...errors import ProtocolError

RealtimeEvent = dict[str, Any]


@dataclass(slots=True, frozen=True)
class LinkClosed:
    """Terminal signal ending every ``RealtimeLink.receive()`` sequence.

    Attributes:
        code: Websocket close code (``None`` when the peer sent none).
        reason: Close reason text.
        clean: ``True`` for a normal closure, ``False`` for a link error.
    """

    code: int | None
    reason: str = ""
    clean: bool = True


LinkMessage = Union[RealtimeEvent, LinkClosed]


def parse_event(raw: str | bytes) -> RealtimeEvent:
    """Decodes one inbound realtime message.

    Raises:
        ProtocolError: If the message is not a JSON object carrying a string
            ``type`` discriminator.
    """
    try:
        event = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"Inbound message is not valid JSON: {exc}") from exc
    if not isinstance(event, dict):
        raise ProtocolError("Inbound message is not a JSON object")
    if not isinstance(event.get("type"), str) or not event["type"]:
        raise ProtocolError("Inbound message has no event type")
    return event
