"""Realtime link adapters and contracts."""

from .base import LinkConnector, RealtimeLink
from .openai_realtime_link import WebSocketRealtimeLink
from .types import LinkClosed, LinkMessage, RealtimeEvent, parse_event

__all__ = [
    "LinkClosed",
    "LinkConnector",
    "LinkMessage",
    "RealtimeEvent",
    "RealtimeLink",
    "WebSocketRealtimeLink",
    "parse_event",
]
