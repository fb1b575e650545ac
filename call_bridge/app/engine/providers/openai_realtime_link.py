"""OpenAI Realtime link backed by a `websockets` client connection."""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncIterator

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    InvalidStatus,
    WebSocketException,
)

from ...errors import ConnectError, ProtocolError
from .base import RealtimeLink
from .types import LinkClosed, LinkMessage, RealtimeEvent, parse_event

_LOGGER = logging.getLogger(__name__)


class WebSocketRealtimeLink(RealtimeLink):
    """Carries one JSON realtime event per websocket text message."""

    def __init__(self, connection: ClientConnection) -> None:
        self._connection = connection
        self._closed = False
        self._sent_count = 0
        self._received_count = 0

    @classmethod
    async def connect(
        cls,
        endpoint: str,
        headers: dict[str, str],
        *,
        open_timeout: float = 10.0,
    ) -> WebSocketRealtimeLink:
        """Opens one websocket connection to the realtime endpoint.

        Args:
            endpoint: ``wss://`` realtime URL including the model query.
            headers: Handshake headers (authorization and beta opt-in).
            open_timeout: Handshake timeout in seconds.

        Raises:
            ConnectError: If the handshake is rejected or the network fails.
        """
        _LOGGER.debug("Opening realtime websocket.", extra={"endpoint": endpoint})
        try:
            connection = await connect(endpoint, additional_headers=headers, open_timeout=open_timeout)
        except InvalidStatus as exc:
            # 404 is expected while the backend is still activating the session.
            status_code = exc.response.status_code
            raise ConnectError(f"Realtime handshake rejected with HTTP {status_code}") from exc
        except (WebSocketException, OSError) as exc:
            raise ConnectError(f"Realtime connect failed: {exc!r}") from exc
        _LOGGER.debug("Realtime websocket opened.", extra={"endpoint": endpoint})
        return cls(connection)

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: RealtimeEvent) -> None:
        """Serializes and sends one event; logs instead of raising once closed."""
        event_type = event.get("type")
        if self._closed:
            _LOGGER.warning(
                "Cannot send event over closed realtime link.",
                extra={"event_type": event_type},
            )
            return
        try:
            await self._connection.send(json.dumps(event))
        except ConnectionClosed:
            _LOGGER.warning(
                "Realtime link closed while sending event.",
                extra={"event_type": event_type},
            )
            return
        self._sent_count += 1
        _LOGGER.debug("Sent realtime event.", extra={"event_type": event_type})

    async def receive(self) -> AsyncIterator[LinkMessage]:
        """Yields parsed inbound events, then exactly one ``LinkClosed``."""
        try:
            async for raw in self._connection:
                try:
                    event = parse_event(raw)
                except ProtocolError as exc:
                    _LOGGER.warning(
                        "Skipping malformed realtime message.",
                        extra={"error": str(exc)},
                    )
                    continue
                self._received_count += 1
                yield event
        except ConnectionClosedError as exc:
            self._closed = True
            frame = exc.rcvd
            yield LinkClosed(
                code=frame.code if frame else None,
                reason=frame.reason if frame else str(exc),
                clean=False,
            )
            return
        self._closed = True
        yield LinkClosed(
            code=self._connection.close_code,
            reason=self._connection.close_reason or "",
            clean=True,
        )

    async def close(self) -> None:
        """Closes the websocket once; later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        _LOGGER.debug(
            "Closing realtime websocket.",
            extra={
                "sent_count": self._sent_count,
                "received_count": self._received_count,
            },
        )
        with contextlib.suppress(Exception):
            await self._connection.close()
