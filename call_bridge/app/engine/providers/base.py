"""Base interfaces for realtime link adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable

from .types import LinkMessage, RealtimeEvent


class RealtimeLink(ABC):
    """Duplex connection to the AI backend for exactly one call."""

    @abstractmethod
    async def send(self, event: RealtimeEvent) -> None:
        """Sends one outbound protocol event."""

    @abstractmethod
    def receive(self) -> AsyncIterator[LinkMessage]:
        """Yields inbound events in arrival order.

        The sequence always ends with a single ``LinkClosed`` item.
        """

    @abstractmethod
    async def close(self) -> None:
        """Closes the link. Safe to call more than once."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """Whether ``close()`` was called or the peer closed the link."""


# Opens one link: ``await connector(endpoint, headers)``; raises ConnectError.
LinkConnector = Callable[[str, dict[str, str]], Awaitable[RealtimeLink]]
