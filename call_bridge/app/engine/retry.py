"""Fixed-schedule connect retry for realtime links."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from ..errors import ConnectError, LinkUnavailable
from .providers.base import LinkConnector, RealtimeLink

_LOGGER = logging.getLogger(__name__)

# Delay (seconds) applied before each attempt. The realtime session is not
# always subscribable right after the call is accepted, so early attempts
# commonly fail with "not found".
DEFAULT_CONNECT_SCHEDULE_S: tuple[float, ...] = (0.0, 2.0, 5.0, 10.0, 15.0)

Sleep = Callable[[float], Awaitable[None]]


async def connect_with_retry(
    connector: LinkConnector,
    endpoint: str,
    headers: dict[str, str],
    *,
    schedule: Sequence[float] = DEFAULT_CONNECT_SCHEDULE_S,
    sleep: Sleep = asyncio.sleep,
    call_id: str | None = None,
) -> tuple[RealtimeLink, int]:
    """Connects a realtime link, retrying sequentially on ``ConnectError``.

    Args:
        connector: Coroutine factory opening one link.
        endpoint: Realtime websocket URL.
        headers: Handshake headers.
        schedule: Delay before each attempt; its length is the number of attempts.
        sleep: Awaitable sleep, injectable for tests.
        call_id: Call id used in log lines.

    Raises:
        LinkUnavailable: After every attempt in ``schedule`` failed.
        asyncio.CancelledError: If the owning session is terminated mid-loop.

    Returns:
        The connected link and the 1-based index of the successful attempt.
    """
    if not schedule:
        raise ValueError("connect schedule must contain at least one attempt")

    last_error: ConnectError | None = None
    for attempt, delay in enumerate(schedule, start=1):
        _LOGGER.debug(
            "Waiting before realtime connect attempt.",
            extra={"call_id": call_id, "attempt": attempt, "delay_s": delay},
        )
        await sleep(delay)
        try:
            link = await connector(endpoint, headers)
        except ConnectError as exc:
            last_error = exc
            _LOGGER.warning(
                "Realtime connect attempt %d/%d failed for call %s: %s",
                attempt,
                len(schedule),
                call_id,
                exc,
                extra={"call_id": call_id, "attempt": attempt},
            )
            continue
        _LOGGER.info(
            "Realtime link connected on attempt %d for call %s.",
            attempt,
            call_id,
            extra={"call_id": call_id, "attempt": attempt},
        )
        return link, attempt

    _LOGGER.error(
        "Realtime connect attempts exhausted for call %s.",
        call_id,
        extra={"call_id": call_id, "attempts": len(schedule)},
    )
    raise LinkUnavailable(len(schedule), last_error)
