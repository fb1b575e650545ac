"""HTTP client used by the callback-scheduling tool."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

import httpx

from ..errors import ToolError

_LOGGER = logging.getLogger(__name__)


class CallbackScheduler:
    """Hands callback requests to an external scheduling webhook.

    Without a configured webhook the request is only logged and a locally
    generated callback id is returned.
    """

    def __init__(self, webhook_url: str | None = None, *, timeout_s: float = 15.0) -> None:
        """Initializes the scheduler.

        Args:
            webhook_url: Endpoint receiving callback requests as JSON.
            timeout_s: Per-request timeout.
        """
        self.webhook_url = webhook_url
        self._client = httpx.AsyncClient(timeout=timeout_s)

    async def schedule(
        self,
        *,
        call_id: str,
        phone_number: str,
        preferred_time: str,
        reason: str | None = None,
    ) -> str:
        """Schedules one callback.

        Raises:
            ToolError: If the scheduling webhook fails.

        Returns:
            Callback id (from the webhook response when it returns one).
        """
        callback_id = str(uuid.uuid4())
        payload: dict[str, Any] = {
            "callback_id": callback_id,
            "call_id": call_id,
            "phone_number": phone_number,
            "preferred_time": preferred_time,
            "reason": reason,
        }
        if not self.webhook_url:
            _LOGGER.info(
                "Callback scheduled without webhook.",
                extra={"call_id": call_id, "callback_id": callback_id, "preferred_time": preferred_time},
            )
            return callback_id

        started = time.monotonic()
        try:
            response = await self._client.post(self.webhook_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            _LOGGER.warning(
                "Callback webhook request failed.",
                extra={"call_id": call_id, "error_message": str(exc)},
            )
            raise ToolError("callback scheduling failed") from exc
        _LOGGER.debug(
            "Callback webhook response received.",
            extra={
                "call_id": call_id,
                "status_code": response.status_code,
                "latency_ms": int((time.monotonic() - started) * 1000),
            },
        )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("callback_id"):
            return str(body["callback_id"])
        return callback_id

    async def close(self) -> None:
        """Closes the underlying HTTP client."""
        _LOGGER.debug("Closing CallbackScheduler HTTP session.")
        await self._client.aclose()
