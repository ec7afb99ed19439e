from __future__ import annotations

import asyncio
import json
import logging
from functools import lru_cache
from typing import Any

import httpx

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class NotificationDeliveryError(Exception):
    """Raised when the room-upload webhook rejects or never receives a payload."""


def _retryable_status_code(status_code: int) -> bool:
    return status_code == 429 or status_code == 408 or 500 <= status_code <= 599


class RoomUploadNotifier:
    def __init__(
        self,
        webhook_url: str | None,
        *,
        timeout_seconds: float = 5.0,
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 4.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout_seconds = max(0.1, timeout_seconds)
        self.max_attempts = max(1, max_attempts)
        self.backoff_base_seconds = max(0.0, backoff_base_seconds)
        self.backoff_max_seconds = max(0.0, backoff_max_seconds)
        self._transport = transport
        self._pending: set[asyncio.Task[None]] = set()

    def dispatch(self, payload: dict[str, Any]) -> asyncio.Task[None] | None:
        """Send ``payload`` in the background; failures are logged, never raised."""
        if not self.webhook_url:
            logger.info("room upload webhook not configured; skipping request_id=%s", payload.get("request_id"))
            return None
        task = asyncio.get_running_loop().create_task(self._send_logged(payload))
        # The loop only keeps weak references to tasks.
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def send(self, payload: dict[str, Any]) -> None:
        if not self.webhook_url:
            raise NotificationDeliveryError("RB_ROOM_UPLOAD_WEBHOOK_URL is required")

        body = json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str).encode("utf-8")
        headers = {"Content-Type": "application/json", "User-Agent": "runboard-room-upload/1.0"}
        last_error: Exception | None = None

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    response = await client.post(self.webhook_url, content=body, headers=headers)
                except httpx.HTTPError as exc:
                    last_error = exc
                    logger.warning(
                        "room upload webhook transport error (request_id=%s attempt=%s/%s): %s",
                        payload.get("request_id"),
                        attempt,
                        self.max_attempts,
                        exc,
                    )
                else:
                    if 200 <= response.status_code < 300:
                        logger.info(
                            "room upload webhook delivered (request_id=%s attempt=%s code=%s)",
                            payload.get("request_id"),
                            attempt,
                            response.status_code,
                        )
                        return
                    last_error = NotificationDeliveryError(f"webhook returned HTTP {response.status_code}")
                    if not _retryable_status_code(response.status_code):
                        break
                    logger.warning(
                        "room upload webhook returned HTTP %s (request_id=%s attempt=%s/%s)",
                        response.status_code,
                        payload.get("request_id"),
                        attempt,
                        self.max_attempts,
                    )

                if attempt < self.max_attempts:
                    delay = self._backoff_delay_seconds(attempt)
                    if delay > 0:
                        await asyncio.sleep(delay)

        raise NotificationDeliveryError(f"room upload webhook delivery failed: {last_error}") from last_error

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _send_logged(self, payload: dict[str, Any]) -> None:
        try:
            await self.send(payload)
        except NotificationDeliveryError:
            logger.exception("room upload notification dropped for request_id=%s", payload.get("request_id"))

    def _backoff_delay_seconds(self, attempt: int) -> float:
        # attempt is the 1-based failure count.
        if self.backoff_base_seconds <= 0:
            return 0.0
        delay = self.backoff_base_seconds * (2 ** max(0, attempt - 1))
        return min(delay, self.backoff_max_seconds)


@lru_cache
def get_notifier() -> RoomUploadNotifier:
    settings = get_settings()
    return RoomUploadNotifier(
        settings.room_upload_webhook_url,
        timeout_seconds=settings.room_upload_webhook_timeout_seconds,
        max_attempts=settings.room_upload_webhook_max_attempts,
        backoff_base_seconds=settings.room_upload_webhook_backoff_base_seconds,
        backoff_max_seconds=settings.room_upload_webhook_backoff_max_seconds,
    )
