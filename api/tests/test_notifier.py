from __future__ import annotations

import asyncio
import json
import logging

import httpx
import pytest

from app.services.notifier import NotificationDeliveryError, RoomUploadNotifier

WEBHOOK_URL = "https://hooks.example.test/room-upload"
PAYLOAD = {"request_id": "req-1", "property_id": "prop-1", "images": ["https://blob.test/a.jpg"]}


def _notifier(handler, *, max_attempts: int = 3) -> RoomUploadNotifier:
    return RoomUploadNotifier(
        WEBHOOK_URL,
        max_attempts=max_attempts,
        backoff_base_seconds=0.0,
        transport=httpx.MockTransport(handler),
    )


def test_send_posts_json_payload_once_on_success() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code=204, request=request)

    asyncio.run(_notifier(handler).send(PAYLOAD))

    assert len(seen) == 1
    assert str(seen[0].url) == WEBHOOK_URL
    assert seen[0].headers["content-type"] == "application/json"
    assert json.loads(seen[0].content) == PAYLOAD


def test_send_retries_retryable_status_codes() -> None:
    codes = iter([503, 429, 200])
    attempts: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        code = next(codes)
        attempts.append(code)
        return httpx.Response(status_code=code, request=request)

    asyncio.run(_notifier(handler).send(PAYLOAD))
    assert attempts == [503, 429, 200]


def test_send_does_not_retry_client_errors() -> None:
    attempts: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(400)
        return httpx.Response(status_code=400, request=request)

    with pytest.raises(NotificationDeliveryError):
        asyncio.run(_notifier(handler).send(PAYLOAD))
    assert attempts == [400]


def test_send_gives_up_after_max_attempts_on_transport_errors() -> None:
    attempts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(str(request.url))
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NotificationDeliveryError):
        asyncio.run(_notifier(handler, max_attempts=2).send(PAYLOAD))
    assert len(attempts) == 2


def test_dispatch_logs_failures_instead_of_raising(caplog: pytest.LogCaptureFixture) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=500, request=request)

    notifier = _notifier(handler, max_attempts=1)

    async def run() -> None:
        task = notifier.dispatch(PAYLOAD)
        assert task is not None
        await task

    with caplog.at_level(logging.ERROR, logger="app.services.notifier"):
        asyncio.run(run())

    assert "room upload notification dropped for request_id=req-1" in caplog.text


def test_dispatch_without_webhook_is_a_no_op() -> None:
    async def run() -> None:
        assert RoomUploadNotifier(None).dispatch(PAYLOAD) is None

    asyncio.run(run())


def test_backoff_is_exponential_and_capped() -> None:
    notifier = RoomUploadNotifier(WEBHOOK_URL, backoff_base_seconds=1.0, backoff_max_seconds=4.0)
    assert [notifier._backoff_delay_seconds(attempt) for attempt in range(1, 5)] == [1.0, 2.0, 4.0, 4.0]
