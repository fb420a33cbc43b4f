from __future__ import annotations

import asyncio

import pytest

from rentflow.core.errors import NotificationError
from rentflow.services.notifications import dispatch_notifications
from rentflow.services.notifications.push import PushMessage
from rentflow.services.resilience import RetryPolicy, retry_async
from rentflow.tests.utils.fakes import FakePushGateway


@pytest.mark.asyncio
async def test_retry_async_retries_transient() -> None:
    calls = {"count": 0}

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 2:
            raise TimeoutError("timeout")
        return "ok"

    result = await retry_async(
        flaky,
        policy=RetryPolicy(timeout_ms=100, max_attempts=2, backoff_ms=1),
    )
    assert result == "ok"
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_permanent_errors() -> None:
    calls = {"count": 0}

    async def broken() -> str:
        calls["count"] += 1
        raise ValueError("bad request")

    with pytest.raises(ValueError):
        await retry_async(broken, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1))
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_fanout_collects_failures_without_cancelling_siblings() -> None:
    gateway = FakePushGateway(failing_tokens={"ExponentPushToken[b]"})
    messages = [
        PushMessage("ExponentPushToken[a]", "t", "m"),
        PushMessage("ExponentPushToken[b]", "t", "m"),
        PushMessage("ExponentPushToken[c]", "t", "m"),
    ]

    report = await dispatch_notifications(gateway, messages, timeout_ms=1000)

    assert report.attempted == 3
    assert report.delivered == 2
    assert len(report.errors) == 1
    assert isinstance(report.errors[0], NotificationError)
    assert report.timed_out is False
    assert [item["push_token"] for item in gateway.sent] == ["ExponentPushToken[a]", "ExponentPushToken[c]"]


@pytest.mark.asyncio
async def test_fanout_is_bounded_by_timeout() -> None:
    gateway = FakePushGateway(delay_s=0.5)

    report = await asyncio.wait_for(
        dispatch_notifications(gateway, [PushMessage("ExponentPushToken[a]", "t", "m")], timeout_ms=20),
        timeout=1.0,
    )

    assert report.timed_out is True
    assert report.delivered == 0


@pytest.mark.asyncio
async def test_fanout_with_no_messages_is_a_noop() -> None:
    report = await dispatch_notifications(FakePushGateway(), [])
    assert report.attempted == 0
    assert report.delivered == 0
