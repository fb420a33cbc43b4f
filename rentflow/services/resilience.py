from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx

from rentflow.core.config import get_settings


logger = logging.getLogger(__name__)

T = TypeVar("T")

TransientException = (TimeoutError, OSError, httpx.TimeoutException, httpx.NetworkError)


def is_transient_gateway_error(exc: BaseException) -> bool:
    # Timeouts, dropped connections and 5xx answers; a 4xx is the caller's fault and final.
    if isinstance(exc, TransientException):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int

    def delay_s(self, attempt: int) -> float:
        # Exponential in the attempt number, jittered to spread redeliveries.
        return (self.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)


def default_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        timeout_ms=settings.razorpay_timeout_ms,
        max_attempts=settings.razorpay_retry_max_attempts,
        backoff_ms=settings.razorpay_retry_backoff_ms,
    )


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[BaseException], bool] = is_transient_gateway_error,
) -> T:
    """Await ``func()`` under the policy timeout, retrying transient failures.

    Each attempt is bounded by ``policy.timeout_ms`` and raises the builtin
    ``TimeoutError`` when it runs out. The final attempt's exception propagates
    unchanged so callers can map it to a domain error.
    """
    policy = policy or default_retry_policy()
    timeout_s = policy.timeout_ms / 1000.0
    attempts = max(policy.max_attempts, 1)
    for attempt in range(1, attempts):
        try:
            return await asyncio.wait_for(func(), timeout=timeout_s)
        except Exception as exc:  # noqa: BLE001 - anything non-transient is re-raised below
            if not retryable(exc):
                raise
            delay_s = policy.delay_s(attempt)
            logger.info(
                "gateway_call_retry attempt=%s max_attempts=%s error=%s delay_s=%.3f",
                attempt,
                attempts,
                type(exc).__name__,
                delay_s,
            )
            await asyncio.sleep(delay_s)
    return await asyncio.wait_for(func(), timeout=timeout_s)
