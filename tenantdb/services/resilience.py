from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable


logger = logging.getLogger(__name__)


TransientException = (TimeoutError, ConnectionError, OSError)


def _default_retryable(exc: Exception) -> bool:
    # Retry only transient network/timeout failures by default.
    return isinstance(exc, TransientException)


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy,
    retryable: Callable[[Exception], bool] | None = None,
) -> Any:
    # Jittered exponential backoff; non-retryable errors propagate immediately.
    retryable = retryable or _default_retryable
    attempt = 1
    while True:
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout_ms / 1000.0)
        except Exception as exc:  # noqa: BLE001 - caller handles non-transient failures
            if attempt >= max(policy.max_attempts, 1) or not retryable(exc):
                raise
            jitter = random.uniform(0.5, 1.5)
            sleep_s = (policy.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * jitter
            logger.warning("external_call_retry attempt=%s sleep_s=%.2f error=%s", attempt, sleep_s, exc)
            await asyncio.sleep(sleep_s)
            attempt += 1
