from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Optional, TypeVar

LOG = logging.getLogger("codeai.retry")

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    value: Optional[T]
    attempts: int
    succeeded: bool
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries with a fixed pause between attempts.

    An attempt fails when the operation raises or when ``succeeded`` rejects
    its result. ``before_retry`` runs after the pause and before the next
    attempt, so callers can refresh state the failed attempt made stale.
    """

    max_attempts: int
    backoff_seconds: float = 1.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        *,
        succeeded: Callable[[T], bool] = bool,
        before_retry: Optional[Callable[[int], Awaitable[None]]] = None,
        label: str = "operation",
    ) -> RetryOutcome[T]:
        value: Optional[T] = None
        error: Optional[BaseException] = None
        attempts = max(self.max_attempts, 1)
        for attempt in range(1, attempts + 1):
            error = None
            try:
                value = await operation(attempt)
            except Exception as exc:
                error = exc
                value = None
                LOG.warning("retry_attempt_raised", extra={"label": label, "attempt": attempt, "err": str(exc)})
            else:
                if succeeded(value):
                    return RetryOutcome(value=value, attempts=attempt, succeeded=True)
                LOG.warning("retry_attempt_failed", extra={"label": label, "attempt": attempt})
            if attempt < attempts:
                await self.sleep(self.backoff_seconds)
                if before_retry is not None:
                    await before_retry(attempt)
        LOG.error("retry_exhausted", extra={"label": label, "attempts": attempts})
        return RetryOutcome(value=value, attempts=attempts, succeeded=False, error=error)


def write_policy(attempts: int = 3, backoff_seconds: float = 1.0) -> RetryPolicy:
    return RetryPolicy(max_attempts=attempts, backoff_seconds=backoff_seconds)


def upload_policy(retries: int = 2, backoff_seconds: float = 1.0) -> RetryPolicy:
    # ``retries`` counts the attempts after the first one.
    return RetryPolicy(max_attempts=retries + 1, backoff_seconds=backoff_seconds)
