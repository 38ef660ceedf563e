"""Sequential, rate-limit aware runner for batches of external calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import httpx

from content_jobs.errors import RateLimitSignal

logger = logging.getLogger(__name__)

T = TypeVar("T")

HTTP_TOO_MANY_REQUESTS = 429

_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "(429)",
    "status 429",
)


@dataclass(slots=True)
class ItemFailure(Generic[T]):
    item: T
    error: str


@dataclass(slots=True)
class BatchResult(Generic[T]):
    """Partial outcome of a batch; committed items are never rolled back.

    `rate_limited_item` is the item that triggered the abort. It is neither
    succeeded, failed, nor remaining.
    """

    succeeded: list[T] = field(default_factory=list)
    failed: list[ItemFailure[T]] = field(default_factory=list)
    remaining: list[T] = field(default_factory=list)
    rate_limited_item: T | None = None
    rate_limited: bool = False

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failed)


def is_rate_limit_error(error: Exception) -> bool:
    """Recognize provider rate limiting from a raised error."""

    if isinstance(error, RateLimitSignal):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == HTTP_TOO_MANY_REQUESTS
    haystack = str(error).lower()
    return any(pattern in haystack for pattern in _RATE_LIMIT_PATTERNS)


class ThrottledBatch(Generic[T]):
    """Runs `operation` over items in order with a fixed delay between items.

    An ordinary failure is recorded and the batch moves on. A rate-limit
    signal stops the batch immediately and hands back the items not yet
    attempted; re-queuing them is the caller's job.
    """

    def __init__(
        self,
        *,
        operation: Callable[[T], object],
        delay_seconds: float,
        is_rate_limited: Callable[[Exception], bool] = is_rate_limit_error,
        sleep: Callable[[float], None] = time.sleep,
        on_item_done: Callable[[BatchResult[T]], None] | None = None,
    ) -> None:
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0.")
        self.operation = operation
        self.delay_seconds = delay_seconds
        self.is_rate_limited = is_rate_limited
        self._sleep = sleep
        self._on_item_done = on_item_done

    def run(self, items: Sequence[T]) -> BatchResult[T]:
        result: BatchResult[T] = BatchResult()
        for index, item in enumerate(items):
            if index > 0 and self.delay_seconds > 0:
                self._sleep(self.delay_seconds)
            try:
                self.operation(item)
            except Exception as error:  # noqa: BLE001
                if self.is_rate_limited(error):
                    result.rate_limited = True
                    result.rate_limited_item = item
                    result.remaining = list(items[index + 1 :])
                    logger.warning(
                        "Rate limited after %s item(s); %s item(s) handed back.",
                        result.attempted,
                        len(result.remaining),
                    )
                    return result
                logger.info("Batch item failed: %s", error)
                result.failed.append(
                    ItemFailure(item=item, error=str(error) or type(error).__name__),
                )
            else:
                result.succeeded.append(item)
            if self._on_item_done is not None:
                self._on_item_done(result)
        return result
