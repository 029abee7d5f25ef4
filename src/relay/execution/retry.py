"""Backoff for calls across the engine boundary.

Only ``create_flow_run`` is retried, and only for errors flagged retryable
(network failures, 502/503/504).  Nothing above the HTTP client retries:
a retry the user can see is always a new run linked through ``retry_of``.

    >>> backoff = ExponentialBackoff(max_retries=3, base_delay=2.0)
    >>> [backoff.next_delay(n) for n in range(3)]
    [2.0, 4.0, 8.0]
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from relay.core.errors import is_retryable
from relay.core.timestamps import utc_now

T = TypeVar("T")

RetryHook = Callable[[int, Exception, float], None]
"""``hook(attempt, error, delay)``, called before sleeping."""


@dataclass
class ExponentialBackoff:
    """``base_delay * multiplier ** n``, capped at ``max_delay``.

    ``max_retries`` counts retries after the first attempt, so the default
    makes at most four calls.  With ``jitter`` each delay moves by up to
    ``jitter_range`` of itself in either direction.
    """

    max_retries: int = 3
    base_delay: float = 2.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25
    retryable: Callable[[Exception], bool] = is_retryable

    def next_delay(self, retry_number: int) -> float:
        delay = min(self.base_delay * self.multiplier**retry_number, self.max_delay)
        if self.jitter:
            spread = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-spread, spread))
        return delay

    def should_retry(self, retries_done: int, error: Exception | None = None) -> bool:
        if retries_done >= self.max_retries:
            return False
        return error is None or self.retryable(error)


@dataclass
class RetryContext:
    """One retried call: its attempts and the errors each one raised."""

    strategy: ExponentialBackoff
    on_retry: RetryHook | None = None
    sleep: Callable[[float], None] = time.sleep
    attempts: int = field(default=0, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call *func* until it returns; re-raise the last error once retries run out."""
        while True:
            self.attempts += 1
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                self.errors.append((self.attempts, exc, utc_now()))
                retries_done = self.attempts - 1
                if not self.strategy.should_retry(retries_done, exc):
                    raise
                delay = self.strategy.next_delay(retries_done)
                if self.on_retry is not None:
                    self.on_retry(self.attempts, exc, delay)
                self.sleep(delay)
