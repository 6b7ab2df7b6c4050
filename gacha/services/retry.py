"""Bounded retry with exponential backoff for storage calls.

Only transient database failures (SQLAlchemy OperationalError: locked
database, dropped connection) are retried. Integrity errors are answers, not
glitches, and propagate immediately. The caller owns the transaction: the
wrapped operation must open and commit its own unit of work so a retry starts
clean.

Backoff: min(base * 2^(attempt-1), max) + random(0, jitter) milliseconds.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import OperationalError

from gacha.logging_utils import get_logger

T = TypeVar("T")

log = get_logger("gacha.retry")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_ms: int = 50
    max_ms: int = 1000
    jitter_ms: int = 25
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_config(cls, cfg) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, cfg.retry_attempts),
            base_ms=cfg.retry_base_ms,
            max_ms=cfg.retry_max_ms,
            jitter_ms=cfg.retry_jitter_ms,
        )

    def backoff_seconds(self, attempt: int) -> float:
        delay = min(self.base_ms * (2 ** (attempt - 1)), self.max_ms)
        if self.jitter_ms > 0:
            delay += random.uniform(0, self.jitter_ms)
        return delay / 1000.0

    def run(self, operation: Callable[[], T], name: str, on_error: Optional[Callable[[], None]] = None, **context) -> T:
        """Run ``operation`` until it succeeds or attempts run out.

        ``on_error`` runs after every failed attempt (typically a session
        rollback). The last OperationalError is re-raised when exhausted.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except OperationalError as exc:
                if on_error is not None:
                    on_error()
                will_retry = attempt < self.max_attempts
                log.warn(
                    event="storage_retry",
                    operation=name,
                    attempt=attempt,
                    will_retry=will_retry,
                    error=type(exc.orig).__name__ if exc.orig is not None else type(exc).__name__,
                    **context,
                )
                if not will_retry:
                    raise
                self.sleep(self.backoff_seconds(attempt))


__all__ = ["RetryPolicy"]
