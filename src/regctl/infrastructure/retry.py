"""Bounded exponential-backoff retries for transient storage failures.

Only :class:`TransientStorageError` (and the SQLAlchemy ``OperationalError``
it wraps, e.g. ``database is locked``) is retried. Validation errors and
state conflicts propagate on the first attempt: retrying them without an
external change would only repeat the failure.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError

from regctl.domain.errors import TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Retrier:
    """Run a callable, retrying transient failures with capped exponential backoff.

    Args:
        attempts: Total tries including the first. Must be >= 1.
        base_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound for any single delay.
        sleeper: Injected sleep function (tests pass a no-op recorder).
    """

    def __init__(
        self,
        *,
        attempts: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 5.0,
        sleeper: Callable[[float], None] = time.sleep,
        jitter: bool = True,
    ) -> None:
        if attempts < 1:
            msg = "attempts must be >= 1"
            raise ValueError(msg)
        self.attempts = attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleeper
        self._jitter = jitter

    def delay_for(self, attempt: int) -> float:
        """Delay after the *attempt*-th failure (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self._jitter:
            delay *= random.uniform(0.5, 1.0)
        return delay

    def call(self, func: Callable[[], T]) -> T:
        """Invoke *func*; on exhaustion re-raise the last transient error."""
        for attempt in range(1, self.attempts + 1):
            try:
                return func()
            except OperationalError as exc:
                error: TransientStorageError = TransientStorageError(
                    f"Storage operation failed: {exc.orig}", attempt=str(attempt)
                )
                error.__cause__ = exc
            except TransientStorageError as exc:
                error = exc
            if attempt == self.attempts:
                logger.warning("Giving up after %d attempts: %s", attempt, error.message)
                raise error
            delay = self.delay_for(attempt)
            logger.debug("Transient storage error (attempt %d), retrying in %.3fs", attempt, delay)
            self._sleep(delay)
        raise AssertionError("unreachable")
