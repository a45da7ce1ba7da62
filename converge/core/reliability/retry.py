"""
Retry policy — exponential backoff with jitter for provider calls.

Only TransientProviderError is retried. Anything else propagates on the
first attempt. When attempts run out, the last transient error is
re-raised so the caller can report it. Cancellation is not checked between
attempts; a started call runs to success or exhaustion.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from converge.core.engine.errors import TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Bounded exponential backoff.

    Args:
        max_attempts: Total attempts including the first one.
        base_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound for a single delay (before jitter).
        jitter: Fraction of the delay added at random, 0 disables it.
    """

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.3
    sleep: Callable[[float], Any] = field(default=time.sleep, repr=False)
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += self.rng.uniform(0, delay * self.jitter)
        return delay

    def call(
        self,
        fn: Callable[[], T],
        *,
        label: str = "",
        on_retry: Callable[[int, TransientProviderError, float], None] | None = None,
    ) -> tuple[T, int]:
        """Run ``fn`` until it succeeds or attempts are exhausted.

        Returns:
            (result, number of attempts used)
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(), attempt
            except TransientProviderError as e:
                if attempt >= self.max_attempts:
                    logger.warning(
                        "%s: giving up after %d attempt(s): %s", label or "call", attempt, e
                    )
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s: transient failure (attempt %d/%d), retrying in %.1fs: %s",
                    label or "call",
                    attempt,
                    self.max_attempts,
                    delay,
                    e,
                )
                if on_retry is not None:
                    on_retry(attempt, e, delay)
                self.sleep(delay)

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> RetryPolicy:
        """Build from a ``RetrySettings`` model (or anything with the same fields)."""
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            jitter=settings.jitter,
            **kwargs,
        )
