"""Bounded retry with exponential backoff, driven by error classification."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from .exceptions import GatewayUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    retry_on: tuple = (GatewayUnavailable,)
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def delay_for(self, attempt: int) -> float:
        # attempt is 1-based: 1s, 2s, 4s ... for the defaults
        return self.base_delay * (self.factor ** (attempt - 1))

    def call(self, fn, *args, **kwargs):
        """Run ``fn`` until it succeeds, raises a non-retryable error or attempts run out."""
        attempts = max(1, int(self.attempts))
        for attempt in range(1, attempts + 1):
            try:
                return fn(*args, **kwargs)
            except self.retry_on as exc:
                if attempt >= attempts:
                    logger.warning("Giving up after %s attempts: %s", attempt, exc)
                    raise
                delay = self.delay_for(attempt)
                logger.info("Attempt %s/%s failed (%s); retrying in %.1fs", attempt, attempts, exc, delay)
                if delay > 0:
                    self.sleep(delay)
