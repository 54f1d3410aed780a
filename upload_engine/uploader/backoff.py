"""Retry spacing for transient upload failures."""

import random
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from upload_engine.core.config import settings


class BackoffPolicy(ABC):
    """
    Strategy computing how long to wait before retrying a failed request.

    next_delay() returns a delay in seconds, or STOP once the policy's
    retry budget is spent. reset() is called whenever the server
    acknowledges forward progress.
    """

    STOP: float = -1.0

    @abstractmethod
    def next_delay(self) -> float:
        """Return the next delay in seconds, or STOP."""

    @abstractmethod
    def reset(self) -> None:
        """Forget previous attempts."""


class NoBackoffPolicy(BackoffPolicy):
    """Never retries: the first transient failure pauses the upload."""

    def next_delay(self) -> float:
        return self.STOP

    def reset(self) -> None:
        pass


class ExponentialBackoffPolicy(BackoffPolicy):
    """
    Exponentially growing delays with random jitter.

    The n-th delay is initial_delay * multiplier ** n, capped at max_delay and
    spread by +/- jitter (a fraction of the delay). The policy stops after
    max_attempts delays, or once max_elapsed seconds have passed since the
    first delay of the current run, whichever comes first.
    """

    def __init__(
        self,
        initial_delay: float = settings.BACKOFF_INITIAL_SECONDS,
        multiplier: float = settings.BACKOFF_MULTIPLIER,
        max_delay: float = settings.BACKOFF_MAX_SECONDS,
        max_attempts: Optional[int] = settings.BACKOFF_MAX_ATTEMPTS,
        max_elapsed: Optional[float] = None,
        jitter: float = settings.BACKOFF_JITTER,
        clock: Callable[[], float] = time.monotonic,
    ):
        if initial_delay < 0 or max_delay < 0:
            raise ValueError("Delays must not be negative")
        if multiplier < 1:
            raise ValueError("multiplier must be at least 1")
        if not 0 <= jitter <= 1:
            raise ValueError("jitter must be between 0 and 1")
        if max_attempts is None and max_elapsed is None:
            raise ValueError("A retry budget (max_attempts or max_elapsed) is required")

        self.initial_delay = initial_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.max_elapsed = max_elapsed
        self.jitter = jitter
        self._clock = clock
        self.attempts = 0
        self._started_at: Optional[float] = None

    def next_delay(self) -> float:
        now = self._clock()
        if self._started_at is None:
            self._started_at = now

        if self.max_attempts is not None and self.attempts >= self.max_attempts:
            return self.STOP
        if self.max_elapsed is not None and now - self._started_at >= self.max_elapsed:
            return self.STOP

        delay = min(self.initial_delay * self.multiplier ** self.attempts, self.max_delay)
        self.attempts += 1
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)

    def reset(self) -> None:
        self.attempts = 0
        self._started_at = None
