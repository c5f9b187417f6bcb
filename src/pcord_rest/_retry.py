"""
Retry signalling for the request scheduler.

Transient responses (HTTP 429 and 5xx) are not surfaced to callers. The
response classifier raises a `RetryableError` and the scheduler puts the
same job back at the tail of its original queue. There is no attempt limit;
the only bound is the request's timeout budget, tracked by `RetryState` as a
deadline fixed on the first dispatch.

Example:
    >>> state = RetryState(timeout=5.0)
    >>> state.start_attempt()
    >>> ...  # 1.2s later the server answers 503, the retry waits 0.5s in its queue
    >>> state.timeout_remaining  # roughly 3.3
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import requests

logger = logging.getLogger(__name__)


class RetryableError(Exception):
    """
    Base class for exceptions that make the scheduler re-enqueue a job.

    New transient conditions are added by extending this class, without
    touching the scheduler.
    """

    pass


class TransientResponseError(RetryableError):
    """
    Raised when the server answers 429 (Too Many Requests) or 5xx.

    Attributes:
        status: The HTTP status code.
        reset: Absolute epoch time at which the limit resets, if known.
    """

    def __init__(self, status: int, reset: float | None = None):
        self.status = status
        self.reset = reset
        super().__init__(f"Transient server response (HTTP {status})")

    @classmethod
    def from_response(cls, response: requests.Response, reset: float | None = None) -> TransientResponseError:
        return cls(status=response.status_code, reset=reset)


@dataclass
class RetryState:
    """
    Mutable retry bookkeeping threaded alongside an immutable prepared request.

    The budget is turned into a deadline on the first dispatch, so everything
    that happens afterwards counts against it: failed attempts, the wait in
    the queue after a retry, bucket reset sleeps and global throttle pauses.

    Attributes:
        timeout: The original timeout budget in seconds (None = unbounded).
        attempts: Number of attempts started so far.
        deadline: Monotonic time at which the budget runs out, set on the
            first attempt.
    """

    timeout: float | None
    attempts: int = field(default=0, init=False)
    deadline: float | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        assert self.timeout is None or self.timeout > 0, "timeout must be > 0 or None."

    @property
    def is_bounded(self) -> bool:
        return self.timeout is not None

    @property
    def timeout_remaining(self) -> float | None:
        """Budget left right now (the full budget before the first attempt)."""
        if self.timeout is None:
            return None
        if self.deadline is None:
            return self.timeout
        return max(0.0, self.deadline - time.monotonic())

    @property
    def is_exhausted(self) -> bool:
        """True when a bounded budget has nothing left."""
        remaining = self.timeout_remaining
        return remaining is not None and remaining <= 0

    def start_attempt(self) -> None:
        """Mark the start of a dispatch; the first one starts the clock."""
        self.attempts += 1
        if self.deadline is None and self.timeout is not None:
            self.deadline = time.monotonic() + self.timeout
        elif self.attempts > 1 and self.timeout is not None:
            logger.debug(f"Attempt {self.attempts}, {self.timeout_remaining:.3f}s of budget left")
