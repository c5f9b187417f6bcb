"""
Rate limiting state for the pcord_rest client.

This module holds the state the scheduler consults before each dispatch:

- RateLimitBucket: per-route-family remaining count, reset time, FIFO queue
  of pending jobs and the single-flight `draining` flag. The bucket without
  a key is the global (unbucketed) queue.
- BucketStore: owner of all buckets; creates them lazily, never drops them.
- GlobalThrottle: process-wide pause armed when the server reports a global
  rate limit; every drain loop waits on it before dispatching.

Drain loops run on separate threads, so every bucket guards its state with
its own lock. The check-and-set of `draining` and the "queue empty, stop
draining" transition both happen under that lock, which guarantees at most
one drain loop per bucket and that no enqueued job is ever left without one.

Example:
    >>> store = BucketStore()
    >>> bucket = store.get("channels/123")
    >>> bucket.update(remaining=0, reset=time.time() + 1.5)
    >>> bucket.reset_delay()  # about 1.5
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pcord_rest._utils import seconds_until

if TYPE_CHECKING:
    from pcord_rest._scheduler import RequestJob

logger = logging.getLogger(__name__)


# =============================================================================
# Buckets
# =============================================================================


@dataclass(eq=False)
class RateLimitBucket:
    """
    Rate-limit state and pending queue of one bucket.

    Attributes:
        key: Bucket key, or None for the global (unbucketed) queue.
        remaining: Requests left in the current window. None until the server
            reports it; an unknown count never blocks.
        reset: Absolute epoch time at which the window resets.
        queue: Pending jobs, strict FIFO.
        draining: True while a drain loop owns this bucket.
    """

    key: str | None
    remaining: int | None = None
    reset: float | None = None
    queue: deque[RequestJob] = field(default_factory=deque, repr=False)
    draining: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_global(self) -> bool:
        return self.key is None

    @property
    def name(self) -> str:
        return self.key or "<global>"

    def enqueue(self, job: RequestJob) -> bool:
        """
        Append a job and claim the drain loop if nobody owns it.

        Returns:
            True if the caller must start a drain loop for this bucket.
        """
        with self._lock:
            self.queue.append(job)
            if self.draining:
                return False
            self.draining = True
            return True

    def start_draining(self) -> bool:
        """Claim the drain loop. Returns False if one is already running."""
        with self._lock:
            if self.draining:
                return False
            self.draining = True
            return True

    def next_job(self) -> RequestJob | None:
        """
        Pop the queue head, or stop draining when the queue is empty.

        Only the drain loop owner may call this.
        """
        with self._lock:
            if self.queue:
                return self.queue.popleft()
            self.draining = False
            return None

    def release(self) -> None:
        """Give up the drain loop, leaving queued jobs for a later drain."""
        with self._lock:
            self.draining = False

    def update(self, remaining: int, reset: float | None) -> None:
        """Record the limit state reported by the server."""
        with self._lock:
            self.remaining = max(0, remaining)
            if reset is not None:
                self.reset = reset
        logger.debug(f"Bucket {self.name}: remaining={remaining}, reset={reset}")

    def reserve(self) -> None:
        """Count a dispatch against a known remaining count."""
        with self._lock:
            if self.remaining is not None and self.remaining > 0:
                self.remaining -= 1

    def reset_delay(self) -> float:
        """Seconds to wait before the next dispatch (0 when not exhausted)."""
        with self._lock:
            if self.is_global or self.remaining != 0 or self.reset is None:
                return 0.0
            return seconds_until(self.reset)

    def wait_for_reset(self) -> None:
        """Block until the bucket's reset time if its remaining count is 0."""
        delay = self.reset_delay()
        if delay > 0:
            logger.debug(f"Bucket {self.name} exhausted, waiting {delay:.3f}s for reset")
            time.sleep(delay)

    def __len__(self) -> int:
        with self._lock:
            return len(self.queue)


class BucketStore:
    """
    Owner of every RateLimitBucket of a client.

    Buckets are created on first use and live as long as the store. The
    global queue is a bucket without a key.
    """

    def __init__(self) -> None:
        self._buckets: dict[str, RateLimitBucket] = {}
        self._lock = threading.Lock()
        self.global_queue = RateLimitBucket(key=None)

    def get(self, key: str | None) -> RateLimitBucket:
        """Return the bucket for `key`, creating it if needed."""
        if key is None:
            return self.global_queue
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = RateLimitBucket(key=key)
                self._buckets[key] = bucket
                logger.debug(f"Created rate limit bucket {key}")
            return bucket

    def update(self, key: str, remaining: int, reset: float | None) -> RateLimitBucket:
        """Update (or create) the bucket for `key` with server-reported state."""
        bucket = self.get(key)
        bucket.update(remaining=remaining, reset=reset)
        return bucket

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._buckets

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def __iter__(self) -> Iterator[RateLimitBucket]:
        with self._lock:
            buckets = list(self._buckets.values())
        return iter(buckets)


# =============================================================================
# Global Throttle
# =============================================================================


class GlobalThrottle:
    """
    Process-wide pause for global rate limits.

    While armed, `wait()` blocks every drain loop. Arming schedules its own
    release at the reset time; arming again replaces the pending release, so
    only the latest reset time counts.

    Example:
        >>> throttle = GlobalThrottle()
        >>> throttle.arm(reset=time.time() + 2.0)
        >>> throttle.wait()  # blocks about 2s
    """

    def __init__(self) -> None:
        self._open = threading.Event()
        self._open.set()
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0
        self.reset: float | None = None

    @property
    def is_active(self) -> bool:
        return not self._open.is_set()

    def arm(self, reset: float) -> None:
        """Pause all dispatches until `reset` (absolute epoch seconds)."""
        delay = seconds_until(reset)
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self.reset = reset
            self._open.clear()
            timer = threading.Timer(delay, self._release, args=(self._generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()
        logger.warning(f"Global rate limit hit, pausing all requests for {delay:.3f}s")

    def _release(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
            self.reset = None
            self._open.set()
        logger.debug("Global rate limit lifted")

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block while the throttle is armed.

        Returns:
            True if the throttle is open, False if `timeout` expired first.
        """
        return self._open.wait(timeout)
