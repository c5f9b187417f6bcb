"""
Rate-limit aware request scheduling for the pcord_rest client.

Every prepared request becomes a RequestJob queued on exactly one bucket:
the bucket of its route, or the global queue for unbucketed routes. Each
bucket is drained by at most one thread at a time, in FIFO order:

    1. wait for the global throttle (armed by a global 429);
    2. if the bucket has 0 requests remaining, sleep until its reset time;
    3. send the request and classify the response headers;
    4. repeat while the queue is not empty.

Transient responses (429, 5xx) put the same job back at the tail of its
original queue. A retried job waits for the reset time its 429 reported,
and its timeout budget keeps running the whole time. Response bodies are
read on a separate thread once headers are in, so a slow download never
holds up its bucket.

Example:
    >>> scheduler = RequestScheduler(transport=SessionHttpTransport())
    >>> future = scheduler.schedule(prepared_request)
    >>> future.result()
    {'id': '123', ...}
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, wait
from typing import Any

import requests

from pcord_rest._errors import DiscordAPIError, RequestTimeoutError
from pcord_rest._http import HttpTransport
from pcord_rest._rate_limit import BucketStore, GlobalThrottle, RateLimitBucket
from pcord_rest._request import PreparedRequest
from pcord_rest._response import ResponseClassifier
from pcord_rest._retry import RetryableError, RetryState, TransientResponseError
from pcord_rest._utils import is_timeout_exception, seconds_until

logger = logging.getLogger(__name__)


class RequestJob:
    """
    A queued request and the future its caller waits on.

    The prepared request never changes; the retry state (remaining timeout
    budget, attempts) travels alongside it. The future is completed exactly
    once, whichever of response, error or timeout comes first.

    Attributes:
        request: The immutable prepared request.
        retry: Timeout budget and attempt bookkeeping.
        future: Completed with the decoded result or the error.
    """

    def __init__(self, request: PreparedRequest, future: Future[Any] | None = None):
        self.request = request
        self.retry = RetryState(timeout=request.timeout)
        self.future: Future[Any] = future if future is not None else Future()
        self.not_before: float | None = None
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    @property
    def done(self) -> bool:
        return self.future.done()

    def abandoned(self) -> bool:
        """
        Return True if the job no longer needs sending.

        That is the case once it timed out while queued for a retry, or when
        the caller cancelled it before its first dispatch. Waiters on a
        cancelled future are notified here.
        """
        with self._lock:
            if not self.future.done():
                return False
            if self.retry.attempts == 0 and self.future.cancelled():
                self.future.set_running_or_notify_cancel()
                logger.debug(f"{self.request.method} {self.request.path} | cancelled before dispatch")
            return True

    def start(self) -> bool:
        """
        Begin an attempt.

        Returns:
            False if the job must not be sent: the caller cancelled the
            future before its first dispatch, or it is already completed.
        """
        with self._lock:
            if self.retry.attempts == 0 and not self.future.set_running_or_notify_cancel():
                logger.debug(f"{self.request.method} {self.request.path} | cancelled before dispatch")
                return False
            if self.future.done():
                return False
            self.retry.start_attempt()
            return True

    def hold_until_reset(self) -> None:
        """
        Wait for the reset time reported with the job's last 429.

        Returns early if the job completes meanwhile (its timer fired).
        """
        if self.not_before is None:
            return
        delay = seconds_until(self.not_before)
        self.not_before = None
        if delay > 0:
            logger.debug(f"{self.request.method} {self.request.path} | holding retry for {delay:.3f}s")
            wait([self.future], timeout=delay)

    def arm_timer(self) -> None:
        """
        Start the timeout timer for the remaining budget (if bounded).

        A running timer is kept: it covers the whole budget, retries included.
        """
        remaining = self.retry.timeout_remaining
        if remaining is None:
            return
        with self._lock:
            if self._timer is not None:
                return
            timer = threading.Timer(remaining, self._on_timeout)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def clear_timer(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def headers_received(self) -> None:
        """Streaming responses are no longer subject to the timeout once headers are in."""
        if self.request.stream:
            self.clear_timer()

    def _on_timeout(self) -> None:
        if self.fail(self.timeout_error()):
            logger.warning(
                f"{self.request.method} {self.request.path} | timed out after {self.request.timeout}s"
            )

    def timeout_error(self) -> RequestTimeoutError:
        return RequestTimeoutError(self.request.path, self.request.timeout)

    def resolve(self, value: Any) -> bool:
        """Complete the future with `value`. Returns False if it was already completed."""
        with self._lock:
            if self.future.done():
                return False
            self.future.set_result(value)
            return True

    def fail(self, error: BaseException) -> bool:
        """Complete the future with `error`. Returns False if it was already completed."""
        with self._lock:
            if self.future.done():
                return False
            self.future.set_exception(error)
            return True


class RequestScheduler:
    """
    Dispatches prepared requests without exceeding known rate limits.

    Args:
        transport: Transport used to send requests.
        buckets: Bucket store. A new, empty one is created if omitted.
        throttle: Global throttle. A new one is created if omitted.
        classifier: Response classifier. Built from `buckets` and
            `throttle` if omitted.
    """

    def __init__(
        self,
        transport: HttpTransport,
        buckets: BucketStore | None = None,
        throttle: GlobalThrottle | None = None,
        classifier: ResponseClassifier | None = None,
    ):
        assert transport is not None, "transport cannot be None."

        self.transport = transport
        self.buckets = buckets or BucketStore()
        self.throttle = throttle or GlobalThrottle()
        self.classifier = classifier or ResponseClassifier(self.buckets, self.throttle)

    def schedule(self, request: PreparedRequest) -> Future[Any]:
        """
        Queue a prepared request.

        Returns:
            A future completed with the decoded response, or failed with
            DiscordAPIError, RequestTimeoutError or a transport error.
        """
        job = RequestJob(request)
        self.enqueue(job)
        return job.future

    def enqueue(self, job: RequestJob) -> None:
        """Append a job to its bucket and make sure the bucket is being drained."""
        bucket = self.buckets.get(job.request.bucket)
        if bucket.enqueue(job):
            self._spawn_drain(bucket)

    def drain(self, bucket: RateLimitBucket, block: bool = False) -> bool:
        """
        Start draining `bucket` unless a drain loop already owns it.

        Args:
            bucket: The bucket to drain.
            block: Run the loop on the current thread instead of a new one.

        Returns:
            True if a drain loop was started.
        """
        if not bucket.start_draining():
            return False
        if block:
            self._drain_loop(bucket)
        else:
            self._spawn_drain(bucket)
        return True

    def _spawn_drain(self, bucket: RateLimitBucket) -> None:
        thread = threading.Thread(
            target=self._drain_loop,
            args=(bucket,),
            name=f"pcord-drain-{bucket.name}",
            daemon=True,
        )
        thread.start()

    def _drain_loop(self, bucket: RateLimitBucket) -> None:
        """Process `bucket` until its queue is empty. The caller owns the drain flag."""
        finished = False
        try:
            while True:
                job = bucket.next_job()
                if job is None:
                    finished = True
                    return
                if job.abandoned():
                    continue
                try:
                    self.throttle.wait()
                    bucket.wait_for_reset()
                    job.hold_until_reset()
                    self._dispatch(job, bucket)
                except Exception as e:
                    logger.error(
                        f"Unexpected error while draining bucket {bucket.name}: {e}",
                        exc_info=logger.isEnabledFor(logging.DEBUG),
                    )
                    job.clear_timer()
                    job.fail(e)
        finally:
            if not finished:
                bucket.release()

    def _dispatch(self, job: RequestJob, bucket: RateLimitBucket) -> None:
        request = job.request

        if not job.start():
            return

        remaining = job.retry.timeout_remaining
        if remaining is not None and remaining <= 0:
            job.clear_timer()
            job.fail(job.timeout_error())
            return

        bucket.reserve()
        job.arm_timer()
        logger.debug(f"{request.method} {request.path} | attempt {job.retry.attempts} on bucket {bucket.name}")

        try:
            response = self.transport.send(request, timeout=remaining)
        except Exception as e:
            job.clear_timer()
            if is_timeout_exception(e):
                error = job.timeout_error()
                error.__cause__ = e
                job.fail(error)
            else:
                job.fail(e)
            return

        if job.done:
            # Timed out (or cancelled) while waiting for headers.
            response.close()
            return

        try:
            self.classifier.observe(request, response, on_headers=job.headers_received)
        except RetryableError as e:
            self._retry(job, e)
            return
        except Exception as e:
            job.clear_timer()
            response.close()
            job.fail(e)
            return

        if request.stream:
            self._finish(job, response)
        else:
            threading.Thread(
                target=self._finish,
                args=(job, response),
                name=f"pcord-body-{bucket.name}",
                daemon=True,
            ).start()

    def _retry(self, job: RequestJob, error: RetryableError) -> None:
        request = job.request

        if job.retry.is_exhausted:
            logger.warning(f"{request.method} {request.path} | timeout budget exhausted after {error}")
            job.clear_timer()
            timeout_error = job.timeout_error()
            timeout_error.__cause__ = error
            job.fail(timeout_error)
            return

        if not request.rewind_body():
            job.clear_timer()
            status = error.status if isinstance(error, TransientResponseError) else -1
            job.fail(DiscordAPIError(
                code=-1,
                message=f"HTTP {status}; the request body stream cannot be sent again",
                status=status,
                origin_stack=request.origin_stack,
            ))
            return

        if isinstance(error, TransientResponseError) and error.reset is not None:
            job.not_before = error.reset
        self.enqueue(job)

    def _finish(self, job: RequestJob, response: requests.Response) -> None:
        try:
            value = self.classifier.decode(job.request, response)
        except Exception as e:
            job.fail(e)
        else:
            if not job.resolve(value) and job.request.stream:
                response.close()
        finally:
            job.clear_timer()

    def close(self) -> None:
        """Release the transport's pooled connections."""
        self.transport.close()
