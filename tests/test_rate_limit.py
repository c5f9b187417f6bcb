"""Tests for rate limit buckets and the global throttle."""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from pcord_rest import BucketStore, GlobalThrottle, RateLimitBucket

# =============================================================================
# RateLimitBucket Tests
# =============================================================================


class TestRateLimitBucket:
    """Tests for RateLimitBucket."""

    def test_defaults_to_unknown_remaining(self):
        """A new bucket should have unknown limits and an empty queue."""
        bucket = RateLimitBucket(key="channels/1")

        assert bucket.remaining is None
        assert bucket.reset is None
        assert not bucket.draining
        assert len(bucket) == 0

    def test_first_enqueue_claims_the_drain_loop(self):
        """Only the first enqueue should claim the drain flag."""
        bucket = RateLimitBucket(key="channels/1")

        assert bucket.enqueue(MagicMock()) is True
        assert bucket.enqueue(MagicMock()) is False
        assert bucket.draining
        assert len(bucket) == 2

    def test_start_draining_is_single_flight(self):
        """start_draining() should succeed only once."""
        bucket = RateLimitBucket(key="channels/1")

        assert bucket.start_draining() is True
        assert bucket.start_draining() is False

    def test_concurrent_start_draining_has_one_winner(self):
        """Concurrent claims should have exactly one winner."""
        bucket = RateLimitBucket(key="channels/1")
        barrier = threading.Barrier(16)
        results = []

        def claim():
            barrier.wait()
            results.append(bucket.start_draining())

        threads = [threading.Thread(target=claim) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1

    def test_next_job_is_fifo_and_clears_flag_when_empty(self):
        """Jobs should come out in order and an empty queue should clear the flag."""
        bucket = RateLimitBucket(key="channels/1")
        jobs = [MagicMock(name=f"job{i}") for i in range(3)]
        for job in jobs:
            bucket.enqueue(job)

        assert [bucket.next_job() for _ in range(3)] == jobs
        assert bucket.draining
        assert bucket.next_job() is None
        assert not bucket.draining

    def test_release_keeps_queued_jobs(self):
        """release() should clear the flag without dropping jobs."""
        bucket = RateLimitBucket(key="channels/1")
        bucket.enqueue(MagicMock())

        bucket.release()

        assert not bucket.draining
        assert len(bucket) == 1

    def test_update_and_reserve(self):
        """reserve() should count remaining down to 0."""
        bucket = RateLimitBucket(key="channels/1")
        bucket.update(remaining=2, reset=123.0)

        bucket.reserve()
        bucket.reserve()
        bucket.reserve()

        assert bucket.remaining == 0
        assert bucket.reset == 123.0

    def test_reserve_ignores_unknown_remaining(self):
        """reserve() should leave unknown remaining alone."""
        bucket = RateLimitBucket(key="channels/1")
        bucket.reserve()
        assert bucket.remaining is None

    def test_update_keeps_previous_reset_when_missing(self):
        """An update without reset should keep the known one."""
        bucket = RateLimitBucket(key="channels/1")
        bucket.update(remaining=5, reset=100.0)
        bucket.update(remaining=4, reset=None)

        assert bucket.remaining == 4
        assert bucket.reset == 100.0

    def test_reset_delay_only_when_exhausted(self):
        """Only an exhausted bucket should have a reset delay."""
        bucket = RateLimitBucket(key="channels/1")
        reset = time.time() + 10

        bucket.update(remaining=1, reset=reset)
        assert bucket.reset_delay() == 0.0

        bucket.update(remaining=0, reset=reset)
        assert 9 < bucket.reset_delay() <= 10

    def test_reset_delay_is_clamped(self):
        """A reset in the past should give no delay."""
        bucket = RateLimitBucket(key="channels/1")
        bucket.update(remaining=0, reset=time.time() - 5)
        assert bucket.reset_delay() == 0.0

    def test_global_queue_never_waits_for_reset(self):
        """The global queue should ignore remaining and reset."""
        bucket = RateLimitBucket(key=None)
        bucket.remaining = 0
        bucket.reset = time.time() + 10

        assert bucket.is_global
        assert bucket.reset_delay() == 0.0

    @patch("pcord_rest._rate_limit.time.sleep")
    def test_wait_for_reset_sleeps_until_reset(self, mock_sleep):
        """An exhausted bucket should sleep until its reset."""
        bucket = RateLimitBucket(key="channels/1")
        bucket.update(remaining=0, reset=time.time() + 2)

        bucket.wait_for_reset()

        mock_sleep.assert_called_once()
        assert 1.5 < mock_sleep.call_args[0][0] <= 2

    @patch("pcord_rest._rate_limit.time.sleep")
    def test_wait_for_reset_does_not_sleep_with_remaining(self, mock_sleep):
        """A bucket with remaining requests should not sleep."""
        bucket = RateLimitBucket(key="channels/1")
        bucket.update(remaining=3, reset=time.time() + 2)

        bucket.wait_for_reset()

        mock_sleep.assert_not_called()


# =============================================================================
# BucketStore Tests
# =============================================================================


class TestBucketStore:
    """Tests for BucketStore."""

    def test_creates_buckets_lazily(self):
        """Buckets should be created on first use and reused."""
        store = BucketStore()
        assert "channels/1" not in store

        bucket = store.get("channels/1")

        assert "channels/1" in store
        assert store.get("channels/1") is bucket
        assert len(store) == 1

    def test_none_key_is_the_global_queue(self):
        """A None key should return the global queue."""
        store = BucketStore()

        assert store.get(None) is store.global_queue
        assert store.global_queue.is_global
        assert len(store) == 0

    def test_update_creates_missing_bucket(self):
        """update() should create the bucket if needed."""
        store = BucketStore()

        bucket = store.update("guilds/9", remaining=4, reset=50.0)

        assert store.get("guilds/9") is bucket
        assert bucket.remaining == 4
        assert bucket.reset == 50.0

    def test_iterates_over_buckets(self):
        """Iteration should yield every keyed bucket."""
        store = BucketStore()
        store.get("channels/1")
        store.get("guilds/2")

        assert sorted(b.key for b in store) == ["channels/1", "guilds/2"]


# =============================================================================
# GlobalThrottle Tests
# =============================================================================


class TestGlobalThrottle:
    """Tests for GlobalThrottle."""

    def test_open_by_default(self):
        """A new throttle should not block."""
        throttle = GlobalThrottle()

        assert not throttle.is_active
        assert throttle.wait(timeout=0) is True

    def test_blocks_until_reset(self):
        """An armed throttle should block until its reset."""
        throttle = GlobalThrottle()
        reset = time.time() + 0.2

        throttle.arm(reset)
        assert throttle.is_active
        assert throttle.reset == reset

        assert throttle.wait(timeout=5) is True
        assert time.time() >= reset - 0.02
        assert not throttle.is_active

    def test_wait_times_out_while_armed(self):
        """wait() should honor its timeout while armed."""
        throttle = GlobalThrottle()
        throttle.arm(time.time() + 5)

        assert throttle.wait(timeout=0.05) is False

    def test_rearming_overwrites_previous_wait(self):
        """Re-arming should replace the previous reset."""
        throttle = GlobalThrottle()
        throttle.arm(time.time() + 0.1)
        later = time.time() + 0.4
        throttle.arm(later)

        time.sleep(0.2)

        assert throttle.is_active
        assert throttle.wait(timeout=5) is True
        assert time.time() >= later - 0.02

    def test_past_reset_releases_immediately(self):
        """A reset in the past should release right away."""
        throttle = GlobalThrottle()
        throttle.arm(time.time() - 1)

        assert throttle.wait(timeout=1) is True

    @pytest.mark.parametrize("waiters", [1, 8])
    def test_releases_every_waiter(self, waiters):
        """Every waiting thread should be released at the reset."""
        throttle = GlobalThrottle()
        throttle.arm(time.time() + 0.1)
        released = []

        threads = [
            threading.Thread(target=lambda: released.append(throttle.wait(timeout=5)))
            for _ in range(waiters)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert released == [True] * waiters
