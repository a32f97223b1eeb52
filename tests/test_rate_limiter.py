"""Tests for the sliding-window rate limiter."""

import threading

import pytest

from flash_assistant.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_admits_up_to_limit_then_denies():
    """The 21st request inside one window is denied."""
    limiter = RateLimiter(max_requests=20, window_seconds=60, clock=FakeClock())
    admitted = [limiter.try_admit() for _ in range(20)]
    assert all(admitted)
    assert limiter.try_admit() is False
    assert limiter.remaining() == 0


def test_readmits_after_window_passes():
    """Requests are admitted again once the oldest timestamp ages out."""
    clock = FakeClock()
    limiter = RateLimiter(max_requests=20, window_seconds=60, clock=clock)
    for _ in range(20):
        assert limiter.try_admit()
    assert not limiter.try_admit()

    clock.now += 60
    assert limiter.try_admit() is True


def test_rolling_window_purges_only_old_entries():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=2, window_seconds=10, clock=clock)
    assert limiter.try_admit()
    clock.now += 5
    assert limiter.try_admit()
    clock.now += 6
    # First entry is 11s old, second only 6s
    assert limiter.try_admit()
    assert not limiter.try_admit()


def test_explicit_timestamp_overrides_clock():
    limiter = RateLimiter(max_requests=1, window_seconds=1, clock=FakeClock(0.0))
    assert limiter.try_admit(now=100.0)
    assert not limiter.try_admit(now=100.5)
    assert limiter.try_admit(now=101.0)


def test_denied_requests_are_not_recorded():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=1, window_seconds=10, clock=clock)
    assert limiter.try_admit()
    clock.now += 5
    assert not limiter.try_admit()
    clock.now += 5
    # Only the admitted request counted against the window
    assert limiter.try_admit()


def test_concurrent_admission_never_exceeds_limit():
    limiter = RateLimiter(max_requests=20, window_seconds=60, clock=FakeClock())
    results = []
    lock = threading.Lock()

    def worker():
        for _ in range(10):
            admitted = limiter.try_admit()
            with lock:
                results.append(admitted)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 20
    assert results.count(False) == 60


@pytest.mark.parametrize("kwargs", [{"max_requests": 0}, {"window_seconds": 0}])
def test_invalid_limits_rejected(kwargs):
    with pytest.raises(ValueError):
        RateLimiter(**kwargs)
