from concurrent.futures import ThreadPoolExecutor
import time

import pytest

from hospital_admin.core.exceptions import RateLimitedError
from hospital_admin.services.rate_limit import InMemoryRateLimiter, RateLimitRule, enforce_rate_limits


class _Ticker:
    def __init__(self, start: float = 1_000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value


def test_window_allows_up_to_max_then_blocks():
    ticker = _Ticker()
    limiter = InMemoryRateLimiter(time_source=ticker)
    rule = RateLimitRule(max_attempts=3, window_seconds=60)

    results = [limiter.check("otp|ip:1.2.3.4", rule) for _ in range(4)]

    assert [result.allowed for result in results] == [True, True, True, False]
    assert [result.remaining for result in results] == [2, 1, 0, 0]
    assert results[-1].retry_after(ticker()) == 60


def test_window_resets_after_expiry():
    ticker = _Ticker()
    limiter = InMemoryRateLimiter(time_source=ticker)
    rule = RateLimitRule(max_attempts=1, window_seconds=10)

    assert limiter.check("k", rule).allowed
    assert not limiter.check("k", rule).allowed
    ticker.value += 11
    assert limiter.check("k", rule).allowed


def test_keys_are_independent():
    limiter = InMemoryRateLimiter(time_source=_Ticker())
    rule = RateLimitRule(max_attempts=1, window_seconds=60)

    assert limiter.check("a", rule).allowed
    assert limiter.check("b", rule).allowed
    assert not limiter.check("a", rule).allowed


def test_concurrent_checks_never_exceed_limit():
    limiter = InMemoryRateLimiter()
    rule = RateLimitRule(max_attempts=25, window_seconds=60)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: limiter.check("shared", rule).allowed, range(200)))

    assert sum(results) == 25


def test_purge_expired_drops_only_stale_windows():
    ticker = _Ticker()
    limiter = InMemoryRateLimiter(time_source=ticker)
    limiter.check("short", RateLimitRule(5, 10))
    limiter.check("long", RateLimitRule(5, 1000))

    ticker.value += 20

    assert limiter.purge_expired() == 1
    assert limiter.check("long", RateLimitRule(5, 1000)).remaining == 3


def test_enforce_rate_limits_raises_with_longest_wait():
    ticker = _Ticker()
    limiter = InMemoryRateLimiter(time_source=ticker)
    rule = RateLimitRule(max_attempts=1, window_seconds=30)
    enforce_rate_limits(limiter, scope="auth.otp.request", rule=rule, identities=["ip:9.9.9.9", "user:u1"])
    ticker.value += 10

    with pytest.raises(RateLimitedError) as exc_info:
        enforce_rate_limits(limiter, scope="auth.otp.request", rule=rule, identities=["ip:9.9.9.9", "user:u1"])

    assert exc_info.value.status_code == 429
    assert exc_info.value.details["retry_after"] == 20
    assert exc_info.value.headers["Retry-After"] == "20"


def test_enforce_rate_limits_skips_blank_identities():
    limiter = InMemoryRateLimiter(time_source=_Ticker())
    rule = RateLimitRule(max_attempts=1, window_seconds=30)

    for _ in range(3):
        enforce_rate_limits(limiter, scope="auth.otp.verify", rule=rule, identities=[None, "  "])


def test_purge_racing_a_check_keeps_one_window_per_key():
    ticker = _Ticker()
    limiter = InMemoryRateLimiter(time_source=ticker)
    rule = RateLimitRule(max_attempts=3, window_seconds=10)
    limiter.check("k", rule)
    ticker.value += 20
    stale = limiter._windows["k"]

    # Hold the stale window so the check and the purge both queue on it.
    stale.lock.acquire()
    with ThreadPoolExecutor(max_workers=2) as pool:
        checking = pool.submit(limiter.check, "k", rule)
        time.sleep(0.05)
        purging = pool.submit(limiter.purge_expired)
        time.sleep(0.05)
        stale.lock.release()
        assert checking.result().allowed
        purging.result()

    assert limiter.check("k", rule).remaining == 1
