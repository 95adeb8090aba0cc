from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
import math
import time
from typing import Callable, Iterable, Protocol

from hospital_admin.core.exceptions import RateLimitedError


@dataclass(frozen=True)
class RateLimitRule:
    max_attempts: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        return max(1, math.ceil(self.reset_at - now))


class RateLimiter(Protocol):
    def check(self, key: str, rule: RateLimitRule) -> RateLimitResult: ...

    def now(self) -> float: ...


class _Window:
    __slots__ = ("lock", "count", "reset_at")

    def __init__(self) -> None:
        self.lock = Lock()
        self.count = 0
        self.reset_at = 0.0


class InMemoryRateLimiter:
    """Fixed-window counters kept in process memory.

    Each key owns its own lock, so concurrent handlers only contend when they
    hit the same key. Counters are not shared between processes; a deployment
    with several workers needs a shared backend behind the same ``check``
    interface.
    """

    def __init__(self, *, time_source: Callable[[], float] = time.time) -> None:
        self._windows: dict[str, _Window] = {}
        self._time = time_source

    def check(self, key: str, rule: RateLimitRule) -> RateLimitResult:
        while True:
            window = self._windows.get(key)
            if window is None:
                window = self._windows.setdefault(key, _Window())
            with window.lock:
                if self._windows.get(key) is not window:
                    # Purged while we waited for the lock; count against the live window.
                    continue
                now = self._time()
                if window.reset_at < now:
                    window.count = 1
                    window.reset_at = now + rule.window_seconds
                    return RateLimitResult(True, rule.max_attempts - 1, window.reset_at)
                if window.count >= rule.max_attempts:
                    return RateLimitResult(False, 0, window.reset_at)
                window.count += 1
                return RateLimitResult(True, rule.max_attempts - window.count, window.reset_at)

    def purge_expired(self) -> int:
        purged = 0
        for key, window in list(self._windows.items()):
            with window.lock:
                if window.reset_at < self._time() and self._windows.get(key) is window:
                    del self._windows[key]
                    purged += 1
        return purged

    def now(self) -> float:
        return self._time()


def enforce_rate_limits(
    limiter: RateLimiter,
    *,
    scope: str,
    rule: RateLimitRule,
    identities: Iterable[str | None],
) -> None:
    """Count one hit against every identity; all of them must still have room."""
    blocked: list[RateLimitResult] = []
    for identity in identities:
        id_part = (identity or "").strip().lower()
        if not id_part:
            continue
        result = limiter.check(f"{scope}|{id_part}", rule)
        if not result.allowed:
            blocked.append(result)
    if not blocked:
        return
    retry_after = max(result.retry_after(limiter.now()) for result in blocked)
    raise RateLimitedError(retry_after, f"Too many requests for {scope}. Try again in {retry_after} second(s).")
