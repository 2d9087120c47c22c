"""Rate limiting: sliding window counters shared by request stages and the JWKS client."""

import re
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class RateLimit:
    """At most max_requests within any rolling window_seconds."""

    max_requests: int
    window_seconds: float


_UNIT_SECONDS = {
    "sec": 1,
    "second": 1,
    "min": 60,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}

# "<count>/<span><unit>", span optional, unit optionally plural
_LIMIT_RE = re.compile(r"^(?P<count>[^/]*)/\s*(?P<span>\d*)\s*(?P<unit>[a-z]+?)s?$")


def parse_rate_limit(value: str) -> RateLimit:
    """Parse a rate limit string such as ``"5/min"`` or ``"100/15min"``.

    Units: sec, second, min, minute, hour, day, each optionally plural. A number
    before the unit multiplies it, so ``"100/15min"`` is 100 per 900 seconds.

    Raises:
        ValueError: If the string is malformed or any part is out of range.
    """
    match = _LIMIT_RE.match(value.strip().lower())
    if match is None:
        raise ValueError(f"Invalid rate limit format: '{value}'. Expected 'count/period'.")

    try:
        count = int(match["count"])
    except ValueError:
        raise ValueError(f"Invalid rate limit count: '{match['count'].strip()}'")
    if count <= 0:
        raise ValueError(f"Rate limit count must be positive, got {count}")

    unit = match["unit"]
    if unit not in _UNIT_SECONDS:
        raise ValueError(
            f"Unknown rate limit period: '{unit}'. Valid periods: {', '.join(_UNIT_SECONDS)}"
        )

    span = int(match["span"] or 1)
    if span <= 0:
        raise ValueError(f"Rate limit period multiplier must be positive, got {span}")

    return RateLimit(max_requests=count, window_seconds=span * _UNIT_SECONDS[unit])


@runtime_checkable
class RateLimitStore(Protocol):
    """Storage backend for sliding window counters."""

    def hit(self, key: str, limit: RateLimit) -> tuple[bool, int, float]:
        """Count one request against ``key``.

        Returns:
            (allowed, remaining, retry_after_seconds). A rejected request is not
            counted.
        """
        ...

    def reset(self, key: str | None = None) -> None:
        """Forget ``key``, or every key when None."""
        ...


class InMemoryStore:
    """Per-process sliding window store, safe to share between threads.

    Each key keeps a queue of hit times, oldest first. Every serverless
    instance counts on its own.
    """

    def __init__(self, time_func: Callable[[], float] | None = None) -> None:
        self._clock = time_func or time.monotonic
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, limit: RateLimit) -> tuple[bool, int, float]:
        now = self._clock()
        horizon = now - limit.window_seconds

        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= horizon:
                hits.popleft()

            if len(hits) >= limit.max_requests:
                # the oldest hit leaving the window frees the next slot
                return False, 0, max(hits[0] - horizon, 0.1)

            hits.append(now)
            return True, limit.max_requests - len(hits), 0.0

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
