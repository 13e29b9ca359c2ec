"""Per-host pacing for the asset download tier.

Two inputs decide when a host may be contacted again: the configured
request rate, and any ``Retry-After`` the host sent with a 429 or 503.
The later of the two wins.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from urllib.parse import urlparse

import dateparser

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF = 1.0
MAX_BACKOFF = 60.0


def host_of(url: str) -> str:
    try:
        return urlparse(url).netloc.lower()
    except ValueError:
        return ""


def parse_retry_after(value: str | None, default: float = DEFAULT_BACKOFF) -> float:
    """Seconds to wait from a ``Retry-After`` header, capped at :data:`MAX_BACKOFF`.

    Accepts both forms the header allows: delta-seconds and an HTTP-date.
    Missing or unparseable values give *default*.
    """
    if not value or not value.strip():
        return default
    value = value.strip()
    if value.isdigit():
        return min(float(value), MAX_BACKOFF)
    parsed = dateparser.parse(
        value,
        settings={"RETURN_AS_TIMEZONE_AWARE": True, "TIMEZONE": "UTC"},
    )
    if parsed is None:
        logger.debug("Unparseable Retry-After %r; using %.1fs", value, default)
        return default
    delta = (parsed - datetime.now(timezone.utc)).total_seconds()
    return min(max(delta, 0.0), MAX_BACKOFF)


class HostThrottle:
    """Pace requests per host and honour server back-off requests.

    Shared by the worker threads resolving one document's images.  The next
    free slot of each host is booked under the lock; callers sleep outside it.
    """

    def __init__(self, requests_per_second: float) -> None:
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be > 0")
        self._interval = 1.0 / requests_per_second
        self._lock = threading.Lock()
        self._next_slot: dict[str, float] = {}

    def wait(self, url: str) -> float:
        """Block until *url*'s host may be contacted; return the delay slept."""
        host = host_of(url)
        if not host:
            return 0.0
        with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot.get(host, 0.0))
            self._next_slot[host] = slot + self._interval
        delay = slot - now
        if delay > 0:
            time.sleep(delay)
        return max(delay, 0.0)

    def back_off(self, url: str, seconds: float) -> None:
        """Keep every thread away from *url*'s host for at least *seconds*."""
        host = host_of(url)
        if not host:
            return
        with self._lock:
            until = time.monotonic() + max(seconds, 0.0)
            if until > self._next_slot.get(host, 0.0):
                self._next_slot[host] = until
        logger.info("Backing off %s for %.1fs", host, seconds)
