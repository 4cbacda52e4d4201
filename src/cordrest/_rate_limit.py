"""
Response-driven rate limiting for the cordrest SDK.

The API advertises its quotas per route through response headers:

    X-RateLimit-Limit        requests allowed per window
    X-RateLimit-Remaining    requests left in the current window
    X-RateLimit-Reset        epoch seconds when the window resets
    X-RateLimit-Reset-After  seconds until the window resets (preferred)
    X-RateLimit-Global       "true" on a 429 that applies to every route
    Retry-After              seconds to wait after a 429

RateLimiter keeps one Bucket per bucket key (the route template), created the
first time a response for that key carries rate-limit headers. Until then the
route is treated as unlimited. Admission into a bucket reserves one unit of
`remaining` under the bucket's own lock; when nothing is left the caller
sleeps (outside every lock) until the window resets.

All reset times are stored on a single monotonic clock.

Example:
    >>> limiter = RateLimiter()
    >>> limiter.acquire("channels/{channel_id}/messages", sleep=time.sleep)
    >>> response = transport.send(...)
    >>> limiter.update_from_response("channels/{channel_id}/messages", response)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import requests

logger = logging.getLogger(__name__)

HEADER_LIMIT = "X-RateLimit-Limit"
HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_RESET = "X-RateLimit-Reset"
HEADER_RESET_AFTER = "X-RateLimit-Reset-After"
HEADER_GLOBAL = "X-RateLimit-Global"
HEADER_RETRY_AFTER = "Retry-After"


# =============================================================================
# Bucket
# =============================================================================


@dataclass
class Bucket:
    """
    Rate-limit state for one bucket key.

    Attributes:
        key: The bucket key (route template).
        limit: Requests allowed per window, as last advertised by the server.
        remaining: Requests left in the current window. Never negative.
        reset_at: Monotonic timestamp when the current window resets.
    """

    key: str
    limit: int = 1
    remaining: int = 1
    reset_at: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


# =============================================================================
# Rate Limiter
# =============================================================================


class RateLimiter:
    """
    Thread-safe bucket table.

    Requests for different buckets never wait on each other: the table lock
    is only held to look a bucket up or create it, and each bucket has its
    own lock which is never held while sleeping.

    Args:
        clock: Monotonic clock used for every reset comparison.
        wall_clock: Wall clock used to convert epoch `X-RateLimit-Reset` values.
        respect_global: Whether a global 429 pauses every bucket.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        respect_global: bool = True,
    ):
        self._clock = clock
        self._wall_clock = wall_clock
        self.respect_global = respect_global

        self._buckets: dict[str, Bucket] = {}
        self._lock = threading.Lock()
        self._global_reset_at = 0.0

    def get_bucket(self, key: str) -> Bucket | None:
        """Return the bucket for `key`, or None if it has not been seen yet."""
        with self._lock:
            return self._buckets.get(key)

    def _get_or_create_bucket(self, key: str) -> Bucket:
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = Bucket(key=key)
                self._buckets[key] = bucket
                logger.debug(f"RateLimiter: created bucket '{key}'.")
            return bucket

    @property
    def bucket_count(self) -> int:
        with self._lock:
            return len(self._buckets)

    # -------------------------------------------------------------------------
    # Admission
    # -------------------------------------------------------------------------

    def acquire(self, key: str, sleep: Callable[[float], None]) -> None:
        """
        Block until a request for `key` may be sent, then reserve one slot.

        Args:
            key: The bucket key.
            sleep: Called with the number of seconds to wait. The request
                queue passes a cancellable sleep that raises CancelledError.
        """
        self._wait_for_global(sleep)

        bucket = self.get_bucket(key)
        if bucket is None:
            return

        while True:
            with bucket.lock:
                now = self._clock()
                if bucket.remaining <= 0 and now >= bucket.reset_at:
                    # Window elapsed without fresh headers: assume a full refill.
                    bucket.remaining = max(bucket.limit, 1)

                if bucket.remaining > 0:
                    bucket.remaining -= 1
                    return

                wait_time = bucket.reset_at - now

            logger.debug(f"RateLimiter: bucket '{key}' exhausted, waiting {wait_time:.3f}s.")
            sleep(wait_time)
            self._wait_for_global(sleep)

    def _wait_for_global(self, sleep: Callable[[float], None]) -> None:
        while True:
            with self._lock:
                wait_time = self._global_reset_at - self._clock()
            if wait_time <= 0:
                return
            logger.debug(f"RateLimiter: global rate limit active, waiting {wait_time:.3f}s.")
            sleep(wait_time)

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    def update(
        self,
        key: str,
        remaining: int | None = None,
        reset_after: float | None = None,
        limit: int | None = None,
    ) -> Bucket:
        """
        Record the quota advertised for `key`.

        A reset later than the one already known starts a new window and the
        server's `remaining` is taken as-is. Within the same window the lower
        of the local and the server count wins, because slots reserved by
        requests still in flight are not reflected in older responses.

        Args:
            key: The bucket key.
            remaining: Requests left in the window (clamped at 0).
            reset_after: Seconds until the window resets.
            limit: Requests per window.

        Returns:
            The updated bucket.
        """
        bucket = self._get_or_create_bucket(key)
        with bucket.lock:
            now = self._clock()
            if limit is not None and limit > 0:
                bucket.limit = limit

            new_window = False
            if reset_after is not None:
                reset_at = now + max(0.0, reset_after)
                new_window = reset_at > bucket.reset_at + 0.001 or now >= bucket.reset_at
                bucket.reset_at = reset_at

            if remaining is not None:
                remaining = max(0, remaining)
                if new_window:
                    bucket.remaining = remaining
                else:
                    bucket.remaining = min(bucket.remaining, remaining)

            logger.debug(
                f"RateLimiter: bucket '{key}' -> remaining={bucket.remaining}, "
                f"limit={bucket.limit}, reset_in={bucket.reset_at - now:.3f}s."
            )
            return bucket

    def update_from_response(self, key: str, response: requests.Response) -> Bucket | None:
        """
        Update the bucket for `key` from a response's rate-limit headers.

        Responses without rate-limit headers leave the table untouched.

        Returns:
            The updated bucket, or None if the response carried no quota info.
        """
        headers = response.headers
        remaining = _parse_int(_get_header(headers, HEADER_REMAINING))
        limit = _parse_int(_get_header(headers, HEADER_LIMIT))
        reset_after = _parse_float(_get_header(headers, HEADER_RESET_AFTER))
        if reset_after is None:
            reset_epoch = _parse_float(_get_header(headers, HEADER_RESET))
            if reset_epoch is not None:
                reset_after = reset_epoch - self._wall_clock()

        if remaining is None and reset_after is None:
            return None

        return self.update(key, remaining=remaining, reset_after=reset_after, limit=limit)

    def on_rate_limited(self, key: str, retry_after: float, is_global: bool = False) -> None:
        """
        Record a 429 so other callers wait too.

        A per-route 429 exhausts the bucket until `retry_after` elapses; a
        global one (when respected) pauses every bucket.
        """
        if is_global and self.respect_global:
            with self._lock:
                self._global_reset_at = max(self._global_reset_at, self._clock() + retry_after)
            logger.warning(f"RateLimiter: global rate limit hit, pausing all requests for {retry_after:.3f}s.")
            return

        bucket = self._get_or_create_bucket(key)
        with bucket.lock:
            bucket.remaining = 0
            bucket.reset_at = max(bucket.reset_at, self._clock() + retry_after)

    def global_wait_time(self) -> float:
        """Seconds left on the global rate limit (0 when inactive)."""
        with self._lock:
            return max(0.0, self._global_reset_at - self._clock())


# =============================================================================
# Header Parsing
# =============================================================================


def parse_retry_after(response: requests.Response) -> tuple[float | None, bool]:
    """
    Read the delay and scope of a 429 response.

    The `Retry-After` header (seconds) wins; the JSON body's `retry_after`
    field is used when the header is missing. HTTP-date values are not
    supported.

    Returns:
        (retry_after in seconds or None, whether the limit is global)
    """
    headers = response.headers
    retry_after = _parse_float(_get_header(headers, HEADER_RETRY_AFTER))
    is_global = str(_get_header(headers, HEADER_GLOBAL) or "").lower() == "true"

    body = _read_json_body(response)
    if retry_after is None:
        retry_after = _parse_float(body.get("retry_after"))
    if body.get("global") is True:
        is_global = True

    if retry_after is not None and retry_after < 0:
        retry_after = None
    return retry_after, is_global


def _get_header(headers: Mapping[str, Any], name: str) -> Any:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def _parse_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _parse_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _read_json_body(response: requests.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
