"""
Retry loop for rate-limited requests.

Inspired by Tenacity's Retrying class: iterate over attempts and run each one
inside a `with` block. Exceptions extending RetryableError suppress the
exception, wait, and move on to the next attempt; anything else propagates.
When the budget is exhausted the loop raises RateLimitedError.

Waiting is delegated to a `sleep` callable so the request queue can make the
wait cancellable.

Example:
    >>> for attempt in Retrying(max_retries=3, sleep=item.sleep):
    ...     with attempt:
    ...         response = send_once()
    ...         if response.status_code == 429:
    ...             raise ServerSideRateLimitError(response, retry_after=1.0)
    ...         return response
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cordrest._errors import RateLimitedError

if TYPE_CHECKING:
    import requests

logger = logging.getLogger(__name__)


class RetryableError(Exception):
    """
    Base class for exceptions that should trigger automatic retry.

    Exceptions extending this class are retried by Retrying without any
    extra configuration.
    """

    pass


class ServerSideRateLimitError(RetryableError):
    """
    Raised internally when the server returns HTTP 429 (Too Many Requests).

    Attributes:
        response: The 429 response.
        retry_after: Server-supplied delay in seconds, or None if absent.
        is_global: Whether the limit applies to every route.
    """

    def __init__(
        self,
        response: requests.Response,
        retry_after: float | None = None,
        is_global: bool = False,
    ):
        self.response = response
        self.retry_after = retry_after
        self.is_global = is_global
        scope = "global " if is_global else ""
        super().__init__(f"Server {scope}rate limit exceeded (HTTP 429), retry after {retry_after}s")


@dataclass(frozen=True)
class RetryAttempt:
    """
    Metadata about the current attempt.

    Attributes:
        attempt_number: Zero-based index of the current attempt (0 = first attempt).
        max_retries: Maximum number of retry attempts configured.
    """

    attempt_number: int
    max_retries: int

    @property
    def is_last_attempt(self) -> bool:
        """Return True if this is the last retry attempt."""
        return self.attempt_number >= self.max_retries


class Retrying:
    """
    Attempt iterator with server-driven delays between attempts.

    Args:
        max_retries: Maximum number of retry attempts (default: 3).
            Use 0 to fail on the first retryable error.
        backoff_factor: Fallback delay base when the error carries no
            retry-after. Sleep time = backoff_factor * (2 ** attempt_number).
        max_retry_after: Cap, in seconds, for any single wait.
        sleep: Called with the wait time between attempts. May raise (e.g.
            CancelledError) to abort the loop.
        logger_prefix: Prefix for log messages (e.g., "GET channels/1").

    Raises:
        RateLimitedError: When all retry attempts are exhausted.
    """

    def __init__(
        self,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        max_retry_after: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
        logger_prefix: str = "",
    ):
        assert max_retries >= 0, f"max_retries must be >= 0, got {max_retries}"
        assert backoff_factor > 0, f"backoff_factor must be > 0, got {backoff_factor}"
        assert max_retry_after > 0, f"max_retry_after must be > 0, got {max_retry_after}"
        assert sleep is not None, "sleep cannot be None"

        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.max_retry_after = max_retry_after
        self.sleep = sleep
        self.logger_prefix = logger_prefix

        self._current_attempt = 0

    def __iter__(self) -> Generator[_RetryContext, None, None]:
        """Yield retry contexts for each attempt."""
        for attempt in range(self.max_retries + 1):
            self._current_attempt = attempt
            yield _RetryContext(self, attempt)

    def _prefix(self) -> str:
        return f"{self.logger_prefix} | " if self.logger_prefix else ""

    def _handle_retry(self, exception: RetryableError) -> None:
        """Log and wait before the next attempt."""
        sleep_time = self._calculate_wait_time(exception)
        logger.warning(
            f"{self._prefix()}Attempt {self._current_attempt + 1}/{self.max_retries + 1} failed: {exception}"
        )
        logger.warning(f"{self._prefix()}Retrying in {sleep_time:.2f}s...")
        self.sleep(sleep_time)

    def _calculate_wait_time(self, exception: Exception) -> float:
        """
        Return the wait before the next attempt.

        Uses the server-supplied retry-after when present, otherwise
        exponential backoff. Either way the result is capped at max_retry_after.
        """
        retry_after = getattr(exception, "retry_after", None)
        if retry_after is not None:
            wait = float(retry_after)
        else:
            wait = self.backoff_factor * (2 ** self._current_attempt)

        if wait > self.max_retry_after:
            logger.warning(
                f"{self._prefix()}Wait of {wait}s exceeds max_retry_after "
                f"({self.max_retry_after}s). Capping."
            )
            wait = self.max_retry_after
        return max(0.0, wait)

    def _handle_exhausted(self, exception: RetryableError) -> None:
        """
        Raise RateLimitedError for the last failed attempt.

        Raises:
            RateLimitedError: Always, chained to the last exception.
        """
        logger.error(
            f"{self._prefix()}Max retries ({self.max_retries}) exceeded. Last error: {exception}"
        )
        raise RateLimitedError(
            retry_after=getattr(exception, "retry_after", None),
            attempts=self._current_attempt + 1,
            response=getattr(exception, "response", None),
        ) from exception


class _RetryContext:
    """
    Context for a single attempt (internal).

    On success: exits normally.
    On RetryableError with budget left: waits, suppresses, loop continues.
    On RetryableError without budget: raises RateLimitedError.
    On any other exception: re-raises it.
    """

    def __init__(self, retrying: Retrying, attempt: int):
        self._retrying = retrying
        self.attempt = attempt

    def __enter__(self) -> RetryAttempt:
        return RetryAttempt(
            attempt_number=self.attempt,
            max_retries=self._retrying.max_retries,
        )

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> bool:
        if exc_val is None:
            return False

        if not isinstance(exc_val, RetryableError):
            return False

        if self.attempt >= self._retrying.max_retries:
            self._retrying._handle_exhausted(exc_val)
            return False  # Never reached

        self._retrying._handle_retry(exc_val)
        return True
