"""
Exceptions raised by the cordrest dispatch core.

Every error raised by the SDK derives from CordRestError, so callers can
catch the whole family at once:

    - ValidationError: Malformed arguments, detected before any network call.
    - NotAuthenticatedError: Request issued while the session is not logged in.
    - LoginFailedError: The identity probe failed; the session was rolled back.
    - CancelledError: The request's cancellation scope was superseded.
    - TransportError: Network-level failure (connection, timeout, ...).
    - HttpError: Any non-2xx response surfaced by the queue.
        - ServerError: 5xx responses.
        - RateLimitedError: 429 responses after the retry budget is exhausted.

Example:
    >>> try:
    ...     client.delete_channel(channel_id)
    ... except HttpError as e:
    ...     if e.is_not_found:
    ...         print("Already gone")
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import requests


class CordRestError(Exception):
    """Base class for all cordrest errors."""

    pass


class ValidationError(CordRestError, ValueError):
    """
    Raised when an argument fails validation before any request is sent.

    Attributes:
        param: Name of the offending parameter.
        value: The rejected value.
    """

    def __init__(self, param: str, value: Any, message: str):
        self.param = param
        self.value = value
        super().__init__(f"Invalid value for '{param}': {value!r}. {message}")


class NotAuthenticatedError(CordRestError):
    """Raised by the session gate when the client is not logged in."""

    def __init__(self, message: str = "Client is not logged in."):
        super().__init__(message)


class LoginFailedError(CordRestError):
    """
    Raised when login fails.

    The session has already been rolled back to LOGGED_OUT when this error
    reaches the caller. The original error is chained (`__cause__`) and also
    available through `cause`.

    Attributes:
        cause: The exception raised by the identity probe.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class CancelledError(CordRestError):
    """
    Raised when a request's cancellation scope is superseded.

    Happens when the session logs out (or logs in again) while the request is
    queued, waiting on a rate limit, or in flight.
    """

    def __init__(self, message: str = "Request was cancelled."):
        super().__init__(message)


class TransportError(CordRestError):
    """
    Raised when the transport fails to produce an HTTP response.

    Attributes:
        cause: The underlying `requests.RequestException`.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class HttpError(CordRestError):
    """
    Raised when the API answers with a non-2xx status code.

    Attributes:
        status_code: The HTTP status code.
        error_code: Platform error code from the JSON body, if present.
        reason: Platform error message from the JSON body, if present.
        response: The raw HTTP response.

    Example:
        >>> try:
        ...     client.delete_message(channel_id, message_id)
        ... except HttpError as e:
        ...     print(e.status_code, e.error_code, e.reason)
    """

    def __init__(
        self,
        status_code: int,
        error_code: int | None = None,
        reason: str | None = None,
        response: requests.Response | None = None,
    ):
        self.status_code = status_code
        self.error_code = error_code
        self.reason = reason
        self.response = response

        message = f"The server responded with error {status_code}"
        if error_code is not None or reason:
            message += f": {reason or ''}"
            if error_code is not None:
                message += f" (code {error_code})"
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        """Return True when the server answered 404."""
        return self.status_code == 404

    @classmethod
    def from_response(cls, response: requests.Response) -> HttpError:
        """
        Build the error for a non-2xx response.

        The platform error body (`{"code": ..., "message": ...}`) is read when
        the response carries one; any other body is ignored.
        """
        error_code, reason = _read_error_body(response)
        return cls(
            status_code=response.status_code,
            error_code=error_code,
            reason=reason,
            response=response,
        )


class ServerError(HttpError):
    """Raised for 5xx responses. Not retried at this layer."""

    pass


class RateLimitedError(HttpError):
    """
    Raised when a request is still rate limited after all retries.

    Attributes:
        retry_after: The last server-supplied delay, in seconds.
        attempts: Total number of attempts made.
    """

    def __init__(
        self,
        retry_after: float | None,
        attempts: int,
        response: requests.Response | None = None,
    ):
        super().__init__(status_code=429, reason="Too Many Requests", response=response)
        self.retry_after = retry_after
        self.attempts = attempts


def _read_error_body(response: requests.Response) -> tuple[int | None, str | None]:
    try:
        body = response.json()
    except ValueError:
        return None, None

    if not isinstance(body, dict):
        return None, None

    code = body.get("code")
    message = body.get("message")
    return (
        code if isinstance(code, int) else None,
        message if isinstance(message, str) else None,
    )
