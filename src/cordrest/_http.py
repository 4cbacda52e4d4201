"""
HTTP transport for the cordrest SDK.

The transport sends one HTTP request and returns the raw response. It knows
nothing about sessions, buckets or retries: those belong to the RequestQueue.
It does own the default headers (`accept`, `user-agent`, `authorization`),
the connection pool, and the cancellation scope of the current session.

Available implementations:
    - HttpClient: Abstract base class.
    - RequestsHttpClient: `requests.Session` based implementation. Default.

Example:
    >>> from cordrest._http import RequestsHttpClient
    >>> client = RequestsHttpClient(base_url="https://discord.com/api/v6", user_agent="MyBot")
    >>> client.set_header("authorization", "Bot abc")
    >>> response = client.send("GET", "users/@me")
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, override

import requests

from cordrest._cancellation import CancellationScope

logger = logging.getLogger(__name__)


# =============================================================================
# Abstract Base Class
# =============================================================================


class HttpClient(ABC):
    """
    Abstract base class for HTTP transports.

    Implementations send a single request. They must be thread-safe: the
    request queue calls `send()` from many threads at once.

    Default headers are kept here and merged into every request; a header set
    to None is removed.

    Example:
        >>> class MyHttpClient(HttpClient):
        ...     def send(self, method, endpoint, *, json_body=None, multipart=None,
        ...              headers=None, timeout=30):
        ...         return requests.request(method, f"https://api/{endpoint}", data=json_body)
    """

    def __init__(self) -> None:
        self._headers: dict[str, str] = {}
        self._headers_lock = threading.Lock()
        self._cancel_scope: CancellationScope = CancellationScope.NONE

    @abstractmethod
    def send(
        self,
        method: str,
        endpoint: str,
        *,
        json_body: str | None = None,
        multipart: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: int = 30,
    ) -> requests.Response:
        """
        Send one HTTP request.

        Args:
            method: HTTP method.
            endpoint: Path relative to the base URL (may include a query string).
            json_body: Pre-serialized JSON body.
            multipart: Multipart form fields. Values that are bytes, file
                objects or `(filename, content[, content_type])` tuples are
                sent as files; anything else as plain form fields.
            headers: Extra headers for this request only.
            timeout: Request timeout in seconds.

        Returns:
            The HTTP response, whatever its status code.

        Raises:
            requests.RequestException: If no response could be obtained.
            CancelledError: If the current cancellation scope is cancelled
                before the request is sent.
        """
        pass

    def set_header(self, name: str, value: str | None) -> None:
        """Set (or remove, when value is None) a default header."""
        with self._headers_lock:
            if value is None:
                self._headers.pop(name.lower(), None)
            else:
                self._headers[name.lower()] = value

    def get_header(self, name: str) -> str | None:
        with self._headers_lock:
            return self._headers.get(name.lower())

    def default_headers(self) -> dict[str, str]:
        """Return a snapshot of the default headers."""
        with self._headers_lock:
            return dict(self._headers)

    def set_cancel_scope(self, scope: CancellationScope) -> None:
        """Bind the transport to the cancellation scope of the current session."""
        self._cancel_scope = scope

    @property
    def cancel_scope(self) -> CancellationScope:
        return self._cancel_scope

    def close(self) -> None:
        """Release pooled connections. The default implementation does nothing."""
        pass


# =============================================================================
# requests Implementation
# =============================================================================


class RequestsHttpClient(HttpClient):
    """
    HTTP transport backed by a `requests.Session` connection pool.

    Example:
        >>> client = RequestsHttpClient(
        ...     base_url="https://discord.com/api/v6",
        ...     user_agent="MyBot (https://example.com, 1.0)",
        ... )

    Args:
        base_url: Base URL every endpoint is resolved against.
        user_agent: Value for the `user-agent` header.
        session: Optional pre-configured `requests.Session` (proxies, adapters, ...).
    """

    def __init__(
        self,
        base_url: str,
        user_agent: str,
        session: requests.Session | None = None,
    ):
        assert base_url, "base_url cannot be empty."
        assert user_agent, "user_agent cannot be empty."
        super().__init__()

        self.base_url = base_url.rstrip("/")
        self._session = session or requests.Session()

        self.set_header("accept", "*/*")
        self.set_header("user-agent", user_agent)

    @override
    def send(
        self,
        method: str,
        endpoint: str,
        *,
        json_body: str | None = None,
        multipart: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: int = 30,
    ) -> requests.Response:
        assert method, "method cannot be empty."
        assert timeout is not None, "Timeout cannot be None."
        assert timeout > 0, "Timeout must be greater than 0."
        assert json_body is None or multipart is None, "Cannot send both JSON and multipart bodies."

        self._cancel_scope.raise_if_cancelled()

        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        merged_headers = {**self.default_headers(), **(headers or {})}

        kwargs: dict[str, Any] = {}
        if json_body is not None:
            merged_headers["content-type"] = "application/json"
            kwargs["data"] = json_body.encode("utf-8")
        elif multipart is not None:
            kwargs["data"], kwargs["files"] = _split_multipart(multipart)

        logger.debug(f"{method} {url}")
        return self._session.request(
            method,
            url,
            headers=merged_headers,
            timeout=timeout,
            **kwargs,
        )

    @override
    def close(self) -> None:
        self._session.close()


def _split_multipart(fields: Mapping[str, Any]) -> tuple[dict[str, str], dict[str, Any]]:
    """Split multipart fields into plain form data and file parts."""
    data: dict[str, str] = {}
    files: dict[str, Any] = {}
    for name, value in fields.items():
        if value is None:
            continue
        if isinstance(value, (bytes, bytearray, tuple)) or hasattr(value, "read"):
            files[name] = value
        elif isinstance(value, bool):
            data[name] = "true" if value else "false"
        else:
            data[name] = str(value)
    return data, files
