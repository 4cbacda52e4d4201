"""
Event listeners for request dispatch.

Listeners observe the traffic flowing through a RestApiClient without taking
part in it: a listener that raises is logged and skipped, and the request
proceeds as if nothing happened.

Available Listeners:
    - RequestEventListener: Base class with no-op hooks.
    - LoggingListener: Logs every sent request with its latency.

Example:
    >>> from cordrest import RestApiClient, LoggingListener
    >>> client = RestApiClient(listeners=[LoggingListener()])
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, override

if TYPE_CHECKING:
    from cordrest._envelope import RequestEnvelope

logger = logging.getLogger(__name__)


class RequestEventListener:
    """
    Base class for observing dispatch events.

    All methods have default empty implementations, so subclasses only need to
    override the methods they care about.

    Example:
        >>> class MetricsListener(RequestEventListener):
        ...     def on_request_sent(self, method, endpoint, milliseconds):
        ...         statsd.timing(f"api.{method}", milliseconds)
    """

    def on_request_sent(self, method: str, endpoint: str, milliseconds: float) -> None:
        """
        Called after a request completed successfully.

        Args:
            method: HTTP method.
            endpoint: The route template (bucket key) of the request.
            milliseconds: Wall time spent in dispatch, waits and retries included.
        """
        pass

    def on_rate_limited(self, envelope: RequestEnvelope, retry_after: float | None, is_global: bool) -> None:
        """
        Called every time the server answers 429.

        Args:
            envelope: The rate-limited request.
            retry_after: Server-supplied delay in seconds, or None if absent.
            is_global: Whether the limit applies to every route.
        """
        pass


class LoggingListener(RequestEventListener):
    """
    Logs request latencies and rate limits through the standard `logging` module.

    Args:
        level: Log level for sent requests (default: logging.INFO).
        logger_name: Name of the logger to write to.
    """

    def __init__(self, level: int = logging.INFO, logger_name: str = "cordrest.requests"):
        self.level = level
        self._logger = logging.getLogger(logger_name)

    @override
    def on_request_sent(self, method: str, endpoint: str, milliseconds: float) -> None:
        self._logger.log(self.level, f"{method} {endpoint}: {milliseconds:.2f} ms")

    @override
    def on_rate_limited(self, envelope: RequestEnvelope, retry_after: float | None, is_global: bool) -> None:
        scope = "global" if is_global else "route"
        self._logger.warning(f"{envelope} | {scope} rate limit, retry after {retry_after}s")


def notify_listeners(listeners: Iterable[RequestEventListener], event: str, **kwargs: Any) -> None:
    """
    Notify all listeners about an event.

    Exceptions raised by listeners are logged but do not interrupt dispatch.

    Args:
        listeners: The listeners to notify.
        event: The event method name (e.g., 'on_request_sent').
        **kwargs: Keyword arguments to pass to the listener method.
    """
    for listener in listeners:
        try:
            method = getattr(listener, event, None)
            if method and callable(method):
                method(**kwargs)
        except Exception as e:
            listener_name = listener.__class__.__name__
            logger.warning(f"Event listener `{listener_name}.{event}()` raised an exception: {e}")
