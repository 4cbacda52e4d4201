"""
Rate-limit aware request queue.

The RequestQueue turns RequestEnvelopes into HTTP calls:

    gate check -> bucket admission -> transport -> bucket update -> 429 retry

Every dispatch is tracked as a QueueItem bound to the cancellation scope that
was current when it was created. Cancelling that scope (logout, re-login) or
calling `clear()` wakes the item from whatever wait it is in and completes it
with CancelledError.

Dispatch can run in the caller's thread (`send`) or on the queue's thread
pool (`submit`, which returns a `concurrent.futures.Future`).

Example:
    >>> queue = RequestQueue(http_client, gate=session.check_state)
    >>> envelope = RequestEnvelope.no_body(Route("GET", "channels/{channel_id}", channel_id=1))
    >>> response = queue.send(envelope)
    >>> future = queue.submit(envelope)
    >>> response = future.result()
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

import requests
from ulid import ULID

from cordrest._cancellation import CancellationScope
from cordrest._config import CORDREST
from cordrest._envelope import BodyKind, RequestEnvelope
from cordrest._errors import CancelledError, HttpError, ServerError, TransportError
from cordrest._event_listeners import RequestEventListener, notify_listeners
from cordrest._http import HttpClient
from cordrest._rate_limit import RateLimiter, parse_retry_after
from cordrest._retry import Retrying, ServerSideRateLimitError

logger = logging.getLogger(__name__)


# =============================================================================
# Queue Item
# =============================================================================


class QueueItem:
    """
    One tracked dispatch.

    The item owns the Future its caller waits on, and a private wake-up event
    used for every wait (bucket reset, retry-after). Cancellation sets the
    event and fails the Future at once; the thread doing the dispatch notices
    at its next check and gives up.

    Attributes:
        id: ULID tracking id, used as the log prefix of the dispatch.
        envelope: The request being dispatched.
        scope: The cancellation scope the item was created under.
        future: Completion handle.
    """

    def __init__(self, envelope: RequestEnvelope, scope: CancellationScope):
        self.id = str(ULID())
        self.envelope = envelope
        self.scope = scope
        self.future: Future[requests.Response] = Future()

        self._wake = threading.Event()
        self._cancelled = False
        self._lock = threading.Lock()
        self._unregister = scope.register(self.cancel)

    def __repr__(self) -> str:
        return f"QueueItem({self.id}, {self.envelope}, attempt={self.envelope.attempt}, done={self.future.done()})"

    @property
    def cancelled(self) -> bool:
        return self._cancelled or self.scope.cancelled or self.future.cancelled()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledError(f"{self.envelope}: request was cancelled.")

    def sleep(self, seconds: float) -> None:
        """
        Wait up to `seconds`, waking early on cancellation.

        Raises:
            CancelledError: If the item was cancelled before or during the wait.
        """
        self.raise_if_cancelled()
        if seconds > 0:
            self._wake.wait(seconds)
        self.raise_if_cancelled()

    def cancel(self) -> None:
        """Complete the item with CancelledError and wake its waiter."""
        with self._lock:
            self._cancelled = True
            self._wake.set()
            if not self.future.done():
                self.future.set_exception(CancelledError(f"{self.envelope}: request was cancelled."))

    def complete(self, response: requests.Response) -> None:
        with self._lock:
            if self.future.done():
                return
            if self.cancelled:
                # A response that arrives after the scope was superseded is discarded.
                self.future.set_exception(CancelledError(f"{self.envelope}: request was cancelled."))
                return
            self.future.set_result(response)

    def fail(self, error: BaseException) -> None:
        with self._lock:
            if not self.future.done():
                self.future.set_exception(error)

    def release(self) -> None:
        """Drop the scope registration once the item is finished."""
        self._unregister()


# =============================================================================
# Request Queue
# =============================================================================


class RequestQueue:
    """
    Dispatches envelopes with per-bucket throttling and bounded 429 retries.

    Args:
        http_client: Transport used for every call.
        rate_limiter: Bucket table. Defaults to a new RateLimiter.
        max_retries: Retries after a 429. Defaults to CORDREST.config.rate_limit.
        backoff_factor: Fallback delay base when a 429 has no retry-after.
        max_retry_after: Cap for any single retry wait, in seconds.
        request_timeout: Transport timeout, in seconds. Defaults to CORDREST.config.rest.
        max_workers: Thread pool size for `submit()`. Defaults to CORDREST.config.rest.
        gate: Session gate called before dispatching envelopes that do not
            set `ignore_session_check`. Raises NotAuthenticatedError.
        listeners: Event listeners notified on 429 responses.
    """

    def __init__(
        self,
        http_client: HttpClient,
        rate_limiter: RateLimiter | None = None,
        *,
        max_retries: int | None = None,
        backoff_factor: float | None = None,
        max_retry_after: float | None = None,
        request_timeout: int | None = None,
        max_workers: int | None = None,
        gate: Callable[[], None] | None = None,
        listeners: list[RequestEventListener] | None = None,
    ):
        assert http_client is not None, "http_client cannot be None."

        cfg = CORDREST.config
        self.http_client = http_client
        self.rate_limiter = rate_limiter or RateLimiter(respect_global=cfg.rate_limit.respect_global)
        self.max_retries = max_retries if max_retries is not None else cfg.rate_limit.max_retries
        self.backoff_factor = backoff_factor if backoff_factor is not None else cfg.rate_limit.backoff_factor
        self.max_retry_after = max_retry_after if max_retry_after is not None else cfg.rate_limit.max_retry_after
        self.request_timeout = request_timeout if request_timeout is not None else cfg.rest.request_timeout
        self.max_workers = max_workers if max_workers is not None else cfg.rest.max_workers
        self.listeners: list[RequestEventListener] = listeners if listeners is not None else []
        self._gate = gate

        assert self.max_retries >= 0, "max_retries must be >= 0."
        assert self.request_timeout > 0, "request_timeout must be greater than 0."
        assert self.max_workers > 0, "max_workers must be greater than 0."

        self._scope: CancellationScope = CancellationScope.NONE
        self._items: set[QueueItem] = set()
        self._items_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="cordrest")

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def set_gate(self, gate: Callable[[], None] | None) -> None:
        self._gate = gate

    def set_cancel_scope(self, scope: CancellationScope) -> None:
        """Bind items created from now on to `scope`."""
        self._scope = scope

    @property
    def cancel_scope(self) -> CancellationScope:
        return self._scope

    @property
    def pending_count(self) -> int:
        """Number of items not yet completed."""
        with self._items_lock:
            return len(self._items)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def send(self, envelope: RequestEnvelope) -> requests.Response:
        """
        Dispatch an envelope in the calling thread.

        Returns:
            The 2xx response.

        Raises:
            NotAuthenticatedError: If the session gate rejects the request.
            CancelledError: If the item's scope is superseded, or `clear()` is called.
            RateLimitedError: If the request is still rate limited after all retries.
            ServerError: On 5xx responses.
            HttpError: On any other non-2xx response.
            TransportError: If no response could be obtained.
        """
        item = self._enqueue(envelope)
        self._run(item)
        return item.future.result()

    def submit(self, envelope: RequestEnvelope) -> Future[requests.Response]:
        """
        Dispatch an envelope on the queue's thread pool.

        Returns:
            A Future completed with the 2xx response or with one of the errors
            listed in `send()`. An item cancelled while still waiting for a
            worker completes with CancelledError without reaching the transport.

        Raises:
            RuntimeError: If the queue was shut down.
        """
        item = self._enqueue(envelope)
        try:
            self._executor.submit(self._run, item)
        except RuntimeError as e:
            item.fail(e)
            self._discard(item)
            raise
        return item.future

    def clear(self) -> None:
        """
        Complete every outstanding item with CancelledError and wake it.

        The bucket table is left untouched.
        """
        with self._items_lock:
            items = list(self._items)
            self._items.clear()

        if items:
            logger.debug(f"RequestQueue: cancelling {len(items)} outstanding request(s).")
        for item in items:
            item.cancel()

    def shutdown(self, wait: bool = True) -> None:
        """Cancel outstanding items and stop the thread pool."""
        self.clear()
        self._executor.shutdown(wait=wait)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _enqueue(self, envelope: RequestEnvelope) -> QueueItem:
        item = QueueItem(envelope, self._scope)
        with self._items_lock:
            self._items.add(item)
        return item

    def _discard(self, item: QueueItem) -> None:
        item.release()
        with self._items_lock:
            self._items.discard(item)

    def _run(self, item: QueueItem) -> None:
        try:
            if item.future.done():
                return
            response = self._dispatch(item)
            item.complete(response)
        except Exception as e:
            item.fail(e)
        finally:
            self._discard(item)

    def _dispatch(self, item: QueueItem) -> requests.Response:
        envelope = item.envelope
        if not envelope.ignore_session_check and self._gate is not None:
            self._gate()

        retrying = Retrying(
            max_retries=self.max_retries,
            backoff_factor=self.backoff_factor,
            max_retry_after=self.max_retry_after,
            sleep=item.sleep,
            logger_prefix=f"{item.id} | {envelope}",
        )
        for attempt in retrying:
            with attempt as retry_attempt:
                envelope.attempt = retry_attempt.attempt_number
                self.rate_limiter.acquire(envelope.bucket_key, sleep=item.sleep)
                response = self._send_once(item)
                return self._handle_response(item, response)

        raise RuntimeError(
            "Unexpected error while dispatching the request: "
            "reached end of `_dispatch` method without returning a response."
        )

    def _send_once(self, item: QueueItem) -> requests.Response:
        envelope = item.envelope
        item.raise_if_cancelled()

        kwargs: dict[str, Any] = {}
        if envelope.body_kind is BodyKind.JSON:
            kwargs["json_body"] = envelope.body
        elif envelope.body_kind is BodyKind.MULTIPART:
            kwargs["multipart"] = envelope.body

        logger.debug(f"{item.id} | {envelope} | attempt {envelope.attempt + 1}/{self.max_retries + 1}")
        try:
            response = self.http_client.send(
                envelope.method,
                envelope.path,
                timeout=self.request_timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise TransportError(f"{envelope}: {e}", cause=e) from e

        item.raise_if_cancelled()
        return response

    def _handle_response(self, item: QueueItem, response: requests.Response) -> requests.Response:
        envelope = item.envelope
        status_code = response.status_code

        if status_code == 429:
            retry_after, is_global = parse_retry_after(response)
            if retry_after is not None:
                self.rate_limiter.on_rate_limited(
                    envelope.bucket_key, min(retry_after, self.max_retry_after), is_global
                )
            notify_listeners(
                self.listeners, "on_rate_limited",
                envelope=envelope, retry_after=retry_after, is_global=is_global,
            )
            raise ServerSideRateLimitError(response, retry_after=retry_after, is_global=is_global)

        self.rate_limiter.update_from_response(envelope.bucket_key, response)

        if 200 <= status_code < 300:
            return response
        if status_code >= 500:
            raise ServerError.from_response(response)
        raise HttpError.from_response(response)
