"""Tests for the request queue."""

import json
import threading
import time
from unittest.mock import MagicMock

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from cordrest import (
    CancellationScope,
    CancelledError,
    HttpClient,
    HttpError,
    NotAuthenticatedError,
    RateLimitedError,
    RateLimiter,
    RequestEnvelope,
    RequestEventListener,
    RequestQueue,
    Route,
    ServerError,
    TransportError,
)

# =============================================================================
# Helpers
# =============================================================================


def make_response(status_code=200, json_data=None, headers=None):
    """Creates a mock that behaves like requests.Response"""
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    resp.headers = CaseInsensitiveDict(headers or {})
    if json_data is None:
        resp.content = b""
        resp.json.side_effect = ValueError("No JSON body")
    else:
        resp.content = json.dumps(json_data).encode("utf-8")
        resp.json.return_value = json_data
    return resp


class MockHttpClient(HttpClient):
    """Scripted transport: returns queued responses (the last one repeats) or calls a handler."""

    def __init__(self, responses=None, handler=None):
        super().__init__()
        self.calls = []
        self.handler = handler
        self._responses = list(responses or [make_response()])
        self._lock = threading.Lock()

    def send(self, method, endpoint, *, json_body=None, multipart=None, headers=None, timeout=30):
        with self._lock:
            self.calls.append({
                "method": method,
                "endpoint": endpoint,
                "json_body": json_body,
                "multipart": multipart,
                "timeout": timeout,
                "time": time.monotonic(),
            })
            if self.handler is None:
                return self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        return self.handler(method, endpoint)


def envelope(template="channels/{channel_id}", ignore_session_check=False, **params):
    params = params or {"channel_id": 1}
    return RequestEnvelope.no_body(Route("GET", template, **params), ignore_session_check=ignore_session_check)


def make_queue(http_client, **kwargs):
    kwargs.setdefault("max_retries", 3)
    kwargs.setdefault("backoff_factor", 0.01)
    kwargs.setdefault("max_retry_after", 5.0)
    kwargs.setdefault("max_workers", 4)
    return RequestQueue(http_client, **kwargs)


# =============================================================================
# Dispatch
# =============================================================================


class TestSend:
    """Tests for RequestQueue.send."""

    def test_success_returns_response(self):
        """Should return the 2xx response."""
        ok = make_response(200, {"id": "1"})
        http = MockHttpClient([ok])
        queue = make_queue(http)

        assert queue.send(envelope()) is ok
        assert http.calls[0]["method"] == "GET"
        assert http.calls[0]["endpoint"] == "channels/1"
        assert queue.pending_count == 0

    def test_request_timeout_is_passed_to_transport(self):
        """Should pass the request timeout to the transport."""
        http = MockHttpClient()
        queue = make_queue(http, request_timeout=12)

        queue.send(envelope())

        assert http.calls[0]["timeout"] == 12

    def test_json_and_multipart_bodies_reach_transport(self):
        """Should hand each body kind to the transport."""
        http = MockHttpClient()
        queue = make_queue(http)

        queue.send(RequestEnvelope.json_body(Route("POST", "users/@me"), '{"a": 1}'))
        queue.send(RequestEnvelope.multipart(Route("POST", "users/@me"), {"content": "x"}))

        assert http.calls[0]["json_body"] == '{"a": 1}'
        assert http.calls[0]["multipart"] is None
        assert http.calls[1]["multipart"] == {"content": "x"}
        assert http.calls[1]["json_body"] is None

    def test_rate_limit_headers_update_bucket(self):
        """Should update the bucket from rate limit headers."""
        http = MockHttpClient([make_response(200, headers={
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "4",
            "X-RateLimit-Reset-After": "1",
        })])
        queue = make_queue(http)

        queue.send(envelope())

        bucket = queue.rate_limiter.get_bucket("channels/{channel_id}")
        assert bucket.remaining == 4
        assert bucket.limit == 5

    def test_not_found_raises_http_error(self):
        """Should raise HttpError with the platform error on 404."""
        http = MockHttpClient([make_response(404, {"code": 10003, "message": "Unknown Channel"})])
        queue = make_queue(http)

        with pytest.raises(HttpError) as exc_info:
            queue.send(envelope())

        assert exc_info.value.status_code == 404
        assert exc_info.value.is_not_found
        assert exc_info.value.error_code == 10003
        assert exc_info.value.reason == "Unknown Channel"

    def test_server_error(self):
        """Should raise ServerError on 5xx without retrying."""
        http = MockHttpClient([make_response(502)])
        queue = make_queue(http)

        with pytest.raises(ServerError) as exc_info:
            queue.send(envelope())

        assert exc_info.value.status_code == 502
        assert len(http.calls) == 1

    def test_transport_failure(self):
        """Should wrap requests exceptions in TransportError."""
        cause = requests.ConnectionError("connection refused")

        def handler(method, endpoint):
            raise cause

        queue = make_queue(MockHttpClient(handler=handler))

        with pytest.raises(TransportError) as exc_info:
            queue.send(envelope())

        assert exc_info.value.cause is cause
        assert exc_info.value.__cause__ is cause


class TestGate:
    """Tests for the session gate."""

    def test_gate_rejects_without_network_call(self):
        """Should fail fast when the gate rejects."""
        http = MockHttpClient()

        def gate():
            raise NotAuthenticatedError()

        queue = make_queue(http, gate=gate)

        with pytest.raises(NotAuthenticatedError):
            queue.send(envelope())

        assert http.calls == []

    def test_ignore_session_check_bypasses_gate(self):
        """Should skip the gate for ignore_session_check envelopes."""
        http = MockHttpClient()
        gate = MagicMock(side_effect=NotAuthenticatedError())
        queue = make_queue(http, gate=gate)

        queue.send(envelope(ignore_session_check=True))

        gate.assert_not_called()
        assert len(http.calls) == 1


# =============================================================================
# Rate Limits
# =============================================================================


class TestRateLimits:
    """Tests for bucket waits and 429 retries."""

    def test_request_waits_for_bucket_reset(self):
        """Should wait for an exhausted bucket to reset."""
        http = MockHttpClient()
        queue = make_queue(http)
        queue.rate_limiter.update("channels/{channel_id}", remaining=0, reset_after=0.5)

        start = time.monotonic()
        queue.send(envelope())

        assert len(http.calls) == 1
        assert http.calls[0]["time"] - start >= 0.45

    def test_429_is_retried_after_retry_after(self):
        """Should retry a 429 after the server delay."""
        http = MockHttpClient([
            make_response(429, {"retry_after": 0.2, "global": False}, headers={"Retry-After": "0.2"}),
            make_response(200, {"id": "1"}),
        ])
        queue = make_queue(http)
        request = envelope()

        start = time.monotonic()
        response = queue.send(request)

        assert response.status_code == 200
        assert len(http.calls) == 2
        assert http.calls[1]["time"] - start >= 0.19
        assert request.attempt == 1

    def test_429_retries_are_bounded(self):
        """Should give up with RateLimitedError after max_retries."""
        http = MockHttpClient([make_response(429, headers={"Retry-After": "0.01"})])
        queue = make_queue(http, max_retries=3)

        with pytest.raises(RateLimitedError) as exc_info:
            queue.send(envelope())

        assert len(http.calls) == 4
        assert exc_info.value.attempts == 4
        assert exc_info.value.status_code == 429

    def test_429_without_retry_after_uses_backoff(self):
        """Should fall back to backoff when no delay is given."""
        http = MockHttpClient([make_response(429), make_response(200)])
        queue = make_queue(http, backoff_factor=0.05)

        start = time.monotonic()
        queue.send(envelope())

        assert len(http.calls) == 2
        assert http.calls[1]["time"] - start >= 0.045

    def test_global_429_pauses_other_buckets(self):
        """Should pause every bucket after a global 429."""
        http = MockHttpClient([
            make_response(429, headers={"Retry-After": "0.3", "X-RateLimit-Global": "true"}),
            make_response(200),
        ])
        limiter = RateLimiter()
        queue = make_queue(http, rate_limiter=limiter, max_retries=0)

        with pytest.raises(RateLimitedError):
            queue.send(envelope())

        start = time.monotonic()
        queue.send(envelope("guilds/{guild_id}", guild_id=2))
        assert http.calls[1]["time"] - start >= 0.25

    def test_listeners_are_notified_of_429(self):
        """Should notify listeners of every 429."""
        listener = MagicMock(spec=RequestEventListener)
        http = MockHttpClient([make_response(429, headers={"Retry-After": "0.01"}), make_response(200)])
        queue = make_queue(http, listeners=[listener])

        queue.send(envelope())

        listener.on_rate_limited.assert_called_once()
        kwargs = listener.on_rate_limited.call_args.kwargs
        assert kwargs["retry_after"] == 0.01
        assert kwargs["is_global"] is False
        assert kwargs["envelope"].path == "channels/1"

    def test_failing_listener_does_not_break_dispatch(self):
        """Should keep dispatching when a listener raises."""
        class BrokenListener(RequestEventListener):
            def on_rate_limited(self, envelope, retry_after, is_global):
                raise RuntimeError("boom")

        http = MockHttpClient([make_response(429, headers={"Retry-After": "0.01"}), make_response(200)])
        queue = make_queue(http, listeners=[BrokenListener()])

        assert queue.send(envelope()).status_code == 200


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    """Tests for cancelling queued requests."""

    def test_scope_cancel_wakes_item_waiting_on_bucket(self):
        """Should cancel an item waiting for its bucket."""
        http = MockHttpClient()
        queue = make_queue(http)
        scope = CancellationScope()
        queue.set_cancel_scope(scope)
        queue.rate_limiter.update("channels/{channel_id}", remaining=0, reset_after=5.0)

        future = queue.submit(envelope())
        time.sleep(0.1)
        scope.cancel()

        with pytest.raises(CancelledError):
            future.result(timeout=2.0)
        assert http.calls == []

    def test_clear_cancels_outstanding_items(self):
        """Should cancel every outstanding item on clear()."""
        http = MockHttpClient()
        queue = make_queue(http)
        queue.rate_limiter.update("channels/{channel_id}", remaining=0, reset_after=5.0)

        futures = [queue.submit(envelope()) for _ in range(3)]
        time.sleep(0.1)
        queue.clear()

        for future in futures:
            with pytest.raises(CancelledError):
                future.result(timeout=2.0)
        assert http.calls == []
        assert queue.pending_count == 0

    def test_clear_keeps_bucket_table(self):
        """Should keep the bucket table on clear()."""
        queue = make_queue(MockHttpClient())
        queue.rate_limiter.update("channels/{channel_id}", remaining=0, reset_after=5.0)

        queue.clear()

        assert queue.rate_limiter.get_bucket("channels/{channel_id}") is not None

    def test_scope_cancel_wakes_item_waiting_on_retry_after(self):
        """Should cancel an item waiting out a retry-after."""
        http = MockHttpClient([make_response(429, headers={"Retry-After": "5"})])
        queue = make_queue(http)
        scope = CancellationScope()
        queue.set_cancel_scope(scope)

        future = queue.submit(envelope())
        time.sleep(0.1)
        scope.cancel()

        with pytest.raises(CancelledError):
            future.result(timeout=2.0)
        assert len(http.calls) == 1

    def test_response_after_cancel_is_discarded(self):
        """Should discard a response that arrives after cancellation."""
        scope = CancellationScope()

        def handler(method, endpoint):
            scope.cancel()
            return make_response(200, {"id": "1"})

        queue = make_queue(MockHttpClient(handler=handler))
        queue.set_cancel_scope(scope)

        with pytest.raises(CancelledError):
            queue.send(envelope())

    def test_item_cancelled_before_dispatch_never_reaches_transport(self):
        """Should not send items of an already cancelled scope."""
        http = MockHttpClient()
        queue = make_queue(http)
        scope = CancellationScope()
        scope.cancel()
        queue.set_cancel_scope(scope)

        with pytest.raises(CancelledError):
            queue.send(envelope())
        assert http.calls == []

    def test_items_bound_to_new_scope_are_not_cancelled_by_old_one(self):
        """Should not cancel items of a newer scope."""
        http = MockHttpClient()
        queue = make_queue(http)
        old_scope = CancellationScope()
        queue.set_cancel_scope(old_scope)
        queue.set_cancel_scope(CancellationScope())

        old_scope.cancel()

        assert queue.send(envelope()).status_code == 200


# =============================================================================
# Concurrency
# =============================================================================


class TestSubmit:
    """Tests for RequestQueue.submit and shutdown."""

    def test_submit_returns_future_with_response(self):
        """Should complete the future with the response."""
        ok = make_response(200, {"id": "1"})
        queue = make_queue(MockHttpClient([ok]))

        future = queue.submit(envelope())

        assert future.result(timeout=2.0) is ok

    def test_different_buckets_proceed_in_parallel(self):
        """Should not hold one bucket back for another."""
        http = MockHttpClient()
        queue = make_queue(http)
        queue.rate_limiter.update("channels/{channel_id}", remaining=0, reset_after=0.5)

        slow = queue.submit(envelope())
        start = time.monotonic()
        fast = queue.submit(envelope("guilds/{guild_id}", guild_id=1))

        fast.result(timeout=2.0)
        assert time.monotonic() - start < 0.3
        assert not slow.done()
        slow.result(timeout=2.0)

    def test_shutdown_cancels_pending_items(self):
        """Should cancel pending items on shutdown."""
        queue = make_queue(MockHttpClient())
        queue.rate_limiter.update("channels/{channel_id}", remaining=0, reset_after=5.0)
        future = queue.submit(envelope())
        time.sleep(0.05)

        queue.shutdown()

        with pytest.raises(CancelledError):
            future.result(timeout=2.0)

    def test_submit_after_shutdown_leaves_nothing_pending(self):
        """Should raise and track nothing when submitting after shutdown."""
        http = MockHttpClient()
        queue = make_queue(http)
        queue.shutdown()

        with pytest.raises(RuntimeError):
            queue.submit(envelope())

        assert queue.pending_count == 0
        assert http.calls == []

    def test_invalid_arguments(self):
        """Should reject invalid constructor arguments."""
        with pytest.raises(AssertionError, match="http_client cannot be None"):
            RequestQueue(None)  # type: ignore[arg-type]
        with pytest.raises(AssertionError, match="max_workers must be greater than 0"):
            make_queue(MockHttpClient(), max_workers=0)
