"""Tests for the error taxonomy."""

import unittest
from unittest.mock import MagicMock

import requests

from cordrest import (
    CancelledError,
    CordRestError,
    HttpError,
    LoginFailedError,
    NotAuthenticatedError,
    RateLimitedError,
    ServerError,
    TransportError,
    ValidationError,
)


def make_error_response(status_code, json_data=None):
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    if json_data is None:
        resp.json.side_effect = ValueError("No JSON body")
    else:
        resp.json.return_value = json_data
    return resp


class TestHierarchy(unittest.TestCase):
    """Every SDK error can be caught through CordRestError."""

    def test_all_errors_extend_base(self):
        """Should derive every error from CordRestError."""
        for error_class in (
            ValidationError,
            NotAuthenticatedError,
            LoginFailedError,
            CancelledError,
            TransportError,
            HttpError,
            ServerError,
            RateLimitedError,
        ):
            with self.subTest(error_class=error_class.__name__):
                self.assertTrue(issubclass(error_class, CordRestError))

    def test_validation_error_is_value_error(self):
        """Should make ValidationError a ValueError."""
        self.assertTrue(issubclass(ValidationError, ValueError))

    def test_server_and_rate_limited_errors_are_http_errors(self):
        """Should make ServerError and RateLimitedError HttpErrors."""
        self.assertTrue(issubclass(ServerError, HttpError))
        self.assertTrue(issubclass(RateLimitedError, HttpError))


class TestHttpError(unittest.TestCase):
    """Tests for HttpError."""

    def test_from_response_reads_platform_error_body(self):
        """Should read code and message from the error body."""
        response = make_error_response(403, {"code": 50013, "message": "Missing Permissions"})

        error = HttpError.from_response(response)

        self.assertEqual(error.status_code, 403)
        self.assertEqual(error.error_code, 50013)
        self.assertEqual(error.reason, "Missing Permissions")
        self.assertIs(error.response, response)
        self.assertIn("403", str(error))
        self.assertIn("Missing Permissions", str(error))
        self.assertIn("50013", str(error))

    def test_from_response_without_json_body(self):
        """Should fall back to the status when the body is not JSON."""
        error = HttpError.from_response(make_error_response(502))

        self.assertEqual(error.status_code, 502)
        self.assertIsNone(error.error_code)
        self.assertIsNone(error.reason)
        self.assertEqual(str(error), "The server responded with error 502")

    def test_from_response_ignores_non_object_body(self):
        """Should ignore JSON bodies that are not objects."""
        error = HttpError.from_response(make_error_response(400, ["not", "an", "object"]))

        self.assertIsNone(error.error_code)
        self.assertIsNone(error.reason)

    def test_from_response_on_subclass_builds_subclass(self):
        """Should build the subclass it is called on."""
        error = ServerError.from_response(make_error_response(500))

        self.assertIsInstance(error, ServerError)

    def test_is_not_found(self):
        """Should flag 404 responses."""
        self.assertTrue(HttpError(404).is_not_found)
        self.assertFalse(HttpError(403).is_not_found)


class TestOtherErrors(unittest.TestCase):
    """Tests for the remaining error types."""

    def test_validation_error_keeps_param_and_value(self):
        """Should keep the parameter name and value."""
        error = ValidationError("channel_id", 0, "Must not be equal to 0.")

        self.assertEqual(error.param, "channel_id")
        self.assertEqual(error.value, 0)
        self.assertIn("channel_id", str(error))

    def test_rate_limited_error(self):
        """Should keep attempts and retry-after."""
        error = RateLimitedError(retry_after=1.5, attempts=4)

        self.assertEqual(error.status_code, 429)
        self.assertEqual(error.retry_after, 1.5)
        self.assertEqual(error.attempts, 4)

    def test_login_failed_error_keeps_cause(self):
        """Should keep the original error on .cause."""
        cause = HttpError(401)
        error = LoginFailedError("Login failed", cause=cause)

        self.assertIs(error.cause, cause)

    def test_default_messages(self):
        """Should have a readable default message."""
        self.assertEqual(str(NotAuthenticatedError()), "Client is not logged in.")
        self.assertEqual(str(CancelledError()), "Request was cancelled.")


if __name__ == "__main__":
    unittest.main()
