"""
RestApiClient: the public entry point of the cordrest SDK.

The client wires the pieces together:

    RestApiClient -> Session (gate) -> RequestQueue -> RateLimiter -> HttpClient

and exposes the session lifecycle, the generic send methods, and a handful of
representative endpoints.

Example:
    >>> from cordrest import RestApiClient, TokenType
    >>> with RestApiClient(user_agent="MyBot (https://example.com, 1.0)") as client:
    ...     me = client.login(TokenType.BOT, "my-token")
    ...     channel = client.get_channel(123456789)
    ...     if channel is None:
    ...         print("No such channel")
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any, Self

from cordrest._auth import TokenType, credentials_from_config
from cordrest._codec import UNSET, JsonCodec
from cordrest._config import CORDREST
from cordrest._envelope import RequestEnvelope, Route
from cordrest._errors import HttpError
from cordrest._event_listeners import RequestEventListener, notify_listeners
from cordrest._http import HttpClient, RequestsHttpClient
from cordrest._models import CreateMessageParams, Identity, ModifyCurrentUserParams, UploadFileParams
from cordrest._preconditions import Preconditions
from cordrest._queue import RequestQueue
from cordrest._session import LoginState, Session, SessionSnapshot

logger = logging.getLogger(__name__)


class RestApiClient:
    """
    Thread-safe client for the REST API.

    Any argument left as None falls back to the global configuration
    (`CORDREST.config`).

    Args:
        http_client: Transport. Defaults to a RequestsHttpClient built from
            `base_url` and `user_agent`.
        user_agent: Value of the `user-agent` header.
        base_url: Base URL every route is resolved against.
        request_queue: Request queue. Defaults to a RequestQueue over `http_client`.
        codec: Body codec. Defaults to JsonCodec.
        listeners: Event listeners notified of sent requests and rate limits.

    Example:
        >>> client = RestApiClient(listeners=[LoggingListener()])
        >>> client.login()  # token from CORDREST.config.auth
        >>> client.create_message(channel_id, CreateMessageParams(content="hi"))
    """

    def __init__(
        self,
        http_client: HttpClient | None = None,
        user_agent: str | None = None,
        base_url: str | None = None,
        request_queue: RequestQueue | None = None,
        codec: JsonCodec | None = None,
        listeners: list[RequestEventListener] | None = None,
    ):
        cfg = CORDREST.config.rest

        if http_client is None:
            http_client = RequestsHttpClient(
                base_url=base_url or cfg.base_url,
                user_agent=user_agent or cfg.user_agent,
            )
        elif user_agent:
            http_client.set_header("user-agent", user_agent)

        self.http_client = http_client
        self.listeners: list[RequestEventListener] = listeners if listeners is not None else []
        if request_queue is None:
            request_queue = RequestQueue(http_client, listeners=self.listeners)
        else:
            # Client and queue share one list, keeping the queue's own listeners.
            request_queue.listeners.extend(
                listener for listener in self.listeners if listener not in request_queue.listeners
            )
            self.listeners = request_queue.listeners
        self.queue = request_queue
        self.codec = codec or JsonCodec()

        self._session = Session(http_client, self.queue, identity_probe=self._fetch_identity)
        self.queue.set_gate(self._session.check_state)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        """Log out, stop the request queue and release pooled connections."""
        self.logout()
        self.queue.shutdown()
        self.http_client.close()

    def add_listener(self, listener: RequestEventListener) -> None:
        self.listeners.append(listener)

    # =========================================================================
    # Session
    # =========================================================================

    @property
    def login_state(self) -> LoginState:
        return self._session.state

    @property
    def token_type(self) -> TokenType:
        return self._session.token_type

    @property
    def current_user(self) -> Identity | None:
        return self._session.identity

    @property
    def session(self) -> SessionSnapshot:
        """Consistent, immutable view of the session."""
        return self._session.snapshot()

    def login(self, token_type: TokenType | str | None = None, token: str | None = None) -> Identity:
        """
        Log in and fetch the authenticated identity.

        When called without a token, credentials come from `CORDREST.config.auth`.

        Returns:
            The authenticated identity.

        Raises:
            ValidationError: If the token is blank.
            ValueError: If no token is given nor configured.
            LoginFailedError: If the identity probe fails. The client is
                logged out when this is raised.
        """
        if token is None:
            credentials = credentials_from_config()
            token = credentials.token
            token_type = token_type or credentials.token_type

        Preconditions.not_null_or_whitespace(token, "token")
        return self._session.login(token_type or TokenType.BOT, token)

    def logout(self) -> None:
        """Log out, cancelling every request still in flight or queued."""
        self._session.logout()

    # =========================================================================
    # Core
    # =========================================================================

    def send(
        self,
        method: str,
        endpoint: str,
        *,
        query: Mapping[str, Any] | None = None,
        header_only: bool = False,
        ignore_session_check: bool = False,
        model: Callable[[Any], Any] | None = None,
        **params: Any,
    ) -> Any:
        """
        Send a request without body.

        Args:
            method: HTTP method.
            endpoint: Route template, e.g. "channels/{channel_id}".
            query: Optional query string parameters.
            header_only: Skip body decoding and return None.
            ignore_session_check: Bypass the session gate.
            model: Optional callable applied to the decoded body.
            **params: Values for the template placeholders.

        Returns:
            The decoded body (or None when `header_only`).
        """
        route = Route(method, endpoint, query=query, **params)
        envelope = RequestEnvelope.no_body(
            route, header_only=header_only, ignore_session_check=ignore_session_check
        )
        return self._execute(envelope, model)

    def send_json(
        self,
        method: str,
        endpoint: str,
        payload: Any,
        *,
        query: Mapping[str, Any] | None = None,
        header_only: bool = False,
        ignore_session_check: bool = False,
        model: Callable[[Any], Any] | None = None,
        **params: Any,
    ) -> Any:
        """Send a request with a JSON body. A None payload sends no body."""
        route = Route(method, endpoint, query=query, **params)
        body = self.codec.serialize(payload) if payload is not None else None
        envelope = RequestEnvelope.json_body(
            route, body, header_only=header_only, ignore_session_check=ignore_session_check
        )
        return self._execute(envelope, model)

    def send_multipart(
        self,
        method: str,
        endpoint: str,
        fields: Mapping[str, Any],
        *,
        header_only: bool = False,
        ignore_session_check: bool = False,
        model: Callable[[Any], Any] | None = None,
        **params: Any,
    ) -> Any:
        """Send a multipart/form-data request (file uploads)."""
        route = Route(method, endpoint, **params)
        envelope = RequestEnvelope.multipart(
            route, fields, header_only=header_only, ignore_session_check=ignore_session_check
        )
        return self._execute(envelope, model)

    def _execute(self, envelope: RequestEnvelope, model: Callable[[Any], Any] | None) -> Any:
        started_at = time.perf_counter()
        response = self.queue.send(envelope)
        milliseconds = (time.perf_counter() - started_at) * 1000

        notify_listeners(
            self.listeners, "on_request_sent",
            method=envelope.method, endpoint=envelope.bucket_key, milliseconds=milliseconds,
        )
        if envelope.header_only:
            return None
        return self.codec.deserialize(response, model)

    @staticmethod
    def _fetch_optional(fetch: Callable[[], Any]) -> Any:
        """Run a single-resource fetch, turning a 404 into None."""
        try:
            return fetch()
        except HttpError as e:
            if e.is_not_found:
                return None
            raise

    # =========================================================================
    # Auth
    # =========================================================================

    def validate_token(self) -> None:
        """
        Check the current token against the API.

        Raises:
            HttpError: If the token is rejected (typically 401).
        """
        self.send("GET", "auth/login", header_only=True)

    # =========================================================================
    # Users
    # =========================================================================

    def get_my_user(self) -> Identity:
        return self.send("GET", "users/@me", model=Identity.from_dict)

    def _fetch_identity(self) -> Identity:
        # Runs while the session is LOGGING_IN, hence the bypassed gate.
        return self.send("GET", "users/@me", ignore_session_check=True, model=Identity.from_dict)

    def modify_self(self, params: ModifyCurrentUserParams) -> Identity:
        Preconditions.not_null(params, "params")
        if params.username is not UNSET:
            Preconditions.not_null_or_empty(params.username, "username")
        return self.send_json("PATCH", "users/@me", params, model=Identity.from_dict)

    # =========================================================================
    # Channels
    # =========================================================================

    def get_channel(self, channel_id: int) -> dict[str, Any] | None:
        """Return the channel, or None if it does not exist."""
        Preconditions.not_equal(channel_id, 0, "channel_id")
        return self._fetch_optional(
            lambda: self.send("GET", "channels/{channel_id}", channel_id=channel_id)
        )

    def delete_channel(self, channel_id: int) -> dict[str, Any]:
        """
        Delete a channel and return it.

        Raises:
            HttpError: With `status_code == 404` if the channel does not exist.
        """
        Preconditions.not_equal(channel_id, 0, "channel_id")
        return self.send("DELETE", "channels/{channel_id}", channel_id=channel_id)

    # =========================================================================
    # Messages
    # =========================================================================

    def get_channel_message(self, channel_id: int, message_id: int) -> dict[str, Any] | None:
        """Return the message, or None if it (or its channel) does not exist."""
        Preconditions.not_equal(channel_id, 0, "channel_id")
        Preconditions.not_equal(message_id, 0, "message_id")
        return self._fetch_optional(
            lambda: self.send(
                "GET", "channels/{channel_id}/messages/{message_id}",
                channel_id=channel_id, message_id=message_id,
            )
        )

    def create_message(self, channel_id: int, params: CreateMessageParams) -> dict[str, Any]:
        Preconditions.not_equal(channel_id, 0, "channel_id")
        Preconditions.not_null(params, "params")
        Preconditions.not_null_or_empty(params.content, "content")
        Preconditions.max_message_size(params.content)
        return self.send_json(
            "POST", "channels/{channel_id}/messages", params, channel_id=channel_id
        )

    def upload_file(self, channel_id: int, params: UploadFileParams) -> dict[str, Any]:
        Preconditions.not_null(params, "params")
        Preconditions.not_equal(channel_id, 0, "channel_id")
        Preconditions.not_null(params.file, "file")
        if params.content:
            Preconditions.max_message_size(params.content)
        return self.send_multipart(
            "POST", "channels/{channel_id}/messages", params.to_multipart(), channel_id=channel_id
        )

    def delete_message(self, channel_id: int, message_id: int) -> None:
        """
        Delete a message.

        Raises:
            HttpError: With `status_code == 404` if the message does not exist.
        """
        Preconditions.not_equal(channel_id, 0, "channel_id")
        Preconditions.not_equal(message_id, 0, "message_id")
        self.send(
            "DELETE", "channels/{channel_id}/messages/{message_id}",
            header_only=True, channel_id=channel_id, message_id=message_id,
        )

    # =========================================================================
    # Guilds
    # =========================================================================

    def get_guild(self, guild_id: int) -> dict[str, Any] | None:
        """Return the guild, or None if it does not exist."""
        Preconditions.not_equal(guild_id, 0, "guild_id")
        return self._fetch_optional(
            lambda: self.send("GET", "guilds/{guild_id}", guild_id=guild_id)
        )
