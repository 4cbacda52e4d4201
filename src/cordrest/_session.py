"""
Login session state machine.

    LOGGED_OUT -> LOGGING_IN -> LOGGED_IN -> LOGGING_OUT -> LOGGED_OUT

Every transition runs under one lock, so concurrent login()/logout() calls
are serialized. Each login allocates a fresh CancellationScope and hands it to
the request queue and the transport; logout cancels it, which completes every
request still bound to it with CancelledError.

Example:
    >>> session = Session(http_client, queue, identity_probe=fetch_current_user)
    >>> session.login(TokenType.BOT, "abc")
    >>> session.state
    <LoginState.LOGGED_IN: 'logged_in'>
    >>> session.logout()
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from cordrest._auth import TokenType, get_prefixed_token
from cordrest._cancellation import CancellationScope
from cordrest._errors import LoginFailedError, NotAuthenticatedError
from cordrest._http import HttpClient
from cordrest._queue import RequestQueue

logger = logging.getLogger(__name__)


class LoginState(StrEnum):
    """Lifecycle state of a Session."""

    LOGGED_OUT = "logged_out"
    LOGGING_IN = "logging_in"
    LOGGED_IN = "logged_in"
    LOGGING_OUT = "logging_out"


@dataclass(frozen=True)
class SessionSnapshot:
    """
    Immutable, consistent view of a Session taken under its lock.

    Attributes:
        state: The login state.
        token_type: Kind of the current token.
        token: The raw token, or None when logged out. Hidden from repr.
        identity: The authenticated identity, or None.
        scope_generation: Generation of the current cancellation scope.
    """

    state: LoginState
    token_type: TokenType
    token: str | None = field(default=None, repr=False)
    identity: Any = None
    scope_generation: int = 0

    @property
    def is_logged_in(self) -> bool:
        return self.state is LoginState.LOGGED_IN


class Session:
    """
    Owns the login state, the token and the current cancellation scope.

    Args:
        http_client: Transport whose `authorization` header and cancellation
            scope follow the session.
        queue: Request queue whose items are bound to the session's scope.
        identity_probe: Called during login, after the token is installed, to
            fetch the authenticated identity. It must dispatch its request
            with `ignore_session_check=True`; any exception fails the login.
    """

    def __init__(
        self,
        http_client: HttpClient,
        queue: RequestQueue,
        identity_probe: Callable[[], Any],
    ):
        assert http_client is not None, "http_client cannot be None."
        assert queue is not None, "queue cannot be None."
        assert identity_probe is not None, "identity_probe cannot be None."

        self._http_client = http_client
        self._queue = queue
        self._identity_probe = identity_probe

        self._lock = threading.Lock()
        self._state = LoginState.LOGGED_OUT
        self._token_type = TokenType.BOT
        self._token: str | None = None
        self._identity: Any = None
        self._scope: CancellationScope = CancellationScope.NONE

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @property
    def state(self) -> LoginState:
        return self._state

    @property
    def token_type(self) -> TokenType:
        return self._token_type

    @property
    def identity(self) -> Any:
        return self._identity

    @property
    def cancel_scope(self) -> CancellationScope:
        return self._scope

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                state=self._state,
                token_type=self._token_type,
                token=self._token,
                identity=self._identity,
                scope_generation=self._scope.generation,
            )

    def check_state(self) -> None:
        """
        Session gate for ordinary requests.

        Raises:
            NotAuthenticatedError: Unless the session is LOGGED_IN.
        """
        state = self._state
        if state is not LoginState.LOGGED_IN:
            raise NotAuthenticatedError(f"Client is not logged in (state: {state}).")

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def login(self, token_type: TokenType | str, token: str) -> Any:
        """
        Log in with the given credentials, logging out first if needed.

        Returns:
            The identity returned by the identity probe.

        Raises:
            ValueError: If token_type is not a known TokenType.
            LoginFailedError: If the identity probe fails. The session has
                been rolled back to LOGGED_OUT; the probe's error is the cause.
        """
        token_type = TokenType(token_type)

        with self._lock:
            if self._state is not LoginState.LOGGED_OUT:
                self._logout_internal()

            self._state = LoginState.LOGGING_IN
            logger.info(f"Session: logging in ({token_type} token)...")
            try:
                scope = CancellationScope()
                self._scope = scope
                self._token = None
                self._token_type = TokenType.USER
                self._http_client.set_header("authorization", None)
                self._queue.set_cancel_scope(scope)
                self._http_client.set_cancel_scope(scope)

                self._token_type = token_type
                self._token = token
                self._http_client.set_header("authorization", get_prefixed_token(token_type, token))

                self._identity = self._identity_probe()
                self._state = LoginState.LOGGED_IN
            except Exception as e:
                logger.error(f"Session: login failed: {e}")
                self._logout_internal()
                raise LoginFailedError(f"Login failed: {e}", cause=e) from e

        logger.info(f"Session: logged in (scope {scope.generation}).")
        return self._identity

    def logout(self) -> None:
        """Log out. Does nothing when already logged out."""
        with self._lock:
            self._logout_internal()

    def _logout_internal(self) -> None:
        if self._state is LoginState.LOGGED_OUT:
            return

        self._state = LoginState.LOGGING_OUT
        logger.info(f"Session: logging out (scope {self._scope.generation})...")
        try:
            self._scope.cancel()
        except Exception as e:
            logger.warning(f"Session: cancellation callback raised during logout, ignoring: {e}")

        self._queue.clear()
        self._scope = CancellationScope.NONE
        self._queue.set_cancel_scope(CancellationScope.NONE)
        self._http_client.set_cancel_scope(CancellationScope.NONE)

        self._token = None
        self._http_client.set_header("authorization", None)
        self._identity = None
        self._state = LoginState.LOGGED_OUT
        logger.info("Session: logged out.")
