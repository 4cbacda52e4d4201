"""
cordrest: rate-limit aware REST client core for Python.

Dispatches calls to an authenticated, rate-limited HTTP JSON API from many
threads at once, keeping one coherent login session and honouring the
per-route quotas the server advertises.

Quick Start:
    >>> from cordrest import RestApiClient, TokenType
    >>> with RestApiClient(user_agent="MyBot (https://example.com, 1.0)") as client:
    ...     me = client.login(TokenType.BOT, "my-token")
    ...     print(me.username)
    ...     channel = client.get_channel(123456789)  # None when it does not exist

Global Configuration:
    >>> from cordrest import CORDREST
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> timeout = CORDREST.config.rest.request_timeout
    >>>
    >>> # Custom configuration
    >>> CORDREST.configure(
    ...     auth={"token_type": "bot", "token": "..."},
    ...     rest={"user_agent": "MyBot (https://example.com, 1.0)"},
    ...     rate_limit={"max_retries": 5},
    ... )

Main Classes:
    - RestApiClient: Entry point; session lifecycle, send methods and endpoints.
    - Session: Login state machine (LOGGED_OUT, LOGGING_IN, LOGGED_IN, LOGGING_OUT).
    - RequestQueue: Per-bucket throttling, 429 retries and cancellation.
    - RateLimiter: Bucket table fed by the X-RateLimit-* response headers.
    - CancellationScope: Cancellation signal owned by each login session.

Configuration:
    - CORDREST: Global SDK singleton for configuration.
    - CordRestConfig: Root configuration dataclass.
    - RestConfig, RateLimitConfig, AuthConfig: Configuration sections.

Errors:
    - CordRestError: Base class of every SDK error.
    - ValidationError, NotAuthenticatedError, LoginFailedError, CancelledError,
      TransportError, HttpError, ServerError, RateLimitedError.
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("cordrest")

from cordrest._auth import (
    Credentials,
    TokenType,
    credentials_from_config,
    get_prefixed_token,
)
from cordrest._cancellation import CancellationScope
from cordrest._client import RestApiClient
from cordrest._codec import UNSET, JsonCodec
from cordrest._config import (
    CORDREST,
    AuthConfig,
    ConfigEntry,
    ConfigEnvVarError,
    ConfigValidationError,
    CordRestConfig,
    RateLimitConfig,
    RestConfig,
)
from cordrest._envelope import BodyKind, RequestEnvelope, Route
from cordrest._errors import (
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
from cordrest._event_listeners import LoggingListener, RequestEventListener
from cordrest._http import HttpClient, RequestsHttpClient
from cordrest._models import (
    CreateMessageParams,
    Identity,
    ModifyCurrentUserParams,
    UploadFileParams,
)
from cordrest._preconditions import MAX_MESSAGE_SIZE, Preconditions
from cordrest._queue import QueueItem, RequestQueue
from cordrest._rate_limit import Bucket, RateLimiter
from cordrest._retry import RetryableError, Retrying
from cordrest._session import LoginState, Session, SessionSnapshot

__all__ = [
    "__version__",
    # Client
    "RestApiClient",
    "Identity",
    "CreateMessageParams",
    "UploadFileParams",
    "ModifyCurrentUserParams",
    "UNSET",
    "JsonCodec",
    # Session
    "Session",
    "SessionSnapshot",
    "LoginState",
    "TokenType",
    "Credentials",
    "get_prefixed_token",
    "credentials_from_config",
    "CancellationScope",
    # Dispatch
    "RequestQueue",
    "QueueItem",
    "Route",
    "RequestEnvelope",
    "BodyKind",
    "RateLimiter",
    "Bucket",
    "Retrying",
    "RetryableError",
    # HTTP Client
    "HttpClient",
    "RequestsHttpClient",
    # Event Listeners
    "RequestEventListener",
    "LoggingListener",
    # Validation
    "Preconditions",
    "MAX_MESSAGE_SIZE",
    # Configuration
    "CORDREST",
    "CordRestConfig",
    "ConfigEntry",
    "ConfigEnvVarError",
    "ConfigValidationError",
    "RestConfig",
    "RateLimitConfig",
    "AuthConfig",
    # Errors
    "CordRestError",
    "ValidationError",
    "NotAuthenticatedError",
    "LoginFailedError",
    "CancelledError",
    "TransportError",
    "HttpError",
    "ServerError",
    "RateLimitedError",
]
