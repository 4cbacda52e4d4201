"""
Global configuration for the cordrest SDK.

Users can optionally call CORDREST.configure() at application startup to
customize defaults. If not called, sensible defaults are used.

Hierarchy of precedence (highest to lowest):
1. Arguments passed to client constructors (e.g. RestApiClient(user_agent=...))
2. Values set via CORDREST.configure()
3. Environment variables (CORDREST_*) - when allow_env_override=True
4. Hardcoded defaults (in dataclass fields)

Example:
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
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from functools import wraps
from typing import Any, Self

_SECTIONS = ("rest", "rate_limit", "auth")


# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an environment variable has an invalid value."""

    def __init__(
        self,
        env_var: str,
        value: str,
        expected_type: str,
        cause: Exception | None = None,
    ):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(
        self,
        field: str,
        value: Any,
        message: str,
        section: str | None = None,
    ):
        self.field = field
        self.value = value
        self.section = section
        prefix = f"[{section}] " if section else ""
        super().__init__(f"{prefix}Invalid value for '{field}': {value!r}. {message}")


# =============================================================================
# Environment Variables
# =============================================================================


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("true", "1", "yes", "on")


# Field annotations are strings here (PEP 563), hence the string keys.
_CONVERTERS: dict[str, Callable[[str], Any]] = {
    "int": int,
    "float": float,
    "bool": _parse_bool,
}


def read_env_var(var_name: str, type_name: str = "str") -> Any:
    """
    Read a CORDREST_* environment variable, converted to the field's type.

    Returns None when the variable is unset or empty, so the field keeps its
    current value.

    Example:
        >>> read_env_var("CORDREST_REST_REQUEST_TIMEOUT", "int")
        30

    Raises:
        ConfigEnvVarError: If the value cannot be converted.
    """
    raw_value = os.environ.get(var_name)
    if not raw_value:
        return None

    converter = _CONVERTERS.get(type_name, str)
    try:
        return converter(raw_value)
    except ValueError as e:
        raise ConfigEnvVarError(var_name, raw_value, type_name, cause=e) from e


# =============================================================================
# Base Class
# =============================================================================


@dataclass(frozen=True)
class OverridableConfig:
    """
    Frozen settings section that can be layered with overrides and env vars.

    Provides `.with_overrides()` for creating new instances with partial
    field updates, and `.with_env_vars()` for applying the env vars declared
    in each field's metadata.

    Example:
        >>> config = RestConfig()
        >>> custom = config.with_overrides({"request_timeout": 60})
        >>> custom.request_timeout
        60
    """

    def with_overrides(self, overrides: dict[str, Any]) -> Self:
        """
        Copy of this section with the given fields replaced.

        None values are ignored, so callers can pass optional arguments
        straight through.

        Raises:
            ValueError: If a key is not a field of this section.
        """
        if not overrides:
            return self

        valid_fields = {f.name for f in fields(self)}
        invalid_fields = set(overrides.keys()) - valid_fields

        if invalid_fields:
            raise ValueError(
                f"Unknown config fields: {invalid_fields}. "
                f"Valid fields are: {valid_fields}"
            )

        filtered = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **filtered) if filtered else self

    def with_env_vars(self) -> Self:
        """
        Copy of this section with the env vars named in its field metadata applied.

        Raises:
            ConfigEnvVarError: If an env var has an invalid value.
        """
        from_env = {
            f.name: read_env_var(f.metadata["env"], str(f.type))
            for f in fields(self)
            if "env" in f.metadata
        }
        return self.with_overrides(from_env)


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass(frozen=True)
class RestConfig(OverridableConfig):
    """
    Configuration for the REST transport and request queue.

    Attributes:
        base_url: Base URL every route is resolved against.
            Env var: CORDREST_REST_BASE_URL

        user_agent: Value of the `user-agent` header.
            Env var: CORDREST_REST_USER_AGENT

        request_timeout: HTTP request timeout in seconds.
            Env var: CORDREST_REST_REQUEST_TIMEOUT

        max_workers: Threads used by RequestQueue.submit() to dispatch
            requests in the background.
            Env var: CORDREST_REST_MAX_WORKERS
    """

    base_url: str = field(default="https://discord.com/api/v6", metadata={"env": "CORDREST_REST_BASE_URL"})
    user_agent: str = field(default="cordrest (https://github.com/cordrest/cordrest)", metadata={"env": "CORDREST_REST_USER_AGENT"})
    request_timeout: int = field(default=30, metadata={"env": "CORDREST_REST_REQUEST_TIMEOUT"})
    max_workers: int = field(default=8, metadata={"env": "CORDREST_REST_MAX_WORKERS"})

    def validate(self) -> Self:
        """Validate REST configuration fields."""
        if not (self.base_url.startswith("http://") or self.base_url.startswith("https://")):
            raise ConfigValidationError(
                "base_url", self.base_url,
                "Must start with 'http://' or 'https://'.", section="rest"
            )
        if not self.user_agent.strip():
            raise ConfigValidationError(
                "user_agent", self.user_agent,
                "Must not be blank.", section="rest"
            )
        if self.request_timeout <= 0:
            raise ConfigValidationError(
                "request_timeout", self.request_timeout,
                "Must be greater than 0.", section="rest"
            )
        if self.max_workers <= 0:
            raise ConfigValidationError(
                "max_workers", self.max_workers,
                "Must be greater than 0.", section="rest"
            )
        return self


@dataclass(frozen=True)
class RateLimitConfig(OverridableConfig):
    """
    Configuration for server-side rate limit handling.

    Per-route quotas are learned from response headers; these settings only
    control how HTTP 429 responses are retried.

    Attributes:
        max_retries: Retries after a 429 before giving up with
            RateLimitedError. Use 0 to fail on the first 429.
            Use 3 for 4 total attempts (1 original + 3 retries).
            Env var: CORDREST_RATE_LIMIT_MAX_RETRIES

        backoff_factor: Fallback delay when a 429 carries no retry-after.
            Sleep time = backoff_factor * (2 ** attempt).
            Env var: CORDREST_RATE_LIMIT_BACKOFF_FACTOR

        max_retry_after: Upper bound, in seconds, for any single wait.
            Protects against abusive or buggy retry-after values.
            Env var: CORDREST_RATE_LIMIT_MAX_RETRY_AFTER

        respect_global: Whether a global 429 pauses every bucket.
            Env var: CORDREST_RATE_LIMIT_RESPECT_GLOBAL

    Example:
        >>> from cordrest import CORDREST
        >>> CORDREST.configure(rate_limit={"max_retries": 5, "max_retry_after": 30.0})
    """

    max_retries: int = field(default=3, metadata={"env": "CORDREST_RATE_LIMIT_MAX_RETRIES"})
    backoff_factor: float = field(default=0.5, metadata={"env": "CORDREST_RATE_LIMIT_BACKOFF_FACTOR"})
    max_retry_after: float = field(default=60.0, metadata={"env": "CORDREST_RATE_LIMIT_MAX_RETRY_AFTER"})
    respect_global: bool = field(default=True, metadata={"env": "CORDREST_RATE_LIMIT_RESPECT_GLOBAL"})

    def validate(self) -> Self:
        """Validate rate limit configuration fields."""
        if self.max_retries < 0:
            raise ConfigValidationError(
                "max_retries", self.max_retries,
                "Must be >= 0.", section="rate_limit"
            )
        if self.backoff_factor <= 0:
            raise ConfigValidationError(
                "backoff_factor", self.backoff_factor,
                "Must be greater than 0.", section="rate_limit"
            )
        if self.max_retry_after <= 0:
            raise ConfigValidationError(
                "max_retry_after", self.max_retry_after,
                "Must be greater than 0.", section="rate_limit"
            )
        return self


@dataclass(frozen=True)
class AuthConfig(OverridableConfig):
    """
    Default credentials used by RestApiClient.login() when called without arguments.

    Attributes:
        token_type: One of "bot", "bearer" or "user".
            Env var: CORDREST_AUTH_TOKEN_TYPE

        token: The raw token (without prefix).
            Env var: CORDREST_AUTH_TOKEN

    Example:
        >>> from cordrest import CORDREST
        >>> if CORDREST.config.auth.has_token():
        ...     print("Token configured")
    """

    token_type: str = field(default="bot", metadata={"env": "CORDREST_AUTH_TOKEN_TYPE"})
    token: str | None = field(default=None, metadata={"env": "CORDREST_AUTH_TOKEN"})

    def has_token(self) -> bool:
        """Check if a non-empty token is set."""
        return bool(self.token)

    def validate(self) -> Self:
        """Validate auth configuration fields."""
        valid_types = ("bot", "bearer", "user")
        if self.token_type not in valid_types:
            raise ConfigValidationError(
                "token_type", self.token_type,
                f"Must be one of: {valid_types}.", section="auth"
            )
        if self.token is not None and not self.token.strip():
            raise ConfigValidationError(
                "token", self.token,
                "Must not be blank.", section="auth"
            )
        return self


@dataclass(frozen=True)
class ConfigEntry:
    """
    One resolved setting, as shown by `CORDREST.explain()`.

    Attributes:
        name: The field name (e.g., "request_timeout").
        value: The resolved value.
        source: Where the value came from:
            - "default": Hardcoded default value
            - "env:VAR_NAME": Environment variable
            - "configure": Set via CORDREST.configure()

    Example:
        >>> ConfigEntry("token", "super-secret-token", "configure").formatted_value
        'supe********oken'
    """

    name: str
    value: Any
    source: str

    @property
    def formatted_value(self) -> str:
        """
        Display form of the value.

        Masks the token (first and last 4 characters visible) and truncates
        long strings.
        """
        if self.name == "token" and self.value is not None:
            secret = str(self.value)
            if len(secret) >= 12:
                return f"{secret[:4]}********{secret[-4:]}"
            return "********"

        if self.value is None:
            return "None"

        str_value = str(self.value)
        max_length = 50
        if len(str_value) > max_length:
            return str_value[: max_length - 3] + "..."
        return str_value


@dataclass(frozen=True)
class ConfigTracker:
    """
    Remembers, per section and field, which layer last set the value.

    Attributes:
        sources: {"section": {"field": "source"}}.
    """

    sources: dict[str, dict[str, str]] = field(default_factory=dict)

    @staticmethod
    def track_changes(
        source_type: str,
    ) -> Callable[[Callable[..., CordRestConfig]], Callable[..., CordRestConfig]]:
        """
        Decorator that records which fields the decorated method touched.

        Args:
            source_type: "env" or "configure".
        """
        def decorator(
            method: Callable[..., CordRestConfig],
        ) -> Callable[..., CordRestConfig]:
            @wraps(method)
            def wrapper(self: CordRestConfig, *args: Any, **kwargs: Any) -> CordRestConfig:
                new_config = method(self, *args, **kwargs)
                new_tracker = self._tracker.with_changes_tracked(
                    new_config, source_type, overrides=kwargs
                )
                return replace(new_config, _tracker=new_tracker)
            return wrapper
        return decorator

    def with_changes_tracked(
        self,
        new_config: CordRestConfig,
        source_type: str,
        overrides: dict[str, Any] | None = None,
    ) -> ConfigTracker:
        """Return new tracker with the fields touched by `source_type` recorded."""
        new_sources = {section: dict(flds) for section, flds in self.sources.items()}

        for section_name in _SECTIONS:
            section_sources = new_sources.setdefault(section_name, {})
            for f in fields(getattr(new_config, section_name)):
                if source_type == "env":
                    env_var = f.metadata.get("env")
                    if env_var and os.environ.get(env_var):
                        section_sources[f.name] = f"env:{env_var}"
                elif overrides:
                    section_overrides = overrides.get(section_name) or {}
                    if section_overrides.get(f.name) is not None:
                        section_sources[f.name] = source_type

        return ConfigTracker(sources={k: v for k, v in new_sources.items() if v})


@dataclass(frozen=True)
class CordRestConfig:
    """
    Global configuration for the cordrest SDK.

    Attributes:
        rest: Transport and queue configuration.
        rate_limit: 429 retry configuration.
        auth: Default credentials.

    Example:
        >>> from cordrest import CORDREST
        >>> CORDREST.config.rest.request_timeout
        30
        >>> CORDREST.config.rate_limit.max_retries
        3
    """

    rest: RestConfig = field(default_factory=RestConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    _tracker: ConfigTracker = field(default_factory=ConfigTracker, repr=False)

    @ConfigTracker.track_changes("env")
    def with_env_vars(self) -> CordRestConfig:
        """Return a new config with CORDREST_* environment variables applied on top."""
        return CordRestConfig(
            rest=self.rest.with_env_vars(),
            rate_limit=self.rate_limit.with_env_vars(),
            auth=self.auth.with_env_vars(),
        )

    @ConfigTracker.track_changes("configure")
    def with_section_overrides(
        self,
        *,
        rest: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
        auth: dict[str, Any] | None = None,
    ) -> CordRestConfig:
        """
        Copy of this config with per-section overrides applied.

        Example:
            >>> custom = CordRestConfig().with_section_overrides(
            ...     rest={"request_timeout": 60},
            ... )
        """
        return CordRestConfig(
            rest=self.rest.with_overrides(rest or {}),
            rate_limit=self.rate_limit.with_overrides(rate_limit or {}),
            auth=self.auth.with_overrides(auth or {}),
        )

    def explain_data(self) -> dict[str, list[ConfigEntry]]:
        """
        Every setting of every section, with where its value came from.

        Returns:
            Section name to the list of its ConfigEntry objects.
        """
        result: dict[str, list[ConfigEntry]] = {}
        for section_name in _SECTIONS:
            section_config = getattr(self, section_name)
            section_sources = self._tracker.sources.get(section_name, {})
            result[section_name] = [
                ConfigEntry(
                    name=f.name,
                    value=getattr(section_config, f.name),
                    source=section_sources.get(f.name, "default"),
                )
                for f in fields(section_config)
            ]
        return result


# =============================================================================
# Global Configuration Singleton
# =============================================================================


class _CordRest:
    """
    Holder of the process-wide configuration.

    Use `CORDREST.configure()` to customize settings and `CORDREST.config`
    to access current configuration.
    """

    def __init__(self) -> None:
        self._config: CordRestConfig = CordRestConfig().with_env_vars()

    def configure(
        self,
        *,
        rest: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
        auth: dict[str, Any] | None = None,
        allow_env_override: bool = True,
    ) -> CordRestConfig:
        """
        Replace the global configuration.

        Args:
            rest: Transport/queue overrides (base_url, user_agent, timeouts).
            rate_limit: 429 retry overrides (max_retries, max_retry_after, ...).
            auth: Default credentials (token_type, token).
            allow_env_override: If True (default), env vars are used as fallback
                for fields NOT provided. If False, ignores env vars entirely.

        Returns:
            The configured CordRestConfig instance.

        Raises:
            ValueError: If any dict contains unknown field names.
            ConfigValidationError: If any config value fails validation.
        """
        base = CordRestConfig()
        if allow_env_override:
            base = base.with_env_vars()

        self._config = base.with_section_overrides(
            rest=rest,
            rate_limit=rate_limit,
            auth=auth,
        )
        return self.validate()

    @property
    def config(self) -> CordRestConfig:
        """Access current configuration (read-only)."""
        return self._config

    def reset(self) -> CordRestConfig:
        """
        Go back to defaults plus environment variables.

        Tests call this in setUp/tearDown.
        """
        self._config = CordRestConfig().with_env_vars()
        return self.validate()

    def validate(self) -> CordRestConfig:
        """
        Run every section's validation.

        Raises:
            ConfigValidationError: If any config value is invalid.
        """
        self._config.rest.validate()
        self._config.rate_limit.validate()
        self._config.auth.validate()
        return self._config

    def explain(
        self,
        output: Callable[[str], None] = print,
    ) -> None:
        """
        Print every setting, its value and its source.

        Args:
            output: Callable to output each line. Defaults to print.
                    Can be used with logging: `CORDREST.explain(logger.info)`
        """
        name_width = 20
        value_width = 50
        total_width = 2 + name_width + 2 + (value_width + 2) + 1 + 8

        output("cordrest configuration:")
        output("=" * total_width)

        for section_name, entries in self._config.explain_data().items():
            output(f"[{section_name}]")
            for entry in entries:
                dots = "." * (name_width - len(entry.name))
                value_padded = entry.formatted_value.ljust(value_width)
                marker = "✎" if entry.source != "default" else " "
                output(f"  {entry.name} {dots} {value_padded} {marker} {entry.source}")

        output("=" * total_width)

    def __repr__(self) -> str:
        return f"CORDREST(config={self._config!r})"


# Process-wide configuration, read by every client built without explicit arguments.
CORDREST: _CordRest = _CordRest()
CORDREST.validate()
