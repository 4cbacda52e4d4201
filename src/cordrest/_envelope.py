"""
Request envelopes: the immutable description of one dispatchable call.

A Route pairs an HTTP method with a route template such as
`channels/{channel_id}/messages`. Formatting the template yields the concrete
path; the template itself is the rate-limit bucket key, so every channel id
shares the same bucket.

Example:
    >>> route = Route("GET", "channels/{channel_id}/messages/{message_id}",
    ...               channel_id=1, message_id=2)
    >>> route.path
    'channels/1/messages/2'
    >>> route.bucket_key
    'channels/{channel_id}/messages/{message_id}'
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import quote, urlencode


class BodyKind(Enum):
    """Shape of the request body."""

    NONE = "none"
    JSON = "json"
    MULTIPART = "multipart"


@dataclass(frozen=True)
class Route:
    """
    An HTTP method plus a route template with its parameters resolved.

    Path parameters are URL-quoted. Query parameters with a None value are
    dropped.

    Attributes:
        method: HTTP method ("GET", "POST", ...).
        template: Route template, e.g. "guilds/{guild_id}/channels".
        params: Values for the template placeholders.
        query: Optional query string parameters.
    """

    method: str
    template: str
    params: dict[str, Any] = field(default_factory=dict)
    query: dict[str, Any] | None = None

    def __init__(
        self,
        method: str,
        template: str,
        query: Mapping[str, Any] | None = None,
        **params: Any,
    ):
        assert method, "method cannot be empty."
        assert template, "template cannot be empty."

        object.__setattr__(self, "method", method.upper())
        object.__setattr__(self, "template", template.lstrip("/"))
        object.__setattr__(self, "params", dict(params))
        object.__setattr__(self, "query", dict(query) if query else None)

    @property
    def path(self) -> str:
        """The template with parameters substituted, plus the query string."""
        path = self.template.format_map(
            {key: quote(str(value), safe="@") for key, value in self.params.items()}
        )
        if self.query:
            query = urlencode({k: v for k, v in self.query.items() if v is not None})
            if query:
                path = f"{path}?{query}"
        return path

    @property
    def bucket_key(self) -> str:
        """Rate-limit bucket key: the route template without resolved parameters."""
        return self.template


@dataclass
class RequestEnvelope:
    """
    Immutable description of one logical API call.

    Only `attempt` changes after construction (it is incremented by the queue
    on every 429 retry). Use the `no_body`, `json_body` and `multipart`
    factories instead of the constructor.

    Attributes:
        route: The resolved route.
        body: None, the serialized JSON string, or the multipart field mapping.
        body_kind: Which of the three shapes `body` has.
        header_only: Skip response body decoding; success is the status code.
        ignore_session_check: Bypass the session gate (identity probe only).
        attempt: Zero-based attempt counter.
    """

    route: Route
    body: str | Mapping[str, Any] | None = None
    body_kind: BodyKind = BodyKind.NONE
    header_only: bool = False
    ignore_session_check: bool = False
    attempt: int = 0

    def __post_init__(self) -> None:
        assert self.route is not None, "route cannot be None."
        if self.body_kind is BodyKind.NONE:
            assert self.body is None, "A body-less envelope cannot carry a body."
        if self.body_kind is BodyKind.JSON:
            assert isinstance(self.body, str), "JSON bodies must be serialized up front."
        if self.body_kind is BodyKind.MULTIPART:
            assert isinstance(self.body, Mapping), "Multipart bodies must be a mapping."

    def __setattr__(self, name: str, value: Any) -> None:
        if name != "attempt" and name in self.__dict__:
            raise AttributeError(f"RequestEnvelope.{name} is read-only.")
        super().__setattr__(name, value)

    @classmethod
    def no_body(cls, route: Route, **flags: bool) -> RequestEnvelope:
        return cls(route=route, **flags)

    @classmethod
    def json_body(cls, route: Route, payload: str | None, **flags: bool) -> RequestEnvelope:
        """Envelope with an already-serialized JSON payload (None sends no body)."""
        if payload is None:
            return cls(route=route, **flags)
        return cls(route=route, body=payload, body_kind=BodyKind.JSON, **flags)

    @classmethod
    def multipart(cls, route: Route, fields: Mapping[str, Any], **flags: bool) -> RequestEnvelope:
        return cls(route=route, body=dict(fields), body_kind=BodyKind.MULTIPART, **flags)

    @property
    def method(self) -> str:
        return self.route.method

    @property
    def path(self) -> str:
        return self.route.path

    @property
    def bucket_key(self) -> str:
        return self.route.bucket_key

    def __str__(self) -> str:
        return f"{self.method} {self.path}"
