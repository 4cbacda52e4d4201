"""
Authentication tokens for the cordrest SDK.

The API accepts three kinds of credentials, distinguished by the prefix of
the `authorization` header:

    - TokenType.BOT: "Bot <token>"
    - TokenType.BEARER: "Bearer <token>" (OAuth2 access tokens)
    - TokenType.USER: "<token>" (no prefix)

Example:
    >>> from cordrest._auth import TokenType, get_prefixed_token
    >>> get_prefixed_token(TokenType.BOT, "abc")
    'Bot abc'
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cordrest._config import AuthConfig


class TokenType(StrEnum):
    """Kind of credential, which determines the authorization prefix."""

    BOT = "bot"
    BEARER = "bearer"
    USER = "user"


def get_prefixed_token(token_type: TokenType, token: str | None) -> str | None:
    """
    Return the `authorization` header value for a token.

    Args:
        token_type: The kind of credential.
        token: The raw token, or None when logged out.

    Returns:
        The prefixed token, or None if no token is set.

    Raises:
        ValueError: If token_type is not a known TokenType.
    """
    if token is None:
        return None

    match token_type:
        case TokenType.BOT:
            return f"Bot {token}"
        case TokenType.BEARER:
            return f"Bearer {token}"
        case TokenType.USER:
            return token
        case _:
            raise ValueError(f"Unknown token type: {token_type!r}")


@dataclass(frozen=True)
class Credentials:
    """
    A token together with its kind.

    Attributes:
        token_type: The kind of credential.
        token: The raw token (without prefix).
    """

    token_type: TokenType
    token: str

    def __post_init__(self) -> None:
        assert self.token, "token cannot be empty"

    def __repr__(self) -> str:
        return f"Credentials(token_type={self.token_type!r}, token='********')"

    @property
    def authorization(self) -> str:
        """The `authorization` header value for these credentials."""
        value = get_prefixed_token(self.token_type, self.token)
        assert value is not None  # for type checker
        return value


def credentials_from_config(config: AuthConfig | None = None) -> Credentials:
    """
    Build Credentials from configuration.

    Args:
        config: Optional AuthConfig. If None, uses CORDREST.config.auth.

    Returns:
        The configured credentials.

    Raises:
        ValueError: If no token is configured.

    Example:
        >>> from cordrest import CORDREST
        >>> CORDREST.configure(auth={"token_type": "bot", "token": "abc"})
        >>> credentials_from_config().authorization
        'Bot abc'
    """
    if config is None:
        from cordrest._config import CORDREST

        config = CORDREST.config.auth

    if not config.has_token():
        raise ValueError(
            "No token configured. "
            "Pass one to login(), set it via CORDREST.configure(auth={...}) "
            "or the CORDREST_AUTH_TOKEN environment variable."
        )

    return Credentials(
        token_type=TokenType(config.token_type),
        token=config.token,  # type: ignore[arg-type]
    )
