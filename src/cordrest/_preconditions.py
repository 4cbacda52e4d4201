"""
Argument checks run before any request is built.

Every check raises ValidationError (a ValueError) naming the offending
parameter, so malformed calls fail without touching the network.

Example:
    >>> Preconditions.not_equal(channel_id, 0, "channel_id")
    >>> Preconditions.not_null_or_empty(content, "content")
"""

from __future__ import annotations

from typing import Any

from cordrest._errors import ValidationError

MAX_MESSAGE_SIZE = 2000
"""Maximum length, in characters, of a message's content."""


class Preconditions:
    """Static argument checks raising ValidationError."""

    @staticmethod
    def not_null(value: Any, param: str) -> None:
        if value is None:
            raise ValidationError(param, value, "Must not be None.")

    @staticmethod
    def not_equal(value: Any, other: Any, param: str) -> None:
        if value == other:
            raise ValidationError(param, value, f"Must not be equal to {other!r}.")

    @staticmethod
    def not_null_or_empty(value: str | None, param: str) -> None:
        if value is None or value == "":
            raise ValidationError(param, value, "Must not be None or empty.")

    @staticmethod
    def not_null_or_whitespace(value: str | None, param: str) -> None:
        if value is None or not value.strip():
            raise ValidationError(param, value, "Must not be None, empty or whitespace.")

    @staticmethod
    def at_least(value: int | float | None, minimum: int | float, param: str) -> None:
        """Check `value >= minimum`. None is accepted (the field is not sent)."""
        if value is not None and value < minimum:
            raise ValidationError(param, value, f"Must be at least {minimum}.")

    @staticmethod
    def at_most(value: int | float | None, maximum: int | float, param: str) -> None:
        """Check `value <= maximum`. None is accepted (the field is not sent)."""
        if value is not None and value > maximum:
            raise ValidationError(param, value, f"Must be at most {maximum}.")

    @staticmethod
    def greater_than(value: int | float | None, minimum: int | float, param: str) -> None:
        """Check `value > minimum`. None is accepted (the field is not sent)."""
        if value is not None and value <= minimum:
            raise ValidationError(param, value, f"Must be greater than {minimum}.")

    @staticmethod
    def max_message_size(content: str | None, param: str = "content") -> None:
        if content is not None and len(content) > MAX_MESSAGE_SIZE:
            raise ValidationError(
                param,
                f"<{len(content)} characters>",
                f"Message content is too long, length must be less or equal to {MAX_MESSAGE_SIZE}.",
            )
