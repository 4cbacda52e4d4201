"""
Data models for the representative endpoints of RestApiClient.

Request parameter classes use the `UNSET` sentinel for optional fields, so
only the fields the caller actually set are sent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, BinaryIO

from cordrest._codec import UNSET


@dataclass(frozen=True)
class Identity:
    """
    The authenticated user, as returned by `GET users/@me`.

    Attributes:
        id: Snowflake id of the user.
        username: The user's name.
        discriminator: The 4-digit tag, if any.
        avatar: Avatar hash, if any.
        bot: Whether the account is a bot.
    """

    id: int
    username: str
    discriminator: str | None = None
    avatar: str | None = None
    bot: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Identity:
        """Build an Identity from a decoded JSON object (ids may arrive as strings)."""
        assert data is not None, "Identity data cannot be None."
        return cls(
            id=int(data["id"]),
            username=data.get("username", ""),
            discriminator=data.get("discriminator"),
            avatar=data.get("avatar"),
            bot=bool(data.get("bot", False)),
        )


@dataclass(frozen=True)
class CreateMessageParams:
    """Body of `POST channels/{channel_id}/messages`."""

    content: str
    nonce: Any = UNSET
    tts: Any = UNSET
    embed: Any = UNSET


@dataclass(frozen=True)
class UploadFileParams:
    """
    Multipart body of a file upload to `POST channels/{channel_id}/messages`.

    Attributes:
        file: File content, as bytes or a binary file object.
        filename: Name the file is uploaded under.
        content: Optional message text sent with the file.
        nonce: Optional nonce.
        tts: Whether the message is text-to-speech.
    """

    file: bytes | BinaryIO
    filename: str = "unknown.dat"
    content: Any = UNSET
    nonce: Any = UNSET
    tts: Any = UNSET

    def to_multipart(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "file": (self.filename, self.file),
            "content": self.content if self.content else "",
        }
        if self.nonce is not UNSET:
            fields["nonce"] = self.nonce
        if self.tts is not UNSET:
            fields["tts"] = self.tts
        return fields


@dataclass(frozen=True)
class ModifyCurrentUserParams:
    """Body of `PATCH users/@me`."""

    username: Any = UNSET
    avatar: Any = UNSET
