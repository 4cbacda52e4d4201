"""
JSON serialization for request and response bodies.

Outgoing payloads may be plain dicts/lists or dataclass instances; dataclass
fields whose value is the `UNSET` sentinel are left out of the JSON, so a
PATCH only sends what the caller actually specified.

Incoming bodies are decoded with `response.json()`; an optional `model`
callable turns the decoded object (or each element of a decoded list) into a
typed value.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import fields, is_dataclass
from typing import Any

import requests


class _Unset:
    """Sentinel for "not specified" (distinct from an explicit None/null)."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


class JsonCodec:
    """
    Serializes outgoing bodies and deserializes incoming ones.

    Example:
        >>> codec = JsonCodec()
        >>> codec.serialize({"content": "hi"})
        '{"content": "hi"}'
    """

    def serialize(self, payload: Any) -> str:
        """Serialize a payload (dict, list or dataclass) to a JSON string."""
        return json.dumps(self._to_jsonable(payload), ensure_ascii=False, default=str)

    def deserialize(
        self,
        response: requests.Response,
        model: Callable[[Any], Any] | None = None,
    ) -> Any:
        """
        Decode a response body.

        Args:
            response: The HTTP response.
            model: Optional callable applied to the decoded object, or to each
                element when the body is a JSON array.

        Returns:
            The decoded (and optionally converted) body. Empty bodies decode to None.

        Raises:
            ValueError: If the body is not valid JSON.
        """
        if not response.content:
            return None

        data = response.json()
        if model is None:
            return data
        if isinstance(data, list):
            return [model(item) for item in data]
        return model(data)

    def _to_jsonable(self, value: Any) -> Any:
        if is_dataclass(value) and not isinstance(value, type):
            return {
                f.name: self._to_jsonable(getattr(value, f.name))
                for f in fields(value)
                if getattr(value, f.name) is not UNSET
            }
        if isinstance(value, dict):
            return {k: self._to_jsonable(v) for k, v in value.items() if v is not UNSET}
        if isinstance(value, (list, tuple)):
            return [self._to_jsonable(v) for v in value]
        return value
