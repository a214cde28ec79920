"""Request body strategies.

Each strategy turns a logical payload into a ``(content_type, stream)`` pair
when the request is assembled. Building happens once per exchange, so the
in-memory strategies can be reused by a builder that sends several times.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any, BinaryIO, Mapping, Protocol, Sequence
from urllib.parse import urlencode

from pydantic_core import to_json

from .exceptions import ReqSerializationError


FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"


def encode_values(values: Mapping[str, str | Sequence[str]]) -> str:
    """URL-encode a multi-valued mapping with keys in sorted order."""
    pairs: list[tuple[str, str]] = []
    for key in sorted(values):
        value = values[key]
        if isinstance(value, str):
            pairs.append((key, value))
        else:
            pairs.extend((key, str(v)) for v in value)
    return urlencode(pairs)


class BodyStrategy(Protocol):
    def build(self) -> tuple[str, BinaryIO]: ...


@dataclass(frozen=True)
class FormBody:
    fields: Mapping[str, str | Sequence[str]]

    def build(self) -> tuple[str, BinaryIO]:
        return FORM_CONTENT_TYPE, io.BytesIO(encode_values(self.fields).encode("ascii"))


@dataclass(frozen=True)
class RawBody:
    """Pre-serialized bytes sent verbatim under the JSON content type."""

    content: bytes

    def build(self) -> tuple[str, BinaryIO]:
        return JSON_CONTENT_TYPE, io.BytesIO(self.content)


@dataclass(frozen=True)
class JSONBody:
    """A structured value (mapping, list, dataclass, pydantic model...) sent as compact JSON."""

    content: Any

    def build(self) -> tuple[str, BinaryIO]:
        try:
            payload = to_json(self.content)
        except (ValueError, TypeError) as exc:
            raise ReqSerializationError(
                f"Cannot serialize {type(self.content).__name__} body to JSON: {exc}",
                cause=exc,
            ) from exc
        return JSON_CONTENT_TYPE, io.BytesIO(payload)


@dataclass(frozen=True)
class ForwardedBody:
    """An already open stream; whoever sends it closes it."""

    stream: BinaryIO
    content_type: str = ""

    def build(self) -> tuple[str, BinaryIO]:
        return self.content_type, self.stream

    def close(self) -> None:
        self.stream.close()
