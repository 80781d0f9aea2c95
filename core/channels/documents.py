"""Bucket layout and the metadata documents stored in it.

``channels.json``       -> ``{"channels": [name, ...]}``
``{channel}.json``      -> ``{"latest": blob_id, "previous": [blob_id, ...]}``
``{blob_id}.tar.xz``    -> raw tarball bytes
"""

from __future__ import annotations

import json
import re

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import InvalidFileError, MalformedDocumentError, ValidationError

INDEX_KEY = "channels.json"
BLOB_SUFFIX = ".tar.xz"

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")
# A channel with this name would share its pointer key with the index.
_RESERVED_CHANNEL_NAMES = {INDEX_KEY.removesuffix(".json")}


class ChannelIndex(BaseModel):
    """The list of all channels served. Each needs a ``{channel}.json``."""

    channels: list[str]

    def to_bytes(self) -> bytes:
        return json.dumps(self.model_dump(), indent=2).encode("utf-8")


class ChannelPointer(BaseModel):
    """The persistent state of a single channel."""

    latest: str = Field(min_length=1)
    previous: list[str] = Field(default_factory=list)

    def advance(self, blob_id: str) -> "ChannelPointer":
        return ChannelPointer(latest=blob_id, previous=[*self.previous, self.latest])

    def to_bytes(self) -> bytes:
        return json.dumps(self.model_dump(), indent=2).encode("utf-8")


def pointer_key(channel_name: str) -> str:
    return f"{channel_name}.json"


def blob_key(blob_id: str) -> str:
    return f"{blob_id}{BLOB_SUFFIX}"


def strip_blob_suffix(file_name: str) -> str:
    """Return ``file_name`` without ``.tar.xz``; other files are not served."""
    if not file_name.endswith(BLOB_SUFFIX) or len(file_name) == len(BLOB_SUFFIX):
        raise InvalidFileError(f"Not a served tarball: {file_name}", {"file_name": file_name})
    return file_name[: -len(BLOB_SUFFIX)]


def validate_name(value: str, kind: str) -> str:
    if not _NAME_PATTERN.match(value) or value.endswith(BLOB_SUFFIX):
        raise ValidationError(f"Invalid {kind} name: {value!r}", {kind: value})
    if kind == "channel" and value in _RESERVED_CHANNEL_NAMES:
        raise ValidationError(f"Reserved channel name: {value!r}", {kind: value})
    return value


def parse_index(data: bytes) -> ChannelIndex:
    try:
        return ChannelIndex.model_validate_json(data)
    except PydanticValidationError as exc:
        raise MalformedDocumentError(
            f"Failed to deserialize {INDEX_KEY}", {"key": INDEX_KEY, "error": str(exc)}
        ) from exc


def parse_pointer(channel_name: str, data: bytes) -> ChannelPointer:
    key = pointer_key(channel_name)
    try:
        return ChannelPointer.model_validate_json(data)
    except PydanticValidationError as exc:
        raise MalformedDocumentError(
            f"Failed to deserialize channel configuration {key}", {"key": key, "error": str(exc)}
        ) from exc


__all__ = [
    "BLOB_SUFFIX",
    "INDEX_KEY",
    "ChannelIndex",
    "ChannelPointer",
    "blob_key",
    "parse_index",
    "parse_pointer",
    "pointer_key",
    "strip_blob_suffix",
    "validate_name",
]
