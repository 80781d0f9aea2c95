"""Upload a tarball and advance a channel pointer to it.

The blob is always written (create-only) before the pointer, and the pointer
is written with a compare-and-swap against the version read before the
upload. A reader can therefore never resolve a channel to a missing blob, and
of two racing publishers exactly one succeeds; the other gets
:class:`~core.exceptions.PreconditionFailedError` and must retry.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from loguru import logger

from core.channels.documents import (
    BLOB_SUFFIX,
    INDEX_KEY,
    ChannelIndex,
    ChannelPointer,
    blob_key,
    parse_index,
    parse_pointer,
    pointer_key,
    validate_name,
)
from core.exceptions import ObjectNotFoundError, PreconditionFailedError, StorageError, ValidationError
from core.storage import ObjectStorage


def generate_blob_id(channel_name: str) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{channel_name}-{stamp}-{uuid4().hex[:8]}"


class Publisher:
    def __init__(self, storage: ObjectStorage) -> None:
        self._storage = storage

    def _read_pointer(self, channel_name: str) -> tuple[ChannelPointer | None, str | None]:
        try:
            stored = self._storage.get_object(pointer_key(channel_name))
        except ObjectNotFoundError:
            return None, None
        return parse_pointer(channel_name, stored.data), stored.etag

    def _read_index(self) -> tuple[ChannelIndex, str | None]:
        try:
            stored = self._storage.get_object(INDEX_KEY)
        except ObjectNotFoundError:
            return ChannelIndex(channels=[]), None
        return parse_index(stored.data), stored.etag

    def _ensure_indexed(self, channel_name: str) -> None:
        index, etag = self._read_index()
        if channel_name in index.channels:
            return
        updated = ChannelIndex(channels=[*index.channels, channel_name])
        try:
            self._storage.put_bytes(INDEX_KEY, updated.to_bytes(), if_match=etag, if_none_match=etag is None)
        except PreconditionFailedError as exc:
            raise PreconditionFailedError(
                "Channel index changed concurrently", {"channel": channel_name, "key": INDEX_KEY}
            ) from exc
        logger.info("Added channel {channel} to {key}", channel=channel_name, key=INDEX_KEY)

    def publish(self, channel_name: str, data: bytes, *, blob_id: str | None = None) -> str:
        """Upload ``data`` as a new blob and point ``channel_name`` at it.

        Returns:
            The new blob id.

        Raises:
            ValidationError: for unusable channel or blob names.
            PreconditionFailedError: if the blob id is taken or another
                publisher updated the channel first.
            StorageUnavailableError: if the bucket cannot be reached.
            MalformedDocumentError: if the existing metadata is corrupt.
        """
        validate_name(channel_name, "channel")
        blob_id = validate_name(blob_id or generate_blob_id(channel_name), "blob")

        current, pointer_etag = self._read_pointer(channel_name)
        if current is not None and (blob_id == current.latest or blob_id in current.previous):
            raise PreconditionFailedError(
                f"Blob id {blob_id} was already published to {channel_name}",
                {"channel": channel_name, "blob_id": blob_id},
            )

        key = blob_key(blob_id)
        try:
            self._storage.put_bytes(key, data, if_none_match=True)
        except PreconditionFailedError as exc:
            raise PreconditionFailedError(
                f"Blob {key} already exists", {"channel": channel_name, "blob_id": blob_id}
            ) from exc
        logger.info("Uploaded {key} ({size} bytes)", key=key, size=len(data))

        updated = current.advance(blob_id) if current is not None else ChannelPointer(latest=blob_id)
        try:
            self._ensure_indexed(channel_name)
            self._storage.put_bytes(
                pointer_key(channel_name),
                updated.to_bytes(),
                if_match=pointer_etag,
                if_none_match=pointer_etag is None,
            )
        except StorageError as exc:
            logger.error(
                "Failed to update channel {channel}; {key} is left unreferenced. Remove it manually if needed.",
                channel=channel_name,
                key=key,
            )
            if isinstance(exc, PreconditionFailedError):
                raise PreconditionFailedError(
                    f"Channel {channel_name} was updated concurrently",
                    {"channel": channel_name, "blob_id": blob_id},
                ) from exc
            raise

        logger.info(
            "Updated channel {channel} from {old} to {new}",
            channel=channel_name,
            old=current.latest if current is not None else "<none>",
            new=blob_id,
        )
        return blob_id

    def publish_file(self, channel_name: str, path: Path, *, blob_id: str | None = None) -> str:
        """Publish a ``.tar.xz`` file; the blob id defaults to the file name without suffix."""
        path = Path(path)
        if not path.name.endswith(BLOB_SUFFIX):
            raise ValidationError(
                f"Invalid file ending. Only {BLOB_SUFFIX} is supported: {path}", {"path": str(path)}
            )
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise ValidationError(f"Failed to read input file: {path}", {"path": str(path), "error": str(exc)}) from exc
        return self.publish(channel_name, data, blob_id=blob_id or path.name[: -len(BLOB_SUFFIX)])

    def list_channels(self) -> dict[str, ChannelPointer | None]:
        """Every indexed channel with its pointer, or None when it has none."""
        index, _ = self._read_index()
        channels: dict[str, ChannelPointer | None] = {}
        for channel_name in index.channels:
            channels[channel_name], _ = self._read_pointer(channel_name)
        return channels


__all__ = ["Publisher", "generate_blob_id"]
