"""Storage abstraction (S3/MinIO or local filesystem fallback)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from core.settings import StorageSettings


@dataclass(frozen=True)
class StoredObject:
    data: bytes
    etag: str


class ObjectStorage(Protocol):
    def get_object(self, key: str) -> StoredObject:  # raises ObjectNotFoundError
        ...

    def get_bytes(self, key: str) -> bytes:
        ...

    def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        if_match: str | None = None,
        if_none_match: bool = False,
    ) -> str:  # returns etag, raises PreconditionFailedError
        ...

    def get_presigned_url(self, key: str, expires: int = 600) -> str:
        ...


def create_storage(settings: "StorageSettings") -> ObjectStorage:
    """Build the storage backend selected in the settings."""
    if settings.backend == "local":
        from core.storage.local import LocalStorage

        root = settings.local_root / settings.bucket if settings.bucket else settings.local_root
        return LocalStorage(root)

    from core.storage.s3 import S3Storage

    return S3Storage(
        settings.require_bucket(),
        prefix=settings.prefix,
        region=settings.region,
        endpoint_url=settings.endpoint_url,
        force_path_style=settings.force_path_style,
        connect_timeout=settings.connect_timeout_seconds,
        read_timeout=settings.read_timeout_seconds,
    )


__all__ = ["ObjectStorage", "StoredObject", "create_storage"]
