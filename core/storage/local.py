from __future__ import annotations

import fcntl
import hashlib
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator
from uuid import uuid4

from core.exceptions import ObjectNotFoundError, PreconditionFailedError, StorageUnavailableError
from core.storage import StoredObject


def _etag(data: bytes) -> str:
    return f'"{hashlib.md5(data).hexdigest()}"'  # noqa: S324 - mirrors the S3 ETag of single-part uploads


class LocalStorage:
    """Filesystem bucket honoring the same write preconditions as S3.

    Conditional writes are serialized through an in-process lock plus an
    ``flock`` on ``.lock`` in the root, so separate publisher processes on the
    same host cannot interleave a compare-and-swap.
    """

    _LOCK_NAME = ".lock"

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        root = self.root.resolve()
        path = (root / key).resolve()
        if not key or path == root or root not in path.parents or path.name == self._LOCK_NAME:
            raise ObjectNotFoundError(f"Invalid object key: {key}", {"key": key})
        return path

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock, (self.root / self._LOCK_NAME).open("a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def get_object(self, key: str) -> StoredObject:
        path = self._path(key)
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise ObjectNotFoundError(f"No such key: {key}", {"key": key}) from exc
        except OSError as exc:
            raise StorageUnavailableError(f"Failed to read: {key}", {"key": key, "error": str(exc)}) from exc
        return StoredObject(data=data, etag=_etag(data))

    def get_bytes(self, key: str) -> bytes:
        return self.get_object(key).data

    def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        if_match: str | None = None,
        if_none_match: bool = False,
    ) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
        try:
            tmp_path.write_bytes(data)
            with self._locked():
                if if_none_match:
                    try:
                        # link() refuses to replace an existing file
                        os.link(tmp_path, path)
                    except FileExistsError as exc:
                        raise PreconditionFailedError(
                            f"Object already exists: {key}", {"key": key}
                        ) from exc
                else:
                    if if_match is not None:
                        try:
                            current = _etag(path.read_bytes())
                        except FileNotFoundError:
                            current = None
                        if current != if_match:
                            raise PreconditionFailedError(
                                f"Object changed concurrently: {key}",
                                {"key": key, "expected": if_match, "actual": current or ""},
                            )
                    os.replace(tmp_path, path)
        except OSError as exc:
            raise StorageUnavailableError(f"Failed to write: {key}", {"key": key, "error": str(exc)}) from exc
        finally:
            tmp_path.unlink(missing_ok=True)
        return _etag(data)

    def get_presigned_url(self, key: str, expires: int = 600) -> str:
        # Local files carry no signature; the URL is only valid on this host.
        return self._path(key).as_uri()


__all__ = ["LocalStorage"]
