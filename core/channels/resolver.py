"""Channel name -> blob id resolution with a process-lifetime cache.

Documents are read from storage at most once per key and process: the first
caller for a key fetches it, concurrent callers for the same key wait for that
fetch, and callers for other keys are never blocked. Nothing is refreshed on a
timer; restarting the process (or calling :meth:`ChannelResolver.invalidate`)
is how a new publish becomes visible.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Callable, TypeVar

from loguru import logger

from core.channels.documents import (
    INDEX_KEY,
    ChannelPointer,
    parse_index,
    parse_pointer,
    pointer_key,
)
from core.exceptions import ChannelNotFoundError, MalformedDocumentError, ObjectNotFoundError
from core.storage import ObjectStorage

T = TypeVar("T")


class ChannelResolver:
    def __init__(self, storage: ObjectStorage) -> None:
        self._storage = storage
        self._lock = threading.Lock()
        self._entries: dict[str, Future] = {}

    def _cached(self, key: str, loader: Callable[[], T]) -> T:
        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._entries[key] = future

        if not owner:
            return future.result()

        try:
            value = loader()
        except BaseException as exc:
            # Failures are not cached; the next caller fetches again.
            with self._lock:
                if self._entries.get(key) is future:
                    del self._entries[key]
            future.set_exception(exc)
            raise
        future.set_result(value)
        return value

    def _load_index(self) -> frozenset[str]:
        try:
            data = self._storage.get_bytes(INDEX_KEY)
        except ObjectNotFoundError:
            logger.warning("Bucket has no {key}; no channels are served", key=INDEX_KEY)
            return frozenset()
        index = parse_index(data)
        logger.debug("Loaded channel index: {channels}", channels=index.channels)
        return frozenset(index.channels)

    def channel_names(self) -> frozenset[str]:
        """Names listed in the channel index."""
        return self._cached(INDEX_KEY, self._load_index)

    def resolve_pointer_document(self, channel_name: str) -> ChannelPointer:
        try:
            names = self.channel_names()
        except MalformedDocumentError as exc:
            logger.error("Corrupt channel index, cannot resolve {channel}: {error}", channel=channel_name, error=exc.details)
            raise ChannelNotFoundError(f"No such channel: {channel_name}", {"channel": channel_name}) from exc

        if channel_name not in names:
            raise ChannelNotFoundError(f"No such channel: {channel_name}", {"channel": channel_name})

        key = pointer_key(channel_name)
        try:
            pointer = self._cached(key, lambda: parse_pointer(channel_name, self._storage.get_bytes(key)))
        except ObjectNotFoundError as exc:
            logger.error(
                "Configured channel {channel!r} has no corresponding {key} in the bucket",
                channel=channel_name,
                key=key,
            )
            raise ChannelNotFoundError(f"No such channel: {channel_name}", {"channel": channel_name}) from exc
        except MalformedDocumentError as exc:
            logger.error("Corrupt pointer document for channel {channel}: {error}", channel=channel_name, error=exc.details)
            raise ChannelNotFoundError(f"No such channel: {channel_name}", {"channel": channel_name}) from exc
        return pointer

    def resolve_latest(self, channel_name: str) -> str:
        return self.resolve_pointer_document(channel_name).latest

    def preload(self) -> dict[str, ChannelPointer]:
        """Read the index and every listed pointer, skipping broken channels.

        Storage failures propagate so that a server cannot report itself ready
        while the bucket is unreachable.
        """
        channels: dict[str, ChannelPointer] = {}
        for channel_name in sorted(self.channel_names()):
            try:
                pointer = self.resolve_pointer_document(channel_name)
            except ChannelNotFoundError:
                continue
            logger.info("Channel {channel} points to: {latest}", channel=channel_name, latest=pointer.latest)
            channels[channel_name] = pointer
        return channels

    def invalidate(self, channel_name: str | None = None) -> None:
        """Forget cached documents: one channel's pointer, or everything."""
        with self._lock:
            if channel_name is None:
                self._entries.clear()
            else:
                self._entries.pop(pointer_key(channel_name), None)


__all__ = ["ChannelResolver"]
