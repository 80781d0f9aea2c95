"""Custom exception hierarchy for the channel server."""

from __future__ import annotations

from typing import Any


class ChannelServeError(Exception):
    """Base exception for all channel-server errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ChannelServeError):
    """Raised when configuration is invalid or missing."""
    pass


class ValidationError(ChannelServeError):
    """Raised when caller-supplied input is rejected."""
    pass


class UnauthorizedError(ChannelServeError):
    """Raised when a credential is missing, malformed, badly signed or expired."""
    pass


class NotFoundError(ChannelServeError):
    """Base class for expected absences."""
    pass


class ChannelNotFoundError(NotFoundError):
    """Raised when a channel cannot be resolved to a blob."""
    pass


class InvalidFileError(NotFoundError):
    """Raised when a requested file name is not a served tarball."""
    pass


class MalformedDocumentError(ChannelServeError):
    """Raised when a metadata document in the bucket cannot be decoded."""
    pass


class StorageError(ChannelServeError):
    """Raised when storage operations fail."""
    pass


class ObjectNotFoundError(StorageError, NotFoundError):
    """Raised when a storage key does not exist."""
    pass


class PreconditionFailedError(StorageError):
    """Raised when a conditional write loses against a concurrent writer."""
    pass


class StorageUnavailableError(StorageError):
    """Raised when the storage backend fails or times out."""
    pass
