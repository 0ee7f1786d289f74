"""
Repository-layer exceptions for catalog, upload-session and storage flows.
"""

from __future__ import annotations


class RepositoryError(Exception):
    """Base exception for repository failures."""


class CatalogEntityNotFound(RepositoryError):
    """Raised when a catalog key does not exist for the requested kind."""

    def __init__(self, kind: str, key: int) -> None:
        super().__init__(f"No {kind} with id {key}.")
        self.kind = kind
        self.key = key


class UnknownCatalogKind(RepositoryError):
    """Raised when a caller names a catalog kind the store does not hold."""


class UploadSessionNotFound(RepositoryError):
    """Raised when no upload session exists for a session key."""


class FileStorageError(RepositoryError):
    """Raised when storing, reading or deleting an uploaded file fails."""
