"""
Repository layer exports.
"""

from db.repositories.catalog_repository import CatalogRepository
from db.repositories.errors import (
    CatalogEntityNotFound,
    FileStorageError,
    RepositoryError,
    UnknownCatalogKind,
    UploadSessionNotFound,
)
from db.repositories.storage import FileStorageBackend, LocalFileStorage
from db.repositories.types import CatalogCandidate, CatalogKind, StoredFileMetadata
from db.repositories.upload_session_repository import UploadSessionRepository
from db.repositories.yield_repository import YieldRepository

__all__ = [
    "CatalogCandidate",
    "CatalogEntityNotFound",
    "CatalogKind",
    "CatalogRepository",
    "FileStorageBackend",
    "FileStorageError",
    "LocalFileStorage",
    "RepositoryError",
    "StoredFileMetadata",
    "UnknownCatalogKind",
    "UploadSessionNotFound",
    "UploadSessionRepository",
    "YieldRepository",
]
