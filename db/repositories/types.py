"""
Typed DTOs shared by the catalog and upload repositories.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class CatalogKind:
    CITATION = "citation"
    SITE = "site"
    SPECIES = "species"
    TREATMENT = "treatment"
    CULTIVAR = "cultivar"

    # Creation order: cultivars need their species to exist first.
    ALL = (CITATION, SITE, SPECIES, TREATMENT, CULTIVAR)


@dataclass(frozen=True)
class CatalogCandidate:
    """
    One catalog entity as seen by lookups: stable key, display label and
    the extra columns a user needs to tell candidates apart.
    """

    kind: str
    key: int
    label: str
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StoredFileMetadata:
    """
    Metadata produced by the storage backend after saving a file.
    """

    file_name: str
    storage_path: str
    file_size_bytes: int
    checksum: str
    stored_at: datetime
