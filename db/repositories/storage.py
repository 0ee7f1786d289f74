"""
Storage backend for uploaded CSV files kept between wizard stages.
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from db.repositories.errors import FileStorageError
from db.repositories.types import StoredFileMetadata


class FileStorageBackend(Protocol):
    """
    Storage used by the wizard to keep the uploaded file between requests.
    """

    def save(self, *, session_key: str, file_name: str, content: bytes) -> StoredFileMetadata:
        ...

    def read(self, *, storage_path: str) -> bytes:
        ...

    def delete(self, *, storage_path: str) -> None:
        ...


def _sanitize_file_name(file_name: str) -> str:
    safe_name = Path(file_name).name.strip()
    if not safe_name:
        raise FileStorageError("Invalid file name.")
    return safe_name


def _sanitize_session_key(session_key: str) -> str:
    safe_key = "".join(ch for ch in session_key if ch.isalnum() or ch in "-_")
    if not safe_key:
        raise FileStorageError("Invalid session key.")
    return safe_key


class LocalFileStorage:
    """
    Local filesystem storage, laid out as <root>/<session key>/<uuid>_<name>.
    """

    def __init__(self, root_dir: str | Path = "data/uploads") -> None:
        self._root_dir = Path(root_dir)

    def save(self, *, session_key: str, file_name: str, content: bytes) -> StoredFileMetadata:
        safe_file_name = _sanitize_file_name(file_name)
        stored_at = datetime.now(timezone.utc)

        relative_path = Path(_sanitize_session_key(session_key)) / f"{uuid.uuid4().hex}_{safe_file_name}"
        absolute_path = self._root_dir / relative_path
        tmp_path = absolute_path.with_suffix(f"{absolute_path.suffix}.tmp")
        try:
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("wb") as handle:
                handle.write(content)
            tmp_path.replace(absolute_path)
        except OSError as exc:
            raise FileStorageError("Failed to write uploaded file to storage.") from exc
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass

        return StoredFileMetadata(
            file_name=safe_file_name,
            storage_path=relative_path.as_posix(),
            file_size_bytes=len(content),
            checksum=hashlib.sha256(content).hexdigest(),
            stored_at=stored_at,
        )

    def read(self, *, storage_path: str) -> bytes:
        target = self._resolve(storage_path)
        if not target.is_file():
            raise FileStorageError(f"Stored upload {Path(storage_path).name!r} no longer exists.")
        try:
            return target.read_bytes()
        except OSError as exc:
            raise FileStorageError("Failed to read uploaded file from storage.") from exc

    def delete(self, *, storage_path: str) -> None:
        target = self._resolve(storage_path)
        if not target.exists():
            return
        try:
            target.unlink()
        except OSError as exc:
            raise FileStorageError("Failed to delete uploaded file from storage.") from exc

    def _resolve(self, storage_path: str) -> Path:
        root = self._root_dir.resolve()
        target = (root / Path(storage_path)).resolve()
        if root not in target.parents:
            raise FileStorageError("Storage path escapes the upload directory.")
        return target
