"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files

_ALLOWED_HEADER_POLICIES = {"warn", "fatal"}


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_header_policy_env(name: str, default: str) -> str:
    """
    Read the unrecognized-header policy, rejecting unknown values.
    """

    raw = _get_str_env(name, default)
    policy = raw.lower()
    if policy not in _ALLOWED_HEADER_POLICIES:
        raise RuntimeError(
            f"{name} '{raw}' is not valid. "
            f"Allowed values: {sorted(_ALLOWED_HEADER_POLICIES)}."
        )
    return policy


@dataclass(frozen=True)
class BulkUploadSettings:
    """
    Runtime settings for the yield bulk upload wizard.
    """

    storage_dir: str = "data/uploads"
    unrecognized_header_policy: str = "warn"
    fuzzy_threshold: float = 0.84
    max_candidates: int = 25
    max_validation_errors: int = 500
    log_validation_errors: bool = True
    max_upload_bytes: int = 50 * 1024 * 1024


@lru_cache(maxsize=1)
def get_bulk_upload_settings() -> BulkUploadSettings:
    """
    Return cached bulk upload settings from environment variables.
    """

    return BulkUploadSettings(
        storage_dir=_get_str_env("BULK_UPLOAD_STORAGE_DIR", "data/uploads"),
        unrecognized_header_policy=_get_header_policy_env("BULK_UPLOAD_UNRECOGNIZED_HEADER_POLICY", "warn"),
        fuzzy_threshold=min(1.0, max(0.0, _get_float_env("BULK_UPLOAD_FUZZY_THRESHOLD", 0.84))),
        max_candidates=max(1, _get_int_env("BULK_UPLOAD_MAX_CANDIDATES", 25)),
        max_validation_errors=max(1, _get_int_env("BULK_UPLOAD_MAX_VALIDATION_ERRORS", 500)),
        log_validation_errors=_get_bool_env("BULK_UPLOAD_LOG_VALIDATION_ERRORS", True),
        max_upload_bytes=max(1, _get_int_env("BULK_UPLOAD_MAX_BYTES", 50 * 1024 * 1024)),
    )
