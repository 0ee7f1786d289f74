"""
app/services package marker.
"""

from app.services.bulk_insert_service import BulkInsertService, CommitError, CommitResult
from app.services.bulk_upload_wizard import (
    BulkUploadWizard,
    ResolutionError,
    UploadParseError,
    WizardStageError,
    get_bulk_upload_wizard,
)
from app.services.defaults_merger import apply_decisions, merge_defaults

__all__ = [
    "BulkInsertService",
    "BulkUploadWizard",
    "CommitError",
    "CommitResult",
    "ResolutionError",
    "UploadParseError",
    "WizardStageError",
    "apply_decisions",
    "get_bulk_upload_wizard",
    "merge_defaults",
]
