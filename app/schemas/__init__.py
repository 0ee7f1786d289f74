"""
app/schemas package marker.
"""

from app.schemas.bulk_upload import (
    ConfirmationResponse,
    FileValidationResponse,
    InsertResponse,
    WizardStateResponse,
)

__all__ = [
    "ConfirmationResponse",
    "FileValidationResponse",
    "InsertResponse",
    "WizardStateResponse",
]
