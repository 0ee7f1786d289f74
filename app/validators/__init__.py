"""
app/validators package marker.
"""

from app.validators.header_validator import (
    HeaderCheck,
    HeaderErrorCode,
    HeaderValidator,
    UnrecognizedHeaderPolicy,
)
from app.validators.row_validator import DataErrorCode, DataWarningCode, RowValidator

__all__ = [
    "DataErrorCode",
    "DataWarningCode",
    "HeaderCheck",
    "HeaderErrorCode",
    "HeaderValidator",
    "RowValidator",
    "UnrecognizedHeaderPolicy",
]
