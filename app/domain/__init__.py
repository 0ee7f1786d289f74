"""
app/domain package marker.
"""

from app.domain.bulk_upload import (
    GlobalDefaults,
    ResolutionDecision,
    ValidatedRow,
    ValidationIssue,
    ValidationSummary,
)

__all__ = [
    "GlobalDefaults",
    "ResolutionDecision",
    "ValidatedRow",
    "ValidationIssue",
    "ValidationSummary",
]
