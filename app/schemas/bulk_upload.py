"""
app/schemas/bulk_upload.py

Request and response schemas for the bulk upload wizard endpoints.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.domain.bulk_upload import (
    CatalogReferenceCell,
    DateCell,
    NumericCell,
    TextCell,
    ValidatedRow,
    ValidationIssue,
    ValidationSummary,
)
from app.services.bulk_insert_service import CommitResult
from app.services.bulk_upload_wizard import ConfirmationResult, FileValidationResult, WizardState
from db.repositories.types import CatalogCandidate


class ValidationIssueResponse(BaseModel):
    message: str
    row_number: int | None = Field(default=None, ge=1)
    field: str | None = None
    value: str | None = None

    @classmethod
    def from_issue(cls, issue: ValidationIssue) -> ValidationIssueResponse:
        return cls(message=issue.message, row_number=issue.row_number, field=issue.field, value=issue.value)


class ValidationSummaryResponse(BaseModel):
    """
    API response model for one validation run, grouped by error kind.
    """

    errors: dict[str, list[ValidationIssueResponse]] = Field(default_factory=dict)
    warnings: dict[str, list[ValidationIssueResponse]] = Field(default_factory=dict)
    field_list_errors: list[str] = Field(default_factory=list)
    field_list_error_count: int = Field(..., ge=0)
    data_value_error_count: int = Field(..., ge=0)
    total_error_count: int = Field(..., ge=0)
    fatal: bool

    @classmethod
    def from_summary(cls, summary: ValidationSummary) -> ValidationSummaryResponse:
        return cls(
            errors={
                code: [ValidationIssueResponse.from_issue(issue) for issue in issues]
                for code, issues in summary.errors.items()
            },
            warnings={
                code: [ValidationIssueResponse.from_issue(issue) for issue in issues]
                for code, issues in summary.warnings.items()
            },
            field_list_errors=summary.field_list_errors,
            field_list_error_count=summary.field_list_error_count,
            data_value_error_count=summary.data_value_error_count,
            total_error_count=summary.total_error_count,
            fatal=summary.fatal,
        )


class CatalogCandidateResponse(BaseModel):
    kind: str
    key: int
    label: str
    detail: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_candidate(cls, candidate: CatalogCandidate) -> CatalogCandidateResponse:
        return cls(kind=candidate.kind, key=candidate.key, label=candidate.label, detail=candidate.detail)


class CellResponse(BaseModel):
    """
    One cell as shown to the user. `value` is the display value (rounded
    when rounding applies); `status` is ok, warning or error.
    """

    raw: str | None = None
    value: Any = None
    status: str
    reason: str | None = None
    key: int | None = None
    pending_creation: bool = False
    source: str | None = None
    suggestions: list[CatalogCandidateResponse] = Field(default_factory=list)


class RowResponse(BaseModel):
    row_number: int = Field(..., ge=1)
    cells: dict[str, CellResponse]
    defaulted_fields: list[str] = Field(default_factory=list)
    status: str
    reason: str | None = None

    @classmethod
    def from_row(cls, row: ValidatedRow) -> RowResponse:
        return cls(
            row_number=row.row_number,
            cells={name: _cell_response(cell) for name, cell in row.cells.items()},
            defaulted_fields=sorted(row.defaulted_fields),
            status=row.row_verdict.status,
            reason=row.row_verdict.reason,
        )


def _cell_response(cell: NumericCell | TextCell | DateCell | CatalogReferenceCell) -> CellResponse:
    if isinstance(cell, CatalogReferenceCell):
        resolution = cell.resolution
        options = ()
        if resolution is not None:
            options = resolution.candidates or resolution.suggestions
        return CellResponse(
            raw=cell.raw,
            value=resolution.match.label if resolution is not None and resolution.match else None,
            status=cell.verdict.status,
            reason=cell.verdict.reason,
            key=cell.key,
            pending_creation=cell.pending_creation,
            source=cell.source,
            suggestions=[CatalogCandidateResponse.from_candidate(option) for option in options],
        )
    if isinstance(cell, NumericCell):
        value: Any = cell.output_value
        if isinstance(value, Decimal):
            value = str(value)
        return CellResponse(raw=cell.raw, value=value, status=cell.verdict.status, reason=cell.verdict.reason)
    if isinstance(cell, DateCell):
        return CellResponse(
            raw=cell.raw,
            value=cell.value.isoformat() if cell.value else None,
            status=cell.verdict.status,
            reason=cell.verdict.reason,
            source=cell.source,
        )
    return CellResponse(raw=cell.raw, value=cell.value, status=cell.verdict.status, reason=cell.verdict.reason)


class WizardStateResponse(BaseModel):
    session_key: str
    stage: str
    resume_stage: str | None = None
    file_name: str | None = None
    linked_citation_id: int | None = None
    row_count: int | None = None
    last_error: str | None = None

    @classmethod
    def from_state(cls, state: WizardState) -> WizardStateResponse:
        return cls(
            session_key=state.session_key,
            stage=state.stage,
            resume_stage=state.resume_stage,
            file_name=state.file_name,
            linked_citation_id=state.linked_citation_id,
            row_count=state.row_count,
            last_error=state.last_error,
        )


class FileValidationResponse(BaseModel):
    stage: str
    accepted: bool
    file_name: str
    headers: list[str]
    recognized_optional: list[str] = Field(default_factory=list)
    unrecognized: list[str] = Field(default_factory=list)
    linked_citation_id: int | None = None
    warnings: list[str] = Field(default_factory=list)
    summary: ValidationSummaryResponse
    rows: list[RowResponse] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: FileValidationResult) -> FileValidationResponse:
        return cls(
            stage=result.stage,
            accepted=result.accepted,
            file_name=result.file_name,
            headers=list(result.header_check.headers),
            recognized_optional=list(result.header_check.recognized_optional),
            unrecognized=list(result.header_check.unrecognized),
            linked_citation_id=result.linked_citation_id,
            warnings=list(result.warnings),
            summary=ValidationSummaryResponse.from_summary(result.summary),
            rows=[RowResponse.from_row(row) for row in result.rows],
        )


class DefaultsRequest(BaseModel):
    """
    Dataset-wide fallbacks. Every field is optional.
    """

    site_id: int | None = Field(default=None, ge=1)
    species_id: int | None = Field(default=None, ge=1)
    treatment_id: int | None = Field(default=None, ge=1)
    cultivar_id: int | None = Field(default=None, ge=1)
    access_level: int | None = Field(default=None, ge=1, le=4)
    date: dt.date | None = None
    rounding: int | None = Field(default=None, ge=1, le=15, description="Significant digits for yield and SE")


class DecisionRequest(BaseModel):
    kind: Literal["citation", "site", "species", "treatment", "cultivar"]
    value: str = Field(..., min_length=1)
    action: Literal["select", "create"]
    key: int | None = Field(default=None, ge=1)


class ConfirmRequest(BaseModel):
    decisions: list[DecisionRequest] | None = None


class ConfirmationResponse(BaseModel):
    stage: str
    confirmed: bool
    row_count: int = Field(..., ge=0)
    blocking_issues: list[ValidationIssueResponse] = Field(default_factory=list)
    references: dict[str, list[CatalogCandidateResponse]] = Field(default_factory=dict)
    pending_creations: dict[str, list[str]] = Field(default_factory=dict)
    citation_ids: list[int] = Field(default_factory=list)
    rows: list[RowResponse] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: ConfirmationResult) -> ConfirmationResponse:
        return cls(
            stage=result.stage,
            confirmed=result.confirmed,
            row_count=result.row_count,
            blocking_issues=[ValidationIssueResponse.from_issue(issue) for issue in result.blocking_issues],
            references={
                kind: [CatalogCandidateResponse.from_candidate(candidate) for candidate in candidates]
                for kind, candidates in result.references.items()
            },
            pending_creations={kind: list(labels) for kind, labels in result.pending_creations.items()},
            citation_ids=list(result.citation_ids),
            rows=[RowResponse.from_row(row) for row in result.rows],
        )


class InsertResponse(BaseModel):
    records_inserted: int = Field(..., ge=0)
    entities_created: dict[str, int] = Field(default_factory=dict)
    citation_ids: list[int] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: CommitResult) -> InsertResponse:
        return cls(
            records_inserted=result.records_inserted,
            entities_created=dict(result.entities_created),
            citation_ids=list(result.citation_ids),
        )


class LinkCitationRequest(BaseModel):
    citation_id: int | None = Field(default=None, ge=1)
