"""
app/domain/bulk_upload.py

Domain models shared by the bulk upload validators, resolver, merger and
wizard.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Mapping

from db.repositories.types import CatalogCandidate


def normalize_value(value: Any) -> str:
    """
    Trim, collapse internal whitespace and casefold a free-text value.
    """

    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value).strip()).casefold()


# ---------------------------------------------------------------------------
# Verdicts
# ---------------------------------------------------------------------------


class VerdictStatus:
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Verdict:
    """
    Outcome of validating one cell. `code` is the summary bucket the cell
    is reported under when the status is not ok.
    """

    status: str = VerdictStatus.OK
    code: str | None = None
    reason: str | None = None

    @classmethod
    def ok(cls) -> Verdict:
        return cls()

    @classmethod
    def warning(cls, code: str, reason: str) -> Verdict:
        return cls(status=VerdictStatus.WARNING, code=code, reason=reason)

    @classmethod
    def error(cls, code: str, reason: str) -> Verdict:
        return cls(status=VerdictStatus.ERROR, code=code, reason=reason)

    @property
    def is_error(self) -> bool:
        return self.status == VerdictStatus.ERROR


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class ResolutionStatus:
    UNIQUE = "unique"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"


class MatchStrategy:
    EXACT = "exact"
    PARTIAL = "partial"


@dataclass(frozen=True)
class Resolution:
    """
    Result of matching one free-text value against the catalog.

    UNIQUE carries `match`; AMBIGUOUS carries `candidates`; NOT_FOUND may
    carry near-miss `suggestions` for the user to pick from.
    """

    kind: str
    query: str
    status: str
    match: CatalogCandidate | None = None
    strategy: str | None = None
    candidates: tuple[CatalogCandidate, ...] = ()
    suggestions: tuple[CatalogCandidate, ...] = ()

    @classmethod
    def unique(cls, kind: str, query: str, match: CatalogCandidate, *, strategy: str) -> Resolution:
        return cls(kind=kind, query=query, status=ResolutionStatus.UNIQUE, match=match, strategy=strategy)

    @classmethod
    def ambiguous(cls, kind: str, query: str, candidates: tuple[CatalogCandidate, ...]) -> Resolution:
        return cls(kind=kind, query=query, status=ResolutionStatus.AMBIGUOUS, candidates=candidates)

    @classmethod
    def not_found(
        cls,
        kind: str,
        query: str,
        suggestions: tuple[CatalogCandidate, ...] = (),
    ) -> Resolution:
        return cls(kind=kind, query=query, status=ResolutionStatus.NOT_FOUND, suggestions=suggestions)

    @property
    def is_unique(self) -> bool:
        return self.status == ResolutionStatus.UNIQUE


# ---------------------------------------------------------------------------
# Cells
# ---------------------------------------------------------------------------


class CellSource:
    FILE = "file"
    DEFAULT = "default"
    DECISION = "decision"


@dataclass(frozen=True)
class NumericCell:
    field: str
    raw: str | None
    value: Decimal | int | None
    verdict: Verdict = field(default_factory=Verdict.ok)
    rounded: Decimal | int | None = None

    @property
    def output_value(self) -> Decimal | int | None:
        return self.rounded if self.rounded is not None else self.value


@dataclass(frozen=True)
class TextCell:
    field: str
    raw: str | None
    value: str | None
    verdict: Verdict = field(default_factory=Verdict.ok)


@dataclass(frozen=True)
class DateCell:
    field: str
    raw: str | None
    value: date | None
    verdict: Verdict = field(default_factory=Verdict.ok)
    source: str = CellSource.FILE


@dataclass(frozen=True)
class CatalogReferenceCell:
    """
    A cell naming a catalog entity. Resolved once `key` is set, or once the
    user asked for the entity to be created (`pending_creation`).
    """

    field: str
    kind: str
    raw: str | None
    verdict: Verdict = field(default_factory=Verdict.ok)
    resolution: Resolution | None = None
    key: int | None = None
    pending_creation: bool = False
    source: str = CellSource.FILE

    @property
    def is_resolved(self) -> bool:
        return self.key is not None or self.pending_creation


Cell = NumericCell | TextCell | DateCell | CatalogReferenceCell


@dataclass(frozen=True)
class ValidatedRow:
    """
    One data row with a typed cell per populated field.
    """

    row_number: int
    cells: Mapping[str, Cell]
    defaulted_fields: frozenset[str] = frozenset()
    row_verdict: Verdict = field(default_factory=Verdict.ok)

    def cell(self, name: str) -> Cell | None:
        return self.cells.get(name)

    @property
    def has_errors(self) -> bool:
        return self.row_verdict.is_error or any(cell.verdict.is_error for cell in self.cells.values())

    def reference(self, name: str) -> CatalogReferenceCell | None:
        cell = self.cells.get(name)
        return cell if isinstance(cell, CatalogReferenceCell) else None


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationIssue:
    """
    One reported problem. `row_number` is None for header-level issues.
    """

    message: str
    row_number: int | None = None
    field: str | None = None
    value: str | None = None


@dataclass
class ValidationSummary:
    """
    Aggregate validation results for one run over one file.
    """

    errors: dict[str, list[ValidationIssue]] = field(default_factory=dict)
    warnings: dict[str, list[ValidationIssue]] = field(default_factory=dict)
    field_list_error_count: int = 0
    data_value_error_count: int = 0
    fatal: bool = False

    @property
    def total_error_count(self) -> int:
        return self.field_list_error_count + self.data_value_error_count

    @property
    def field_list_errors(self) -> list[str]:
        """Header names involved in header-level errors."""
        names: list[str] = []
        for issues in self.errors.values():
            for issue in issues:
                if issue.row_number is None and issue.field and issue.field not in names:
                    names.append(issue.field)
        return names

    def add_error(self, code: str, issue: ValidationIssue) -> None:
        self.errors.setdefault(code, []).append(issue)

    def add_warning(self, code: str, issue: ValidationIssue) -> None:
        self.warnings.setdefault(code, []).append(issue)

    def has_errors(self, code: str) -> bool:
        return bool(self.errors.get(code))


# ---------------------------------------------------------------------------
# Defaults and user decisions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GlobalDefaults:
    """
    Dataset-wide fallbacks chosen by the user. `citation_id` comes from the
    citation linked to the session, not from the defaults form.
    """

    site_id: int | None = None
    species_id: int | None = None
    treatment_id: int | None = None
    cultivar_id: int | None = None
    access_level: int | None = None
    date: date | None = None
    rounding: int | None = None
    citation_id: int | None = None

    def to_session_values(self) -> dict[str, Any]:
        return {
            "site_id": self.site_id,
            "species_id": self.species_id,
            "treatment_id": self.treatment_id,
            "cultivar_id": self.cultivar_id,
            "access_level": self.access_level,
            "date": self.date.isoformat() if self.date else None,
        }

    @classmethod
    def from_session_values(
        cls,
        values: Mapping[str, Any] | None,
        *,
        rounding: int | None = None,
        citation_id: int | None = None,
    ) -> GlobalDefaults:
        values = values or {}
        raw_date = values.get("date")
        return cls(
            site_id=values.get("site_id"),
            species_id=values.get("species_id"),
            treatment_id=values.get("treatment_id"),
            cultivar_id=values.get("cultivar_id"),
            access_level=values.get("access_level"),
            date=date.fromisoformat(raw_date) if raw_date else None,
            rounding=rounding,
            citation_id=citation_id,
        )


class DecisionAction:
    SELECT = "select"
    CREATE = "create"


@dataclass(frozen=True)
class ResolutionDecision:
    """
    User directive for a reference the resolver could not settle: pick an
    existing entity (`key`) or create a new one from the file's value.
    """

    kind: str
    value: str
    action: str
    key: int | None = None

    def applies_to(self, kind: str, raw: str | None) -> bool:
        return self.kind == kind and normalize_value(self.value) == normalize_value(raw)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "value": self.value, "action": self.action, "key": self.key}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ResolutionDecision:
        return cls(
            kind=str(payload["kind"]),
            value=str(payload["value"]),
            action=str(payload["action"]),
            key=payload.get("key"),
        )
