"""
app/validators/row_validator.py

Cell-level validation and catalog resolution for bulk upload rows.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Sequence

from app.domain.bulk_upload import (
    CatalogReferenceCell,
    Cell,
    DateCell,
    MatchStrategy,
    NumericCell,
    Resolution,
    ResolutionStatus,
    TextCell,
    ValidatedRow,
    ValidationIssue,
    ValidationSummary,
    Verdict,
    VerdictStatus,
)
from app.domain.upload_schema import (
    ACCESS_LEVEL,
    CITATION,
    CITATION_AUTHOR,
    CITATION_DOI,
    CITATION_TITLE,
    CITATION_YEAR,
    CULTIVAR,
    DATE,
    ENTITY_REFERENCE_FIELDS,
    FIELD_SPECS,
    N,
    NOTES,
    SE,
    SPECIES,
    YIELD,
)
from app.resolvers.catalog_resolver import CatalogResolver
from app.validators.header_validator import HeaderCheck

logger = logging.getLogger(__name__)

DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
)


class DataErrorCode:
    MISSING_VALUE = "missing_value"
    INVALID_NUMBER = "invalid_number"
    OUT_OF_RANGE = "out_of_range"
    INVALID_DATE = "invalid_date"
    FUTURE_DATE = "future_date"
    INCONSISTENT_STATISTICS = "inconsistent_statistics"
    BLANK_ROW = "blank_row"
    AMBIGUOUS_REFERENCE = "ambiguous_reference"
    UNRESOLVED_REFERENCE = "unresolved_reference"


class DataWarningCode:
    PARTIAL_MATCH = "partial_match"
    NO_MATCH = "no_match"


# Errors the user can still settle at confirmation; they never make a file fatal.
RESOLVABLE_ERROR_CODES = frozenset({DataErrorCode.AMBIGUOUS_REFERENCE})


def reference_verdict(kind: str, raw: str | None, resolution: Resolution) -> Verdict:
    """
    Verdict for a catalog reference given how it resolved.
    """

    if resolution.status == ResolutionStatus.UNIQUE and resolution.match is not None:
        if resolution.strategy == MatchStrategy.PARTIAL:
            return Verdict.warning(
                DataWarningCode.PARTIAL_MATCH,
                f"'{raw}' was matched to {kind} '{resolution.match.label}' by partial name.",
            )
        return Verdict.ok()
    if resolution.status == ResolutionStatus.AMBIGUOUS:
        labels = ", ".join(candidate.label for candidate in resolution.candidates[:5])
        return Verdict.error(
            DataErrorCode.AMBIGUOUS_REFERENCE,
            f"'{raw}' matches {len(resolution.candidates)} {kind} entries ({labels}).",
        )
    return Verdict.warning(
        DataWarningCode.NO_MATCH,
        f"No {kind} matches '{raw}'; choose an existing {kind} or create a new one.",
    )


class RowValidator:
    """
    Validates parsed rows against the column catalogue and resolves their
    catalog references.

    Every problem is recorded in the returned summary; only catalog
    infrastructure failures escape (as CatalogLookupError).
    """

    def __init__(
        self,
        resolver: CatalogResolver,
        *,
        today: Callable[[], date] | None = None,
        max_validation_errors: int = 500,
        log_validation_errors: bool = False,
    ) -> None:
        self._resolver = resolver
        self._today = today or date.today
        self._max_validation_errors = max(1, max_validation_errors)
        self._log_validation_errors = log_validation_errors

    def validate(
        self,
        rows: Sequence[Mapping[str, str | None]],
        header_check: HeaderCheck,
        *,
        row_numbers: Sequence[int] | None = None,
    ) -> tuple[list[ValidatedRow], ValidationSummary]:
        """
        Validate every row. The summary starts from a copy of the header
        summary, so the header check is never mutated.
        """

        summary = ValidationSummary(
            errors={code: list(issues) for code, issues in header_check.summary.errors.items()},
            warnings={code: list(issues) for code, issues in header_check.summary.warnings.items()},
            field_list_error_count=header_check.summary.field_list_error_count,
            fatal=header_check.fatal,
        )
        numbers = list(row_numbers) if row_numbers is not None else list(range(2, len(rows) + 2))

        validated: list[ValidatedRow] = []
        for row_number, raw_row in zip(numbers, rows):
            values = {
                name: raw_row.get(raw_header)
                for name, raw_header in header_check.column_map.items()
            }
            row = self.validate_row(values=values, row_number=row_number)
            self._record_row(summary, row)
            validated.append(row)

        return validated, summary

    def validate_row(self, *, values: Mapping[str, str | None], row_number: int) -> ValidatedRow:
        """
        Validate one row keyed by schema column name.
        """

        if all(self._is_blank(value) for value in values.values()):
            return ValidatedRow(
                row_number=row_number,
                cells={},
                row_verdict=Verdict.error(DataErrorCode.BLANK_ROW, "Row is completely empty."),
            )

        cells: dict[str, Cell] = {}
        cells[YIELD] = self._parse_decimal(YIELD, values.get(YIELD), required=True)

        if not self._is_blank(values.get(SE)):
            cells[SE] = self._parse_decimal(SE, values.get(SE), required=False)
        if not self._is_blank(values.get(N)) or SE in cells:
            cells[N] = self._parse_sample_size(values.get(N), has_se=SE in cells)
        if not self._is_blank(values.get(DATE)):
            cells[DATE] = self._parse_date(values.get(DATE))
        if not self._is_blank(values.get(ACCESS_LEVEL)):
            cells[ACCESS_LEVEL] = self._parse_integer(ACCESS_LEVEL, values.get(ACCESS_LEVEL))
        if not self._is_blank(values.get(NOTES)):
            cells[NOTES] = TextCell(field=NOTES, raw=values.get(NOTES), value=str(values.get(NOTES)).strip())

        cells.update(self._citation_cells(values))

        for name in ENTITY_REFERENCE_FIELDS:
            raw = values.get(name)
            if self._is_blank(raw):
                continue
            scope_id = None
            if name == CULTIVAR:
                species_cell = cells.get(SPECIES)
                if isinstance(species_cell, CatalogReferenceCell):
                    scope_id = species_cell.key
            cells[name] = self._reference_cell(name, raw, scope_id=scope_id)

        return ValidatedRow(row_number=row_number, cells=cells)

    # ------------------------------------------------------------------
    # Field parsers
    # ------------------------------------------------------------------

    def _parse_decimal(self, name: str, value: str | None, *, required: bool) -> NumericCell:
        if self._is_blank(value):
            verdict = (
                Verdict.error(DataErrorCode.MISSING_VALUE, f"A value for '{name}' is required.")
                if required
                else Verdict.ok()
            )
            return NumericCell(field=name, raw=value, value=None, verdict=verdict)

        raw = str(value).strip()
        try:
            parsed = Decimal(raw)
        except InvalidOperation:
            return NumericCell(
                field=name,
                raw=value,
                value=None,
                verdict=Verdict.error(DataErrorCode.INVALID_NUMBER, f"'{raw}' is not a number."),
            )
        if not parsed.is_finite():
            return NumericCell(
                field=name,
                raw=value,
                value=None,
                verdict=Verdict.error(DataErrorCode.INVALID_NUMBER, f"'{raw}' is not a finite number."),
            )
        return NumericCell(field=name, raw=value, value=parsed, verdict=self._range_verdict(name, parsed))

    def _parse_integer(self, name: str, value: str | None) -> NumericCell:
        raw = str(value).strip() if value is not None else ""
        try:
            parsed = int(raw)
        except ValueError:
            return NumericCell(
                field=name,
                raw=value,
                value=None,
                verdict=Verdict.error(DataErrorCode.INVALID_NUMBER, f"'{raw}' is not a whole number."),
            )
        return NumericCell(field=name, raw=value, value=parsed, verdict=self._range_verdict(name, parsed))

    def _parse_sample_size(self, value: str | None, *, has_se: bool) -> NumericCell:
        if self._is_blank(value):
            return NumericCell(
                field=N,
                raw=value,
                value=None,
                verdict=Verdict.error(DataErrorCode.MISSING_VALUE, "'n' is required when 'SE' is given."),
            )
        cell = self._parse_integer(N, value)
        if cell.verdict.is_error or not has_se:
            return cell
        if isinstance(cell.value, int) and cell.value < 2:
            return NumericCell(
                field=N,
                raw=value,
                value=cell.value,
                verdict=Verdict.error(
                    DataErrorCode.INCONSISTENT_STATISTICS,
                    "'n' must be at least 2 when 'SE' is given.",
                ),
            )
        return cell

    def _parse_date(self, value: str | None) -> DateCell:
        raw = str(value).strip()
        parsed: date | None = None
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(raw, fmt).date()
                break
            except ValueError:
                continue

        if parsed is None:
            return DateCell(
                field=DATE,
                raw=value,
                value=None,
                verdict=Verdict.error(
                    DataErrorCode.INVALID_DATE,
                    f"'{raw}' is not a date. Use YYYY-MM-DD, YYYY/MM/DD or MM/DD/YYYY.",
                ),
            )
        if parsed > self._today():
            return DateCell(
                field=DATE,
                raw=value,
                value=parsed,
                verdict=Verdict.error(DataErrorCode.FUTURE_DATE, f"Date {parsed.isoformat()} is in the future."),
            )
        return DateCell(field=DATE, raw=value, value=parsed)

    def _range_verdict(self, name: str, value: Decimal | int) -> Verdict:
        spec = FIELD_SPECS[name]
        if spec.min_value is not None and value < spec.min_value:
            return Verdict.error(
                DataErrorCode.OUT_OF_RANGE,
                f"'{name}' must be at least {spec.min_value}; got {value}.",
            )
        maximum = spec.max_value
        if name == CITATION_YEAR:
            maximum = self._today().year
        if maximum is not None and value > maximum:
            return Verdict.error(
                DataErrorCode.OUT_OF_RANGE,
                f"'{name}' must be at most {maximum}; got {value}.",
            )
        return Verdict.ok()

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def _reference_cell(self, name: str, raw: str | None, *, scope_id: int | None) -> CatalogReferenceCell:
        kind = FIELD_SPECS[name].catalog_kind or name
        resolution = self._resolver.resolve(kind, raw, scope_id=scope_id)
        return CatalogReferenceCell(
            field=name,
            kind=kind,
            raw=str(raw).strip(),
            verdict=reference_verdict(kind, str(raw).strip(), resolution),
            resolution=resolution,
            key=resolution.match.key if resolution.is_unique and resolution.match else None,
        )

    def _citation_cells(self, values: Mapping[str, str | None]) -> dict[str, Cell]:
        cells: dict[str, Cell] = {}
        doi = values.get(CITATION_DOI)
        author = values.get(CITATION_AUTHOR)
        title = values.get(CITATION_TITLE)
        year_raw = values.get(CITATION_YEAR)

        for name, raw in ((CITATION_DOI, doi), (CITATION_AUTHOR, author), (CITATION_TITLE, title)):
            if not self._is_blank(raw):
                cells[name] = TextCell(field=name, raw=raw, value=str(raw).strip())

        year: int | None = None
        if not self._is_blank(year_raw):
            year_cell = self._parse_integer(CITATION_YEAR, year_raw)
            cells[CITATION_YEAR] = year_cell
            if not year_cell.verdict.is_error and isinstance(year_cell.value, int):
                year = year_cell.value

        if not self._is_blank(doi):
            resolution = self._resolver.resolve_citation(doi=str(doi).strip())
        elif any(not self._is_blank(raw) for raw in (author, title, year_raw)):
            missing = [
                name
                for name, raw in ((CITATION_AUTHOR, author), (CITATION_YEAR, year_raw), (CITATION_TITLE, title))
                if self._is_blank(raw)
            ]
            if missing:
                cells[CITATION] = CatalogReferenceCell(
                    field=CITATION,
                    kind=FIELD_SPECS[CITATION].catalog_kind or CITATION,
                    raw=None,
                    verdict=Verdict.error(
                        DataErrorCode.MISSING_VALUE,
                        "Citation needs author, year and title when no DOI is given; missing "
                        + ", ".join(missing)
                        + ".",
                    ),
                )
                return cells
            if year is None:
                return cells
            resolution = self._resolver.resolve_citation(
                author=str(author).strip(),
                year=year,
                title=str(title).strip(),
            )
        else:
            return cells

        kind = FIELD_SPECS[CITATION].catalog_kind or CITATION
        cells[CITATION] = CatalogReferenceCell(
            field=CITATION,
            kind=kind,
            raw=resolution.query,
            verdict=reference_verdict(kind, resolution.query, resolution),
            resolution=resolution,
            key=resolution.match.key if resolution.is_unique and resolution.match else None,
        )
        return cells

    # ------------------------------------------------------------------
    # Summary bookkeeping
    # ------------------------------------------------------------------

    def _record_row(self, summary: ValidationSummary, row: ValidatedRow) -> None:
        if row.row_verdict.is_error:
            issue = ValidationIssue(
                row_number=row.row_number,
                message=row.row_verdict.reason or "Invalid row.",
            )
            self._record(summary, row.row_verdict, issue)

        for name, cell in row.cells.items():
            if cell.verdict.status == VerdictStatus.OK:
                continue
            issue = ValidationIssue(
                row_number=row.row_number,
                field=name,
                message=cell.verdict.reason or "Invalid value.",
                value=self._stringify_value(cell.raw),
            )
            self._record(summary, cell.verdict, issue)
            if (
                cell.verdict.is_error
                and FIELD_SPECS[name].required_valid
                and cell.verdict.code not in RESOLVABLE_ERROR_CODES
            ):
                summary.fatal = True

        if row.has_errors:
            summary.data_value_error_count += 1
        if row.row_verdict.is_error:
            summary.fatal = True

    def _record(self, summary: ValidationSummary, verdict: Verdict, issue: ValidationIssue) -> None:
        code = verdict.code or "invalid_value"
        if verdict.is_error and self._log_validation_errors:
            logger.warning(
                "Bulk upload validation error row=%s field=%s message=%s value=%r",
                issue.row_number,
                issue.field,
                issue.message,
                issue.value,
            )

        stored = sum(len(issues) for issues in summary.errors.values()) + sum(
            len(issues) for issues in summary.warnings.values()
        )
        if stored >= self._max_validation_errors:
            return
        if verdict.is_error:
            summary.add_error(code, issue)
        else:
            summary.add_warning(code, issue)

    @staticmethod
    def _is_blank(value: Any) -> bool:
        if value is None:
            return True
        return str(value).strip() == ""

    @staticmethod
    def _stringify_value(value: Any) -> str | None:
        if value is None:
            return None
        return str(value)
