"""
app/validators/header_validator.py

Header-list validation for bulk upload files.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Sequence

from app.domain.bulk_upload import ValidationIssue, ValidationSummary
from app.domain.upload_schema import (
    CITATION_DOI,
    CITATION_REFERENCE_HEADERS,
    FORBIDDEN_HEADERS,
    N,
    OPTIONAL_HEADERS,
    REQUIRED_HEADERS,
    SE,
    canonical_header,
)


class UnrecognizedHeaderPolicy:
    WARN = "warn"
    FATAL = "fatal"

    ALL = (WARN, FATAL)


class HeaderErrorCode:
    MISSING_REQUIRED = "missing_required_header"
    UNRECOGNIZED = "unrecognized_header"
    FORBIDDEN = "forbidden_header"
    DUPLICATE = "duplicate_header"


@dataclass(frozen=True)
class HeaderCheck:
    """
    Classification of one file's header row.

    `column_map` maps each recognized schema name to the header text as it
    appears in the file, which is how rows are keyed.
    """

    headers: tuple[str, ...]
    column_map: dict[str, str]
    required_present: tuple[str, ...]
    required_missing: tuple[str, ...]
    recognized_optional: tuple[str, ...]
    unrecognized: tuple[str, ...]
    forbidden: tuple[str, ...]
    duplicates: tuple[str, ...]
    fatal: bool
    summary: ValidationSummary = field(default_factory=ValidationSummary)

    def has(self, name: str) -> bool:
        return name in self.column_map


class HeaderValidator:
    """
    Classifies headers into required-present, required-missing,
    recognized-optional, unrecognized and forbidden.
    """

    def __init__(self, *, unrecognized_policy: str = UnrecognizedHeaderPolicy.WARN) -> None:
        if unrecognized_policy not in UnrecognizedHeaderPolicy.ALL:
            raise ValueError(
                f"Unknown unrecognized-header policy {unrecognized_policy!r}. "
                f"Allowed values: {list(UnrecognizedHeaderPolicy.ALL)}."
            )
        self._unrecognized_policy = unrecognized_policy
        self._known = set(REQUIRED_HEADERS) | set(OPTIONAL_HEADERS)

    def check(self, headers: Sequence[str], *, linked_citation: bool = False) -> HeaderCheck:
        """
        Classify `headers`. Pure: the result depends only on the arguments
        and the column catalogue.
        """

        summary = ValidationSummary()
        raw_headers = tuple(headers)
        canonical = [canonical_header(header) for header in raw_headers]

        column_map: dict[str, str] = {}
        unrecognized: list[str] = []
        forbidden: list[str] = []
        for raw, name in zip(raw_headers, canonical):
            if name in FORBIDDEN_HEADERS:
                forbidden.append(name)
            elif name in self._known:
                column_map.setdefault(name, raw)
            elif name:
                unrecognized.append(raw)

        duplicates = sorted(name for name, count in Counter(canonical).items() if name and count > 1)
        required_missing = self._required_missing(set(column_map), linked_citation=linked_citation)
        required_present = tuple(name for name in REQUIRED_HEADERS if name in column_map)
        recognized_optional = tuple(name for name in OPTIONAL_HEADERS if name in column_map)

        for name in required_missing:
            summary.add_error(
                HeaderErrorCode.MISSING_REQUIRED,
                ValidationIssue(field=name, message=f"Required column '{name}' is missing."),
            )
        for name in forbidden:
            summary.add_error(
                HeaderErrorCode.FORBIDDEN,
                ValidationIssue(field=name, message=f"Column '{name}' is managed by the system and may not be uploaded."),
            )
        for name in duplicates:
            summary.add_error(
                HeaderErrorCode.DUPLICATE,
                ValidationIssue(field=name, message=f"Column '{name}' appears more than once."),
            )
        for raw in unrecognized:
            issue = ValidationIssue(field=raw, message=f"Column '{raw}' is not recognized and will be ignored.")
            if self._unrecognized_policy == UnrecognizedHeaderPolicy.FATAL:
                summary.add_error(HeaderErrorCode.UNRECOGNIZED, issue)
            else:
                summary.add_warning(HeaderErrorCode.UNRECOGNIZED, issue)

        summary.field_list_error_count = sum(len(issues) for issues in summary.errors.values())
        summary.fatal = summary.field_list_error_count > 0

        return HeaderCheck(
            headers=raw_headers,
            column_map=column_map,
            required_present=required_present,
            required_missing=tuple(required_missing),
            recognized_optional=recognized_optional,
            unrecognized=tuple(unrecognized),
            forbidden=tuple(forbidden),
            duplicates=tuple(duplicates),
            fatal=summary.fatal,
            summary=summary,
        )

    @staticmethod
    def _required_missing(present: set[str], *, linked_citation: bool) -> list[str]:
        missing = [name for name in REQUIRED_HEADERS if name not in present]

        if not linked_citation and CITATION_DOI not in present:
            reference_present = [name for name in CITATION_REFERENCE_HEADERS if name in present]
            if not reference_present:
                missing.append(CITATION_DOI)
            else:
                missing.extend(name for name in CITATION_REFERENCE_HEADERS if name not in present)

        if SE in present and N not in present:
            missing.append(N)

        return missing
