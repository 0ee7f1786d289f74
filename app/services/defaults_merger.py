"""
app/services/defaults_merger.py

Fills blank or unresolved row values from dataset-wide defaults, applies
the chosen yield rounding and the user's resolution decisions.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from app.domain.bulk_upload import (
    CatalogReferenceCell,
    Cell,
    CellSource,
    DateCell,
    DecisionAction,
    GlobalDefaults,
    NumericCell,
    ResolutionDecision,
    ValidatedRow,
    Verdict,
)
from app.domain.upload_schema import (
    ACCESS_LEVEL,
    CITATION,
    CULTIVAR,
    DATE,
    FIELD_SPECS,
    ROUNDED_FIELDS,
    SITE,
    SPECIES,
    TREATMENT,
)


def round_significant(value: Decimal, digits: int) -> Decimal:
    """
    Round to `digits` significant figures, half away from zero.
    """

    if digits < 1:
        raise ValueError("Rounding must keep at least one significant digit.")
    if value.is_zero():
        return value
    quantum = Decimal(1).scaleb(value.adjusted() - digits + 1)
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def _reference_defaults(defaults: GlobalDefaults) -> dict[str, int | None]:
    return {
        CITATION: defaults.citation_id,
        SITE: defaults.site_id,
        SPECIES: defaults.species_id,
        TREATMENT: defaults.treatment_id,
        CULTIVAR: defaults.cultivar_id,
    }


def merge_defaults(rows: Sequence[ValidatedRow], defaults: GlobalDefaults) -> list[ValidatedRow]:
    """
    Return new rows with defaults and rounding applied.

    Pure and idempotent: rounding is always computed from the unrounded
    value, and a field already filled is never filled again.
    """

    return [_merge_row(row, defaults) for row in rows]


def _merge_row(row: ValidatedRow, defaults: GlobalDefaults) -> ValidatedRow:
    if row.row_verdict.is_error:
        return row

    cells: dict[str, Cell] = dict(row.cells)
    defaulted = set(row.defaulted_fields)

    for name, key in _reference_defaults(defaults).items():
        if key is None:
            continue
        current = cells.get(name)
        if isinstance(current, CatalogReferenceCell) and current.is_resolved:
            continue
        cells[name] = CatalogReferenceCell(
            field=name,
            kind=FIELD_SPECS[name].catalog_kind or name,
            raw=current.raw if current is not None else None,
            key=key,
            source=CellSource.DEFAULT,
        )
        defaulted.add(name)

    if DATE not in cells and defaults.date is not None:
        cells[DATE] = DateCell(field=DATE, raw=None, value=defaults.date, source=CellSource.DEFAULT)
        defaulted.add(DATE)

    if ACCESS_LEVEL not in cells and defaults.access_level is not None:
        cells[ACCESS_LEVEL] = NumericCell(field=ACCESS_LEVEL, raw=None, value=defaults.access_level)
        defaulted.add(ACCESS_LEVEL)

    if defaults.rounding is not None:
        for name in ROUNDED_FIELDS:
            cell = cells.get(name)
            if isinstance(cell, NumericCell) and isinstance(cell.value, Decimal) and not cell.verdict.is_error:
                cells[name] = replace(cell, rounded=round_significant(cell.value, defaults.rounding))

    return replace(row, cells=cells, defaulted_fields=frozenset(defaulted))


def apply_decisions(
    rows: Sequence[ValidatedRow],
    decisions: Sequence[ResolutionDecision],
) -> list[ValidatedRow]:
    """
    Settle references with the user's select/create directives.

    Runs after `merge_defaults`; a decision naming a value wins over a
    default that filled the same cell.
    """

    if not decisions:
        return list(rows)
    return [_apply_row_decisions(row, decisions) for row in rows]


def _apply_row_decisions(row: ValidatedRow, decisions: Sequence[ResolutionDecision]) -> ValidatedRow:
    if row.row_verdict.is_error:
        return row

    cells: dict[str, Cell] = dict(row.cells)
    changed = False
    for name, cell in row.cells.items():
        if not isinstance(cell, CatalogReferenceCell) or not cell.raw:
            continue
        decision = next((item for item in decisions if item.applies_to(cell.kind, cell.raw)), None)
        if decision is None:
            continue
        if decision.action == DecisionAction.SELECT and decision.key is not None:
            cells[name] = replace(
                cell,
                key=decision.key,
                pending_creation=False,
                verdict=Verdict.ok(),
                source=CellSource.DECISION,
            )
        elif decision.action == DecisionAction.CREATE:
            cells[name] = replace(
                cell,
                key=None,
                pending_creation=True,
                verdict=Verdict.ok(),
                source=CellSource.DECISION,
            )
        else:
            continue
        changed = True

    return replace(row, cells=cells) if changed else row
