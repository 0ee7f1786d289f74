"""
app/domain/upload_schema.py

Column catalogue for yield bulk upload files.
"""

from __future__ import annotations

from dataclasses import dataclass

from db.repositories.types import CatalogKind


class ValueType:
    DECIMAL = "decimal"
    INTEGER = "integer"
    DATE = "date"
    TEXT = "text"
    REFERENCE = "reference"


@dataclass(frozen=True)
class FieldSpec:
    """
    Per-column rules.

    required_valid: an error in this column makes the whole file fatal.
    default_eligible: a blank or unresolved value can be filled from the
    dataset-wide defaults.
    """

    name: str
    value_type: str
    required_valid: bool = True
    default_eligible: bool = False
    catalog_kind: str | None = None
    min_value: int | None = None
    max_value: int | None = None


YIELD = "yield"
SE = "SE"
N = "n"
DATE = "date"
ACCESS_LEVEL = "access_level"
NOTES = "notes"
SITE = "site"
SPECIES = "species"
TREATMENT = "treatment"
CULTIVAR = "cultivar"
CITATION_AUTHOR = "citation_author"
CITATION_YEAR = "citation_year"
CITATION_TITLE = "citation_title"
CITATION_DOI = "citation_doi"

# Synthetic field holding the row's resolved citation.
CITATION = "citation"

FIELD_SPECS: dict[str, FieldSpec] = {
    spec.name: spec
    for spec in (
        FieldSpec(YIELD, ValueType.DECIMAL, min_value=0),
        FieldSpec(SE, ValueType.DECIMAL, min_value=0),
        FieldSpec(N, ValueType.INTEGER, min_value=1),
        FieldSpec(DATE, ValueType.DATE, default_eligible=True),
        FieldSpec(ACCESS_LEVEL, ValueType.INTEGER, default_eligible=True, min_value=1, max_value=4),
        FieldSpec(NOTES, ValueType.TEXT, required_valid=False),
        FieldSpec(SITE, ValueType.REFERENCE, default_eligible=True, catalog_kind=CatalogKind.SITE),
        FieldSpec(SPECIES, ValueType.REFERENCE, default_eligible=True, catalog_kind=CatalogKind.SPECIES),
        FieldSpec(TREATMENT, ValueType.REFERENCE, default_eligible=True, catalog_kind=CatalogKind.TREATMENT),
        FieldSpec(
            CULTIVAR,
            ValueType.REFERENCE,
            required_valid=False,
            default_eligible=True,
            catalog_kind=CatalogKind.CULTIVAR,
        ),
        FieldSpec(CITATION_AUTHOR, ValueType.TEXT),
        FieldSpec(CITATION_YEAR, ValueType.INTEGER, min_value=1800),
        FieldSpec(CITATION_TITLE, ValueType.TEXT),
        FieldSpec(CITATION_DOI, ValueType.TEXT),
        FieldSpec(CITATION, ValueType.REFERENCE, catalog_kind=CatalogKind.CITATION),
    )
}

REQUIRED_HEADERS: tuple[str, ...] = (YIELD,)

OPTIONAL_HEADERS: tuple[str, ...] = (
    CITATION_AUTHOR,
    CITATION_YEAR,
    CITATION_TITLE,
    CITATION_DOI,
    SITE,
    SPECIES,
    TREATMENT,
    CULTIVAR,
    DATE,
    N,
    SE,
    NOTES,
    ACCESS_LEVEL,
)

FORBIDDEN_HEADERS: tuple[str, ...] = ("id", "created_at", "updated_at", "user_id", "checked")

CITATION_REFERENCE_HEADERS: tuple[str, ...] = (CITATION_AUTHOR, CITATION_YEAR, CITATION_TITLE)

# Headers whose presence means the file names its own citation(s).
CITATION_DATA_HEADERS: tuple[str, ...] = (CITATION_AUTHOR, CITATION_DOI)

ENTITY_REFERENCE_FIELDS: tuple[str, ...] = (SITE, SPECIES, TREATMENT, CULTIVAR)

DEFAULT_ELIGIBLE_FIELDS: tuple[str, ...] = tuple(
    name for name, spec in FIELD_SPECS.items() if spec.default_eligible
)

ROUNDED_FIELDS: tuple[str, ...] = (YIELD, SE)

# A confirmed row must have a value for each of these (cultivar is optional).
CONFIRMATION_REQUIRED_FIELDS: tuple[str, ...] = (CITATION, SITE, SPECIES, TREATMENT, DATE, ACCESS_LEVEL)


def canonical_header(header: str) -> str:
    """
    Map a raw header onto its schema name. Whitespace is ignored and `SE`
    matches in any case; every other name is taken as written.
    """

    stripped = header.strip()
    if stripped.lower() == SE.lower():
        return SE
    return stripped
