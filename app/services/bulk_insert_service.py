"""
app/services/bulk_insert_service.py

Writes a confirmed bulk upload into the catalog and yields tables.

Everything happens inside one transaction:

    1. lock the upload session row and require the `confirmed` stage
    2. create the catalog entities the user asked for
       (citations → sites → species → treatments → cultivars)
    3. insert one yield per row and link citations to sites/treatments
    4. clear the upload session and mark it `inserted`

Any failure rolls the whole transaction back and surfaces as one
CommitError; nothing from the attempt is left behind.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.domain.bulk_upload import (
    CatalogReferenceCell,
    DateCell,
    NumericCell,
    TextCell,
    ValidatedRow,
    normalize_value,
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
    N,
    NOTES,
    SE,
    SITE,
    SPECIES,
    TREATMENT,
    YIELD,
)
from app.logging_utils import log_event
from db.models.upload_session import UploadStage
from db.models.yield_record import Yield
from db.repositories.catalog_repository import CatalogRepository
from db.repositories.errors import RepositoryError
from db.repositories.types import CatalogKind
from db.repositories.upload_session_repository import UploadSessionRepository
from db.repositories.yield_repository import YieldRepository

logger = logging.getLogger(__name__)

# Field holding each kind's reference, in creation order.
_REFERENCE_FIELDS: tuple[tuple[str, str], ...] = (
    (CatalogKind.CITATION, CITATION),
    (CatalogKind.SITE, SITE),
    (CatalogKind.SPECIES, SPECIES),
    (CatalogKind.TREATMENT, TREATMENT),
    (CatalogKind.CULTIVAR, CULTIVAR),
)

_REQUIRED_REFERENCES = (CITATION, SITE, SPECIES, TREATMENT)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class CommitError(RuntimeError):
    """
    Raised when the insert transaction fails. The transaction has been
    rolled back when this is raised.
    """


class CommitContractError(ValueError):
    """
    Raised inside the transaction when a row is not fully resolved or an
    entity cannot be created from the row's values.
    """


@dataclass(frozen=True)
class CommitResult:
    records_inserted: int
    entities_created: dict[str, int] = field(default_factory=dict)
    citation_ids: tuple[int, ...] = ()


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class BulkInsertService:
    """
    Transactional committer for confirmed bulk uploads. Not idempotent:
    the `confirmed` stage check under a row lock is what stops a second
    submission from inserting the same rows again.
    """

    def __init__(self, *, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def commit(self, *, session_key: str, rows: Sequence[ValidatedRow]) -> CommitResult:
        try:
            with self._session_factory() as db:
                with db.begin():
                    result = self._commit_in_transaction(db, session_key=session_key, rows=rows)
        except (SQLAlchemyError, RepositoryError, CommitContractError) as exc:
            log_event(
                logger,
                logging.ERROR,
                "bulk_insert_rolled_back",
                session_key=session_key,
                row_count=len(rows),
                error=str(exc),
            )
            raise CommitError(f"Data was not inserted; all changes were rolled back: {exc}") from exc

        log_event(
            logger,
            logging.INFO,
            "bulk_insert_committed",
            session_key=session_key,
            records_inserted=result.records_inserted,
            entities_created=result.entities_created,
        )
        return result

    def _commit_in_transaction(
        self,
        db: Session,
        *,
        session_key: str,
        rows: Sequence[ValidatedRow],
    ) -> CommitResult:
        uploads = UploadSessionRepository(db)
        upload = uploads.require(session_key, lock=True)
        if upload.stage != UploadStage.CONFIRMED:
            raise CommitContractError(
                f"Upload is in stage '{upload.stage}', not '{UploadStage.CONFIRMED}'."
            )

        catalog = CatalogRepository(db)
        records = YieldRepository(db)
        created_keys: dict[tuple[Any, ...], int] = {}
        created_counts: Counter[str] = Counter()
        row_keys: dict[int, dict[str, int | None]] = {row.row_number: {} for row in rows}

        for kind, name in _REFERENCE_FIELDS:
            for row in rows:
                row_keys[row.row_number][name] = self._reference_key(
                    catalog,
                    row=row,
                    kind=kind,
                    name=name,
                    keys=row_keys[row.row_number],
                    created_keys=created_keys,
                    created_counts=created_counts,
                )

        citation_ids: list[int] = []
        for row in rows:
            keys = row_keys[row.row_number]
            records.add(self._build_record(row, keys=keys, session_key=session_key))

            citation_id, site_id, treatment_id = keys[CITATION], keys[SITE], keys[TREATMENT]
            if citation_id is None or site_id is None or treatment_id is None:
                raise CommitContractError(f"Row {row.row_number}: citation, site and treatment are required.")
            if citation_id not in citation_ids:
                citation_ids.append(citation_id)
            catalog.link_citation_site(citation_id=citation_id, site_id=site_id)
            catalog.link_citation_treatment(citation_id=citation_id, treatment_id=treatment_id)

        upload.clear_file_data()
        uploads.mark_stage(upload, UploadStage.INSERTED)
        db.flush()

        return CommitResult(
            records_inserted=len(rows),
            entities_created=dict(created_counts),
            citation_ids=tuple(citation_ids),
        )

    def _reference_key(
        self,
        catalog: CatalogRepository,
        *,
        row: ValidatedRow,
        kind: str,
        name: str,
        keys: dict[str, int | None],
        created_keys: dict[tuple[Any, ...], int],
        created_counts: Counter[str],
    ) -> int | None:
        cell = row.reference(name)
        if cell is None or not cell.is_resolved:
            if name in _REQUIRED_REFERENCES:
                raise CommitContractError(f"Row {row.row_number}: {kind} is not resolved.")
            if cell is not None and cell.raw:
                raise CommitContractError(
                    f"Row {row.row_number}: {kind} '{cell.raw}' is neither matched nor marked for creation."
                )
            return None
        if cell.key is not None:
            return cell.key

        attributes = self._creation_attributes(row, cell=cell, kind=kind, keys=keys)
        memo_key = (kind, normalize_value(cell.raw), attributes.get("specie_id"))
        if memo_key not in created_keys:
            before = catalog.count(kind)
            candidate = catalog.create(kind, attributes)
            if catalog.count(kind) > before:
                created_counts[kind] += 1
            created_keys[memo_key] = candidate.key
        return created_keys[memo_key]

    @staticmethod
    def _creation_attributes(
        row: ValidatedRow,
        *,
        cell: CatalogReferenceCell,
        kind: str,
        keys: dict[str, int | None],
    ) -> dict[str, Any]:
        raw = " ".join((cell.raw or "").split())
        if kind == CatalogKind.CITATION:
            author = _text(row, CITATION_AUTHOR)
            title = _text(row, CITATION_TITLE)
            year_cell = row.cell(CITATION_YEAR)
            year = year_cell.value if isinstance(year_cell, NumericCell) else None
            if not (author and title and isinstance(year, int)):
                raise CommitContractError(
                    f"Row {row.row_number}: a new citation needs author, year and title."
                )
            return {"author": author, "year": year, "title": title, "doi": _text(row, CITATION_DOI)}

        if not raw:
            raise CommitContractError(f"Row {row.row_number}: cannot create a {kind} without a name.")
        if kind == CatalogKind.SITE:
            return {"sitename": raw}
        if kind == CatalogKind.SPECIES:
            genus, _, epithet = raw.partition(" ")
            return {"scientificname": raw, "genus": genus, "species": epithet or None}
        if kind == CatalogKind.TREATMENT:
            return {"name": raw, "control": False}
        if kind == CatalogKind.CULTIVAR:
            specie_id = keys.get(SPECIES)
            if specie_id is None:
                raise CommitContractError(
                    f"Row {row.row_number}: cultivar '{raw}' cannot be created without a species."
                )
            return {"name": raw, "specie_id": specie_id}
        raise CommitContractError(f"Unknown catalog kind {kind!r}.")

    @staticmethod
    def _build_record(row: ValidatedRow, *, keys: dict[str, int | None], session_key: str) -> Yield:
        mean = _number(row, YIELD)
        access_level = _number(row, ACCESS_LEVEL)
        if mean is None or access_level is None:
            raise CommitContractError(f"Row {row.row_number}: yield and access_level are required.")

        stat = _number(row, SE)
        date_cell = row.cell(DATE)
        return Yield(
            citation_id=keys[CITATION],
            site_id=keys[SITE],
            specie_id=keys[SPECIES],
            treatment_id=keys[TREATMENT],
            cultivar_id=keys.get(CULTIVAR),
            date=date_cell.value if isinstance(date_cell, DateCell) else None,
            mean=Decimal(mean),
            n=_number(row, N),
            statname=SE if stat is not None else None,
            stat=Decimal(stat) if stat is not None else None,
            notes=_text(row, NOTES),
            access_level=int(access_level),
            upload_session_key=session_key,
        )


def _text(row: ValidatedRow, name: str) -> str | None:
    cell = row.cell(name)
    return cell.value if isinstance(cell, TextCell) else None


def _number(row: ValidatedRow, name: str) -> Any:
    cell = row.cell(name)
    return cell.output_value if isinstance(cell, NumericCell) else None
