"""
tests/test_bulk_insert_service.py

Transactional committer: everything or nothing.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.domain.bulk_upload import (
    CatalogReferenceCell,
    DateCell,
    NumericCell,
    TextCell,
    ValidatedRow,
)
from app.services.bulk_insert_service import BulkInsertService, CommitError
from db.models import CitationSite, CitationTreatment, Cultivar, Site, Specie, UploadSession, UploadStage, Yield
from db.repositories.yield_repository import YieldRepository
from db.repositories.types import CatalogKind

SESSION_KEY = "session-1"


@pytest.fixture()
def confirmed_session(session_factory) -> None:
    with session_factory() as db:
        with db.begin():
            db.add(
                UploadSession(
                    session_key=SESSION_KEY,
                    stage=UploadStage.CONFIRMED,
                    file_name="yields.csv",
                    storage_path="session-1/abc_yields.csv",
                    headers=["yield"],
                    row_count=2,
                    linked_citation_id=7,
                )
            )


def _ref(field: str, kind: str, *, key: int | None = None, raw: str | None = None, create: bool = False):
    return CatalogReferenceCell(field=field, kind=kind, raw=raw, key=key, pending_creation=create)


def _row(row_number: int, catalog: dict[str, int], *, yield_value: str = "5.5", **overrides) -> ValidatedRow:
    cells = {
        "yield": NumericCell(field="yield", raw=yield_value, value=Decimal(yield_value)),
        "access_level": NumericCell(field="access_level", raw="2", value=2),
        "date": DateCell(field="date", raw="2020-05-01", value=date(2020, 5, 1)),
        "citation": _ref("citation", CatalogKind.CITATION, key=catalog["smith"]),
        "site": _ref("site", CatalogKind.SITE, key=catalog["urbana"]),
        "species": _ref("species", CatalogKind.SPECIES, key=catalog["maize"]),
        "treatment": _ref("treatment", CatalogKind.TREATMENT, key=catalog["control"]),
    }
    cells.update(overrides)
    return ValidatedRow(row_number=row_number, cells=cells)


def _count(session_factory, model) -> int:
    with session_factory() as db:
        return int(db.scalar(select(func.count()).select_from(model)))


def test_commit_inserts_rows_links_citations_and_clears_session(session_factory, catalog, confirmed_session) -> None:
    se = NumericCell(field="SE", raw="0.25", value=Decimal("0.25"))
    n = NumericCell(field="n", raw="4", value=4)
    rows = [
        _row(2, catalog, SE=se, n=n),
        _row(3, catalog, site=_ref("site", CatalogKind.SITE, key=catalog["ames"])),
    ]

    result = BulkInsertService(session_factory=session_factory).commit(session_key=SESSION_KEY, rows=rows)

    assert result.records_inserted == 2
    assert result.citation_ids == (catalog["smith"],)
    assert result.entities_created == {}

    with session_factory() as db:
        records = YieldRepository(db).list_for_upload(SESSION_KEY)
        upload = db.scalar(select(UploadSession).where(UploadSession.session_key == SESSION_KEY))
        site_links = db.scalars(select(CitationSite)).all()
        treatment_links = db.scalars(select(CitationTreatment)).all()

    assert [record.statname for record in records] == ["SE", None]
    assert records[0].stat == Decimal("0.25")
    assert records[0].n == 4
    assert records[0].mean == Decimal("5.5")
    assert {link.site_id for link in site_links} == {catalog["urbana"], catalog["ames"]}
    assert len(treatment_links) == 1
    assert upload.stage == UploadStage.INSERTED
    assert upload.file_name is None
    assert upload.storage_path is None
    assert upload.row_count is None
    assert upload.linked_citation_id == 7


def test_commit_creates_pending_entities_once(session_factory, catalog, confirmed_session) -> None:
    new_site = _ref("site", CatalogKind.SITE, raw="Champaign  South", create=True)
    new_species = _ref("species", CatalogKind.SPECIES, raw="Sorghum bicolor", create=True)
    new_cultivar = _ref("cultivar", CatalogKind.CULTIVAR, raw="BTx623", create=True)
    rows = [
        _row(2, catalog, site=new_site, species=new_species, cultivar=new_cultivar),
        _row(3, catalog, site=new_site, species=new_species, cultivar=new_cultivar),
    ]
    sites_before = _count(session_factory, Site)

    result = BulkInsertService(session_factory=session_factory).commit(session_key=SESSION_KEY, rows=rows)

    assert result.entities_created == {
        CatalogKind.SITE: 1,
        CatalogKind.SPECIES: 1,
        CatalogKind.CULTIVAR: 1,
    }
    assert _count(session_factory, Site) == sites_before + 1
    with session_factory() as db:
        sorghum = db.scalar(select(Specie).where(Specie.scientificname == "Sorghum bicolor"))
        cultivar = db.scalar(select(Cultivar).where(Cultivar.name == "BTx623"))
        site = db.scalar(select(Site).where(Site.sitename == "Champaign South"))
        records = YieldRepository(db).list_for_upload(SESSION_KEY)

    assert sorghum.genus == "Sorghum"
    assert sorghum.species == "bicolor"
    assert cultivar.specie_id == sorghum.id
    assert {record.site_id for record in records} == {site.id}
    assert {record.cultivar_id for record in records} == {cultivar.id}


def test_commit_creates_a_citation_from_row_values(session_factory, catalog, confirmed_session) -> None:
    row = _row(
        2,
        catalog,
        citation=_ref("citation", CatalogKind.CITATION, raw="Lee / 2019 / Sorghum trials", create=True),
        citation_author=TextCell(field="citation_author", raw="Lee", value="Lee"),
        citation_year=NumericCell(field="citation_year", raw="2019", value=2019),
        citation_title=TextCell(field="citation_title", raw="Sorghum trials", value="Sorghum trials"),
    )

    result = BulkInsertService(session_factory=session_factory).commit(session_key=SESSION_KEY, rows=[row])

    assert result.entities_created == {CatalogKind.CITATION: 1}
    assert result.citation_ids[0] not in (catalog["smith"], catalog["jones"])


def test_failure_on_last_row_rolls_everything_back(session_factory, catalog, confirmed_session) -> None:
    new_site = _ref("site", CatalogKind.SITE, raw="Champaign South", create=True)
    rows = [_row(number, catalog, site=new_site) for number in (2, 3, 4)]
    sites_before = _count(session_factory, Site)
    original_add = YieldRepository.add
    calls: list[int] = []

    def flaky_add(self, record):
        calls.append(1)
        if len(calls) == len(rows):
            raise IntegrityError("INSERT INTO yields", {}, Exception("simulated failure"))
        return original_add(self, record)

    with patch.object(YieldRepository, "add", flaky_add):
        with pytest.raises(CommitError):
            BulkInsertService(session_factory=session_factory).commit(session_key=SESSION_KEY, rows=rows)

    assert len(calls) == 3
    assert _count(session_factory, Yield) == 0
    assert _count(session_factory, Site) == sites_before
    assert _count(session_factory, CitationSite) == 0
    with session_factory() as db:
        upload = db.scalar(select(UploadSession).where(UploadSession.session_key == SESSION_KEY))
    assert upload.stage == UploadStage.CONFIRMED
    assert upload.storage_path == "session-1/abc_yields.csv"


def test_commit_requires_confirmed_stage(session_factory, catalog) -> None:
    with session_factory() as db:
        with db.begin():
            db.add(UploadSession(session_key=SESSION_KEY, stage=UploadStage.INSERTED))

    with pytest.raises(CommitError):
        BulkInsertService(session_factory=session_factory).commit(session_key=SESSION_KEY, rows=[_row(2, catalog)])

    assert _count(session_factory, Yield) == 0


def test_commit_rejects_unresolved_rows(session_factory, catalog, confirmed_session) -> None:
    unresolved = _ref("treatment", CatalogKind.TREATMENT, raw="irrigation")

    with pytest.raises(CommitError):
        BulkInsertService(session_factory=session_factory).commit(
            session_key=SESSION_KEY,
            rows=[_row(2, catalog), _row(3, catalog, treatment=unresolved)],
        )

    assert _count(session_factory, Yield) == 0


def test_citation_cannot_be_created_from_doi_alone(session_factory, catalog, confirmed_session) -> None:
    row = _row(
        2,
        catalog,
        citation=_ref("citation", CatalogKind.CITATION, raw="10.5555/new", create=True),
        citation_doi=TextCell(field="citation_doi", raw="10.5555/new", value="10.5555/new"),
    )

    with pytest.raises(CommitError):
        BulkInsertService(session_factory=session_factory).commit(session_key=SESSION_KEY, rows=[row])
