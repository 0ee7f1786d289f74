"""
tests/test_bulk_upload_wizard.py

End-to-end wizard runs against the in-memory catalog and a temporary
upload directory.
"""

from __future__ import annotations

import shutil
from dataclasses import replace
from datetime import date
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.domain.bulk_upload import DecisionAction, GlobalDefaults, ResolutionDecision
from app.services.bulk_insert_service import BulkInsertService, CommitError, CommitResult
from app.services.bulk_upload_wizard import (
    BulkUploadWizard,
    ResolutionError,
    UploadParseError,
    WizardStageError,
)
from app.services.csv_reader import CSVReadErrorKind
from db.models import Treatment, UploadStage, Yield
from db.repositories.catalog_repository import CatalogRepository
from db.repositories.errors import CatalogEntityNotFound
from db.repositories.types import CatalogKind

from conftest import TODAY

SESSION = "user-42"

VALID_CSV = (
    b"citation_doi,site,species,treatment,date,yield,SE,n,access_level\n"
    b"10.1000/xyz123,Urbana Farm,Zea mays,control,2020-05-01,5.5,0.25,4,2\n"
    b"10.1000/xyz123,Ames Research Station,Zea mays,control,2020-05-02,6.1,0.30,4,2\n"
)

SPARSE_CSV = b"citation_doi,yield\n10.1000/xyz123,5.5\n10.1000/xyz123,6.1\n"


def _count_yields(session_factory) -> int:
    with session_factory() as db:
        return int(db.scalar(select(func.count()).select_from(Yield)))


def _stored_files(settings) -> list[Path]:
    root = Path(settings.storage_dir)
    return [path for path in root.rglob("*") if path.is_file()] if root.exists() else []


def _catalog_down(*_args, **_kwargs):
    raise OperationalError("SELECT catalog", {}, Exception("connection refused"))


def _to_defaults_chosen(wizard: BulkUploadWizard, content: bytes = VALID_CSV, defaults=None) -> None:
    wizard.start_upload(SESSION)
    result = wizard.upload_file(SESSION, file_name="yields.csv", content=content)
    assert result.accepted, result.summary
    wizard.choose_defaults(SESSION, defaults or GlobalDefaults())


class TestHappyPath:
    def test_full_run_inserts_every_row(self, wizard, session_factory, catalog, settings) -> None:
        started = wizard.start_upload(SESSION)
        assert started.stage == UploadStage.START

        validated = wizard.upload_file(SESSION, file_name="yields.csv", content=VALID_CSV)
        assert validated.stage == UploadStage.FILE_VALIDATED
        assert validated.accepted
        assert len(validated.rows) == 2
        assert _stored_files(settings)

        chosen = wizard.choose_defaults(SESSION, GlobalDefaults(), rounding=2)
        assert chosen.stage == UploadStage.DEFAULTS_CHOSEN

        confirmation = wizard.confirm(SESSION)
        assert confirmation.confirmed
        assert confirmation.stage == UploadStage.CONFIRMED
        assert confirmation.citation_ids == (catalog["smith"],)
        assert [c.key for c in confirmation.references[CatalogKind.SITE]] == sorted(
            [catalog["urbana"], catalog["ames"]]
        )

        result = wizard.insert(SESSION)

        assert result.records_inserted == 2
        assert _count_yields(session_factory) == 2
        state = wizard.state(SESSION)
        assert state.stage == UploadStage.INSERTED
        assert state.file_name is None
        assert _stored_files(settings) == []

    def test_defaults_fill_columns_missing_from_the_file(self, wizard, session_factory, catalog) -> None:
        defaults = GlobalDefaults(
            site_id=catalog["urbana"],
            species_id=catalog["maize"],
            treatment_id=catalog["nitrogen"],
            access_level=3,
            date=date(2019, 9, 15),
        )
        _to_defaults_chosen(wizard, SPARSE_CSV, defaults)

        confirmation = wizard.confirm(SESSION)
        assert confirmation.confirmed
        wizard.insert(SESSION)

        with session_factory() as db:
            records = db.scalars(select(Yield).order_by(Yield.id)).all()
        assert {record.site_id for record in records} == {catalog["urbana"]}
        assert {record.treatment_id for record in records} == {catalog["nitrogen"]}
        assert {record.access_level for record in records} == {3}
        assert {record.date for record in records} == {date(2019, 9, 15)}

    def test_linked_citation_covers_files_without_citation_columns(self, wizard, catalog) -> None:
        wizard.start_upload(SESSION)
        wizard.link_citation(SESSION, catalog["jones"])
        content = (
            b"site,species,treatment,date,yield,access_level\n"
            b"Urbana Farm,Glycine max,control,2021-08-01,3.2,1\n"
        )

        validated = wizard.upload_file(SESSION, file_name="soy.csv", content=content)
        assert validated.accepted
        assert validated.linked_citation_id == catalog["jones"]
        wizard.choose_defaults(SESSION, GlobalDefaults())

        confirmation = wizard.confirm(SESSION)

        assert confirmation.confirmed
        assert confirmation.citation_ids == (catalog["jones"],)


class TestStageOrder:
    def test_state_requires_a_session(self, wizard) -> None:
        with pytest.raises(WizardStageError) as excinfo:
            wizard.state("nobody")

        assert excinfo.value.redirect_stage == UploadStage.START

    def test_defaults_before_upload_is_rejected(self, wizard, catalog) -> None:
        wizard.start_upload(SESSION)

        with pytest.raises(WizardStageError) as excinfo:
            wizard.choose_defaults(SESSION, GlobalDefaults())

        assert excinfo.value.redirect_stage == UploadStage.START
        assert wizard.state(SESSION).stage == UploadStage.START

    def test_confirm_before_defaults_is_rejected(self, wizard, catalog) -> None:
        wizard.start_upload(SESSION)
        wizard.upload_file(SESSION, file_name="yields.csv", content=VALID_CSV)

        with pytest.raises(WizardStageError) as excinfo:
            wizard.confirm(SESSION)

        assert excinfo.value.required == UploadStage.DEFAULTS_CHOSEN
        assert excinfo.value.redirect_stage == UploadStage.FILE_VALIDATED

    def test_insert_before_confirmation_never_reaches_the_committer(
        self, session_factory, storage, settings, catalog
    ) -> None:
        committer = MagicMock(spec=BulkInsertService)
        wizard = BulkUploadWizard(
            session_factory=session_factory,
            storage=storage,
            settings=settings,
            committer=committer,
            today=lambda: TODAY,
        )
        _to_defaults_chosen(wizard)

        with pytest.raises(WizardStageError):
            wizard.insert(SESSION)

        committer.commit.assert_not_called()

    def test_second_insert_is_rejected(self, wizard, session_factory, catalog) -> None:
        _to_defaults_chosen(wizard)
        wizard.confirm(SESSION)
        wizard.insert(SESSION)

        with pytest.raises(WizardStageError) as excinfo:
            wizard.insert(SESSION)

        assert excinfo.value.current == UploadStage.INSERTED
        assert excinfo.value.redirect_stage == UploadStage.START
        assert _count_yields(session_factory) == 2

    def test_new_upload_resets_later_stages(self, wizard, catalog) -> None:
        _to_defaults_chosen(wizard)

        result = wizard.upload_file(SESSION, file_name="again.csv", content=VALID_CSV)

        assert result.stage == UploadStage.FILE_VALIDATED
        with pytest.raises(WizardStageError):
            wizard.confirm(SESSION)

    def test_start_after_insert_begins_a_new_run(self, wizard, catalog) -> None:
        _to_defaults_chosen(wizard)
        wizard.confirm(SESSION)
        wizard.insert(SESSION)

        state = wizard.start_upload(SESSION)

        assert state.stage == UploadStage.START


class TestUpload:
    def test_parse_error_leaves_the_session_unchanged(self, wizard, catalog) -> None:
        wizard.start_upload(SESSION)
        wizard.upload_file(SESSION, file_name="yields.csv", content=VALID_CSV)

        with pytest.raises(UploadParseError) as excinfo:
            wizard.upload_file(SESSION, file_name="broken.csv", content=b'yield,citation_doi\n"5.5,x\n')

        assert excinfo.value.kind == CSVReadErrorKind.SYNTAX
        state = wizard.state(SESSION)
        assert state.stage == UploadStage.FILE_VALIDATED
        assert state.file_name == "yields.csv"

    def test_missing_file(self, wizard) -> None:
        wizard.start_upload(SESSION)

        with pytest.raises(UploadParseError) as excinfo:
            wizard.upload_file(SESSION, file_name=None, content=None)

        assert excinfo.value.kind == CSVReadErrorKind.MISSING_FILE

    def test_oversized_file_is_rejected(self, session_factory, storage, settings) -> None:
        wizard = BulkUploadWizard(
            session_factory=session_factory,
            storage=storage,
            settings=replace(settings, max_upload_bytes=16),
        )
        wizard.start_upload(SESSION)

        with pytest.raises(UploadParseError) as excinfo:
            wizard.upload_file(SESSION, file_name="yields.csv", content=VALID_CSV)

        assert excinfo.value.kind == "too_large"

    def test_fatal_header_problem_stays_at_start(self, wizard, catalog, settings) -> None:
        wizard.start_upload(SESSION)

        result = wizard.upload_file(
            SESSION,
            file_name="nocitation.csv",
            content=b"site,species,yield\nUrbana Farm,Zea mays,5\n",
        )

        assert not result.accepted
        assert result.stage == UploadStage.START
        assert result.rows == ()
        assert "citation_doi" in result.header_check.required_missing
        assert wizard.state(SESSION).stage == UploadStage.START

    def test_file_citations_replace_the_linked_citation(self, wizard, catalog) -> None:
        wizard.start_upload(SESSION)
        wizard.link_citation(SESSION, catalog["jones"])

        result = wizard.upload_file(SESSION, file_name="yields.csv", content=VALID_CSV)

        assert result.linked_citation_id is None
        assert len(result.warnings) == 1
        assert f"#{catalog['jones']}" in result.warnings[0]
        assert wizard.state(SESSION).linked_citation_id is None

    def test_linking_an_unknown_citation_fails(self, wizard, catalog) -> None:
        wizard.start_upload(SESSION)

        with pytest.raises(CatalogEntityNotFound):
            wizard.link_citation(SESSION, 9999)

    def test_display_file_revalidates_the_stored_file(self, wizard, catalog) -> None:
        wizard.start_upload(SESSION)
        wizard.upload_file(SESSION, file_name="yields.csv", content=VALID_CSV)

        shown = wizard.display_file(SESSION)

        assert shown.file_name == "yields.csv"
        assert shown.stage == UploadStage.FILE_VALIDATED
        assert len(shown.rows) == 2

    def test_lost_stored_file_surfaces_as_missing_file(self, wizard, catalog, settings) -> None:
        _to_defaults_chosen(wizard)
        shutil.rmtree(settings.storage_dir)

        with pytest.raises(UploadParseError) as excinfo:
            wizard.confirm(SESSION)

        assert excinfo.value.kind == CSVReadErrorKind.MISSING_FILE


class TestConfirmation:
    def test_unresolved_reference_blocks_until_a_decision_is_made(self, wizard, session_factory, catalog) -> None:
        content = VALID_CSV.replace(b",control,2020-05-02", b",irrigation,2020-05-02")
        _to_defaults_chosen(wizard, content)

        blocked = wizard.confirm(SESSION)

        assert not blocked.confirmed
        assert blocked.stage == UploadStage.DEFAULTS_CHOSEN
        assert [(issue.row_number, issue.field) for issue in blocked.blocking_issues] == [(3, "treatment")]

        decision = ResolutionDecision(kind=CatalogKind.TREATMENT, value="Irrigation", action=DecisionAction.CREATE)
        confirmed = wizard.confirm(SESSION, [decision])

        assert confirmed.confirmed
        assert confirmed.pending_creations == {CatalogKind.TREATMENT: ("irrigation",)}

        result = wizard.insert(SESSION)

        assert result.entities_created == {CatalogKind.TREATMENT: 1}
        with session_factory() as db:
            created = db.scalar(select(Treatment).where(Treatment.name == "irrigation"))
        assert created is not None
        assert created.control is False

    def test_ambiguous_reference_can_be_settled_by_selection(self, wizard, catalog) -> None:
        content = VALID_CSV.replace(b"Urbana Farm,", b"Urbana,")
        wizard.start_upload(SESSION)
        validated = wizard.upload_file(SESSION, file_name="yields.csv", content=content)
        assert validated.accepted
        wizard.choose_defaults(SESSION, GlobalDefaults())

        decision = ResolutionDecision(
            kind=CatalogKind.SITE,
            value="urbana",
            action=DecisionAction.SELECT,
            key=catalog["urbana_north"],
        )
        confirmation = wizard.confirm(SESSION, [decision])

        assert confirmation.confirmed
        assert confirmation.rows[0].reference("site").key == catalog["urbana_north"]

    def test_missing_required_values_block_confirmation(self, wizard, catalog) -> None:
        _to_defaults_chosen(wizard, SPARSE_CSV)

        confirmation = wizard.confirm(SESSION)

        assert not confirmation.confirmed
        fields = {issue.field for issue in confirmation.blocking_issues}
        assert fields == {"site", "species", "treatment", "date", "access_level"}

    def test_default_keys_must_exist(self, wizard, catalog) -> None:
        defaults = GlobalDefaults(
            site_id=9999,
            species_id=catalog["maize"],
            treatment_id=catalog["control"],
            access_level=1,
            date=date(2020, 1, 1),
        )
        _to_defaults_chosen(wizard, SPARSE_CSV, defaults)

        confirmation = wizard.confirm(SESSION)

        assert not confirmation.confirmed
        assert {issue.message for issue in confirmation.blocking_issues} == {"Site #9999 does not exist."}

    def test_default_cultivar_must_match_the_row_species(self, wizard, catalog) -> None:
        content = VALID_CSV.replace(b"Zea mays", b"Glycine max")
        _to_defaults_chosen(wizard, content, GlobalDefaults(cultivar_id=catalog["b73"]))

        confirmation = wizard.confirm(SESSION)

        assert not confirmation.confirmed
        assert {issue.field for issue in confirmation.blocking_issues} == {"cultivar"}


class TestCatalogOutage:
    def test_display_file_reports_a_resolution_error(self, wizard, catalog) -> None:
        wizard.start_upload(SESSION)
        wizard.upload_file(SESSION, file_name="yields.csv", content=VALID_CSV)

        with patch.object(CatalogRepository, "find_exact", _catalog_down):
            with pytest.raises(ResolutionError):
                wizard.display_file(SESSION)

        assert wizard.state(SESSION).stage == UploadStage.FILE_VALIDATED

    def test_lookup_failure_during_confirm_can_be_retried(self, wizard, catalog) -> None:
        _to_defaults_chosen(wizard)

        with patch.object(CatalogRepository, "find_exact", _catalog_down):
            with pytest.raises(ResolutionError):
                wizard.confirm(SESSION)

        failed = wizard.state(SESSION)
        assert failed.stage == UploadStage.FAILED
        assert failed.resume_stage == UploadStage.DEFAULTS_CHOSEN
        assert failed.file_name == "yields.csv"
        assert "Catalog lookup failed" in failed.last_error

        retried = wizard.confirm(SESSION)

        assert retried.confirmed
        assert wizard.state(SESSION).stage == UploadStage.CONFIRMED

    def test_reference_check_failure_during_confirm_marks_the_run_failed(self, wizard, catalog) -> None:
        _to_defaults_chosen(wizard)

        with patch.object(CatalogRepository, "get", _catalog_down):
            with pytest.raises(ResolutionError):
                wizard.confirm(SESSION)

        failed = wizard.state(SESSION)
        assert failed.stage == UploadStage.FAILED
        assert failed.resume_stage == UploadStage.DEFAULTS_CHOSEN


class TestCommitFailure:
    def test_failed_insert_can_be_retried_from_confirmed(
        self, session_factory, storage, settings, catalog
    ) -> None:
        committer = MagicMock(spec=BulkInsertService)
        committer.commit.side_effect = [
            CommitError("Data was not inserted; all changes were rolled back: disk full"),
            CommitResult(records_inserted=2),
        ]
        wizard = BulkUploadWizard(
            session_factory=session_factory,
            storage=storage,
            settings=settings,
            committer=committer,
            today=lambda: TODAY,
        )
        _to_defaults_chosen(wizard)
        wizard.confirm(SESSION)

        with pytest.raises(CommitError):
            wizard.insert(SESSION)

        failed = wizard.state(SESSION)
        assert failed.stage == UploadStage.FAILED
        assert failed.resume_stage == UploadStage.CONFIRMED
        assert "disk full" in failed.last_error

        assert wizard.insert(SESSION).records_inserted == 2
        assert committer.commit.call_count == 2


def test_lookup_candidates_respects_species_scope(wizard, catalog) -> None:
    scoped = wizard.lookup_candidates(CatalogKind.CULTIVAR, "b", scope_id=catalog["maize"])

    assert [candidate.label for candidate in scoped] == ["B73"]
