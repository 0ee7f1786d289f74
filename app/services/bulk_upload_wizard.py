"""
app/services/bulk_upload_wizard.py

Stage machine for the yield bulk upload wizard.

    start → file_validated → defaults_chosen → confirmed → inserted
                                  ↘ failed (resume_stage) ↗

Every operation re-derives what it needs from the persisted upload session
and the stored file; nothing is carried in memory between requests. A stage
is entered only when its preconditions hold, otherwise WizardStageError
names the stage the user has to go back to.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from functools import lru_cache

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.config import BulkUploadSettings, get_bulk_upload_settings
from app.domain.bulk_upload import (
    CatalogReferenceCell,
    GlobalDefaults,
    ResolutionDecision,
    TextCell,
    ValidatedRow,
    ValidationIssue,
    ValidationSummary,
)
from app.domain.upload_schema import (
    CITATION,
    CITATION_AUTHOR,
    CITATION_DATA_HEADERS,
    CITATION_TITLE,
    CITATION_YEAR,
    CONFIRMATION_REQUIRED_FIELDS,
    CULTIVAR,
    SPECIES,
    canonical_header,
)
from app.logging_utils import log_event
from app.resolvers.catalog_resolver import CatalogLookupError, CatalogResolver
from app.services.bulk_insert_service import BulkInsertService, CommitError, CommitResult
from app.services.csv_reader import CSVReadErrorKind, read_csv_bytes
from app.services.defaults_merger import apply_decisions, merge_defaults
from app.validators.header_validator import HeaderCheck, HeaderValidator
from app.validators.row_validator import RowValidator
from db.models.upload_session import UploadSession, UploadStage
from db.repositories.catalog_repository import CatalogRepository
from db.repositories.errors import FileStorageError
from db.repositories.storage import FileStorageBackend, LocalFileStorage
from db.repositories.types import CatalogCandidate, CatalogKind
from db.repositories.upload_session_repository import UploadSessionRepository
from db.session import get_session_factory

logger = logging.getLogger(__name__)

_STAGE_RANK: dict[str, int] = {stage: rank for rank, stage in enumerate(UploadStage.ORDERED)}

UPLOAD_TOO_LARGE = "too_large"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class UploadParseError(ValueError):
    """
    Raised when an uploaded file cannot be read at all. The wizard stage is
    left unchanged.
    """

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class WizardStageError(RuntimeError):
    """
    Raised when an operation is attempted out of order. `redirect_stage` is
    the stage the user has to complete next.
    """

    def __init__(
        self,
        *,
        current: str | None,
        required: str,
        redirect_stage: str,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message
            or f"Upload is at stage '{current or 'none'}'; this step needs '{required}'. "
            f"Continue from '{redirect_stage}'."
        )
        self.current = current
        self.required = required
        self.redirect_stage = redirect_stage

    def to_dict(self) -> dict[str, str | None]:
        return {
            "message": str(self),
            "current_stage": self.current,
            "required_stage": self.required,
            "redirect_stage": self.redirect_stage,
        }


class ResolutionError(RuntimeError):
    """
    Raised when the catalog cannot be queried while resolving references.
    """


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WizardState:
    session_key: str
    stage: str
    resume_stage: str | None = None
    file_name: str | None = None
    linked_citation_id: int | None = None
    row_count: int | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class FileValidationResult:
    """
    Outcome of validating the stored file. `warnings` holds wizard-level
    notices that are not tied to a row, such as a cleared linked citation.
    """

    stage: str
    file_name: str
    header_check: HeaderCheck
    rows: tuple[ValidatedRow, ...]
    summary: ValidationSummary
    linked_citation_id: int | None = None
    warnings: tuple[str, ...] = ()

    @property
    def accepted(self) -> bool:
        return not self.summary.fatal


@dataclass(frozen=True)
class ConfirmationResult:
    stage: str
    confirmed: bool
    rows: tuple[ValidatedRow, ...]
    blocking_issues: tuple[ValidationIssue, ...] = ()
    references: dict[str, tuple[CatalogCandidate, ...]] = field(default_factory=dict)
    pending_creations: dict[str, tuple[str, ...]] = field(default_factory=dict)
    citation_ids: tuple[int, ...] = ()

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class _Derivation:
    header_check: HeaderCheck
    rows: list[ValidatedRow]
    summary: ValidationSummary


# ---------------------------------------------------------------------------
# Wizard
# ---------------------------------------------------------------------------


class BulkUploadWizard:
    """
    Coordinates file validation, defaults, confirmation and insert for one
    upload session at a time.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session],
        storage: FileStorageBackend,
        settings: BulkUploadSettings,
        committer: BulkInsertService | None = None,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage
        self._settings = settings
        self._committer = committer or BulkInsertService(session_factory=session_factory)
        self._today = today or date.today
        self._header_validator = HeaderValidator(unrecognized_policy=settings.unrecognized_header_policy)

    # ------------------------------------------------------------------
    # Stage: start
    # ------------------------------------------------------------------

    def start_upload(self, session_key: str) -> WizardState:
        """
        Begin a new run. File-specific state is discarded; the linked
        citation is kept.
        """

        with self._session_factory() as db:
            with db.begin():
                uploads = UploadSessionRepository(db)
                upload = uploads.get_or_create(session_key)
                stale_path = upload.storage_path
                upload.clear_file_data()
                uploads.mark_stage(upload, UploadStage.START)
                state = _state(upload)

        self._discard_file(stale_path)
        log_event(logger, logging.INFO, "bulk_upload_started", session_key=session_key)
        return state

    def state(self, session_key: str) -> WizardState:
        with self._session_factory() as db:
            with db.begin():
                upload = UploadSessionRepository(db).get(session_key)
                if upload is None:
                    raise WizardStageError(
                        current=None,
                        required=UploadStage.START,
                        redirect_stage=UploadStage.START,
                    )
                return _state(upload)

    def link_citation(self, session_key: str, citation_id: int | None) -> WizardState:
        """
        Link (or with None, unlink) the citation applied to rows that do not
        name their own.
        """

        with self._session_factory() as db:
            with db.begin():
                uploads = UploadSessionRepository(db)
                if citation_id is not None:
                    CatalogRepository(db).require(CatalogKind.CITATION, citation_id)
                upload = uploads.get_or_create(session_key)
                upload.linked_citation_id = citation_id
                state = _state(upload)

        log_event(
            logger,
            logging.INFO,
            "bulk_upload_citation_linked",
            session_key=session_key,
            citation_id=citation_id,
        )
        return state

    # ------------------------------------------------------------------
    # Stage: file_validated
    # ------------------------------------------------------------------

    def upload_file(self, session_key: str, *, file_name: str | None, content: bytes | None) -> FileValidationResult:
        """
        Store, parse and validate a new file.

        Parse failures raise UploadParseError and leave the session as it
        was. Validation problems are returned in the summary; the stage
        only advances when none of them is fatal.
        """

        name = (file_name or "").strip() or "upload.csv"
        if content is not None and len(content) > self._settings.max_upload_bytes:
            raise UploadParseError(
                UPLOAD_TOO_LARGE,
                f"{name} is larger than the {self._settings.max_upload_bytes} byte limit.",
            )

        parsed = read_csv_bytes(content, file_name=name)
        if parsed.error is not None:
            log_event(
                logger,
                logging.WARNING,
                "bulk_upload_parse_failed",
                session_key=session_key,
                file_name=name,
                kind=parsed.error.kind,
            )
            raise UploadParseError(parsed.error.kind, parsed.error.message)

        with self._session_factory() as db:
            with db.begin():
                self._require_session(db, session_key, required=UploadStage.START)

        if content is None:
            raise UploadParseError(CSVReadErrorKind.MISSING_FILE, "No file chosen.")
        try:
            stored = self._storage.save(session_key=session_key, file_name=name, content=content)
        except FileStorageError as exc:
            raise UploadParseError(CSVReadErrorKind.IO, str(exc)) from exc

        warnings: list[str] = []
        try:
            with self._session_factory() as db:
                with db.begin():
                    uploads = UploadSessionRepository(db)
                    upload = self._require_session(db, session_key, required=UploadStage.START, lock=True)
                    stale_path = upload.storage_path

                    canonical = {canonical_header(header) for header in parsed.headers}
                    if upload.linked_citation_id is not None and canonical & set(CITATION_DATA_HEADERS):
                        warnings.append(
                            "The file names its own citations, so the linked citation "
                            f"#{upload.linked_citation_id} was removed."
                        )
                        upload.linked_citation_id = None

                    derivation = self._validate(
                        db,
                        parsed.headers,
                        parsed.rows,
                        row_numbers=parsed.row_numbers,
                        linked_citation=upload.linked_citation_id is not None,
                    )

                    upload.clear_file_data()
                    upload.file_name = stored.file_name
                    upload.storage_path = stored.storage_path
                    upload.headers = list(parsed.headers)
                    upload.row_count = len(derivation.rows)
                    stage = UploadStage.START if derivation.summary.fatal else UploadStage.FILE_VALIDATED
                    uploads.mark_stage(upload, stage)
                    linked_citation_id = upload.linked_citation_id
        except CatalogLookupError as exc:
            self._discard_file(stored.storage_path)
            raise ResolutionError(str(exc)) from exc
        except Exception:
            self._discard_file(stored.storage_path)
            raise

        self._discard_file(stale_path)
        log_event(
            logger,
            logging.INFO,
            "bulk_upload_file_validated",
            session_key=session_key,
            file_name=stored.file_name,
            rows=len(derivation.rows),
            stage=stage,
            field_list_errors=derivation.summary.field_list_error_count,
            data_value_errors=derivation.summary.data_value_error_count,
            fatal=derivation.summary.fatal,
        )
        return FileValidationResult(
            stage=stage,
            file_name=stored.file_name,
            header_check=derivation.header_check,
            rows=tuple(derivation.rows),
            summary=derivation.summary,
            linked_citation_id=linked_citation_id,
            warnings=tuple(warnings),
        )

    def display_file(self, session_key: str) -> FileValidationResult:
        """
        Re-validate the stored file against the current catalog.
        """

        with self._session_factory() as db:
            with db.begin():
                upload = self._require_session(db, session_key, required=UploadStage.START)
                if not upload.storage_path:
                    raise WizardStageError(
                        current=upload.stage,
                        required=UploadStage.FILE_VALIDATED,
                        redirect_stage=UploadStage.START,
                        message="No file has been uploaded for this session.",
                    )
                try:
                    derivation = self._derive(db, upload)
                except CatalogLookupError as exc:
                    raise ResolutionError(str(exc)) from exc
                return FileValidationResult(
                    stage=upload.stage,
                    file_name=upload.file_name or "",
                    header_check=derivation.header_check,
                    rows=tuple(derivation.rows),
                    summary=derivation.summary,
                    linked_citation_id=upload.linked_citation_id,
                )

    # ------------------------------------------------------------------
    # Stage: defaults_chosen
    # ------------------------------------------------------------------

    def choose_defaults(
        self,
        session_key: str,
        defaults: GlobalDefaults,
        *,
        rounding: int | None = None,
    ) -> WizardState:
        """
        Record dataset-wide defaults. Defaults are only checked against the
        catalog at confirmation, so this step always succeeds once a file
        has been validated.
        """

        with self._session_factory() as db:
            with db.begin():
                uploads = UploadSessionRepository(db)
                upload = self._require_session(db, session_key, required=UploadStage.FILE_VALIDATED, lock=True)
                upload.global_values = defaults.to_session_values()
                upload.rounding = rounding if rounding is not None and rounding > 0 else None
                uploads.mark_stage(upload, UploadStage.DEFAULTS_CHOSEN)
                state = _state(upload)

        log_event(
            logger,
            logging.INFO,
            "bulk_upload_defaults_chosen",
            session_key=session_key,
            defaults=defaults.to_session_values(),
            rounding=rounding,
        )
        return state

    # ------------------------------------------------------------------
    # Stage: confirmed
    # ------------------------------------------------------------------

    def confirm(
        self,
        session_key: str,
        decisions: Sequence[ResolutionDecision] | None = None,
    ) -> ConfirmationResult:
        """
        Resolve every row for insert. `decisions`, when given, replace the
        stored select/create directives.

        Rows that still lack a value or a resolved reference block
        confirmation; the stage then stays at `defaults_chosen`.
        """

        try:
            with self._session_factory() as db:
                with db.begin():
                    uploads = UploadSessionRepository(db)
                    upload = self._require_session(
                        db, session_key, required=UploadStage.DEFAULTS_CHOSEN, lock=True
                    )
                    if decisions is not None:
                        upload.decisions = [decision.to_dict() for decision in decisions]

                    result = self._resolve_for_insert(db, upload)
                    if result.confirmed:
                        upload.citation_id_list = list(result.citation_ids)
                        upload.row_count = result.row_count
                    uploads.mark_stage(upload, result.stage)
        except CatalogLookupError as exc:
            self._mark_failed(session_key, resume_stage=UploadStage.DEFAULTS_CHOSEN, error=str(exc))
            raise ResolutionError(str(exc)) from exc

        log_event(
            logger,
            logging.INFO,
            "bulk_upload_confirmation",
            session_key=session_key,
            confirmed=result.confirmed,
            rows=result.row_count,
            blocking_issues=len(result.blocking_issues),
            pending_creations={kind: len(values) for kind, values in result.pending_creations.items()},
        )
        return result

    # ------------------------------------------------------------------
    # Stage: inserted
    # ------------------------------------------------------------------

    def insert(self, session_key: str) -> CommitResult:
        """
        Commit a confirmed upload.

        Only a `confirmed` session (or one that failed while inserting) is
        accepted; anything else, including a second submission of an
        already inserted upload, is rejected before any write happens.
        """

        try:
            with self._session_factory() as db:
                with db.begin():
                    uploads = UploadSessionRepository(db)
                    upload = self._require_session(db, session_key, required=UploadStage.CONFIRMED, lock=True)
                    uploads.mark_stage(upload, UploadStage.CONFIRMED)

                    result = self._resolve_for_insert(db, upload)
                    if not result.confirmed:
                        uploads.mark_stage(upload, UploadStage.DEFAULTS_CHOSEN)
                    storage_path = upload.storage_path
        except CatalogLookupError as exc:
            self._mark_failed(session_key, resume_stage=UploadStage.CONFIRMED, error=str(exc))
            raise ResolutionError(str(exc)) from exc

        if not result.confirmed:
            raise WizardStageError(
                current=UploadStage.DEFAULTS_CHOSEN,
                required=UploadStage.CONFIRMED,
                redirect_stage=UploadStage.DEFAULTS_CHOSEN,
                message="The upload no longer resolves cleanly against the catalog; confirm it again.",
            )

        try:
            commit_result = self._committer.commit(session_key=session_key, rows=result.rows)
        except CommitError as exc:
            self._mark_failed(session_key, resume_stage=UploadStage.CONFIRMED, error=str(exc))
            raise

        self._discard_file(storage_path)
        log_event(
            logger,
            logging.INFO,
            "bulk_upload_inserted",
            session_key=session_key,
            records_inserted=commit_result.records_inserted,
        )
        return commit_result

    # ------------------------------------------------------------------
    # Alternate lookup
    # ------------------------------------------------------------------

    def lookup_candidates(
        self,
        kind: str,
        fragment: str,
        *,
        scope_id: int | None = None,
    ) -> list[CatalogCandidate]:
        with self._session_factory() as db:
            with db.begin():
                try:
                    return self._resolver(db).candidates(kind, fragment, scope_id=scope_id)
                except CatalogLookupError as exc:
                    raise ResolutionError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def _resolver(self, db: Session) -> CatalogResolver:
        return CatalogResolver(
            CatalogRepository(db),
            fuzzy_threshold=self._settings.fuzzy_threshold,
            max_candidates=self._settings.max_candidates,
        )

    def _validate(
        self,
        db: Session,
        headers: Sequence[str],
        rows: Sequence[dict[str, str | None]],
        *,
        row_numbers: Sequence[int],
        linked_citation: bool,
    ) -> _Derivation:
        header_check = self._header_validator.check(headers, linked_citation=linked_citation)
        validator = RowValidator(
            self._resolver(db),
            today=self._today,
            max_validation_errors=self._settings.max_validation_errors,
            log_validation_errors=self._settings.log_validation_errors,
        )
        if header_check.fatal:
            _, summary = validator.validate([], header_check)
            return _Derivation(header_check=header_check, rows=[], summary=summary)

        validated, summary = validator.validate(rows, header_check, row_numbers=row_numbers)
        return _Derivation(header_check=header_check, rows=validated, summary=summary)

    def _derive(self, db: Session, upload: UploadSession) -> _Derivation:
        if not upload.storage_path:
            raise WizardStageError(
                current=upload.stage,
                required=UploadStage.FILE_VALIDATED,
                redirect_stage=UploadStage.START,
                message="No file has been uploaded for this session.",
            )
        try:
            content = self._storage.read(storage_path=upload.storage_path)
        except FileStorageError as exc:
            raise UploadParseError(CSVReadErrorKind.MISSING_FILE, str(exc)) from exc

        parsed = read_csv_bytes(content, file_name=upload.file_name or "upload.csv")
        if parsed.error is not None:
            raise UploadParseError(parsed.error.kind, parsed.error.message)
        return self._validate(
            db,
            parsed.headers,
            parsed.rows,
            row_numbers=parsed.row_numbers,
            linked_citation=upload.linked_citation_id is not None,
        )

    def _resolve_for_insert(self, db: Session, upload: UploadSession) -> ConfirmationResult:
        derivation = self._derive(db, upload)
        defaults = GlobalDefaults.from_session_values(
            upload.global_values,
            rounding=upload.rounding,
            citation_id=upload.linked_citation_id,
        )
        decisions = [ResolutionDecision.from_dict(item) for item in upload.decisions or []]
        rows = apply_decisions(merge_defaults(derivation.rows, defaults), decisions)

        issues: list[ValidationIssue] = []
        if derivation.summary.fatal:
            issues.append(
                ValidationIssue(message="The stored file no longer passes validation; upload it again.")
            )
        issues.extend(issue for row in rows for issue in _row_blocking_issues(row))

        references, pending, reference_issues = self._collect_references(CatalogRepository(db), rows)
        issues.extend(reference_issues)

        confirmed = not issues
        return ConfirmationResult(
            stage=UploadStage.CONFIRMED if confirmed else UploadStage.DEFAULTS_CHOSEN,
            confirmed=confirmed,
            rows=tuple(rows),
            blocking_issues=tuple(issues),
            references=references,
            pending_creations=pending,
            citation_ids=tuple(candidate.key for candidate in references.get(CatalogKind.CITATION, ())),
        )

    @staticmethod
    def _collect_references(
        catalog: CatalogRepository,
        rows: Sequence[ValidatedRow],
    ) -> tuple[dict[str, tuple[CatalogCandidate, ...]], dict[str, tuple[str, ...]], list[ValidationIssue]]:
        found: dict[tuple[str, int], CatalogCandidate | None] = {}
        pending: dict[str, list[str]] = {}
        issues: list[ValidationIssue] = []

        for row in rows:
            for name, cell in row.cells.items():
                if not isinstance(cell, CatalogReferenceCell):
                    continue
                if cell.pending_creation:
                    label = " ".join((cell.raw or "").split())
                    labels = pending.setdefault(cell.kind, [])
                    if label and label not in labels:
                        labels.append(label)
                    continue
                if cell.key is None:
                    continue

                lookup = (cell.kind, cell.key)
                if lookup not in found:
                    try:
                        found[lookup] = catalog.get(cell.kind, cell.key)
                    except SQLAlchemyError as exc:
                        raise CatalogLookupError(f"Catalog lookup failed for {cell.kind} #{cell.key}.") from exc
                candidate = found[lookup]
                if candidate is None:
                    issues.append(
                        ValidationIssue(
                            row_number=row.row_number,
                            field=name,
                            message=f"{cell.kind.capitalize()} #{cell.key} does not exist.",
                        )
                    )
                    continue

                if name == CULTIVAR:
                    species = row.reference(SPECIES)
                    species_key = species.key if species is not None else None
                    if species_key is not None and candidate.detail.get("specie_id") != species_key:
                        issues.append(
                            ValidationIssue(
                                row_number=row.row_number,
                                field=name,
                                value=cell.raw,
                                message=f"Cultivar '{candidate.label}' does not belong to the row's species.",
                            )
                        )

        references: dict[str, list[CatalogCandidate]] = {}
        for candidate in found.values():
            if candidate is not None:
                references.setdefault(candidate.kind, []).append(candidate)

        return (
            {kind: tuple(sorted(items, key=lambda item: item.key)) for kind, items in references.items()},
            {kind: tuple(labels) for kind, labels in pending.items()},
            issues,
        )

    # ------------------------------------------------------------------
    # Session helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_session(
        db: Session,
        session_key: str,
        *,
        required: str,
        lock: bool = False,
    ) -> UploadSession:
        upload = UploadSessionRepository(db).get(session_key, lock=lock)
        if upload is None:
            raise WizardStageError(current=None, required=required, redirect_stage=UploadStage.START)

        current = _effective_stage(upload)
        if current == UploadStage.INSERTED or _STAGE_RANK[current] < _STAGE_RANK[required]:
            raise WizardStageError(
                current=upload.stage,
                required=required,
                redirect_stage=_redirect_for(upload),
            )
        return upload

    def _mark_failed(self, session_key: str, *, resume_stage: str, error: str) -> None:
        with self._session_factory() as db:
            with db.begin():
                uploads = UploadSessionRepository(db)
                upload = uploads.get(session_key, lock=True)
                if upload is not None and upload.stage != UploadStage.INSERTED:
                    uploads.mark_failed(upload, resume_stage=resume_stage, error_message=error)

        log_event(
            logger,
            logging.ERROR,
            "bulk_upload_failed",
            session_key=session_key,
            resume_stage=resume_stage,
            error=error,
        )

    def _discard_file(self, storage_path: str | None) -> None:
        if not storage_path:
            return
        try:
            self._storage.delete(storage_path=storage_path)
        except FileStorageError as exc:
            logger.warning("Failed to delete stored upload path=%s: %s", storage_path, exc)


def _effective_stage(upload: UploadSession) -> str:
    if upload.stage == UploadStage.FAILED:
        return upload.resume_stage or UploadStage.START
    return upload.stage


def _redirect_for(upload: UploadSession) -> str:
    current = _effective_stage(upload)
    if current == UploadStage.INSERTED:
        return UploadStage.START
    return current


def _state(upload: UploadSession) -> WizardState:
    return WizardState(
        session_key=upload.session_key,
        stage=upload.stage,
        resume_stage=upload.resume_stage,
        file_name=upload.file_name,
        linked_citation_id=upload.linked_citation_id,
        row_count=upload.row_count,
        last_error=upload.last_error,
    )


def _row_blocking_issues(row: ValidatedRow) -> list[ValidationIssue]:
    if row.row_verdict.is_error:
        return [ValidationIssue(row_number=row.row_number, message=row.row_verdict.reason or "Invalid row.")]

    issues: list[ValidationIssue] = []
    for name in CONFIRMATION_REQUIRED_FIELDS:
        if row.cell(name) is None:
            issues.append(
                ValidationIssue(
                    row_number=row.row_number,
                    field=name,
                    message=f"No value for '{name}'; add it to the file or choose a default.",
                )
            )

    for name, cell in row.cells.items():
        if isinstance(cell, CatalogReferenceCell):
            if not cell.is_resolved:
                reason = cell.verdict.reason or f"'{cell.raw}' is not resolved."
                issues.append(
                    ValidationIssue(
                        row_number=row.row_number,
                        field=name,
                        value=cell.raw,
                        message=f"{reason} Select an existing {cell.kind} or create a new one.",
                    )
                )
            elif name == CITATION and cell.pending_creation and not _can_create_citation(row):
                issues.append(
                    ValidationIssue(
                        row_number=row.row_number,
                        field=name,
                        value=cell.raw,
                        message="A new citation needs author, year and title; a DOI alone is not enough.",
                    )
                )
        elif cell.verdict.is_error:
            issues.append(
                ValidationIssue(
                    row_number=row.row_number,
                    field=name,
                    value=cell.raw,
                    message=cell.verdict.reason or "Invalid value.",
                )
            )
    return issues


def _can_create_citation(row: ValidatedRow) -> bool:
    year = row.cell(CITATION_YEAR)
    return (
        isinstance(row.cell(CITATION_AUTHOR), TextCell)
        and isinstance(row.cell(CITATION_TITLE), TextCell)
        and year is not None
        and not year.verdict.is_error
    )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_bulk_upload_wizard() -> BulkUploadWizard:
    """
    Build and cache the wizard with env-driven settings.
    """
    settings = get_bulk_upload_settings()
    return BulkUploadWizard(
        session_factory=get_session_factory(),
        storage=LocalFileStorage(settings.storage_dir),
        settings=settings,
    )
