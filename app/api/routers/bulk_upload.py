"""
app/api/routers/bulk_upload.py

Bulk upload wizard HTTP endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, UploadFile, status

from app.api.dependencies import get_csv_upload, get_session_key
from app.domain.bulk_upload import GlobalDefaults, ResolutionDecision
from app.schemas.bulk_upload import (
    CatalogCandidateResponse,
    ConfirmationResponse,
    ConfirmRequest,
    DefaultsRequest,
    FileValidationResponse,
    InsertResponse,
    LinkCitationRequest,
    WizardStateResponse,
)
from app.services.bulk_insert_service import CommitError
from app.services.bulk_upload_wizard import (
    BulkUploadWizard,
    ResolutionError,
    UploadParseError,
    WizardStageError,
    get_bulk_upload_wizard,
)
from db.repositories.errors import CatalogEntityNotFound, FileStorageError, UnknownCatalogKind

router = APIRouter(prefix="/bulk-upload", tags=["bulk-upload"])

_WIZARD_ERRORS = (
    UploadParseError,
    WizardStageError,
    ResolutionError,
    CommitError,
    CatalogEntityNotFound,
    UnknownCatalogKind,
    FileStorageError,
)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, UploadParseError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_dict())
    if isinstance(exc, WizardStageError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_dict())
    if isinstance(exc, ResolutionError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="The catalog is unavailable; try again shortly.",
        )
    if isinstance(exc, CatalogEntityNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, UnknownCatalogKind):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, CommitError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Data was not inserted; all changes were rolled back.",
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Unable to access the stored upload.",
    )


@router.post("/start", response_model=WizardStateResponse)
def start_upload(
    session_key: str = Depends(get_session_key),
    wizard: BulkUploadWizard = Depends(get_bulk_upload_wizard),
) -> WizardStateResponse:
    """
    Begin a new upload, discarding any file from a previous run.
    """

    return WizardStateResponse.from_state(wizard.start_upload(session_key))


@router.get("/state", response_model=WizardStateResponse)
def get_state(
    session_key: str = Depends(get_session_key),
    wizard: BulkUploadWizard = Depends(get_bulk_upload_wizard),
) -> WizardStateResponse:
    try:
        state = wizard.state(session_key)
    except _WIZARD_ERRORS as exc:
        raise _http_error(exc) from exc
    return WizardStateResponse.from_state(state)


@router.post("/file", response_model=FileValidationResponse)
def upload_file(
    file: UploadFile = Depends(get_csv_upload),
    session_key: str = Depends(get_session_key),
    wizard: BulkUploadWizard = Depends(get_bulk_upload_wizard),
) -> FileValidationResponse:
    """
    Upload and validate one CSV file.
    """

    try:
        content = file.file.read()
        result = wizard.upload_file(session_key, file_name=file.filename, content=content)
    except _WIZARD_ERRORS as exc:
        raise _http_error(exc) from exc
    finally:
        file.file.close()

    return FileValidationResponse.from_result(result)


@router.get("/file", response_model=FileValidationResponse)
def display_file(
    session_key: str = Depends(get_session_key),
    wizard: BulkUploadWizard = Depends(get_bulk_upload_wizard),
) -> FileValidationResponse:
    try:
        result = wizard.display_file(session_key)
    except _WIZARD_ERRORS as exc:
        raise _http_error(exc) from exc
    return FileValidationResponse.from_result(result)


@router.post("/defaults", response_model=WizardStateResponse)
def choose_defaults(
    payload: DefaultsRequest,
    session_key: str = Depends(get_session_key),
    wizard: BulkUploadWizard = Depends(get_bulk_upload_wizard),
) -> WizardStateResponse:
    defaults = GlobalDefaults(
        site_id=payload.site_id,
        species_id=payload.species_id,
        treatment_id=payload.treatment_id,
        cultivar_id=payload.cultivar_id,
        access_level=payload.access_level,
        date=payload.date,
    )
    try:
        state = wizard.choose_defaults(session_key, defaults, rounding=payload.rounding)
    except _WIZARD_ERRORS as exc:
        raise _http_error(exc) from exc
    return WizardStateResponse.from_state(state)


@router.post("/confirm", response_model=ConfirmationResponse)
def confirm(
    payload: ConfirmRequest | None = None,
    session_key: str = Depends(get_session_key),
    wizard: BulkUploadWizard = Depends(get_bulk_upload_wizard),
) -> ConfirmationResponse:
    """
    Resolve every row against the catalog. Unresolved references come back
    as blocking issues; send decisions to select or create them.
    """

    decisions = None
    if payload is not None and payload.decisions is not None:
        decisions = [
            ResolutionDecision(kind=item.kind, value=item.value, action=item.action, key=item.key)
            for item in payload.decisions
        ]
    try:
        result = wizard.confirm(session_key, decisions)
    except _WIZARD_ERRORS as exc:
        raise _http_error(exc) from exc
    return ConfirmationResponse.from_result(result)


@router.post("/insert", response_model=InsertResponse)
def insert(
    session_key: str = Depends(get_session_key),
    wizard: BulkUploadWizard = Depends(get_bulk_upload_wizard),
) -> InsertResponse:
    try:
        result = wizard.insert(session_key)
    except _WIZARD_ERRORS as exc:
        raise _http_error(exc) from exc
    return InsertResponse.from_result(result)


@router.post("/citation", response_model=WizardStateResponse)
def link_citation(
    payload: LinkCitationRequest,
    session_key: str = Depends(get_session_key),
    wizard: BulkUploadWizard = Depends(get_bulk_upload_wizard),
) -> WizardStateResponse:
    """
    Link a citation to every row that does not name its own.
    """

    try:
        state = wizard.link_citation(session_key, payload.citation_id)
    except _WIZARD_ERRORS as exc:
        raise _http_error(exc) from exc
    return WizardStateResponse.from_state(state)


@router.get("/candidates", response_model=list[CatalogCandidateResponse])
def lookup_candidates(
    kind: str = Query(..., description="citation, site, species, treatment or cultivar"),
    q: str = Query(..., min_length=1, description="Name fragment"),
    species_id: int | None = Query(default=None, ge=1, description="Restrict cultivars to one species"),
    wizard: BulkUploadWizard = Depends(get_bulk_upload_wizard),
) -> list[CatalogCandidateResponse]:
    try:
        candidates = wizard.lookup_candidates(kind, q, scope_id=species_id)
    except _WIZARD_ERRORS as exc:
        raise _http_error(exc) from exc
    return [CatalogCandidateResponse.from_candidate(candidate) for candidate in candidates]
