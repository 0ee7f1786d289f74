"""
Repository for the persisted bulk upload wizard state.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.upload_session import UploadSession, UploadStage
from db.repositories.errors import UploadSessionNotFound


class UploadSessionRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, session_key: str, *, lock: bool = False) -> UploadSession | None:
        stmt = select(UploadSession).where(UploadSession.session_key == session_key)
        if lock:
            stmt = stmt.with_for_update()
        return self._session.scalars(stmt).first()

    def require(self, session_key: str, *, lock: bool = False) -> UploadSession:
        upload = self.get(session_key, lock=lock)
        if upload is None:
            raise UploadSessionNotFound(f"No upload in progress for session {session_key!r}.")
        return upload

    def get_or_create(self, session_key: str) -> UploadSession:
        upload = self.get(session_key, lock=True)
        if upload is not None:
            return upload
        upload = UploadSession(session_key=session_key, stage=UploadStage.START)
        self._session.add(upload)
        self._session.flush()
        return upload

    def mark_failed(self, upload: UploadSession, *, resume_stage: str, error_message: str) -> None:
        upload.stage = UploadStage.FAILED
        upload.resume_stage = resume_stage
        upload.last_error = error_message

    def mark_stage(self, upload: UploadSession, stage: str) -> None:
        upload.stage = stage
        upload.resume_stage = None
        upload.last_error = None
