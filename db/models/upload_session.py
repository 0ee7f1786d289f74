"""
db/models/upload_session.py

Persisted bulk upload wizard state, one row per user session.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import BigInteger, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONType, TimestampMixin


class UploadStage:
    """Wizard stages in the order a run passes through them."""

    START = "start"
    FILE_VALIDATED = "file_validated"
    DEFAULTS_CHOSEN = "defaults_chosen"
    CONFIRMED = "confirmed"
    INSERTED = "inserted"
    FAILED = "failed"

    ORDERED = (START, FILE_VALIDATED, DEFAULTS_CHOSEN, CONFIRMED, INSERTED)


class UploadSession(Base, TimestampMixin):
    """
    Interim state of one in-progress wizard run.

    linked_citation_id survives a new upload; every other field is
    file-specific and is cleared when a new upload starts or after a
    successful insert.
    """

    __tablename__ = "upload_sessions"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    session_key: Mapped[str] = mapped_column(String(128), nullable=False)
    stage: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=UploadStage.START,
        comment="start → file_validated → defaults_chosen → confirmed → inserted | failed",
    )
    resume_stage: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        comment="Stage a failed run is retried from",
    )
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    storage_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    headers: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    global_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    rounding: Mapped[int | None] = mapped_column(Integer, nullable=True)
    citation_id_list: Mapped[list[int] | None] = mapped_column(JSONType, nullable=True)
    linked_citation_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    decisions: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    row_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("session_key", name="uq_upload_sessions_session_key"),
        Index("ix_upload_sessions_stage", "stage"),
    )

    def clear_file_data(self) -> None:
        self.file_name = None
        self.storage_path = None
        self.headers = None
        self.global_values = None
        self.rounding = None
        self.citation_id_list = None
        self.decisions = None
        self.row_count = None
        self.last_error = None
        self.resume_stage = None

    def __repr__(self) -> str:
        return f"<UploadSession session_key={self.session_key!r} stage={self.stage!r}>"
