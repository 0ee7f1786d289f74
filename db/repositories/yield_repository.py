"""
Persistence for yield records produced by the bulk upload insert step.
"""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models.yield_record import Yield


class YieldRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def add(self, record: Yield) -> Yield:
        self._session.add(record)
        self._session.flush()
        return record

    def count(self) -> int:
        return int(self._session.scalar(select(func.count()).select_from(Yield)) or 0)

    def list_for_upload(self, session_key: str) -> Sequence[Yield]:
        stmt = (
            select(Yield)
            .where(Yield.upload_session_key == session_key)
            .order_by(Yield.id)
        )
        return list(self._session.scalars(stmt).all())
