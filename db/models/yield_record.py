"""
db/models/yield_record.py

Yield observation written by the bulk upload insert step.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class AccessLevel:
    """Data access levels, most restrictive first."""

    RESTRICTED = 1
    INTERNAL = 2
    EXTERNAL = 3
    PUBLIC = 4

    ALL = (RESTRICTED, INTERNAL, EXTERNAL, PUBLIC)


class Yield(Base, TimestampMixin):
    __tablename__ = "yields"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    citation_id: Mapped[int] = mapped_column(ForeignKey("citations.id"), nullable=False)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id"), nullable=False)
    specie_id: Mapped[int] = mapped_column(ForeignKey("species.id"), nullable=False)
    treatment_id: Mapped[int] = mapped_column(ForeignKey("treatments.id"), nullable=False)
    cultivar_id: Mapped[int | None] = mapped_column(ForeignKey("cultivars.id"), nullable=True)
    date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    mean: Mapped[Decimal] = mapped_column(Numeric(16, 6), nullable=False)
    n: Mapped[int | None] = mapped_column(Integer, nullable=True)
    statname: Mapped[str | None] = mapped_column(
        String(16),
        nullable=True,
        comment="Name of the dispersion statistic, e.g. SE",
    )
    stat: Mapped[Decimal | None] = mapped_column(Numeric(16, 6), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    access_level: Mapped[int] = mapped_column(Integer, nullable=False)
    upload_session_key: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        comment="Session key of the wizard run that inserted the row",
    )

    __table_args__ = (
        CheckConstraint("mean >= 0", name="ck_yields_mean_non_negative"),
        CheckConstraint("access_level BETWEEN 1 AND 4", name="ck_yields_access_level"),
        Index("ix_yields_citation_id", "citation_id"),
        Index("ix_yields_site_id", "site_id"),
        Index("ix_yields_specie_id", "specie_id"),
    )

    def __repr__(self) -> str:
        return f"<Yield id={self.id} mean={self.mean} site_id={self.site_id}>"
