"""
db/models/cultivar.py

Cultivar of one species.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from db.models.specie import Specie


class Cultivar(Base, TimestampMixin):
    __tablename__ = "cultivars"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    specie_id: Mapped[int] = mapped_column(
        ForeignKey("species.id", ondelete="CASCADE"),
        nullable=False,
    )

    specie: Mapped["Specie"] = relationship("Specie", back_populates="cultivars")

    __table_args__ = (
        UniqueConstraint("name", "specie_id", name="uq_cultivars_name_specie"),
        Index("ix_cultivars_specie_id", "specie_id"),
    )

    def __repr__(self) -> str:
        return f"<Cultivar id={self.id} name={self.name!r} specie_id={self.specie_id}>"
