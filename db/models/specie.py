"""
db/models/specie.py

Plant species, keyed for lookup by scientific name.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from db.models.cultivar import Cultivar


class Specie(Base, TimestampMixin):
    __tablename__ = "species"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    genus: Mapped[str | None] = mapped_column(String(255), nullable=True)
    species: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scientificname: Mapped[str] = mapped_column(String(255), nullable=False)
    commonname: Mapped[str | None] = mapped_column(String(255), nullable=True)

    cultivars: Mapped[list["Cultivar"]] = relationship(
        "Cultivar",
        back_populates="specie",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (Index("ix_species_scientificname", "scientificname"),)

    def __repr__(self) -> str:
        return f"<Specie id={self.id} scientificname={self.scientificname!r}>"
