"""
db/models/citation.py

Citation model plus the link tables tying a citation to the sites and
treatments its data refers to.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class Citation(Base, TimestampMixin):
    """
    A published source. Identified by DOI when it has one, otherwise by
    author, year and title.
    """

    __tablename__ = "citations"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    journal: Mapped[str | None] = mapped_column(String(255), nullable=True)
    doi: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Digital Object Identifier, matched case-insensitively",
    )

    __table_args__ = (
        Index("ix_citations_doi", "doi"),
        Index("ix_citations_author_year", "author", "year"),
    )

    def __repr__(self) -> str:
        return f"<Citation id={self.id} author={self.author!r} year={self.year}>"


class CitationSite(Base):
    __tablename__ = "citations_sites"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    citation_id: Mapped[int] = mapped_column(
        ForeignKey("citations.id", ondelete="CASCADE"),
        nullable=False,
    )
    site_id: Mapped[int] = mapped_column(
        ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("citation_id", "site_id", name="uq_citations_sites_pair"),
    )


class CitationTreatment(Base):
    __tablename__ = "citations_treatments"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    citation_id: Mapped[int] = mapped_column(
        ForeignKey("citations.id", ondelete="CASCADE"),
        nullable=False,
    )
    treatment_id: Mapped[int] = mapped_column(
        ForeignKey("treatments.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("citation_id", "treatment_id", name="uq_citations_treatments_pair"),
    )
