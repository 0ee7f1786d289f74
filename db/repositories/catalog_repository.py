"""
Catalog repository: fragment lookups, key lookups and entity creation for
citations, sites, species, treatments and cultivars.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Select, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from db.models.citation import Citation, CitationSite, CitationTreatment
from db.models.cultivar import Cultivar
from db.models.site import Site
from db.models.specie import Specie
from db.models.treatment import Treatment
from db.repositories.errors import CatalogEntityNotFound, UnknownCatalogKind
from db.repositories.types import CatalogCandidate, CatalogKind

_DEFAULT_LIMIT = 25


def _citation_label(row: Citation) -> str:
    return f"{row.author} ({row.year}) {row.title}"


@dataclass(frozen=True)
class _EntitySpec:
    model: type
    label_column: Any
    search_columns: tuple[Any, ...]
    label: Callable[[Any], str]
    detail: Callable[[Any], dict[str, Any]]


_SPECS: dict[str, _EntitySpec] = {
    CatalogKind.SITE: _EntitySpec(
        model=Site,
        label_column=Site.sitename,
        search_columns=(Site.sitename, Site.city, Site.state, Site.country),
        label=lambda row: row.sitename,
        detail=lambda row: {"city": row.city, "state": row.state, "country": row.country},
    ),
    CatalogKind.SPECIES: _EntitySpec(
        model=Specie,
        label_column=Specie.scientificname,
        search_columns=(Specie.scientificname, Specie.commonname),
        label=lambda row: row.scientificname,
        detail=lambda row: {"commonname": row.commonname},
    ),
    CatalogKind.TREATMENT: _EntitySpec(
        model=Treatment,
        label_column=Treatment.name,
        search_columns=(Treatment.name,),
        label=lambda row: row.name,
        detail=lambda row: {"definition": row.definition, "control": row.control},
    ),
    CatalogKind.CULTIVAR: _EntitySpec(
        model=Cultivar,
        label_column=Cultivar.name,
        search_columns=(Cultivar.name,),
        label=lambda row: row.name,
        detail=lambda row: {"specie_id": row.specie_id},
    ),
    CatalogKind.CITATION: _EntitySpec(
        model=Citation,
        label_column=Citation.title,
        search_columns=(Citation.author, Citation.title, Citation.doi),
        label=_citation_label,
        detail=lambda row: {
            "author": row.author,
            "year": row.year,
            "title": row.title,
            "doi": row.doi,
        },
    ),
}


def _escape_like(fragment: str) -> str:
    return fragment.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _contains(column: Any, fragment: str) -> Any:
    return column.ilike(f"%{_escape_like(fragment)}%", escape="\\")


class CatalogRepository:
    """
    Read and write access to catalog entities.

    Reads never mutate. `create` is the only write path for entities and
    re-checks for an existing exact match under a row lock first.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def search(
        self,
        kind: str,
        fragment: str,
        *,
        scope_id: int | None = None,
        limit: int = _DEFAULT_LIMIT,
    ) -> list[CatalogCandidate]:
        """
        Case-insensitive substring match on the kind's searchable columns.
        `scope_id` restricts cultivars to one species.
        """

        spec = self._spec(kind)
        stmt: Select[Any] = select(spec.model).where(
            or_(*(_contains(column, fragment) for column in spec.search_columns))
        )
        stmt = self._apply_scope(stmt, kind=kind, scope_id=scope_id)
        stmt = stmt.order_by(spec.label_column, spec.model.id).limit(max(1, limit))
        return [self._to_candidate(kind, row) for row in self._session.scalars(stmt).all()]

    def find_exact(
        self,
        kind: str,
        label: str,
        *,
        scope_id: int | None = None,
        lock: bool = False,
    ) -> list[CatalogCandidate]:
        """
        Entities whose label equals `label`, ignoring case.
        """

        spec = self._spec(kind)
        stmt: Select[Any] = select(spec.model).where(
            func.lower(spec.label_column) == label.strip().lower()
        )
        stmt = self._apply_scope(stmt, kind=kind, scope_id=scope_id)
        if lock:
            stmt = stmt.with_for_update()
        stmt = stmt.order_by(spec.model.id)
        return [self._to_candidate(kind, row) for row in self._session.scalars(stmt).all()]

    def search_citations(
        self,
        *,
        doi: str | None = None,
        author: str | None = None,
        year: int | None = None,
        title: str | None = None,
        limit: int = _DEFAULT_LIMIT,
        lock: bool = False,
    ) -> list[CatalogCandidate]:
        """
        DOI lookups are exact (case-insensitive). Without a DOI, author and
        title match as fragments and year must be equal.
        """

        stmt: Select[Any] = select(Citation)
        if doi:
            stmt = stmt.where(func.lower(Citation.doi) == doi.strip().lower())
        else:
            if not (author or title or year is not None):
                return []
            if author:
                stmt = stmt.where(_contains(Citation.author, author.strip()))
            if title:
                stmt = stmt.where(_contains(Citation.title, title.strip()))
            if year is not None:
                stmt = stmt.where(Citation.year == year)
        if lock:
            stmt = stmt.with_for_update()
        stmt = stmt.order_by(Citation.id).limit(max(1, limit))
        return [
            self._to_candidate(CatalogKind.CITATION, row)
            for row in self._session.scalars(stmt).all()
        ]

    def get(self, kind: str, key: int) -> CatalogCandidate | None:
        spec = self._spec(kind)
        row = self._session.get(spec.model, key)
        if row is None:
            return None
        return self._to_candidate(kind, row)

    def require(self, kind: str, key: int) -> CatalogCandidate:
        candidate = self.get(kind, key)
        if candidate is None:
            raise CatalogEntityNotFound(kind, key)
        return candidate

    def create(self, kind: str, attributes: Mapping[str, Any]) -> CatalogCandidate:
        """
        Create one entity, or return the existing exact match.

        The existence check locks matching rows so two concurrent inserts
        cannot both create the same entity.
        """

        spec = self._spec(kind)
        existing = self._find_existing_for_create(kind, attributes)
        if existing:
            return existing[0]

        row = spec.model(**dict(attributes))
        self._session.add(row)
        self._session.flush()
        return self._to_candidate(kind, row)

    def link_citation_site(self, *, citation_id: int, site_id: int) -> None:
        self._link(CitationSite, citation_id=citation_id, site_id=site_id)

    def link_citation_treatment(self, *, citation_id: int, treatment_id: int) -> None:
        self._link(CitationTreatment, citation_id=citation_id, treatment_id=treatment_id)

    def count(self, kind: str) -> int:
        spec = self._spec(kind)
        return int(self._session.scalar(select(func.count()).select_from(spec.model)) or 0)

    def _link(self, model: type, **values: int) -> None:
        if self._session.get_bind().dialect.name == "postgresql":
            self._session.execute(pg_insert(model).values(**values).on_conflict_do_nothing())
            return

        conditions = [getattr(model, column) == value for column, value in values.items()]
        exists = self._session.scalar(select(model.id).where(*conditions).limit(1))
        if exists is None:
            self._session.add(model(**values))
            self._session.flush()

    def _find_existing_for_create(
        self,
        kind: str,
        attributes: Mapping[str, Any],
    ) -> Sequence[CatalogCandidate]:
        if kind == CatalogKind.CITATION:
            doi = attributes.get("doi")
            if doi:
                return self.search_citations(doi=doi, lock=True)
            stmt = (
                select(Citation)
                .where(
                    func.lower(Citation.author) == str(attributes.get("author", "")).strip().lower(),
                    func.lower(Citation.title) == str(attributes.get("title", "")).strip().lower(),
                    Citation.year == attributes.get("year"),
                )
                .with_for_update()
            )
            return [self._to_candidate(kind, row) for row in self._session.scalars(stmt).all()]

        spec = self._spec(kind)
        label = str(attributes.get(spec.label_column.key, ""))
        return self.find_exact(
            kind,
            label,
            scope_id=attributes.get("specie_id") if kind == CatalogKind.CULTIVAR else None,
            lock=True,
        )

    def _apply_scope(self, stmt: Select[Any], *, kind: str, scope_id: int | None) -> Select[Any]:
        if kind == CatalogKind.CULTIVAR and scope_id is not None:
            return stmt.where(Cultivar.specie_id == scope_id)
        return stmt

    def _to_candidate(self, kind: str, row: Any) -> CatalogCandidate:
        spec = _SPECS[kind]
        return CatalogCandidate(kind=kind, key=row.id, label=spec.label(row), detail=spec.detail(row))

    @staticmethod
    def _spec(kind: str) -> _EntitySpec:
        try:
            return _SPECS[kind]
        except KeyError as exc:
            raise UnknownCatalogKind(f"Unknown catalog kind: {kind!r}") from exc
