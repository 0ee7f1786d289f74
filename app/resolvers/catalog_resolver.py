"""
app/resolvers/catalog_resolver.py

Matches free-text values from an upload against catalog entities.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from difflib import SequenceMatcher
from typing import Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError

from app.domain.bulk_upload import MatchStrategy, Resolution, normalize_value
from db.repositories.types import CatalogCandidate, CatalogKind

logger = logging.getLogger(__name__)

_MAX_SUGGESTIONS = 5
_SUGGESTION_PREFIX_LENGTH = 3


class CatalogLookupError(RuntimeError):
    """
    Raised when the catalog store cannot be queried.
    """


class CatalogLookup(Protocol):
    """
    Read side of the catalog store used for resolution.
    """

    def search(
        self,
        kind: str,
        fragment: str,
        *,
        scope_id: int | None = None,
        limit: int = ...,
    ) -> list[CatalogCandidate]:
        ...

    def find_exact(
        self,
        kind: str,
        label: str,
        *,
        scope_id: int | None = None,
        lock: bool = False,
    ) -> list[CatalogCandidate]:
        ...

    def search_citations(
        self,
        *,
        doi: str | None = None,
        author: str | None = None,
        year: int | None = None,
        title: str | None = None,
        limit: int = ...,
        lock: bool = False,
    ) -> list[CatalogCandidate]:
        ...


def _citation_query(doi: str | None, author: str | None, year: int | None, title: str | None) -> str:
    if doi and doi.strip():
        return doi.strip()
    parts = [part for part in (author, str(year) if year is not None else None, title) if part]
    return " / ".join(str(part).strip() for part in parts)


class CatalogResolver:
    """
    Read-only resolution of free text into catalog keys.

    An exact full-string match (ignoring case and repeated whitespace) wins
    over any number of partial matches; two or more exact matches are
    ambiguous. Results are memoized for the lifetime of the instance, so a
    resolver should be created per validation run.
    """

    def __init__(
        self,
        catalog: CatalogLookup,
        *,
        fuzzy_threshold: float = 0.84,
        max_candidates: int = 25,
    ) -> None:
        self._catalog = catalog
        self._fuzzy_threshold = max(0.0, min(1.0, fuzzy_threshold))
        self._max_candidates = max(1, max_candidates)
        self._memo: dict[tuple[object, ...], Resolution] = {}

    def resolve(self, kind: str, value: str | None, *, scope_id: int | None = None) -> Resolution:
        """
        Resolve `value` against entities of `kind`. Cultivars may be scoped
        to one species with `scope_id`.
        """

        if kind == CatalogKind.CITATION:
            return self.resolve_citation(doi=value)

        display = " ".join(str(value or "").split())
        query = normalize_value(display)
        if not query:
            return Resolution.not_found(kind, display)

        memo_key = (kind, query, scope_id)
        if memo_key in self._memo:
            return self._memo[memo_key]

        resolution = self._guarded(
            kind,
            display,
            lambda: self._decide(
                kind=kind,
                query=display,
                exact=lambda: self._catalog.find_exact(kind, display, scope_id=scope_id),
                partial=lambda: self._catalog.search(
                    kind, display, scope_id=scope_id, limit=self._max_candidates
                ),
                suggestions=lambda: self._suggest(kind, query, scope_id=scope_id),
            ),
        )
        self._memo[memo_key] = resolution
        return resolution

    def resolve_citation(
        self,
        *,
        doi: str | None = None,
        author: str | None = None,
        year: int | None = None,
        title: str | None = None,
    ) -> Resolution:
        """
        Resolve a citation by DOI when one is given, otherwise by author,
        year and title. DOIs only ever match exactly.
        """

        display = _citation_query(doi, author, year, title)
        if not display:
            return Resolution.not_found(CatalogKind.CITATION, display)

        memo_key = (CatalogKind.CITATION, normalize_value(doi), normalize_value(author), year, normalize_value(title))
        if memo_key in self._memo:
            return self._memo[memo_key]

        if doi and doi.strip():
            resolution = self._guarded(
                CatalogKind.CITATION,
                display,
                lambda: self._decide(
                    kind=CatalogKind.CITATION,
                    query=display,
                    exact=lambda: self._catalog.search_citations(doi=doi, limit=self._max_candidates),
                    partial=list,
                    suggestions=tuple,
                ),
            )
        else:
            resolution = self._guarded(
                CatalogKind.CITATION,
                display,
                lambda: self._decide(
                    kind=CatalogKind.CITATION,
                    query=display,
                    exact=lambda: [
                        candidate
                        for candidate in self._catalog.search_citations(
                            author=author, year=year, title=title, limit=self._max_candidates
                        )
                        if self._is_exact_citation(candidate, author=author, year=year, title=title)
                    ],
                    partial=lambda: self._catalog.search_citations(
                        author=author, year=year, title=title, limit=self._max_candidates
                    ),
                    suggestions=tuple,
                ),
            )

        self._memo[memo_key] = resolution
        return resolution

    def candidates(self, kind: str, fragment: str, *, scope_id: int | None = None) -> list[CatalogCandidate]:
        """
        Alternate lookup used when the user picks an entity by hand.
        """

        display = " ".join(fragment.split())
        if not display:
            return []
        try:
            return self._catalog.search(kind, display, scope_id=scope_id, limit=self._max_candidates)
        except SQLAlchemyError as exc:
            raise CatalogLookupError(f"Catalog lookup failed for {kind} {display!r}.") from exc

    def _decide(
        self,
        *,
        kind: str,
        query: str,
        exact: Callable[[], Sequence[CatalogCandidate]],
        partial: Callable[[], Sequence[CatalogCandidate]],
        suggestions: Callable[[], Sequence[CatalogCandidate]],
    ) -> Resolution:
        exact_matches = tuple(exact())
        if len(exact_matches) == 1:
            return Resolution.unique(kind, query, exact_matches[0], strategy=MatchStrategy.EXACT)
        if len(exact_matches) > 1:
            return Resolution.ambiguous(kind, query, exact_matches)

        partial_matches = tuple(partial())
        if len(partial_matches) == 1:
            return Resolution.unique(kind, query, partial_matches[0], strategy=MatchStrategy.PARTIAL)
        if len(partial_matches) > 1:
            return Resolution.ambiguous(kind, query, partial_matches)

        return Resolution.not_found(kind, query, tuple(suggestions()))

    def _suggest(self, kind: str, query: str, *, scope_id: int | None) -> tuple[CatalogCandidate, ...]:
        prefix = query[:_SUGGESTION_PREFIX_LENGTH]
        pool = self._catalog.search(kind, prefix, scope_id=scope_id, limit=self._max_candidates * 4)

        scored: list[tuple[float, CatalogCandidate]] = []
        for candidate in pool:
            score = SequenceMatcher(None, query, normalize_value(candidate.label)).ratio()
            if score >= self._fuzzy_threshold:
                scored.append((score, candidate))
        scored.sort(key=lambda item: (-item[0], item[1].label, item[1].key))
        return tuple(candidate for _, candidate in scored[:_MAX_SUGGESTIONS])

    @staticmethod
    def _is_exact_citation(
        candidate: CatalogCandidate,
        *,
        author: str | None,
        year: int | None,
        title: str | None,
    ) -> bool:
        detail = candidate.detail
        if author and normalize_value(detail.get("author")) != normalize_value(author):
            return False
        if year is not None and detail.get("year") != year:
            return False
        if title and normalize_value(detail.get("title")) != normalize_value(title):
            return False
        return True

    @staticmethod
    def _guarded(kind: str, query: str, resolve: Callable[[], Resolution]) -> Resolution:
        try:
            return resolve()
        except SQLAlchemyError as exc:
            logger.warning("Catalog lookup failed kind=%s query=%r: %s", kind, query, exc)
            raise CatalogLookupError(f"Catalog lookup failed for {kind} {query!r}.") from exc
