"""
app/resolvers package marker.
"""

from app.resolvers.catalog_resolver import CatalogLookup, CatalogLookupError, CatalogResolver

__all__ = [
    "CatalogLookup",
    "CatalogLookupError",
    "CatalogResolver",
]
