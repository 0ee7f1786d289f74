"""
Model package exports.

Import all SQLAlchemy models here so metadata registration works without
extra imports.
"""

from db.models.citation import Citation, CitationSite, CitationTreatment
from db.models.cultivar import Cultivar
from db.models.site import Site
from db.models.specie import Specie
from db.models.treatment import Treatment
from db.models.upload_session import UploadSession, UploadStage
from db.models.yield_record import AccessLevel, Yield

__all__ = [
    "AccessLevel",
    "Citation",
    "CitationSite",
    "CitationTreatment",
    "Cultivar",
    "Site",
    "Specie",
    "Treatment",
    "UploadSession",
    "UploadStage",
    "Yield",
]
