"""
tests/conftest.py

Shared fixtures: an in-memory SQLite catalog seeded with a handful of
entities, a session factory bound to it, and a wizard wired to both.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import db.models  # noqa: F401 registers all ORM models on Base.metadata
from app.config import BulkUploadSettings
from app.services.bulk_upload_wizard import BulkUploadWizard
from db.base import Base
from db.models import Citation, Cultivar, Site, Specie, Treatment
from db.repositories.storage import LocalFileStorage
from db.session import build_session_factory

TODAY = date(2024, 6, 1)


@pytest.fixture()
def engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


@pytest.fixture()
def catalog(session_factory: sessionmaker[Session]) -> dict[str, int]:
    """Seed the catalog and return entity ids by a short name."""
    with session_factory() as db:
        with db.begin():
            urbana = Site(sitename="Urbana Farm", city="Urbana", state="IL", country="US")
            urbana_north = Site(sitename="Urbana Farm North", city="Urbana", state="IL", country="US")
            ames = Site(sitename="Ames Research Station", city="Ames", state="IA", country="US")
            maize = Specie(genus="Zea", species="mays", scientificname="Zea mays", commonname="maize")
            teosinte = Specie(
                genus="Zea",
                species="mays subsp. mexicana",
                scientificname="Zea mays subsp. mexicana",
                commonname="teosinte",
            )
            soybean = Specie(genus="Glycine", species="max", scientificname="Glycine max", commonname="soybean")
            control = Treatment(name="control", definition="No treatment applied", control=True)
            nitrogen = Treatment(name="nitrogen fertilizer", definition="150 kg N/ha", control=False)
            smith = Citation(
                author="Smith",
                year=2010,
                title="Maize yields in Illinois",
                journal="Agronomy Journal",
                doi="10.1000/xyz123",
            )
            jones = Citation(author="Jones", year=2015, title="Soybean response to nitrogen")
            db.add_all([urbana, urbana_north, ames, maize, teosinte, soybean, control, nitrogen, smith, jones])
            db.flush()

            b73 = Cultivar(name="B73", specie_id=maize.id)
            williams = Cultivar(name="Williams 82", specie_id=soybean.id)
            db.add_all([b73, williams])
            db.flush()

            return {
                "urbana": urbana.id,
                "urbana_north": urbana_north.id,
                "ames": ames.id,
                "maize": maize.id,
                "teosinte": teosinte.id,
                "soybean": soybean.id,
                "control": control.id,
                "nitrogen": nitrogen.id,
                "smith": smith.id,
                "jones": jones.id,
                "b73": b73.id,
                "williams": williams.id,
            }


@pytest.fixture()
def settings(tmp_path) -> BulkUploadSettings:
    return BulkUploadSettings(storage_dir=str(tmp_path / "uploads"), log_validation_errors=False)


@pytest.fixture()
def storage(settings: BulkUploadSettings) -> LocalFileStorage:
    return LocalFileStorage(settings.storage_dir)


@pytest.fixture()
def wizard(
    session_factory: sessionmaker[Session],
    storage: LocalFileStorage,
    settings: BulkUploadSettings,
) -> BulkUploadWizard:
    return BulkUploadWizard(
        session_factory=session_factory,
        storage=storage,
        settings=settings,
        today=lambda: TODAY,
    )
