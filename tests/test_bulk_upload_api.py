"""
tests/test_bulk_upload_api.py

HTTP surface of the wizard, with the wizard dependency pointed at the
in-memory catalog.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.api.routers import bulk_upload_router
from app.services.bulk_upload_wizard import get_bulk_upload_wizard
from db.repositories.catalog_repository import CatalogRepository

HEADERS = {"X-Session-Key": "api-session"}

VALID_CSV = (
    b"citation_doi,site,species,treatment,date,yield,SE,n,access_level\n"
    b"10.1000/xyz123,Urbana Farm,Zea mays,control,2020-05-01,5.5,0.25,4,2\n"
)


@pytest.fixture()
def client(wizard, catalog):
    app = FastAPI()
    app.include_router(bulk_upload_router)
    app.dependency_overrides[get_bulk_upload_wizard] = lambda: wizard
    with TestClient(app) as test_client:
        yield test_client


def _upload(client: TestClient, content: bytes = VALID_CSV, name: str = "yields.csv"):
    return client.post(
        "/bulk-upload/file",
        headers=HEADERS,
        files={"file": (name, content, "text/csv")},
    )


def test_full_wizard_over_http(client: TestClient) -> None:
    assert client.post("/bulk-upload/start", headers=HEADERS).json()["stage"] == "start"

    uploaded = _upload(client)
    assert uploaded.status_code == 200
    body = uploaded.json()
    assert body["accepted"] is True
    assert body["stage"] == "file_validated"
    assert body["rows"][0]["cells"]["site"]["status"] == "ok"

    defaults = client.post("/bulk-upload/defaults", headers=HEADERS, json={"rounding": 3})
    assert defaults.json()["stage"] == "defaults_chosen"

    confirmed = client.post("/bulk-upload/confirm", headers=HEADERS)
    assert confirmed.status_code == 200
    assert confirmed.json()["confirmed"] is True

    inserted = client.post("/bulk-upload/insert", headers=HEADERS)
    assert inserted.status_code == 200
    assert inserted.json()["records_inserted"] == 1

    assert client.get("/bulk-upload/state", headers=HEADERS).json()["stage"] == "inserted"


def test_out_of_order_step_is_a_conflict(client: TestClient) -> None:
    client.post("/bulk-upload/start", headers=HEADERS)

    response = client.post("/bulk-upload/insert", headers=HEADERS)

    assert response.status_code == 409
    assert response.json()["detail"]["redirect_stage"] == "start"


def test_unreadable_file_is_a_bad_request(client: TestClient) -> None:
    client.post("/bulk-upload/start", headers=HEADERS)

    response = _upload(client, content=b"\n\n")

    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "empty"


def test_non_csv_upload_is_rejected(client: TestClient) -> None:
    client.post("/bulk-upload/start", headers=HEADERS)

    response = client.post(
        "/bulk-upload/file",
        headers=HEADERS,
        files={"file": ("yields.xlsx", b"PK\x03\x04", "application/octet-stream")},
    )

    assert response.status_code == 400


def test_session_key_header_is_required(client: TestClient) -> None:
    assert client.post("/bulk-upload/start").status_code == 422
    assert client.post("/bulk-upload/start", headers={"X-Session-Key": "   "}).status_code == 400


def test_invalid_defaults_are_rejected(client: TestClient) -> None:
    client.post("/bulk-upload/start", headers=HEADERS)
    _upload(client)

    response = client.post("/bulk-upload/defaults", headers=HEADERS, json={"access_level": 7})

    assert response.status_code == 422


def test_confirm_accepts_decisions(client: TestClient) -> None:
    client.post("/bulk-upload/start", headers=HEADERS)
    _upload(client, VALID_CSV.replace(b",control,", b",irrigation,"))
    client.post("/bulk-upload/defaults", headers=HEADERS, json={})

    blocked = client.post("/bulk-upload/confirm", headers=HEADERS).json()
    assert blocked["confirmed"] is False
    assert blocked["blocking_issues"][0]["field"] == "treatment"

    confirmed = client.post(
        "/bulk-upload/confirm",
        headers=HEADERS,
        json={"decisions": [{"kind": "treatment", "value": "irrigation", "action": "create"}]},
    ).json()

    assert confirmed["confirmed"] is True
    assert confirmed["pending_creations"] == {"treatment": ["irrigation"]}


def test_link_unknown_citation_is_not_found(client: TestClient) -> None:
    client.post("/bulk-upload/start", headers=HEADERS)

    response = client.post("/bulk-upload/citation", headers=HEADERS, json={"citation_id": 9999})

    assert response.status_code == 404


def test_candidates(client: TestClient, catalog) -> None:
    response = client.get("/bulk-upload/candidates", params={"kind": "species", "q": "zea"})

    assert response.status_code == 200
    assert {item["key"] for item in response.json()} == {catalog["maize"], catalog["teosinte"]}


def test_candidates_unknown_kind(client: TestClient) -> None:
    response = client.get("/bulk-upload/candidates", params={"kind": "variety", "q": "x"})

    assert response.status_code == 400


def test_catalog_outage_while_displaying_file_is_unavailable(client: TestClient) -> None:
    client.post("/bulk-upload/start", headers=HEADERS)
    _upload(client)

    def catalog_down(*_args, **_kwargs):
        raise OperationalError("SELECT catalog", {}, Exception("connection refused"))

    with patch.object(CatalogRepository, "find_exact", catalog_down):
        response = client.get("/bulk-upload/file", headers=HEADERS)

    assert response.status_code == 503
    assert client.get("/bulk-upload/state", headers=HEADERS).json()["stage"] == "file_validated"
