from __future__ import annotations

import base64
import io

import pandas as pd
import pytest
from fastapi.testclient import TestClient

import member_bulk.api.app as appmod
from conftest import FakeGateway, add_row, build_workbook, make_member
from member_bulk.config.loader import load_lookup_catalog
from member_bulk.models.config_models import AppConfig, BulkConfig

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@pytest.fixture()
def fake_gateway() -> FakeGateway:
    return FakeGateway([make_member()])


@pytest.fixture()
def settings() -> AppConfig:
    return AppConfig(bulk=BulkConfig(bcrypt_rounds=4))


@pytest.fixture()
def client(fake_gateway, settings):
    # DB 接続と設定ファイル読込を差し替え
    app = appmod.app
    app.dependency_overrides[appmod.get_gateway] = lambda: fake_gateway
    app.dependency_overrides[appmod.get_settings] = lambda: settings
    app.dependency_overrides[appmod.get_catalog] = lambda: load_lookup_catalog()
    yield TestClient(app)
    app.dependency_overrides.clear()


def _upload(client, data: bytes, dry_run: bool = False):
    return client.post(
        f"/api/users/bulk?dryRun={'true' if dry_run else 'false'}",
        files={"file": ("users.xlsx", data, XLSX)},
    )


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_bulk_upload_commit(client, fake_gateway):
    data = build_workbook([add_row(Email="a@x.com"), add_row(Email="A@X.com", Username="other.user")])
    r = _upload(client, data)
    assert r.status_code == 200
    body = r.json()
    assert body["errorCount"] == 1
    assert body["errorDetails"] == [{"rowNumber": 3, "reason": "Duplicate email within file"}]
    assert body["addedCount"] == 1
    assert body["dryRun"] is False
    report = pd.read_excel(io.BytesIO(base64.b64decode(body["errorFileBase64"])), dtype=object)
    assert report["Error Reason"].tolist() == ["Duplicate email within file"]
    assert len(fake_gateway.members) == 2


def test_bulk_upload_dry_run_writes_nothing(client, fake_gateway):
    r = _upload(client, build_workbook([add_row()]), dry_run=True)
    assert r.status_code == 200
    assert r.json()["errorCount"] == 0
    assert r.json()["errorFileBase64"] is None
    assert fake_gateway.write_calls == []


def test_bulk_upload_missing_columns(client):
    r = _upload(client, build_workbook([{"Name": "x"}], columns=["Name"]))
    assert r.status_code == 400
    assert "missing columns" in r.json()["detail"]


def test_bulk_upload_empty_file(client):
    r = _upload(client, b"")
    assert r.status_code == 400


def test_bulk_upload_too_large(client):
    small = AppConfig(bulk=BulkConfig(max_upload_bytes=100, bcrypt_rounds=4))
    appmod.app.dependency_overrides[appmod.get_settings] = lambda: small
    r = _upload(client, build_workbook([add_row()]))
    assert r.status_code == 413


def test_bulk_commit_failure_returns_500_with_report(client, fake_gateway):
    fake_gateway.fail_on = "insert_members"
    data = build_workbook([add_row(), add_row(State="Nowhereland", Email="n@x.com", Username="n.user")])
    r = _upload(client, data)
    assert r.status_code == 500
    body = r.json()
    assert "no changes were applied" in body["message"]
    assert body["errorCount"] == 1
    assert body["errorDetails"][0]["rowNumber"] == 3
    assert len(fake_gateway.members) == 1


def test_lookups(client):
    body = client.get("/api/users/lookups").json()
    assert body["genders"] == ["Male", "Female", "Other"]
    assert "Telangana" in body["citiesByState"]
    assert body["roles"] == ["Admin", "Member"]


def test_excel_template_with_data(client):
    r = client.get("/api/users/excel-template", params={"mode": "data", "downloadedBy": "tester"})
    assert r.status_code == 200
    disposition = r.headers["content-disposition"]
    assert "attachment" in disposition
    assert "users_template_with_data_" in disposition
    xls = pd.ExcelFile(io.BytesIO(r.content), engine="openpyxl")
    assert xls.sheet_names == ["Instructions", "Users", "Lookups"]
    users = xls.parse("Users", dtype=object)
    assert users["Identifier"].tolist() == ["m-0001"]


def test_excel_template_rejects_unknown_mode(client):
    assert client.get("/api/users/excel-template", params={"mode": "full"}).status_code == 422


def test_member_crud(client, fake_gateway):
    payload = {
        "name": "Asha Rao",
        "email": "asha@example.com",
        "username": "asha.rao",
        "mobile": "9876543210",
        "creditCard": "4111111111111111",
        "state": "Telangana",
        "city": "Hyderabad",
        "gender": "Female",
        "hobbies": ["Reading"],
        "techInterests": ["React"],
        "dob": "1990-05-17",
        "password": "Secret@123",
    }
    r = client.post("/api/users", json=payload)
    assert r.status_code == 201
    created = r.json()
    assert created["creditCard"] == "************1111"
    member_id = created["id"]

    assert client.post("/api/users", json=payload).status_code == 409
    bad = client.post("/api/users", json={**payload, "email": "x@y.io", "username": "xy.user", "gender": "?"})
    assert bad.status_code == 400
    assert bad.json()["detail"]["reasons"] == ["Invalid gender '?'"]

    r = client.put(f"/api/users/{member_id}", json={"city": "Warangal"})
    assert r.status_code == 200
    assert r.json()["city"] == "Warangal"

    assert len(client.get("/api/users").json()) == 2
    assert client.get(f"/api/users/{member_id}").json()["username"] == "asha.rao"

    assert client.delete(f"/api/users/{member_id}").status_code == 204
    assert client.get(f"/api/users/{member_id}").status_code == 404
    assert client.put("/api/users/unknown", json={"name": "Someone"}).status_code == 404
