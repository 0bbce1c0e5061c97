import asyncio
import io
import json
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

import database_supabase as db_supabase
from config import settings
from errors import StorageError
from routers.csv_router import read_upload
from tests.conftest import TEST_USER, make_csv, make_xlsx

SALES_MAPPING = {"amount": "Amount", "date": "Date", "description": "Memo"}
XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def sales_csv():
    return make_csv(["Amount", "Date", "Memo"],
                    [["$100.00", "2024-01-05", "Logo"], ["250", "1/20/2024", "Website"], ["", "2024-01-21", "x"]])


def upload(name, content, content_type="text/csv"):
    return {"file": (name, content, content_type)}


# --- Platforms ---

def test_platforms_lists_all_four(client):
    response = client.get("/api/csv/platforms")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert [p["name"] for p in body["data"]] == ["patreon", "gumroad", "stripe", "paypal"]
    assert body["data"][0]["expectedColumns"] == ["Patron", "Pledge", "Created", "Tier"]


# --- Preview ---

def test_preview_patreon_file(client, patreon_csv):
    response = client.post("/api/csv/preview", files=upload("patreon.csv", patreon_csv))
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    data = body["data"]
    assert data["detectedPlatform"] == "patreon"
    assert data["suggestedMapping"]["amount"] == "Pledge"
    assert data["suggestedMapping"]["date"] == "Created"
    assert data["preview"]["totalRows"] == 100
    assert len(data["preview"]["rows"]) == 5
    assert data["fileType"] == "csv"


def test_preview_xlsx_file(client):
    content = make_xlsx(["Email", "Price", "Created At", "Product"], [["a@b.co", 9.99, "2024-02-02", "Ebook"]])
    response = client.post("/api/csv/preview", files=upload("sales.xlsx", content, XLSX_TYPE))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["fileType"] == "xlsx"
    assert data["detectedPlatform"] == "gumroad"
    assert data["preview"]["rows"][0]["Price"] == 9.99


def test_preview_unknown_headers(client):
    response = client.post("/api/csv/preview", files=upload("bank.csv", sales_csv()))
    data = response.json()["data"]
    assert data["detectedPlatform"] is None
    assert data["suggestedMapping"] is None


def test_preview_without_file(client):
    response = client.post("/api/csv/preview")
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "No file provided. Please upload a CSV or XLSX file."}


def test_preview_rejects_other_extensions(client):
    response = client.post("/api/csv/preview", files=upload("statement.pdf", b"%PDF-1.4", "application/pdf"))
    assert response.status_code == 400
    assert response.json()["error"] == "Only CSV and XLSX files are allowed"


def test_preview_rejects_oversized_upload(client, monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_MB", 0)
    response = client.post("/api/csv/preview", files=upload("big.csv", sales_csv()))
    assert response.status_code == 413
    assert response.json()["success"] is False


def test_preview_malformed_file(client):
    response = client.post("/api/csv/preview", files=upload("broken.xlsx", b"not a workbook", XLSX_TYPE))
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"].startswith("Excel parsing error")


# --- Import ---

def test_import_csv(client, fake_store, llm_disabled):
    response = client.post("/api/csv/import", files=upload("sales.csv", sales_csv()),
                           data={"source_name": "Freelance Work", "mapping": json.dumps(SALES_MAPPING)})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Successfully imported 2 records"
    assert body["data"] == {"source": "Freelance Work", "imported": 2, "duplicatesSkipped": 0,
                            "totalInFile": 2, "aiCategorized": 0}
    assert [r.user_id for r in fake_store.records] == [TEST_USER.id, TEST_USER.id]


def test_import_twice_reports_duplicates(client, fake_store, llm_disabled):
    form = {"source_name": "Freelance Work", "mapping": json.dumps(SALES_MAPPING)}
    client.post("/api/csv/import", files=upload("sales.csv", sales_csv()), data=form)
    response = client.post("/api/csv/import", files=upload("sales.csv", sales_csv()), data=form)
    body = response.json()
    assert body["data"]["imported"] == 0
    assert body["data"]["duplicatesSkipped"] == 2
    assert body["message"] == "Successfully imported 0 records"


@pytest.mark.parametrize("form,error", [
    ({"mapping": json.dumps(SALES_MAPPING)}, "source_name: Required"),
    ({"source_name": "Shop"}, "mapping: Required"),
    ({"source_name": "Shop", "mapping": "{"}, "mapping: Invalid JSON"),
    ({"source_name": "Shop", "mapping": json.dumps({"amount": "Amount"})}, "mapping.date"),
])
def test_import_validation_errors(client, fake_store, llm_disabled, form, error):
    response = client.post("/api/csv/import", files=upload("sales.csv", sales_csv()), data=form)
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert error in body["error"]
    assert fake_store.insert_calls == 0


def test_import_without_file(client, fake_store):
    response = client.post("/api/csv/import", data={"source_name": "Shop", "mapping": json.dumps(SALES_MAPPING)})
    assert response.status_code == 400
    assert response.json()["error"] == "No file provided. Please upload a CSV or XLSX file."


def test_import_no_valid_records(client, fake_store, llm_disabled):
    content = make_csv(["Amount", "Date"], [["n/a", "2024-01-01"]])
    response = client.post("/api/csv/import", files=upload("sales.csv", content),
                           data={"source_name": "Shop", "mapping": json.dumps({"amount": "Amount", "date": "Date"})})
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "No valid records found in the file"}


def test_import_storage_failure_is_500(client, fake_store, llm_disabled, monkeypatch):
    def failing_insert(user_id, records):
        raise StorageError("Failed to create income records: connection reset")

    monkeypatch.setattr(db_supabase, "bulk_insert_ignoring_duplicates", failing_insert)
    response = client.post("/api/csv/import", files=upload("sales.csv", sales_csv()),
                           data={"source_name": "Shop", "mapping": json.dumps(SALES_MAPPING)})
    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert "Failed to create income records" in body["error"]


# --- Authentication ---

class FakeAuth:
    def __init__(self, user=None):
        self.user = user

    def get_user(self, token):
        return SimpleNamespace(user=self.user if token == "good-token" else None)


@pytest.fixture
def auth_client(monkeypatch):
    from fastapi.testclient import TestClient
    from api_main import app

    fake_client = SimpleNamespace(auth=FakeAuth(SimpleNamespace(id="user-9", email="nine@example.com")))
    monkeypatch.setattr(app.state, "supabase_client", fake_client, raising=False)
    with TestClient(app) as test_client:
        yield test_client


def test_missing_token_is_401(auth_client):
    response = auth_client.get("/api/csv/platforms")
    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Missing or invalid authorization header"}


def test_invalid_token_is_401(auth_client):
    response = auth_client.get("/api/csv/platforms", headers={"Authorization": "Bearer bad-token"})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid or expired token"


def test_valid_token(auth_client):
    response = auth_client.get("/api/csv/platforms", headers={"Authorization": "Bearer good-token"})
    assert response.status_code == 200


def test_health_needs_no_token(auth_client):
    response = auth_client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# --- Upload handling ---

def make_upload(name, content):
    from starlette.datastructures import UploadFile

    return UploadFile(file=io.BytesIO(content), filename=name)


def test_read_upload_closes_the_file():
    upload_file = make_upload("sales.csv", sales_csv())
    assert asyncio.run(read_upload(TEST_USER.id, upload_file)) == sales_csv()
    assert upload_file.file.closed


def test_read_upload_closes_oversized_file(monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_MB", 0)
    upload_file = make_upload("big.csv", sales_csv())
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(read_upload(TEST_USER.id, upload_file))
    assert exc_info.value.status_code == 413
    assert upload_file.file.closed
