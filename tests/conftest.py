"""Shared pytest fixtures for the income import tests."""

import csv
import io
import datetime as dt
from decimal import Decimal
from types import SimpleNamespace

import openpyxl
import pytest

import database_supabase as db_supabase
import llm_service
from database_supabase import IncomeSource
from models_pydantic import UserPydantic

TEST_USER = UserPydantic(id="user-123", email="creator@example.com")


class FakeStore:
    """In-memory stand-in for the Postgres store, keyed on the same dedup tuple."""

    def __init__(self):
        self.sources = {}
        self.records = []
        self._keys = set()
        self.insert_calls = 0

    def find_or_create_source(self, user_id, source_name):
        key = (user_id, source_name)
        if key not in self.sources:
            self.sources[key] = IncomeSource(id=f"src-{len(self.sources) + 1}", user_id=user_id,
                                             source_name=source_name)
        return self.sources[key]

    def get_sources(self, user_id):
        return [s for (uid, _), s in sorted(self.sources.items()) if uid == user_id]

    def bulk_insert_ignoring_duplicates(self, user_id, records):
        self.insert_calls += 1
        inserted = 0
        for r in records:
            key = (user_id, r.source_id, r.external_transaction_id, r.transaction_date, r.amount)
            if key in self._keys:
                continue
            self._keys.add(key)
            self.records.append(r)
            inserted += 1
        return inserted

    def query_records(self, user_id, start_date=None, end_date=None, source_id=None, category=None,
                      limit=50, offset=0):
        matches = [
            r for r in self.records
            if r.user_id == user_id
            and (start_date is None or r.transaction_date >= start_date.isoformat())
            and (end_date is None or r.transaction_date <= end_date.isoformat())
            and (source_id is None or r.source_id == source_id)
            and (category is None or r.category == category)
        ]
        matches.sort(key=lambda r: r.transaction_date, reverse=True)
        names = {s.id: s.source_name for s in self.sources.values()}
        page = [
            {
                "id": str(i), "user_id": r.user_id, "source_id": r.source_id,
                "source_name": names.get(r.source_id), "amount": str(r.amount), "currency": r.currency,
                "transaction_date": r.transaction_date, "description": r.description,
                "category": r.category, "customer_name": r.customer_name,
                "external_transaction_id": r.external_transaction_id, "raw_data": r.raw_data,
                "created_at": None,
            }
            for i, r in enumerate(matches[offset:offset + limit])
        ]
        return page, len(matches)

    def get_summary(self, user_id, start_date=None, end_date=None):
        records, _ = self.query_records(user_id, start_date, end_date, limit=10_000)
        by_source, by_month, counts = {}, {}, {}
        total = Decimal('0')
        for r in records:
            amount = Decimal(r['amount'])
            name = r['source_name'] or 'Unknown'
            by_source[name] = by_source.get(name, Decimal('0')) + amount
            month = r['transaction_date'][:7]
            by_month[month] = by_month.get(month, Decimal('0')) + amount
            counts[name] = counts.get(name, 0) + 1
            total += amount
        return {"totalAmount": total, "recordCount": len(records), "bySource": by_source,
                "byMonth": dict(sorted(by_month.items())), "countBySource": counts}


@pytest.fixture
def fake_store(monkeypatch):
    """Replace the storage functions with an in-memory store."""
    store = FakeStore()
    for name in ("find_or_create_source", "get_sources", "bulk_insert_ignoring_duplicates",
                 "query_records", "get_summary"):
        monkeypatch.setattr(db_supabase, name, getattr(store, name))
    return store


@pytest.fixture
def llm_disabled(monkeypatch):
    """Categorizer and insights model unavailable."""
    monkeypatch.setattr(llm_service, "is_configured", lambda: False)


class FakeModel:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    def generate_content(self, prompt, generation_config=None):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return SimpleNamespace(text=self.reply)


@pytest.fixture
def fake_model(monkeypatch):
    """Install a fake Gemini model; set .reply or .error on the returned object."""
    model = FakeModel(reply="[]")
    monkeypatch.setattr(llm_service, "model", model)
    monkeypatch.setattr(llm_service, "is_configured_flag", True)
    return model


def make_csv(headers, rows) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue().encode('utf-8')


def make_xlsx(headers, rows) -> bytes:
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.append(headers)
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def patreon_csv():
    """A 100-row Patreon export."""
    start = dt.date(2024, 1, 1)
    rows = [
        [f"Patron {i}", f"${5 + i % 3}.00", (start + dt.timedelta(days=i)).isoformat(), "Gold" if i % 2 else "Silver"]
        for i in range(100)
    ]
    return make_csv(["Patron", "Pledge", "Created", "Tier"], rows)


@pytest.fixture
def client(monkeypatch):
    from fastapi.testclient import TestClient
    from api_main import app
    from auth.dependencies import get_current_supabase_user

    app.dependency_overrides[get_current_supabase_user] = lambda: TEST_USER
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
