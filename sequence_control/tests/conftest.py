"""Shared fixtures for Sequence Control tests.

Provides:
- fake_db: patches supabase_client with an in-memory fake (tables + rpc)
- messenger: a recording Messenger installed as the process-wide one
- client: FastAPI TestClient with a no-op lifespan
- data factories for contacts, definitions and jobs
"""

import copy
import os
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

# Set env vars before any sequence_control imports
os.environ.setdefault("SUPABASE_URL", "https://fake.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "fake-key")
os.environ.setdefault("WEBHOOK_SECRET", "test-secret-123")
os.environ.setdefault("WA_GATEWAY_URL", "")
os.environ.setdefault("SEND_DELAY_MS", "0")


# ---------------------------------------------------------------------------
# In-memory fake Supabase
# ---------------------------------------------------------------------------

class FakeAPIError(Exception):
    """Stands in for postgrest.exceptions.APIError."""


class FakeQueryResult:
    def __init__(self, data=None, count=None):
        self.data = data or []
        self.count = count


class FakeQueryBuilder:
    """Mimics the supabase-py query builder chain."""

    def __init__(self, store, table_name):
        self._store = store
        self._table = table_name
        self._filters = []
        self._order_col = None
        self._order_desc = False
        self._limit_val = None
        self._count_mode = None
        self._upsert_data = None
        self._upsert_conflict = None
        self._update_data = None
        self._delete_mode = False
        self._insert_data = None

    def select(self, columns="*", count=None):
        self._count_mode = count
        return self

    def insert(self, data):
        self._insert_data = data
        return self

    def upsert(self, data, on_conflict=None):
        self._upsert_data = data
        self._upsert_conflict = on_conflict
        return self

    def update(self, data):
        self._update_data = data
        return self

    def delete(self):
        self._delete_mode = True
        return self

    def eq(self, col, val):
        self._filters.append(("eq", col, val))
        return self

    def in_(self, col, values):
        self._filters.append(("in", col, list(values)))
        return self

    def lte(self, col, val):
        self._filters.append(("lte", col, val))
        return self

    def order(self, col, desc=False):
        self._order_col = col
        self._order_desc = desc
        return self

    def limit(self, n):
        self._limit_val = n
        return self

    def _match(self, row):
        for op, col, val in self._filters:
            row_val = row.get(col)
            if op == "eq" and row_val != val:
                return False
            if op == "in" and row_val not in val:
                return False
            if op == "lte" and (row_val is None or str(row_val) > str(val)):
                return False
        return True

    def execute(self):
        table = self._store[self._table]

        if self._insert_data is not None:
            rows = self._insert_data if isinstance(self._insert_data, list) else [self._insert_data]
            inserted = []
            for data in rows:
                row = dict(data)
                row.setdefault("id", str(uuid.uuid4()))
                table.append(row)
                inserted.append(row)
            return FakeQueryResult(data=inserted)

        if self._upsert_data is not None:
            row = dict(self._upsert_data)
            row.setdefault("id", str(uuid.uuid4()))
            conflict_cols = [c.strip() for c in (self._upsert_conflict or "id").split(",")]
            for existing in table:
                if all(existing.get(c) == row.get(c) for c in conflict_cols):
                    existing.update(row)
                    return FakeQueryResult(data=[existing])
            table.append(row)
            return FakeQueryResult(data=[row])

        if self._update_data is not None:
            updated = []
            for row in table:
                if self._match(row):
                    row.update(self._update_data)
                    updated.append(row)
            return FakeQueryResult(data=updated)

        if self._delete_mode:
            removed = [r for r in table if self._match(r)]
            table[:] = [r for r in table if not self._match(r)]
            return FakeQueryResult(data=removed)

        # SELECT
        rows = [r for r in table if self._match(r)]
        if self._order_col:
            rows.sort(key=lambda r: str(r.get(self._order_col) or ""), reverse=self._order_desc)
        total = len(rows)
        if self._limit_val is not None:
            rows = rows[:self._limit_val]
        return FakeQueryResult(data=rows, count=total if self._count_mode else None)


class FakeRpc:
    def __init__(self, fn, params):
        self._fn = fn
        self._params = params

    def execute(self):
        return FakeQueryResult(data=self._fn(**self._params))


class FakeDB:
    """In-memory store keyed by table name, plus the Postgres functions."""

    def __init__(self):
        self.store = defaultdict(list)
        # Raise while inserting the Nth job of a cohort (simulated storage fault)
        self.fail_cohort_insert_at = None

    def table(self, name):
        return FakeQueryBuilder(self.store, name)

    def rpc(self, function, params):
        return FakeRpc(getattr(self, f"_rpc_{function}"), params)

    def _rpc_enroll_sequence_cohort(self, p_contact_id, p_trigger, p_jobs):
        snapshot = copy.deepcopy(dict(self.store))
        try:
            jobs = self.store["sequence_jobs"]
            jobs[:] = [
                j for j in jobs
                if not (j["contact_id"] == p_contact_id
                        and j["trigger"] == p_trigger
                        and j["status"] == "pending")
            ]
            for n, job in enumerate(p_jobs):
                if self.fail_cohort_insert_at is not None and n == self.fail_cohort_insert_at:
                    raise FakeAPIError("simulated storage fault")
                jobs.append({
                    "id": str(uuid.uuid4()),
                    "contact_id": p_contact_id,
                    "trigger": p_trigger,
                    "status": "pending",
                    "processed_at": None,
                    "error": None,
                    **job,
                })
            for contact in self.store["contacts"]:
                if contact["id"] == p_contact_id:
                    contact["has_active_sequences"] = True
            return len(p_jobs)
        except Exception:
            self.store.clear()
            self.store.update(snapshot)
            raise

    def jobs(self, **match):
        return [j for j in self.store["sequence_jobs"] if all(j.get(k) == v for k, v in match.items())]

    def clear(self):
        self.store.clear()


@pytest.fixture
def fake_db():
    """Provides a clean in-memory DB and patches the supabase client."""
    db = FakeDB()

    def fake_table(name):
        return FakeQueryBuilder(db.store, name)

    with patch("sequence_control.supabase_client._table", side_effect=fake_table):
        with patch("sequence_control.supabase_client.get_client", return_value=db):
            yield db


# ---------------------------------------------------------------------------
# Messenger
# ---------------------------------------------------------------------------

class FakeMessenger:
    """Records sends in order. Sends whose text/url is in `fail_on` raise."""

    def __init__(self, supports_media=True):
        self.supports_media = supports_media
        self.sent = []
        self.fail_on = set()

    async def send_text(self, phone, text):
        if text in self.fail_on:
            raise RuntimeError(f"send failed: {text}")
        self.sent.append(("text", phone, text))

    async def send_media(self, phone, media):
        if media.url in self.fail_on:
            raise RuntimeError(f"send failed: {media.url}")
        self.sent.append((media.kind, phone, media.url))


@pytest.fixture
def messenger():
    from sequence_control.services.messenger import set_messenger

    fake = FakeMessenger()
    set_messenger(fake)
    yield fake
    set_messenger(None)


@pytest.fixture
def client(fake_db, messenger):
    """Sync test client for the FastAPI app with mocked DB and messenger."""
    from contextlib import asynccontextmanager

    from fastapi.testclient import TestClient

    from sequence_control.app import create_app

    @asynccontextmanager
    async def noop_lifespan(app):
        yield

    app = create_app()
    app.router.lifespan_context = noop_lifespan

    with TestClient(app) as c:
        yield c


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------

def iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def make_contact(**overrides):
    defaults = {
        "id": "5215512345678@s.whatsapp.net",
        "phone": "5215512345678",
        "display_name": "Ana María López",
        "tags": [],
        "stage": "nuevo",
        "has_active_sequences": False,
        "seq_paused": False,
        "last_message_at": None,
        "created_at": iso(datetime.now(timezone.utc)),
    }
    defaults.update(overrides)
    return defaults


def make_sequence(**overrides):
    defaults = {
        "id": "W",
        "trigger": "W",
        "name": "Welcome",
        "active": True,
        "messages": [
            {"type": "text", "content": "Hola {{nombre}}", "delay": 0},
            {"type": "text", "content": "Paso dos", "delay": 2},
            {"type": "text", "content": "Paso tres", "delay": 5},
        ],
    }
    defaults.update(overrides)
    return defaults


def make_job(**overrides):
    now = iso(datetime.now(timezone.utc))
    defaults = {
        "id": str(uuid.uuid4()),
        "contact_id": "5215512345678@s.whatsapp.net",
        "trigger": "W",
        "step_index": 0,
        "payload": {"type": "text", "content": "Hola {{nombre}}"},
        "due_at": now,
        "status": "pending",
        "shard": 0,
        "created_at": now,
        "processed_at": None,
        "error": None,
    }
    defaults.update(overrides)
    return defaults
