from contextlib import contextmanager
from datetime import datetime

import pytest
from psycopg import errors
from psycopg_pool import PoolTimeout

from asktrevor.logging import get_logger
from asktrevor.storage.errors import ConstraintViolation, StoreUnavailable
from asktrevor.storage.models import CRMDeal
from asktrevor.storage.postgres import REQUIRED_TABLES, PostgresStore


class FakeCursor:
    def __init__(self, rows=None, rowcount=0):
        self.rows = rows or []
        self.rowcount = rowcount

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return list(self.rows)


class FakeConnection:
    """Records statements and answers them from a queue of canned cursors."""

    def __init__(self, responses=None, error=None):
        self.statements = []
        self.responses = list(responses or [])
        self.error = error

    def execute(self, sql, params=None):
        self.statements.append((" ".join(sql.split()), params))
        if self.error:
            raise self.error
        return self.responses.pop(0) if self.responses else FakeCursor()


class FakePool:
    def __init__(self, conn=None, error=None):
        self.conn = conn
        self.error = error

    @contextmanager
    def connection(self):
        if self.error:
            raise self.error
        yield self.conn


def _store(pool) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.dsn = "postgresql://unit-test"
    store.logger = get_logger("test")
    store.pool = pool
    return store


def test_count_transcriptions_uses_window():
    conn = FakeConnection([FakeCursor([{"n": 4}])])
    since = datetime(2024, 6, 14, 11, 0)

    count = _store(FakePool(conn)).count_transcription_requests("user-1", since)

    assert count == 4
    sql, params = conn.statements[0]
    assert "FROM transcription_requests WHERE user_id = %s AND created_at >= %s" in sql
    assert params == ("user-1", since)


def test_record_public_chat_request_inserts_row():
    conn = FakeConnection()
    row = _store(FakePool(conn)).record_public_chat_request("203.0.113.9", "agent")
    sql, params = conn.statements[0]
    assert sql.startswith("INSERT INTO public_chat_requests")
    assert params[:4] == (row.id, "203.0.113.9", "agent", 1)


def test_pool_timeout_becomes_store_unavailable():
    store = _store(FakePool(error=PoolTimeout("couldn't get a connection after 30.00 sec")))
    with pytest.raises(StoreUnavailable):
        store.count_public_chat_requests("203.0.113.9", datetime(2024, 1, 1))


def test_check_violation_becomes_constraint_violation():
    conn = FakeConnection(error=errors.CheckViolation("crm_deals_stage_check"))
    store = _store(FakePool(conn))
    with pytest.raises(ConstraintViolation) as exc_info:
        store.create_deal(CRMDeal(contact_id="c1", created_by="u1", deal_name="Reno", stage="maybe"))
    assert exc_info.value.detail == {"field": "stage", "value": "maybe"}


def test_missing_contact_becomes_constraint_violation():
    conn = FakeConnection(error=errors.ForeignKeyViolation("crm_deals_contact_id_fkey"))
    store = _store(FakePool(conn))
    with pytest.raises(ConstraintViolation, match="deal contact missing"):
        store.create_deal(CRMDeal(contact_id="c1", created_by="u1", deal_name="Reno"))


def test_row_to_deal_converts_numeric_value():
    store = _store(FakePool())
    deal = store._row_to_deal(
        {
            "id": "d1",
            "contact_id": "c1",
            "created_by": "u1",
            "assigned_to": None,
            "deal_name": "Extension",
            "deal_value": "80000.00",
            "currency": None,
            "stage": "won",
            "probability": 90,
            "expected_close_date": None,
            "actual_close_date": datetime(2024, 6, 1),
            "created_at": datetime(2024, 5, 1),
            "updated_at": datetime(2024, 6, 1),
        }
    )
    assert deal.deal_value == 80000.0
    assert deal.currency == "AUD"
    assert not deal.is_open


def test_delete_document_reports_rowcount():
    conn = FakeConnection([FakeCursor(rowcount=0)])
    assert _store(FakePool(conn)).delete_document("missing") is False


def test_verify_schema_lists_missing_tables():
    responses = [
        FakeCursor([{"oid": None}]) if table == "documents" else FakeCursor([{"oid": 1}])
        for table in REQUIRED_TABLES
    ]
    store = _store(FakePool(FakeConnection(responses)))
    with pytest.raises(RuntimeError, match="Missing required Postgres tables: documents"):
        store._verify_required_schema()


def test_access_tokens_are_never_resolved_locally():
    assert _store(FakePool()).resolve_access_token("anything") is None
