"""
Tests for the PostgreSQL store.

The session is replaced with a recorder and every statement is compiled
against the PostgreSQL dialect, so the upsert guards, conflict targets and
batching are checked without a database.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from lecrm.models import Notification as NotificationRow, NotificationSnooze as SnoozeRow
from lecrm.renewals.exceptions import DataUnavailable
from lecrm.renewals.types import AtRiskRecord, NotificationSnooze
from lecrm.store.sql import CACHE_UPSERT_CHUNK_SIZE, ENGINE_ORIGIN_SETTING, SqlAlchemyStore
from tests.conftest import NOW, TODAY

# asyncpg rejects statements with more bind parameters than this
MAX_BIND_PARAMS = 32767


class RecordingSession:
    """Stands in for AsyncSession; keeps every executed statement."""

    def __init__(self, results=None, error=None):
        self.statements = []
        self.params = []
        self.results = list(results or [])
        self.error = error
        self.commit = AsyncMock()
        self.begin_calls = 0

    async def execute(self, statement, params=None):
        if self.error is not None:
            raise self.error
        self.statements.append(statement)
        self.params.append(params)
        if self.results:
            return self.results.pop(0)
        result = MagicMock()
        result.rowcount = 1
        return result

    @asynccontextmanager
    async def begin(self):
        self.begin_calls += 1
        yield self


def make_store(session):
    @asynccontextmanager
    async def open_session():
        yield session

    return SqlAlchemyStore(open_session)


def sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


def bind_count(statement) -> int:
    return len(statement.compile(dialect=postgresql.dialect()).params)


def scalars_result(first=None, one=None):
    result = MagicMock()
    result.scalars.return_value.first.return_value = first
    result.scalars.return_value.one.return_value = one
    return result


def cache_record(account_id, days=30):
    return AtRiskRecord(
        account_id=account_id,
        renewal_date=TODAY + timedelta(days=days),
        days_until_renewal=days,
        expiring_estimate_id=f"est-{account_id}",
        expiring_estimate_number=None,
        computed_at=NOW,
    )


# =============================================================================
# At-risk cache
# =============================================================================

class TestReplaceCache:

    @pytest.mark.asyncio
    async def test_upsert_guarded_by_computed_at(self):
        session = RecordingSession()
        store = make_store(session)

        await store.replace_cache([cache_record("acct-1")], NOW)

        upsert = sql(session.statements[0])
        assert "ON CONFLICT (account_id) DO UPDATE" in upsert
        assert "at_risk_accounts.computed_at <= excluded.computed_at" in upsert
        assert session.begin_calls == 1

    @pytest.mark.asyncio
    async def test_large_cache_written_in_chunks(self):
        session = RecordingSession()
        store = make_store(session)
        records = [cache_record(f"acct-{i:05d}") for i in range(2500)]

        written = await store.replace_cache(records, NOW)

        inserts, cleanup = session.statements[:-1], session.statements[-1]
        assert len(inserts) == 3
        assert all(bind_count(s) <= MAX_BIND_PARAMS for s in inserts)
        assert bind_count(inserts[0]) == CACHE_UPSERT_CHUNK_SIZE * 9
        assert written == 3
        # One transaction for every chunk and the cleanup
        assert session.begin_calls == 1

        cleanup_sql = sql(cleanup)
        assert cleanup_sql.startswith("DELETE FROM at_risk_accounts")
        assert "at_risk_accounts.computed_at <" in cleanup_sql
        assert "NOT IN" not in cleanup_sql

    @pytest.mark.asyncio
    async def test_empty_pass_only_clears_older_rows(self):
        session = RecordingSession()
        store = make_store(session)

        await store.replace_cache([], NOW)

        assert len(session.statements) == 1
        assert sql(session.statements[0]).startswith("DELETE FROM at_risk_accounts")


# =============================================================================
# Status write-back
# =============================================================================

class TestUpdateAccountStatus:

    @pytest.mark.asyncio
    async def test_write_back_marks_engine_origin(self):
        session = RecordingSession()
        store = make_store(session)

        assert await store.update_account_status("acct-1", "at_risk") is True

        marker, update = session.statements
        assert "set_config" in str(marker)
        assert session.params[0] == {"name": ENGINE_ORIGIN_SETTING, "value": "engine"}
        assert sql(update).startswith("UPDATE accounts SET status=")
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_account_reports_false(self):
        missing = MagicMock()
        missing.rowcount = 0
        session = RecordingSession(results=[MagicMock(), missing])
        store = make_store(session)

        assert await store.update_account_status("acct-gone", "active") is False


# =============================================================================
# Notifications and snoozes
# =============================================================================

class TestUpsertNotification:

    @pytest.mark.asyncio
    async def test_insert_uses_daily_constraint(self):
        row = NotificationRow(
            id="notif-1",
            user_id="user-1",
            type="renewal_reminder",
            related_account_id="acct-1",
            related_account_key="acct-1",
            dedupe_day=TODAY,
            is_read=False,
            created_at=NOW,
        )
        session = RecordingSession(results=[scalars_result(first=row)])
        store = make_store(session)

        notification, created = await store.upsert_notification("user-1", "renewal_reminder", "acct-1", TODAY)

        assert created is True
        assert notification.id == "notif-1"
        assert "ON CONFLICT ON CONSTRAINT uq_notification_daily DO NOTHING" in sql(session.statements[0])

    @pytest.mark.asyncio
    async def test_conflict_falls_back_to_existing_row(self):
        existing = NotificationRow(
            id="notif-old",
            user_id="user-1",
            type="renewal_reminder",
            related_account_id="acct-1",
            related_account_key="acct-1",
            dedupe_day=TODAY,
            is_read=True,
            created_at=NOW - timedelta(hours=3),
        )
        session = RecordingSession(results=[scalars_result(first=None), scalars_result(one=existing)])
        store = make_store(session)

        notification, created = await store.upsert_notification("user-1", "renewal_reminder", "acct-1", TODAY)

        assert created is False
        assert notification.id == "notif-old"
        assert notification.is_read is True
        lookup = sql(session.statements[1])
        assert lookup.startswith("SELECT")
        assert "notifications.dedupe_day" in lookup


class TestUpsertSnooze:

    @pytest.mark.asyncio
    async def test_upsert_on_snooze_target(self):
        until = NOW + timedelta(days=7)
        row = SnoozeRow(
            id="snooze-1",
            notification_type="neglected_account",
            related_account_id="acct-1",
            related_account_key="acct-1",
            snoozed_until=until,
            snoozed_by="user-1",
        )
        session = RecordingSession(results=[scalars_result(one=row)])
        store = make_store(session)

        saved = await store.upsert_snooze(NotificationSnooze(
            notification_type="neglected_account",
            related_account_id="acct-1",
            snoozed_until=until.isoformat(),
            snoozed_by="user-1",
        ))

        assert saved.snoozed_until == until
        upsert = sql(session.statements[0])
        assert "ON CONFLICT ON CONSTRAINT uq_notification_snooze_target DO UPDATE" in upsert
        assert "RETURNING" in upsert

    @pytest.mark.asyncio
    async def test_invalid_expiry_rejected_before_writing(self):
        session = RecordingSession()
        store = make_store(session)

        with pytest.raises(ValueError):
            await store.upsert_snooze(NotificationSnooze(
                notification_type="neglected_account",
                snoozed_until="next tuesday",
            ))

        assert session.statements == []


# =============================================================================
# Errors
# =============================================================================

class TestStoreErrors:

    @pytest.mark.asyncio
    async def test_driver_errors_become_data_unavailable(self):
        error = OperationalError("SELECT 1", {}, ConnectionRefusedError("refused"))
        store = make_store(RecordingSession(error=error))

        with pytest.raises(DataUnavailable) as exc_info:
            await store.list_accounts()

        assert "list_accounts" in str(exc_info.value)
        assert exc_info.value.__cause__ is error
