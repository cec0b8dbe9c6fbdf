"""
SQLAlchemy Store - PostgreSQL implementation of every engine store.

Each call opens its own session from the session factory so the store can
be used from the scheduler as well as from request handlers. Driver and
SQLAlchemy errors surface as DataUnavailable.

Writes keyed by natural identifiers use PostgreSQL upserts:
- at_risk_accounts: account_id, guarded by computed_at
- notifications: (user_id, type, account, dedupe_day)
- notification_snoozes: (type, account)
"""
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import delete, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import func

from lecrm.models import (
    Account as AccountRow,
    AtRiskAccount,
    Estimate as EstimateRow,
    Notification as NotificationRow,
    NotificationSnooze as SnoozeRow,
    User,
)
from lecrm.renewals.classifier import normalize_account_id
from lecrm.renewals.exceptions import DataUnavailable
from lecrm.renewals.snooze import parse_timestamp, type_value
from lecrm.renewals.types import (
    Account,
    AtRiskRecord,
    DuplicateEstimate,
    Estimate,
    Notification,
    NotificationSnooze,
)
from lecrm.store.base import (
    AccountStore,
    AtRiskCacheStore,
    NotificationStore,
    SnoozeStore,
    StoreSnapshot,
)

logger = logging.getLogger(__name__)

# asyncpg caps one statement at 32767 bind parameters; a cache row uses 9
CACHE_UPSERT_CHUNK_SIZE = 1000

# Session-local marker read by the change-notify trigger
ENGINE_ORIGIN_SETTING = "lecrm.origin"


# =============================================================================
# ROW CONVERSION
# =============================================================================

def account_from_row(row: AccountRow) -> Account:
    return Account(
        id=row.id,
        name=row.name,
        status=row.status,
        archived=bool(row.archived),
        revenue_segment=row.revenue_segment,
        icp_status=row.icp_status,
        last_interaction_date=row.last_interaction_date,
    )


def estimate_from_row(row: EstimateRow) -> Estimate:
    return Estimate(
        id=row.id,
        account_id=row.account_id,
        status=row.status,
        contract_end=row.contract_end,
        estimate_number=row.estimate_number,
        pipeline_status=row.pipeline_status,
        division=row.division,
        address=row.address,
    )


def snooze_from_row(row: SnoozeRow) -> NotificationSnooze:
    return NotificationSnooze(
        notification_type=row.notification_type,
        related_account_id=row.related_account_id,
        snoozed_until=row.snoozed_until,
        snoozed_by=row.snoozed_by,
    )


def notification_from_row(row: NotificationRow) -> Notification:
    return Notification(
        id=row.id,
        user_id=row.user_id,
        type=row.type,
        related_account_id=row.related_account_id,
        title=row.title,
        message=row.message,
        is_read=bool(row.is_read),
        created_at=row.created_at,
        dedupe_day=row.dedupe_day,
    )


def record_from_row(row: AtRiskAccount) -> AtRiskRecord:
    return AtRiskRecord(
        account_id=row.account_id,
        account_name=row.account_name,
        renewal_date=row.renewal_date,
        days_until_renewal=row.days_until_renewal,
        expiring_estimate_id=row.expiring_estimate_id,
        expiring_estimate_number=row.expiring_estimate_number,
        has_duplicates=bool(row.has_duplicates),
        duplicate_estimates=[DuplicateEstimate(**d) for d in (row.duplicate_estimates or [])],
        computed_at=row.computed_at,
    )


def _chunks(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def record_to_values(record: AtRiskRecord, computed_at: datetime) -> dict:
    return {
        "account_id": record.account_id,
        "account_name": record.account_name,
        "renewal_date": record.renewal_date,
        "days_until_renewal": record.days_until_renewal,
        "expiring_estimate_id": record.expiring_estimate_id,
        "expiring_estimate_number": record.expiring_estimate_number,
        "has_duplicates": record.has_duplicates,
        "duplicate_estimates": [d.to_dict() for d in record.duplicate_estimates],
        "computed_at": computed_at,
    }


# =============================================================================
# STORE
# =============================================================================

class SqlAlchemyStore(AccountStore, SnoozeStore, NotificationStore, AtRiskCacheStore):
    """All engine stores backed by one PostgreSQL database."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Store operation {operation} failed: {e}")
            raise DataUnavailable(f"{operation} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def list_accounts(self) -> List[Account]:
        async with self._session("list_accounts") as session:
            result = await session.execute(select(AccountRow).order_by(AccountRow.id))
            return [account_from_row(r) for r in result.scalars().all()]

    async def list_estimates(self) -> List[Estimate]:
        async with self._session("list_estimates") as session:
            result = await session.execute(select(EstimateRow).order_by(EstimateRow.id))
            return [estimate_from_row(r) for r in result.scalars().all()]

    async def load_snapshot(self) -> StoreSnapshot:
        async with self._session("load_snapshot") as session:
            # Both reads see the same database state
            await session.connection(execution_options={"isolation_level": "REPEATABLE READ"})
            accounts = await session.execute(select(AccountRow).order_by(AccountRow.id))
            estimates = await session.execute(select(EstimateRow).order_by(EstimateRow.id))
            return StoreSnapshot(
                accounts=[account_from_row(r) for r in accounts.scalars().all()],
                estimates=[estimate_from_row(r) for r in estimates.scalars().all()],
                read_at=datetime.now(timezone.utc),
            )

    async def update_account_status(self, account_id: str, status: str) -> bool:
        async with self._session("update_account_status") as session:
            # Core UPDATE: bypasses the unit of work, so no change event is published.
            # The transaction-local origin marker keeps the notify trigger quiet too.
            await session.execute(
                text("SELECT set_config(:name, :value, true)"),
                {"name": ENGINE_ORIGIN_SETTING, "value": "engine"},
            )
            result = await session.execute(
                update(AccountRow)
                .where(AccountRow.id == account_id)
                .values(status=status, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    # -------------------------------------------------------------------------
    # Snoozes
    # -------------------------------------------------------------------------

    async def list_active_snoozes(
        self,
        notification_type: Optional[str] = None,
        account_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[NotificationSnooze]:
        now = now or datetime.now(timezone.utc)
        query = select(SnoozeRow).where(SnoozeRow.snoozed_until > now)
        if notification_type is not None:
            query = query.where(SnoozeRow.notification_type == type_value(notification_type))
        if account_id is not None:
            query = query.where(SnoozeRow.related_account_key == (normalize_account_id(account_id) or ""))

        async with self._session("list_active_snoozes") as session:
            result = await session.execute(query)
            return [snooze_from_row(r) for r in result.scalars().all()]

    async def upsert_snooze(self, snooze: NotificationSnooze) -> NotificationSnooze:
        account_id = normalize_account_id(snooze.related_account_id)
        until = parse_timestamp(snooze.snoozed_until)
        if until is None:
            raise ValueError(f"Invalid snoozed_until: {snooze.snoozed_until!r}")

        stmt = insert(SnoozeRow).values(
            notification_type=type_value(snooze.notification_type),
            related_account_id=account_id,
            related_account_key=account_id or "",
            snoozed_until=until,
            snoozed_by=snooze.snoozed_by,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_notification_snooze_target",
            set_={
                "snoozed_until": stmt.excluded.snoozed_until,
                "snoozed_by": stmt.excluded.snoozed_by,
                "updated_at": func.now(),
            },
        ).returning(SnoozeRow)

        async with self._session("upsert_snooze") as session:
            result = await session.execute(stmt)
            row = result.scalars().one()
            await session.commit()
            return snooze_from_row(row)

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    async def list_active_user_ids(self) -> List[str]:
        async with self._session("list_active_user_ids") as session:
            result = await session.execute(
                select(User.id).where(User.is_active.is_(True)).order_by(User.id)
            )
            return list(result.scalars().all())

    async def upsert_notification(
        self,
        user_id: str,
        notification_type: str,
        account_id: Optional[str],
        day: date,
        title: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Tuple[Notification, bool]:
        account_id = normalize_account_id(account_id)
        notification_type = type_value(notification_type)
        stmt = insert(NotificationRow).values(
            user_id=user_id,
            type=notification_type,
            related_account_id=account_id,
            related_account_key=account_id or "",
            dedupe_day=day,
            title=title,
            message=message,
            is_read=False,
        )
        stmt = stmt.on_conflict_do_nothing(constraint="uq_notification_daily").returning(NotificationRow)

        async with self._session("upsert_notification") as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
            created = row is not None
            if row is None:
                existing = await session.execute(
                    select(NotificationRow).where(
                        NotificationRow.user_id == user_id,
                        NotificationRow.type == notification_type,
                        NotificationRow.related_account_key == (account_id or ""),
                        NotificationRow.dedupe_day == day,
                    )
                )
                row = existing.scalars().one()
            await session.commit()
            return notification_from_row(row), created

    async def list_notifications(self, user_id: str) -> List[Notification]:
        async with self._session("list_notifications") as session:
            result = await session.execute(
                select(NotificationRow)
                .where(NotificationRow.user_id == user_id)
                .order_by(NotificationRow.created_at.desc(), NotificationRow.id)
            )
            return [notification_from_row(r) for r in result.scalars().all()]

    # -------------------------------------------------------------------------
    # At-risk cache
    # -------------------------------------------------------------------------

    async def read_cache(self) -> Tuple[List[AtRiskRecord], Optional[datetime]]:
        async with self._session("read_cache") as session:
            result = await session.execute(
                select(AtRiskAccount).order_by(AtRiskAccount.days_until_renewal, AtRiskAccount.account_id)
            )
            records = [record_from_row(r) for r in result.scalars().all()]
        computed_at = max((r.computed_at for r in records), default=None)
        return records, computed_at

    async def replace_cache(self, records: List[AtRiskRecord], computed_at: datetime) -> int:
        written = 0
        async with self._session("replace_cache") as session:
            async with session.begin():
                for chunk in _chunks(records, CACHE_UPSERT_CHUNK_SIZE):
                    stmt = insert(AtRiskAccount).values([record_to_values(r, computed_at) for r in chunk])
                    excluded = stmt.excluded
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[AtRiskAccount.account_id],
                        set_={
                            "account_name": excluded.account_name,
                            "renewal_date": excluded.renewal_date,
                            "days_until_renewal": excluded.days_until_renewal,
                            "expiring_estimate_id": excluded.expiring_estimate_id,
                            "expiring_estimate_number": excluded.expiring_estimate_number,
                            "has_duplicates": excluded.has_duplicates,
                            "duplicate_estimates": excluded.duplicate_estimates,
                            "computed_at": excluded.computed_at,
                        },
                        # An older pass never overwrites a newer one
                        where=AtRiskAccount.computed_at <= excluded.computed_at,
                    )
                    result = await session.execute(stmt)
                    written += result.rowcount or 0

                # Every row this pass kept now carries its computed_at
                removed = await session.execute(
                    delete(AtRiskAccount)
                    .where(AtRiskAccount.computed_at < computed_at)
                    .execution_options(synchronize_session=False)
                )

        logger.info(f"At-risk cache replaced: {written} upserted, {removed.rowcount or 0} removed")
        return written
