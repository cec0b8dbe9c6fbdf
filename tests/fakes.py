"""In-memory stores and a controllable clock for engine tests."""
import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

from lecrm.renewals.classifier import normalize_account_id
from lecrm.renewals.exceptions import DataUnavailable
from lecrm.renewals.snooze import is_active, type_value
from lecrm.renewals.types import (
    Account,
    AtRiskRecord,
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


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> None:
        self._now = self._now + timedelta(**kwargs)

    def set(self, now: datetime) -> None:
        self._now = now


class FakeStore(AccountStore, SnoozeStore, NotificationStore, AtRiskCacheStore):
    """Every engine store in memory, with switches for failure injection."""

    def __init__(self):
        self.accounts: Dict[str, Account] = {}
        self.estimates: List[Estimate] = []
        self.snoozes: List[NotificationSnooze] = []
        self.notifications: List[Notification] = []
        self.users: Dict[str, bool] = {}
        self.cache: Dict[str, AtRiskRecord] = {}

        self.unavailable = False
        self.snapshot_delay = 0.0
        self.snapshot_calls = 0
        self.fail_upsert_for: Set[str] = set()
        self.status_updates: List[Tuple[str, str]] = []

    # -- helpers --------------------------------------------------------------

    def add_account(self, account_id: str, **fields) -> Account:
        account = Account(id=account_id, name=fields.pop("name", f"Account {account_id}"), **fields)
        self.accounts[account_id] = account
        return account

    def add_estimate(self, estimate_id: str, account_id: str, **fields) -> Estimate:
        estimate = Estimate(id=estimate_id, account_id=account_id, **fields)
        self.estimates.append(estimate)
        return estimate

    def add_user(self, user_id: str, active: bool = True) -> None:
        self.users[user_id] = active

    def rows_for(self, user_id: str, notification_type: Optional[str] = None) -> List[Notification]:
        return [
            n for n in self.notifications
            if n.user_id == user_id and (notification_type is None or n.type == notification_type)
        ]

    def _check(self) -> None:
        if self.unavailable:
            raise DataUnavailable("fake store is offline")

    # -- AccountStore ---------------------------------------------------------

    async def list_accounts(self) -> List[Account]:
        self._check()
        return list(self.accounts.values())

    async def list_estimates(self) -> List[Estimate]:
        self._check()
        return list(self.estimates)

    async def load_snapshot(self) -> StoreSnapshot:
        self.snapshot_calls += 1
        if self.snapshot_delay:
            await asyncio.sleep(self.snapshot_delay)
        self._check()
        return StoreSnapshot(
            accounts=list(self.accounts.values()),
            estimates=list(self.estimates),
            read_at=datetime.now(timezone.utc),
        )

    async def update_account_status(self, account_id: str, status: str) -> bool:
        self._check()
        account = self.accounts.get(account_id)
        if account is None:
            return False
        account.status = status
        self.status_updates.append((account_id, status))
        return True

    # -- SnoozeStore ----------------------------------------------------------

    async def list_active_snoozes(
        self,
        notification_type: Optional[str] = None,
        account_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[NotificationSnooze]:
        self._check()
        now = now or datetime.now(timezone.utc)
        result = []
        for snooze in self.snoozes:
            if not is_active(snooze, now):
                continue
            if notification_type is not None and type_value(snooze.notification_type) != type_value(notification_type):
                continue
            if account_id is not None and (
                normalize_account_id(snooze.related_account_id) != normalize_account_id(account_id)
            ):
                continue
            result.append(snooze)
        return result

    async def upsert_snooze(self, snooze: NotificationSnooze) -> NotificationSnooze:
        self._check()
        key = (type_value(snooze.notification_type), normalize_account_id(snooze.related_account_id))
        for existing in self.snoozes:
            if (type_value(existing.notification_type), normalize_account_id(existing.related_account_id)) == key:
                existing.snoozed_until = snooze.snoozed_until
                existing.snoozed_by = snooze.snoozed_by
                return existing
        self.snoozes.append(snooze)
        return snooze

    # -- NotificationStore ----------------------------------------------------

    async def list_active_user_ids(self) -> List[str]:
        self._check()
        return sorted(user_id for user_id, active in self.users.items() if active)

    async def upsert_notification(
        self,
        user_id: str,
        notification_type: str,
        account_id: Optional[str],
        day: date,
        title: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Tuple[Notification, bool]:
        self._check()
        account_id = normalize_account_id(account_id)
        if account_id in self.fail_upsert_for:
            raise DataUnavailable(f"write failed for account {account_id}")

        for existing in self.notifications:
            if (
                existing.user_id == user_id
                and existing.type == type_value(notification_type)
                and normalize_account_id(existing.related_account_id) == account_id
                and existing.dedupe_day == day
            ):
                return existing, False

        notification = Notification(
            id=f"notif_{len(self.notifications) + 1}",
            user_id=user_id,
            type=type_value(notification_type),
            related_account_id=account_id,
            title=title,
            message=message,
            created_at=datetime.now(timezone.utc),
            dedupe_day=day,
        )
        self.notifications.append(notification)
        return notification, True

    async def list_notifications(self, user_id: str) -> List[Notification]:
        self._check()
        return sorted(self.rows_for(user_id), key=lambda n: n.created_at, reverse=True)

    # -- AtRiskCacheStore -----------------------------------------------------

    async def read_cache(self) -> Tuple[List[AtRiskRecord], Optional[datetime]]:
        self._check()
        records = sorted(self.cache.values(), key=lambda r: (r.days_until_renewal, r.account_id))
        return records, max((r.computed_at for r in records), default=None)

    async def replace_cache(self, records: List[AtRiskRecord], computed_at: datetime) -> int:
        self._check()
        written = 0
        for record in records:
            current = self.cache.get(record.account_id)
            if current is not None and current.computed_at > computed_at:
                continue
            self.cache[record.account_id] = record
            written += 1
        keep = {r.account_id for r in records}
        for account_id in list(self.cache):
            if account_id not in keep and self.cache[account_id].computed_at < computed_at:
                del self.cache[account_id]
        return written
