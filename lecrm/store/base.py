"""
Store interfaces consumed by the renewal engine.

The cache coordinator and the notification reconciler only talk to these
abstract stores. `lecrm.store.sql.SqlAlchemyStore` implements all of them
against PostgreSQL; the test suite uses in-memory fakes.

Every method may raise DataUnavailable when the backing store cannot be
reached.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional, Tuple

from lecrm.renewals.types import (
    Account,
    AtRiskRecord,
    Estimate,
    Notification,
    NotificationSnooze,
)


@dataclass
class StoreSnapshot:
    """Accounts and estimates read together in one transaction."""
    accounts: List[Account]
    estimates: List[Estimate]
    read_at: Optional[datetime] = None


class AccountStore(ABC):
    """Read access to accounts and estimates, plus the status write-back."""

    @abstractmethod
    async def list_accounts(self) -> List[Account]:
        pass

    @abstractmethod
    async def list_estimates(self) -> List[Estimate]:
        pass

    @abstractmethod
    async def load_snapshot(self) -> StoreSnapshot:
        """
        Accounts and estimates as one consistent read.

        A recompute pass classifies from this snapshot only, so an estimate
        written mid-pass never pairs with a stale account row.
        """
        pass

    @abstractmethod
    async def update_account_status(self, account_id: str, status: str) -> bool:
        """Set an account's status. Returns False when the account is gone."""
        pass


class SnoozeStore(ABC):
    """Notification snoozes keyed by (type, account_id)."""

    @abstractmethod
    async def list_active_snoozes(
        self,
        notification_type: Optional[str] = None,
        account_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[NotificationSnooze]:
        """Snoozes whose snoozed_until is after `now`, optionally filtered."""
        pass

    @abstractmethod
    async def upsert_snooze(self, snooze: NotificationSnooze) -> NotificationSnooze:
        """Create or extend the snooze for (type, account_id). Never duplicates."""
        pass


class NotificationStore(ABC):
    """Per-user notification feed."""

    @abstractmethod
    async def list_active_user_ids(self) -> List[str]:
        pass

    @abstractmethod
    async def upsert_notification(
        self,
        user_id: str,
        notification_type: str,
        account_id: Optional[str],
        day: date,
        title: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Tuple[Notification, bool]:
        """
        Insert the notification unless one already exists for
        (user_id, type, account_id, day).

        Returns the stored notification and whether it was created.
        """
        pass

    @abstractmethod
    async def list_notifications(self, user_id: str) -> List[Notification]:
        """All notifications for a user, newest first. Unfiltered by snoozes."""
        pass


class AtRiskCacheStore(ABC):
    """Persisted at-risk cache."""

    @abstractmethod
    async def read_cache(self) -> Tuple[List[AtRiskRecord], Optional[datetime]]:
        """Cached records and the newest computed_at (None when empty)."""
        pass

    @abstractmethod
    async def replace_cache(self, records: List[AtRiskRecord], computed_at: datetime) -> int:
        """
        Upsert `records` and delete rows for accounts no longer at risk.

        Rows written by a newer pass (computed_at greater than this one) are
        left untouched. Returns the number of rows written.
        """
        pass
