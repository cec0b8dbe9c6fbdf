"""
Notification Reconciler

Turns the derived at-risk and neglected sets into rows in each active
user's notification feed.

For every (type, account) candidate and every active user:
1. Skip if a snooze matches (type, account)
2. Skip if the user already has an unread notification for (type, account)
3. Otherwise upsert on (user, type, account, business day)

Running twice on the same business day never creates a second row.
Snoozed notifications are kept; the read paths filter them out.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from lecrm.config import settings
from lecrm.renewals.classifier import normalize_account_id
from lecrm.renewals.dates import SystemClock, business_today
from lecrm.renewals.exceptions import MalformedRecord
from lecrm.renewals.snooze import SnoozeIndex, type_value
from lecrm.renewals.types import AtRiskRecord, NeglectedAccount, Notification, NotificationType
from lecrm.store.base import NotificationStore, SnoozeStore

from .templates import build_duplicate_estimates, build_neglected_account, build_renewal_reminder

logger = logging.getLogger(__name__)


@dataclass
class NotificationCandidate:
    """A notification the current state says should exist."""
    type: NotificationType
    account_id: str
    title: str
    message: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.type.value, self.account_id)


@dataclass
class ReconciliationSummary:
    """Outcome of one reconciliation run."""
    users: int = 0
    candidates: Dict[str, int] = field(default_factory=dict)
    created: int = 0
    existing: int = 0
    snoozed: int = 0
    errors: int = 0
    failed_accounts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "users": self.users,
            "candidates": dict(self.candidates),
            "created": self.created,
            "existing": self.existing,
            "snoozed": self.snoozed,
            "errors": self.errors,
            "failed_accounts": list(self.failed_accounts),
        }


class NotificationReconciler:
    """
    Reconciles derived account state against the notification feed.

    Also owns the snooze-aware read paths so the feed and its counts agree
    with what reconciliation considers snoozed.
    """

    def __init__(
        self,
        notifications: NotificationStore,
        snoozes: SnoozeStore,
        clock: Optional[Any] = None,
        business_tz: Optional[tzinfo] = None,
    ):
        self.notifications = notifications
        self.snoozes = snoozes
        self.clock = clock or SystemClock()
        self.business_tz = business_tz or settings.BUSINESS_TIMEZONE

    # =========================================================================
    # Candidates
    # =========================================================================

    def build_candidates(
        self,
        at_risk: Iterable[AtRiskRecord],
        neglected: Iterable[NeglectedAccount],
        summary: Optional[ReconciliationSummary] = None,
    ) -> List[NotificationCandidate]:
        """One candidate per (type, account) the current state calls for."""
        summary = summary or ReconciliationSummary()
        candidates: Dict[Tuple[str, str], NotificationCandidate] = {}

        def add(notification_type: NotificationType, raw_id: Any, copy: Dict[str, str]) -> None:
            account_id = normalize_account_id(raw_id)
            if account_id is None:
                raise MalformedRecord(f"Missing account id for {notification_type.value}", record_id=raw_id)
            candidate = NotificationCandidate(notification_type, account_id, copy["title"], copy["message"])
            candidates.setdefault(candidate.key, candidate)

        for record in at_risk or []:
            try:
                add(NotificationType.RENEWAL_REMINDER, record.account_id, build_renewal_reminder(record))
                if record.has_duplicates:
                    add(
                        NotificationType.DUPLICATE_AT_RISK_ESTIMATES,
                        record.account_id,
                        build_duplicate_estimates(record),
                    )
            except (MalformedRecord, AttributeError, TypeError, ValueError) as e:
                self._record_failure(summary, getattr(record, "account_id", None), e)

        for account in neglected or []:
            try:
                add(NotificationType.NEGLECTED_ACCOUNT, account.account_id, build_neglected_account(account))
            except (MalformedRecord, AttributeError, TypeError, ValueError) as e:
                self._record_failure(summary, getattr(account, "account_id", None), e)

        for candidate in candidates.values():
            summary.candidates[candidate.type.value] = summary.candidates.get(candidate.type.value, 0) + 1
        return list(candidates.values())

    def _record_failure(self, summary: ReconciliationSummary, account_id: Any, error: Exception) -> None:
        logger.error(f"Skipping account {account_id} during reconciliation: {error}")
        summary.errors += 1
        summary.failed_accounts.append(str(account_id))

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def reconcile(
        self,
        at_risk: Iterable[AtRiskRecord],
        neglected: Iterable[NeglectedAccount],
        user_ids: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> ReconciliationSummary:
        """
        Upsert notifications for accounts newly entering the at-risk,
        neglected or duplicate-contract sets.

        A failure on one account is logged and counted; the batch continues.
        Store failures while loading users or snoozes propagate.
        """
        now = now or self.clock.now()
        day = business_today(now, self.business_tz)
        summary = ReconciliationSummary()

        candidates = self.build_candidates(at_risk, neglected, summary)
        if user_ids is None:
            user_ids = await self.notifications.list_active_user_ids()
        summary.users = len(user_ids)
        if not candidates or not user_ids:
            logger.info(f"Reconciliation: nothing to do ({len(candidates)} candidates, {len(user_ids)} users)")
            return summary

        snooze_index = SnoozeIndex(await self.snoozes.list_active_snoozes(now=now), now)
        pending = []
        for candidate in candidates:
            if snooze_index.is_snoozed(candidate.type, candidate.account_id):
                summary.snoozed += 1
                continue
            pending.append(candidate)

        for user_id in user_ids:
            try:
                unread = await self._unread_keys(user_id)
            except Exception as e:
                logger.error(f"Could not load notifications for user {user_id}: {e}")
                summary.errors += 1
                continue

            for candidate in pending:
                if candidate.key in unread:
                    summary.existing += 1
                    continue
                try:
                    _, created = await self.notifications.upsert_notification(
                        user_id,
                        candidate.type.value,
                        candidate.account_id,
                        day,
                        title=candidate.title,
                        message=candidate.message,
                    )
                except Exception as e:
                    self._record_failure(summary, candidate.account_id, e)
                    continue
                if created:
                    summary.created += 1
                    unread.add(candidate.key)
                else:
                    summary.existing += 1

        logger.info(
            f"Reconciliation for {day.isoformat()}: {summary.created} created, "
            f"{summary.existing} existing, {summary.snoozed} snoozed, {summary.errors} errors"
        )
        return summary

    async def _unread_keys(self, user_id: str) -> Set[Tuple[str, str]]:
        keys = set()
        for notification in await self.notifications.list_notifications(user_id):
            if notification.is_read:
                continue
            account_id = normalize_account_id(notification.related_account_id)
            if account_id is not None:
                keys.add((type_value(notification.type), account_id))
        return keys

    # =========================================================================
    # Read paths
    # =========================================================================

    async def visible_notifications(self, user_id: str, now: Optional[datetime] = None) -> List[Notification]:
        """The user's feed with currently snoozed notifications filtered out."""
        now = now or self.clock.now()
        notifications = await self.notifications.list_notifications(user_id)
        snooze_index = SnoozeIndex(await self.snoozes.list_active_snoozes(now=now), now)
        return [
            n for n in notifications
            if not snooze_index.is_snoozed(n.type, n.related_account_id)
        ]

    async def unread_counts(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Unread counts over the same snooze-filtered feed."""
        by_type: Dict[str, int] = {}
        for notification in await self.visible_notifications(user_id, now):
            if notification.is_read:
                continue
            key = type_value(notification.type)
            by_type[key] = by_type.get(key, 0) + 1
        return {"total": sum(by_type.values()), "by_type": by_type}
