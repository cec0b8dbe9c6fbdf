"""
Cache Coordinator - at-risk cache state machine.

States:
- fresh: last successful recompute is inside the staleness window
- stale: serving old (or no) data, a recompute is due
- recomputing: a pass is in flight

Transitions:
- fresh -> stale when the staleness window elapses
- fresh|stale -> recomputing on a scheduled tick, an invalidation or a manual refresh
- recomputing -> fresh on success
- recomputing -> stale on failure, on timeout, or when an invalidation
  arrived during the pass

Concurrent triggers share one in-flight task. A successful pass persists the
cache, writes account status transitions back and then reconciles the
notification feed. The recompute timeout bounds the load, classify and
persist steps only.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Dict, Iterable, List, Optional, Tuple

from lecrm.config import settings
from lecrm.notifications.reconciler import NotificationReconciler, ReconciliationSummary
from lecrm.renewals.classifier import classify_at_risk, normalize_account_id, renewal_days, status_transition
from lecrm.renewals.dates import SystemClock, business_today
from lecrm.renewals.exceptions import DataUnavailable, MalformedRecord, RecomputeTimeout
from lecrm.renewals.neglect import evaluate_neglect
from lecrm.renewals.predicates import field_value, group_by
from lecrm.renewals.rules import RiskWindow, risk_window_for
from lecrm.renewals.snooze import SnoozeIndex
from lecrm.renewals.types import (
    AtRiskRecord,
    CacheSnapshot,
    CacheState,
    NeglectedAccount,
    NotificationType,
)
from lecrm.store.base import AccountStore, AtRiskCacheStore, SnoozeStore

logger = logging.getLogger(__name__)


# =============================================================================
# CLASSIFICATION PASS
# =============================================================================

@dataclass
class ClassificationOutcome:
    """Everything one pass derives from a store snapshot."""
    records: List[AtRiskRecord] = field(default_factory=list)
    neglected: List[NeglectedAccount] = field(default_factory=list)
    transitions: List[Tuple[str, str]] = field(default_factory=list)  # (account_id, new status)
    malformed: int = 0


def build_snapshot(
    accounts: Iterable[Any],
    estimates: Iterable[Any],
    snoozes: Iterable[Any],
    today: date,
    now: datetime,
    window: RiskWindow,
    computed_at: Optional[datetime] = None,
) -> ClassificationOutcome:
    """
    Classify every account. Synchronous and pure; runs in a worker thread.

    Records are ordered by days_until_renewal, then account_id.
    """
    outcome = ClassificationOutcome()
    by_account = group_by(estimates, lambda e: normalize_account_id(field_value(e, "account_id")))
    snooze_index = SnoozeIndex(snoozes, now)

    for account in accounts:
        account_id = normalize_account_id(field_value(account, "id"))
        try:
            if account_id is None:
                raise MalformedRecord("Account without id")
            account_estimates = by_account.get(account_id, [])

            record = classify_at_risk(account, account_estimates, today, window, computed_at)
            if record is not None:
                outcome.records.append(record)

            new_status = status_transition(account, renewal_days(account_estimates, today), window)
            if new_status is not None:
                outcome.transitions.append((account_id, new_status))

            neglected = evaluate_neglect(account, today, snooze_index=snooze_index)
            if neglected is not None:
                outcome.neglected.append(neglected)
        except (MalformedRecord, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping malformed account {account_id}: {e}")
            outcome.malformed += 1

    outcome.records.sort(key=lambda r: (r.days_until_renewal, r.account_id))
    outcome.neglected.sort(key=lambda n: n.account_id)
    return outcome


# =============================================================================
# RESULT
# =============================================================================

@dataclass
class RecomputeResult:
    """Outcome of one recompute pass."""
    status: str  # ok | failed | timeout
    reason: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    at_risk_count: int = 0
    neglected_count: int = 0
    status_updates: int = 0
    malformed: int = 0
    error: Optional[str] = None
    reconciliation: Optional[ReconciliationSummary] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "reason": self.reason,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "at_risk_count": self.at_risk_count,
            "neglected_count": self.neglected_count,
            "status_updates": self.status_updates,
            "malformed": self.malformed,
            "error": self.error,
            "reconciliation": self.reconciliation.to_dict() if self.reconciliation else None,
        }


# =============================================================================
# COORDINATOR
# =============================================================================

class CacheCoordinator:
    """
    Owns the at-risk cache and every recompute of it.

    All triggers (scheduler ticks, change events, manual refreshes) go
    through refresh() or invalidate(); at most one pass runs at a time.
    """

    def __init__(
        self,
        accounts: AccountStore,
        cache: AtRiskCacheStore,
        snoozes: SnoozeStore,
        reconciler: Optional[NotificationReconciler] = None,
        clock: Optional[Any] = None,
        window: Optional[RiskWindow] = None,
        staleness_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        debounce_seconds: Optional[float] = None,
        business_tz: Optional[tzinfo] = None,
    ):
        self.accounts = accounts
        self.cache = cache
        self.snoozes = snoozes
        self.reconciler = reconciler
        self.clock = clock or SystemClock()
        self.window = window or risk_window_for(settings.AT_RISK_INCLUDE_OVERDUE)
        self.staleness = timedelta(seconds=(
            staleness_seconds if staleness_seconds is not None else settings.CACHE_STALENESS_SECONDS
        ))
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.RECOMPUTE_TIMEOUT_SECONDS
        )
        self.debounce_seconds = (
            debounce_seconds if debounce_seconds is not None else settings.INVALIDATION_DEBOUNCE_SECONDS
        )
        self.business_tz = business_tz or settings.BUSINESS_TIMEZONE

        self._records: List[AtRiskRecord] = []
        self._neglected: List[NeglectedAccount] = []
        self._computed_at: Optional[datetime] = None
        self._last_success: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._last_result: Optional[RecomputeResult] = None
        self._failed = False
        self._dirty = False
        self._inflight: Optional[asyncio.Task] = None
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._closed = False
        self.passes_started = 0

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> CacheState:
        if self._inflight is not None and not self._inflight.done():
            return CacheState.RECOMPUTING
        if self._dirty or self._failed or self._last_success is None:
            return CacheState.STALE
        if self.clock.now() - self._last_success > self.staleness:
            return CacheState.STALE
        return CacheState.FRESH

    @property
    def is_recomputing(self) -> bool:
        return self.state == CacheState.RECOMPUTING

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "computed_at": self._computed_at.isoformat() if self._computed_at else None,
            "last_success": self._last_success.isoformat() if self._last_success else None,
            "last_error": self._last_error,
            "pending_invalidation": self._dirty,
            "window": {"max_days": self.window.max_days, "policy": self.window.policy.value},
            "last_result": self._last_result.to_dict() if self._last_result else None,
        }

    async def snapshot(self) -> CacheSnapshot:
        """
        Current cache contents. Never raises.

        Before the first pass in this process the persisted cache is served;
        if that read fails too the snapshot is empty and stale.
        """
        if self._computed_at is not None:
            return CacheSnapshot(
                records=list(self._records),
                neglected=list(self._neglected),
                state=self.state,
                computed_at=self._computed_at,
                last_error=self._last_error,
            )

        records: List[AtRiskRecord] = []
        computed_at = None
        last_error = self._last_error
        try:
            records, computed_at = await self.cache.read_cache()
        except DataUnavailable as e:
            logger.warning(f"Serving empty at-risk snapshot, cache unreadable: {e}")
            last_error = str(e)
        except Exception as e:
            logger.error(f"Unexpected error reading at-risk cache: {e}")
            last_error = str(e)
        return CacheSnapshot(
            records=records,
            neglected=[],
            state=self.state,
            computed_at=computed_at,
            last_error=last_error,
        )

    # =========================================================================
    # Triggers
    # =========================================================================

    async def refresh(self, reason: str = "manual") -> RecomputeResult:
        """Run a recompute, or join the one already in flight."""
        task = self._inflight
        if task is None or task.done():
            task = self._spawn(reason)
        return await asyncio.shield(task)

    def request_refresh(self, reason: str = "stale read") -> Optional[asyncio.Task]:
        """
        Start a background pass unless one is in flight. Returns the task.

        After a failed pass reads do not retry; the next tick or change does.
        """
        if self._closed:
            return None
        if self._failed:
            logger.debug(f"Skipping {reason} refresh, last pass failed: {self._last_error}")
            return None
        if self._inflight is not None and not self._inflight.done():
            return self._inflight
        return self._spawn(reason)

    def invalidate(self, reason: str = "change") -> None:
        """Mark the cache stale and schedule a debounced recompute."""
        if self._closed:
            return
        self._dirty = True
        self._schedule_debounced(reason)

    def _schedule_debounced(self, reason: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"Invalidation ({reason}) outside an event loop, left for the next tick")
            return
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = loop.call_later(self.debounce_seconds, self._fire_debounced, reason)

    def _fire_debounced(self, reason: str) -> None:
        self._debounce_handle = None
        if self._closed:
            return
        if self._inflight is not None and not self._inflight.done():
            # The pass in flight reschedules itself when it sees the dirty flag
            return
        self._spawn(reason)

    def _spawn(self, reason: str) -> asyncio.Task:
        self._dirty = False
        self.passes_started += 1
        self._inflight = asyncio.get_running_loop().create_task(self._run(reason))
        return self._inflight

    async def close(self) -> None:
        """Cancel pending work. Used on application shutdown."""
        self._closed = True
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # =========================================================================
    # Recompute pass
    # =========================================================================

    async def _run(self, reason: str) -> RecomputeResult:
        started_at = self.clock.now()
        result = RecomputeResult(status="ok", reason=reason, started_at=started_at)
        logger.info(f"At-risk recompute started ({reason})")

        try:
            outcome = await asyncio.wait_for(
                self._recompute(started_at, result), timeout=self.timeout_seconds
            )
            # Follow-up writes run outside the timeout; the cache is already persisted
            result.status_updates = await self._write_back(outcome.transitions)
            result.reconciliation = await self._reconcile(outcome, started_at)
            self._last_success = started_at
            self._last_error = None
            self._failed = False
        except asyncio.TimeoutError:
            error = RecomputeTimeout(f"Recompute exceeded {self.timeout_seconds}s and was abandoned")
            logger.error(f"At-risk recompute timed out: {error}")
            result.status = "timeout"
            result.error = str(error)
            self._last_error = str(error)
            self._failed = True
        except DataUnavailable as e:
            logger.error(f"At-risk recompute failed, keeping previous cache: {e}")
            result.status = "failed"
            result.error = str(e)
            self._last_error = str(e)
            self._failed = True
        except Exception as e:
            logger.error(f"At-risk recompute failed unexpectedly: {e}")
            result.status = "failed"
            result.error = str(e)
            self._last_error = str(e)
            self._failed = True
        finally:
            result.finished_at = self.clock.now()
            self._last_result = result
            self._inflight = None
            if self._dirty and self._debounce_handle is None and not self._closed:
                self._schedule_debounced("invalidated during recompute")

        logger.info(
            f"At-risk recompute {result.status}: {result.at_risk_count} at risk, "
            f"{result.neglected_count} neglected, {result.status_updates} status updates"
        )
        return result

    async def _recompute(self, started_at: datetime, result: RecomputeResult) -> ClassificationOutcome:
        """Load, classify and persist. The part bounded by the recompute timeout."""
        snapshot = await self.accounts.load_snapshot()
        snoozes = await self.snoozes.list_active_snoozes(
            notification_type=NotificationType.NEGLECTED_ACCOUNT.value,
            now=started_at,
        )
        today = business_today(started_at, self.business_tz)

        outcome = await asyncio.to_thread(
            build_snapshot,
            snapshot.accounts,
            snapshot.estimates,
            snoozes,
            today,
            started_at,
            self.window,
            started_at,
        )
        result.at_risk_count = len(outcome.records)
        result.neglected_count = len(outcome.neglected)
        result.malformed = outcome.malformed

        await self.cache.replace_cache(outcome.records, started_at)
        self._records = outcome.records
        self._neglected = outcome.neglected
        self._computed_at = started_at
        return outcome

    async def _write_back(self, transitions: List[Tuple[str, str]]) -> int:
        updated = 0
        for account_id, new_status in transitions:
            try:
                if await self.accounts.update_account_status(account_id, new_status):
                    updated += 1
                    logger.info(f"Account {account_id} status -> {new_status}")
            except DataUnavailable as e:
                logger.warning(f"Could not update status of account {account_id}: {e}")
        return updated

    async def _reconcile(self, outcome: ClassificationOutcome, now: datetime) -> Optional[ReconciliationSummary]:
        if self.reconciler is None:
            return None
        try:
            return await self.reconciler.reconcile(outcome.records, outcome.neglected, now=now)
        except DataUnavailable as e:
            logger.error(f"Notification reconciliation skipped: {e}")
            return None
        except Exception as e:
            logger.error(f"Notification reconciliation failed unexpectedly: {e}")
            return None
