"""
Renewal Engine Types - Core Data Structures.

Plain records that flow between the pure classification functions,
the cache coordinator and the notification reconciler:
- Account / Estimate: read from the CRM store
- AtRiskRecord: one cached entry per account inside the renewal window
- NeglectedAccount: derived once per recompute cycle
- NotificationSnooze / Notification: notification feed state
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


# =============================================================================
# ENUMS
# =============================================================================

class AccountStatus(str, Enum):
    """Account lifecycle status."""
    ACTIVE = "active"
    PROSPECT = "prospect"
    NEGOTIATING = "negotiating"
    AT_RISK = "at_risk"
    CHURNED = "churned"
    ARCHIVED = "archived"


class RevenueSegment(str, Enum):
    """Revenue segments assigned by the CRM."""
    A = "A"   # >= 15% of yearly revenue
    B = "B"   # 5-15%
    C = "C"   # 0-5%
    D = "D"   # Project-only work


class NotificationType(str, Enum):
    """Notification types in the per-user feed."""
    # Bulk types reconciled by this engine
    RENEWAL_REMINDER = "renewal_reminder"
    NEGLECTED_ACCOUNT = "neglected_account"
    DUPLICATE_AT_RISK_ESTIMATES = "duplicate_at_risk_estimates"

    # Task types (owned by the task subsystem)
    TASK_ASSIGNED = "task_assigned"
    TASK_OVERDUE = "task_overdue"
    TASK_DUE_TODAY = "task_due_today"
    TASK_REMINDER = "task_reminder"


class CacheState(str, Enum):
    """States of the at-risk cache."""
    FRESH = "fresh"              # Last recompute inside the staleness window
    STALE = "stale"              # Serving old data, recompute pending
    RECOMPUTING = "recomputing"  # A pass is in flight


# =============================================================================
# SOURCE RECORDS
# =============================================================================

@dataclass
class Account:
    """An account as read from the CRM store."""
    id: str
    name: Optional[str] = None
    status: str = AccountStatus.ACTIVE.value
    archived: bool = False
    revenue_segment: Optional[str] = None
    icp_status: Optional[str] = None
    last_interaction_date: Any = None  # date, datetime or ISO string


@dataclass
class Estimate:
    """An estimate (quote / contract) attached to an account."""
    id: str
    account_id: Optional[str]
    status: Optional[str] = None
    contract_end: Any = None  # date, datetime or ISO string
    estimate_number: Optional[str] = None
    pipeline_status: Optional[str] = None
    division: Optional[str] = None
    address: Optional[str] = None


# =============================================================================
# DERIVED RECORDS
# =============================================================================

@dataclass(frozen=True)
class DuplicateEstimate:
    """Summary of a contract that is live alongside the renewal contract."""
    id: str
    estimate_number: Optional[str]
    contract_end: str  # YYYY-MM-DD

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AtRiskRecord:
    """
    Cache entry for an account whose renewal falls inside the risk window.

    One record per account_id; replaced wholesale on every recompute.
    """
    account_id: str
    renewal_date: date
    days_until_renewal: int
    expiring_estimate_id: Optional[str]
    expiring_estimate_number: Optional[str]
    computed_at: datetime
    account_name: Optional[str] = None
    has_duplicates: bool = False
    duplicate_estimates: List[DuplicateEstimate] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses."""
        return {
            "account_id": self.account_id,
            "account_name": self.account_name,
            "renewal_date": self.renewal_date.isoformat(),
            "days_until_renewal": self.days_until_renewal,
            "expiring_estimate_id": self.expiring_estimate_id,
            "expiring_estimate_number": self.expiring_estimate_number,
            "has_duplicates": self.has_duplicates,
            "duplicate_estimates": [d.to_dict() for d in self.duplicate_estimates],
            "computed_at": self.computed_at.isoformat(),
        }


@dataclass
class NeglectedAccount:
    """An account with no recent enough interaction for its segment."""
    account_id: str
    threshold_days: int
    revenue_segment: str
    account_name: Optional[str] = None
    days_since_interaction: Optional[int] = None  # None = never contacted

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# NOTIFICATION FEED
# =============================================================================

@dataclass
class NotificationSnooze:
    """
    Time-bounded suppression of a notification type.

    related_account_id of None means the snooze applies to every account
    for that notification type.
    """
    notification_type: str
    snoozed_until: Any  # datetime or ISO string
    related_account_id: Optional[str] = None
    snoozed_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        until = self.snoozed_until
        return {
            "notification_type": self.notification_type,
            "related_account_id": self.related_account_id,
            "snoozed_until": until.isoformat() if isinstance(until, datetime) else until,
            "snoozed_by": self.snoozed_by,
        }


@dataclass
class Notification:
    """A row in a user's notification feed."""
    id: str
    user_id: str
    type: str
    related_account_id: Optional[str]
    created_at: datetime
    is_read: bool = False
    title: Optional[str] = None
    message: Optional[str] = None
    dedupe_day: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "related_account_id": self.related_account_id,
            "title": self.title,
            "message": self.message,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat(),
            "dedupe_day": self.dedupe_day.isoformat() if self.dedupe_day else None,
        }


# =============================================================================
# CACHE SNAPSHOT
# =============================================================================

@dataclass
class CacheSnapshot:
    """Read-only view of the cache handed to the UI layer."""
    records: List[AtRiskRecord]
    neglected: List[NeglectedAccount]
    state: CacheState
    computed_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def is_stale(self) -> bool:
        return self.state != CacheState.FRESH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "is_stale": self.is_stale,
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
            "last_error": self.last_error,
            "count": len(self.records),
            "accounts": [r.to_dict() for r in self.records],
        }
