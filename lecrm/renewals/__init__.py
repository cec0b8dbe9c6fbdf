# Renewals Module
# Pure classification of accounts into at-risk and neglected sets
#
# Components:
# - resolver.py: Renewal date resolution and duplicate contract detection
# - classifier.py: At-risk classification and account status transitions
# - neglect.py: Segment-based neglect detection
# - snooze.py: Snooze matching shared by every view
# - predicates.py: Record filter/sort helpers
# - rules.py: Business policy constants and the risk window
# - types.py: Records passed between the engine components

from .types import (
    Account,
    Estimate,
    AtRiskRecord,
    DuplicateEstimate,
    NeglectedAccount,
    Notification,
    NotificationSnooze,
    CacheSnapshot,
    AccountStatus,
    RevenueSegment,
    NotificationType,
    CacheState,
)
from .exceptions import (
    EngineError,
    DataUnavailable,
    MalformedRecord,
    RecomputeTimeout,
    SnoozeAmbiguous,
)
from .rules import (
    RENEWAL_WINDOW_DAYS,
    NEGLECT_THRESHOLDS,
    RiskWindow,
    RiskWindowPolicy,
    DEFAULT_RISK_WINDOW,
    OVERDUE_RISK_WINDOW,
    risk_window_for,
)
from .resolver import resolve_renewal, resolve_renewal_date, find_duplicate_contracts
from .classifier import classify_at_risk, status_transition, normalize_account_id
from .neglect import evaluate_neglect, is_neglected, neglect_threshold_days
from .snooze import SnoozeIndex, SnoozeMatch, is_snoozed, match_snooze

__all__ = [
    # Types
    "Account",
    "Estimate",
    "AtRiskRecord",
    "DuplicateEstimate",
    "NeglectedAccount",
    "Notification",
    "NotificationSnooze",
    "CacheSnapshot",
    "AccountStatus",
    "RevenueSegment",
    "NotificationType",
    "CacheState",
    # Errors
    "EngineError",
    "DataUnavailable",
    "MalformedRecord",
    "RecomputeTimeout",
    "SnoozeAmbiguous",
    # Rules
    "RENEWAL_WINDOW_DAYS",
    "NEGLECT_THRESHOLDS",
    "RiskWindow",
    "RiskWindowPolicy",
    "DEFAULT_RISK_WINDOW",
    "OVERDUE_RISK_WINDOW",
    "risk_window_for",
    # Classification
    "resolve_renewal",
    "resolve_renewal_date",
    "find_duplicate_contracts",
    "classify_at_risk",
    "status_transition",
    "normalize_account_id",
    "evaluate_neglect",
    "is_neglected",
    "neglect_threshold_days",
    # Snoozes
    "SnoozeIndex",
    "SnoozeMatch",
    "is_snoozed",
    "match_snooze",
]
