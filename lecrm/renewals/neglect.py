"""
Neglect Detector

An account is neglected when nobody has interacted with it for longer than
its revenue segment allows.

Exclusions (checked first):
- archived accounts
- icp_status "na" (case-insensitive)
- an active neglected_account snooze for the account

Thresholds: segments A and B -> 30 days, C and D -> 90 days, missing
segment -> C. A missing last interaction date counts as neglected.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

from .classifier import is_archived, normalize_account_id
from .dates import days_between, to_date
from .predicates import field_value, is_present
from .rules import DEFAULT_SEGMENT, ICP_EXCLUDED_STATUS, NEGLECT_THRESHOLDS
from .snooze import SnoozeIndex, is_snoozed
from .types import NeglectedAccount, NotificationType, RevenueSegment

logger = logging.getLogger(__name__)


def segment_for(value: Any) -> RevenueSegment:
    """Revenue segment for a raw value; unknown or missing -> default segment."""
    if not is_present(value):
        return DEFAULT_SEGMENT
    try:
        return RevenueSegment(str(value).strip().upper())
    except ValueError:
        return DEFAULT_SEGMENT


def neglect_threshold_days(segment: Any) -> int:
    return NEGLECT_THRESHOLDS[segment_for(segment)]


def is_icp_excluded(account: Any) -> bool:
    icp_status = field_value(account, "icp_status")
    return is_present(icp_status) and str(icp_status).strip().lower() == ICP_EXCLUDED_STATUS


def _is_excluded(account: Any, snoozed: bool) -> bool:
    return is_archived(account) or is_icp_excluded(account) or snoozed


def days_since_interaction(account: Any, today: date) -> Optional[int]:
    """Whole days since the last interaction; None when missing or malformed."""
    last = to_date(field_value(account, "last_interaction_date"))
    if last is None:
        return None
    return days_between(last, today)


def evaluate_neglect(
    account: Any,
    today: date,
    snoozes: Iterable[Any] = (),
    now: Optional[datetime] = None,
    snooze_index: Optional[SnoozeIndex] = None,
) -> Optional[NeglectedAccount]:
    """
    Neglect record for one account, or None when not neglected.

    A present but unparsable last interaction date is treated as not
    neglected and logged as malformed.
    """
    account_id = normalize_account_id(field_value(account, "id"))
    if account_id is None:
        return None

    if snooze_index is not None:
        snoozed = snooze_index.is_snoozed(NotificationType.NEGLECTED_ACCOUNT, account_id)
    else:
        if now is None:
            now = datetime.now(timezone.utc)
        snoozed = is_snoozed(snoozes, NotificationType.NEGLECTED_ACCOUNT, account_id, now)

    if _is_excluded(account, snoozed):
        return None

    segment = segment_for(field_value(account, "revenue_segment"))
    threshold = NEGLECT_THRESHOLDS[segment]
    raw_last = field_value(account, "last_interaction_date")

    if not is_present(raw_last):
        days_since = None
    else:
        days_since = days_since_interaction(account, today)
        if days_since is None:
            logger.warning(f"Malformed last_interaction_date on account {account_id}: {raw_last!r}")
            return None
        if days_since <= threshold:
            return None

    return NeglectedAccount(
        account_id=account_id,
        account_name=field_value(account, "name"),
        revenue_segment=segment.value,
        threshold_days=threshold,
        days_since_interaction=days_since,
    )


def is_neglected(
    account: Any,
    today: date,
    snoozes: Iterable[Any] = (),
    now: Optional[datetime] = None,
) -> bool:
    return evaluate_neglect(account, today, snoozes, now) is not None
