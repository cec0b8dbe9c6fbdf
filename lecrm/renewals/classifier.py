"""
At-Risk Classifier

Combines the renewal resolver and the duplicate contract detector with
account state to decide whether an account belongs in the at-risk cache.

Rules:
1. Archived accounts (flag or status) are never at risk
2. No resolvable renewal date -> not at risk
3. days_until_renewal = renewal_date - today, in whole days
4. At risk iff days_until_renewal is inside the risk window
5. Duplicate live contracts annotate the record
"""

from datetime import date, datetime, time, timezone
from typing import Any, Iterable, Optional

from .dates import days_between
from .predicates import field_value, is_present
from .resolver import find_duplicate_contracts, resolve_renewal
from .rules import DEFAULT_RISK_WINDOW, RiskWindow
from .types import AccountStatus, AtRiskRecord


def normalize_account_id(value: Any) -> Optional[str]:
    """Normalize numeric or string ids to one string form; blanks become None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def is_archived(account: Any) -> bool:
    """The archived flag and the archived status can diverge; either one counts."""
    if bool(field_value(account, "archived", False)):
        return True
    status = field_value(account, "status")
    return is_present(status) and str(status).strip().lower() == AccountStatus.ARCHIVED.value


def classify_at_risk(
    account: Any,
    estimates: Iterable[Any],
    today: date,
    window: RiskWindow = DEFAULT_RISK_WINDOW,
    computed_at: Optional[datetime] = None,
) -> Optional[AtRiskRecord]:
    """
    Build the at-risk record for one account, or None.

    Deterministic for identical inputs: computed_at defaults to midnight UTC
    of `today` rather than the wall clock.
    """
    if is_archived(account):
        return None

    account_id = normalize_account_id(field_value(account, "id"))
    if account_id is None:
        return None

    estimates = list(estimates or [])
    resolution = resolve_renewal(estimates)
    if resolution is None:
        return None

    days_until = days_between(today, resolution.renewal_date)
    if not window.contains(days_until):
        return None

    duplicates = find_duplicate_contracts(estimates, today, window, resolution)
    if computed_at is None:
        computed_at = datetime.combine(today, time.min, tzinfo=timezone.utc)

    return AtRiskRecord(
        account_id=account_id,
        account_name=field_value(account, "name"),
        renewal_date=resolution.renewal_date,
        days_until_renewal=days_until,
        expiring_estimate_id=resolution.driving.estimate_id or None,
        expiring_estimate_number=resolution.driving.estimate_number,
        has_duplicates=bool(duplicates),
        duplicate_estimates=duplicates,
        computed_at=computed_at,
    )


def renewal_days(estimates: Iterable[Any], today: date) -> Optional[int]:
    """Signed days until the resolved renewal date, or None when unresolved."""
    resolution = resolve_renewal(estimates)
    if resolution is None:
        return None
    return days_between(today, resolution.renewal_date)


def status_transition(
    account: Any,
    days_until: Optional[int],
    window: RiskWindow = DEFAULT_RISK_WINDOW,
) -> Optional[str]:
    """
    Status the account should move to, or None when no write is needed.

    Entering the window moves an account to at_risk (churned accounts stay
    churned). A resolved renewal outside the window moves at_risk back to
    active. Accounts without a resolved date keep a manually set status.
    """
    if is_archived(account) or days_until is None:
        return None

    status = str(field_value(account, "status") or "").strip().lower()
    if window.contains(days_until):
        if status in (AccountStatus.AT_RISK.value, AccountStatus.CHURNED.value):
            return None
        return AccountStatus.AT_RISK.value

    if status == AccountStatus.AT_RISK.value:
        return AccountStatus.ACTIVE.value
    return None
