"""
Notification Templates

Title and message copy for the notification types reconciled by the
renewal engine.
"""

from datetime import date
from typing import Dict, Optional

from lecrm.renewals.types import AtRiskRecord, NeglectedAccount


def _display_name(name: Optional[str], account_id: str) -> str:
    return name.strip() if name and name.strip() else f"Account {account_id}"


def format_date(value: date) -> str:
    """Dates in notification copy read like 'Mar 5, 2026'."""
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def build_renewal_reminder(record: AtRiskRecord) -> Dict[str, str]:
    name = _display_name(record.account_name, record.account_id)
    days = record.days_until_renewal
    if days < 0:
        when = f"{abs(days)} days ago"
    elif days == 0:
        when = "today"
    elif days == 1:
        when = "in 1 day"
    else:
        when = f"in {days} days"
    return {
        "title": f"Renewal Coming Up: {name}",
        "message": f"Contract for {name} ends {when} ({format_date(record.renewal_date)}).",
    }


def build_neglected_account(account: NeglectedAccount) -> Dict[str, str]:
    name = _display_name(account.account_name, account.account_id)
    if account.days_since_interaction is None:
        detail = "has no recorded interaction"
    else:
        detail = f"has had no interaction for {account.days_since_interaction} days"
    return {
        "title": f"Neglected Account: {name}",
        "message": (
            f"{name} {detail} (segment {account.revenue_segment}, "
            f"threshold {account.threshold_days} days)."
        ),
    }


def build_duplicate_estimates(record: AtRiskRecord) -> Dict[str, str]:
    name = _display_name(record.account_name, record.account_id)
    count = len(record.duplicate_estimates)
    noun = "contract" if count == 1 else "contracts"
    return {
        "title": "Duplicate At-Risk Estimates Detected",
        "message": (
            f"Account \"{name}\" has {count} other live {noun} inside the renewal "
            f"window. Please review."
        ),
    }
