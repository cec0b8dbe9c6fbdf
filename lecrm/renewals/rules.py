"""
Renewal Rules - Business Policy Constants

Fixed thresholds for at-risk and neglect classification. These are
business policy, not user settings.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .types import RevenueSegment


# Renewal window: contracts ending within this many days put the account at risk
RENEWAL_WINDOW_DAYS = 180

# Neglect thresholds by revenue segment (days since last interaction)
NEGLECT_THRESHOLDS = {
    RevenueSegment.A: 30,
    RevenueSegment.B: 30,
    RevenueSegment.C: 90,
    RevenueSegment.D: 90,
}
DEFAULT_SEGMENT = RevenueSegment.C

# ICP status that permanently excludes an account from neglect checks
ICP_EXCLUDED_STATUS = "na"

# Estimate statuses that mean the deal was signed
WON_STATUSES = frozenset({
    "contract signed",
    "work complete",
    "billing complete",
    "email contract award",
    "verbal contract award",
    "contract in progress",
    "contract + billing complete",
    "work in progress",
    "sold",
    "won",
})

# Pipeline status marker that means won regardless of status
WON_PIPELINE_MARKER = "sold"


class RiskWindowPolicy(str, Enum):
    """How overdue renewals (negative days) are treated."""
    UPCOMING_ONLY = "upcoming_only"      # days in [0, 180]
    INCLUDE_OVERDUE = "include_overdue"  # days in (-inf, 180]


@dataclass(frozen=True)
class RiskWindow:
    """Inclusive day window for the at-risk classification."""
    max_days: int = RENEWAL_WINDOW_DAYS
    policy: RiskWindowPolicy = RiskWindowPolicy.UPCOMING_ONLY

    @property
    def min_days(self) -> Optional[int]:
        if self.policy == RiskWindowPolicy.INCLUDE_OVERDUE:
            return None
        return 0

    def contains(self, days_until: int) -> bool:
        if days_until > self.max_days:
            return False
        if self.min_days is not None and days_until < self.min_days:
            return False
        return True


DEFAULT_RISK_WINDOW = RiskWindow(RENEWAL_WINDOW_DAYS, RiskWindowPolicy.UPCOMING_ONLY)
OVERDUE_RISK_WINDOW = RiskWindow(RENEWAL_WINDOW_DAYS, RiskWindowPolicy.INCLUDE_OVERDUE)


def risk_window_for(include_overdue: bool) -> RiskWindow:
    """Pick the window for a deployment setting."""
    return OVERDUE_RISK_WINDOW if include_overdue else DEFAULT_RISK_WINDOW

