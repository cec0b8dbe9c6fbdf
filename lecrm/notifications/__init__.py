"""
Notifications Module

Reconciles derived account state against each user's notification feed.
"""

from .reconciler import NotificationCandidate, NotificationReconciler, ReconciliationSummary
from .templates import (
    build_duplicate_estimates,
    build_neglected_account,
    build_renewal_reminder,
)

__all__ = [
    "NotificationCandidate",
    "NotificationReconciler",
    "ReconciliationSummary",
    "build_duplicate_estimates",
    "build_neglected_account",
    "build_renewal_reminder",
]
