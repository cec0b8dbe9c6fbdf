"""
Consolidated models package.

IMPORTANT: Explicit imports only - no wildcards to prevent circular imports.
Use string-based forward references in relationships: relationship("Estimate", ...)
"""

# Base utilities
from lecrm.models.base import generate_id

# User model
from lecrm.models.user import User

# CRM records
from lecrm.models.account import Account, Estimate

# Derived cache
from lecrm.models.cache import AtRiskAccount

# Notification feed
from lecrm.models.notification import Notification, NotificationSnooze

__all__ = [
    "generate_id",
    "User",
    "Account",
    "Estimate",
    "AtRiskAccount",
    "Notification",
    "NotificationSnooze",
]
