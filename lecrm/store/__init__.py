"""Store interfaces and the PostgreSQL implementation."""

from .base import AccountStore, AtRiskCacheStore, NotificationStore, SnoozeStore, StoreSnapshot
from .changes import ChangeEvent, ChangeFeed, register_change_listeners
from .sql import SqlAlchemyStore

__all__ = [
    "AccountStore",
    "AtRiskCacheStore",
    "NotificationStore",
    "SnoozeStore",
    "StoreSnapshot",
    "ChangeEvent",
    "ChangeFeed",
    "register_change_listeners",
    "SqlAlchemyStore",
]
