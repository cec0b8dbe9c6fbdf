"""
Notification Models

Per-user notification feed and the snoozes that hide parts of it.
"""
from sqlalchemy import Column, String, DateTime, Boolean, Date, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func

from lecrm.database import Base
from lecrm.models.base import generate_id


class NotificationSnooze(Base):
    """
    Time-bounded suppression of a notification type.

    related_account_key is '' for type-wide snoozes so the unique constraint
    also covers them (NULLs never collide in a unique index).
    """

    __tablename__ = "notification_snoozes"

    id = Column(String, primary_key=True, default=lambda: generate_id("snooze"))
    notification_type = Column(String, nullable=False, index=True)
    related_account_id = Column(String, nullable=True)
    related_account_key = Column(String, nullable=False, default="")
    snoozed_until = Column(DateTime(timezone=True), nullable=False)
    snoozed_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("notification_type", "related_account_key", name="uq_notification_snooze_target"),
    )


class Notification(Base):
    """
    A row in a user's notification feed.

    Bulk types are unique per (user, type, account, business day).
    """

    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=lambda: generate_id("notif"))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False)
    related_account_id = Column(String, nullable=True)
    related_account_key = Column(String, nullable=False, default="")
    title = Column(String, nullable=True)
    message = Column(String, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    dedupe_day = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "type", "related_account_key", "dedupe_day",
            name="uq_notification_daily",
        ),
    )
