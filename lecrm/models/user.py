"""User model."""
from sqlalchemy import Column, String, DateTime, Boolean
from sqlalchemy.sql import func

from lecrm.database import Base
from lecrm.models.base import generate_id


class User(Base):
    """A CRM user. Only active users receive bulk notifications."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: generate_id("user"))
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
