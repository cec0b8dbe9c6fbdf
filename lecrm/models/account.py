"""
Account and estimate models.

Estimates are read-only to the renewal engine. On accounts the engine only
writes `status` (to and from "at_risk").
"""
from sqlalchemy import Column, String, DateTime, Boolean, Date, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from lecrm.database import Base
from lecrm.models.base import generate_id


class Account(Base):
    """Customer account."""

    __tablename__ = "accounts"

    id = Column(String, primary_key=True, default=lambda: generate_id("acct"))
    name = Column(String, nullable=False)

    # active, prospect, negotiating, at_risk, churned, archived
    status = Column(String, nullable=False, default="active", index=True)
    # Can diverge from status; both are checked
    archived = Column(Boolean, nullable=False, default=False)

    revenue_segment = Column(String(1), nullable=True)  # A-D, NULL -> C
    icp_status = Column(String, nullable=True)  # "na" excludes from neglect checks
    last_interaction_date = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    estimates = relationship("Estimate", back_populates="account", cascade="all, delete-orphan")


class Estimate(Base):
    """Quote or contract attached to an account."""

    __tablename__ = "estimates"

    id = Column(String, primary_key=True, default=lambda: generate_id("est"))
    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=True, index=True)
    estimate_number = Column(String, nullable=True)

    # Free text from the CRM, interpreted by is_won_status
    status = Column(String, nullable=True)
    pipeline_status = Column(String, nullable=True)

    # Raw value as imported; normalized at read time
    contract_end = Column(String, nullable=True)

    division = Column(String, nullable=True)
    address = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    account = relationship("Account", back_populates="estimates")
