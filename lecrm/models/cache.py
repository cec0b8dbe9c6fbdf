"""At-risk cache table: one row per account currently inside the renewal window."""
from sqlalchemy import Column, String, DateTime, Boolean, Date, Integer, JSON, ForeignKey

from lecrm.database import Base


class AtRiskAccount(Base):
    """
    Derived cache entry written by the cache coordinator.

    account_id is the natural key; rows are upserted guarded by computed_at
    so an older pass never overwrites a newer one.
    """

    __tablename__ = "at_risk_accounts"

    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True)
    account_name = Column(String, nullable=True)
    renewal_date = Column(Date, nullable=False)
    days_until_renewal = Column(Integer, nullable=False)
    expiring_estimate_id = Column(String, nullable=True)
    expiring_estimate_number = Column(String, nullable=True)
    has_duplicates = Column(Boolean, nullable=False, default=False)
    duplicate_estimates = Column(JSON, nullable=False, default=list)
    computed_at = Column(DateTime(timezone=True), nullable=False, index=True)
