"""
Renewal Routes

Read access to the at-risk and neglected sets, plus manual refresh.
Snapshot reads never fail: store outages surface as a stale snapshot.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from lecrm.cache.coordinator import CacheCoordinator
from lecrm.dependencies import get_coordinator, get_snooze_store
from lecrm.store.base import SnoozeStore

from .exceptions import DataUnavailable
from .snooze import SnoozeIndex
from .types import CacheState, NotificationType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/renewals", tags=["Renewals"])


# =============================================================================
# SCHEMAS
# =============================================================================

class DuplicateEstimateResponse(BaseModel):
    id: str
    estimate_number: Optional[str] = None
    contract_end: str


class AtRiskAccountResponse(BaseModel):
    """One account inside the renewal window."""
    account_id: str
    account_name: Optional[str] = None
    renewal_date: str
    days_until_renewal: int
    expiring_estimate_id: Optional[str] = None
    expiring_estimate_number: Optional[str] = None
    has_duplicates: bool
    duplicate_estimates: List[DuplicateEstimateResponse]
    computed_at: str
    is_snoozed: bool = False


class AtRiskResponse(BaseModel):
    """Snapshot of the at-risk cache."""
    state: str
    is_stale: bool
    computed_at: Optional[str] = None
    last_error: Optional[str] = None
    count: int
    accounts: List[AtRiskAccountResponse]


class NeglectedAccountResponse(BaseModel):
    account_id: str
    account_name: Optional[str] = None
    revenue_segment: str
    threshold_days: int
    days_since_interaction: Optional[int] = None


class NeglectedResponse(BaseModel):
    state: str
    is_stale: bool
    computed_at: Optional[str] = None
    count: int
    accounts: List[NeglectedAccountResponse]


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/at-risk", response_model=AtRiskResponse)
async def get_at_risk_accounts(
    include_snoozed: bool = Query(False, description="Include accounts with a snoozed renewal reminder"),
    coordinator: CacheCoordinator = Depends(get_coordinator),
    snooze_store: SnoozeStore = Depends(get_snooze_store),
):
    """
    Accounts whose renewal falls inside the risk window.

    A stale cache is served as-is and a background recompute is requested.
    """
    snapshot = await coordinator.snapshot()
    if snapshot.state == CacheState.STALE:
        coordinator.request_refresh("stale read")

    now = coordinator.clock.now()
    snooze_index = SnoozeIndex([], now)
    try:
        snooze_index = SnoozeIndex(
            await snooze_store.list_active_snoozes(
                notification_type=NotificationType.RENEWAL_REMINDER.value, now=now
            ),
            now,
        )
    except DataUnavailable as e:
        logger.warning(f"Snoozes unavailable, serving at-risk list unfiltered: {e}")

    accounts: List[Dict[str, Any]] = []
    for record in snapshot.records:
        snoozed = snooze_index.is_snoozed(NotificationType.RENEWAL_REMINDER, record.account_id)
        if snoozed and not include_snoozed:
            continue
        accounts.append({**record.to_dict(), "is_snoozed": snoozed})

    return AtRiskResponse(
        state=snapshot.state.value,
        is_stale=snapshot.is_stale,
        computed_at=snapshot.computed_at.isoformat() if snapshot.computed_at else None,
        last_error=snapshot.last_error,
        count=len(accounts),
        accounts=accounts,
    )


@router.get("/neglected", response_model=NeglectedResponse)
async def get_neglected_accounts(
    coordinator: CacheCoordinator = Depends(get_coordinator),
):
    """Accounts without a recent enough interaction, from the last recompute."""
    snapshot = await coordinator.snapshot()
    if snapshot.state == CacheState.STALE:
        coordinator.request_refresh("stale read")
    return NeglectedResponse(
        state=snapshot.state.value,
        is_stale=snapshot.is_stale,
        computed_at=snapshot.computed_at.isoformat() if snapshot.computed_at else None,
        count=len(snapshot.neglected),
        accounts=[n.to_dict() for n in snapshot.neglected],
    )


@router.get("/status")
async def get_cache_status(coordinator: CacheCoordinator = Depends(get_coordinator)):
    """Cache state, timestamps and the last recompute result."""
    return coordinator.status()


@router.post("/refresh")
async def refresh_cache(coordinator: CacheCoordinator = Depends(get_coordinator)):
    """Recompute now, or wait for the pass already in flight."""
    result = await coordinator.refresh("manual refresh")
    return result.to_dict()
