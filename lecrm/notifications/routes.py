"""
Notification Routes

The snooze-filtered notification feed, unread counts and snooze management.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel

from lecrm.dependencies import get_reconciler, get_snooze_store
from lecrm.renewals.exceptions import DataUnavailable
from lecrm.renewals.snooze import parse_timestamp
from lecrm.renewals.types import NotificationSnooze, NotificationType
from lecrm.store.base import SnoozeStore

from .reconciler import NotificationReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


# =============================================================================
# SCHEMAS
# =============================================================================

class NotificationResponse(BaseModel):
    id: str
    user_id: str
    type: str
    related_account_id: Optional[str] = None
    title: Optional[str] = None
    message: Optional[str] = None
    is_read: bool
    created_at: str
    dedupe_day: Optional[str] = None


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    total: int


class UnreadCountsResponse(BaseModel):
    total: int
    by_type: dict


class SnoozeCreate(BaseModel):
    """Request to snooze a notification type, optionally for one account."""
    notification_type: NotificationType
    snoozed_until: datetime
    related_account_id: Optional[str] = None
    snoozed_by: Optional[str] = None


class SnoozeResponse(BaseModel):
    notification_type: str
    related_account_id: Optional[str] = None
    snoozed_until: str
    snoozed_by: Optional[str] = None


def _unavailable(e: DataUnavailable) -> HTTPException:
    logger.warning(f"Notification store unavailable: {e}")
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Notification store unavailable")


def _snooze_response(snooze: NotificationSnooze) -> SnoozeResponse:
    until = parse_timestamp(snooze.snoozed_until)
    return SnoozeResponse(
        notification_type=str(snooze.notification_type),
        related_account_id=snooze.related_account_id,
        snoozed_until=until.isoformat() if until else str(snooze.snoozed_until),
        snoozed_by=snooze.snoozed_by,
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    user_id: str = Query(...),
    reconciler: NotificationReconciler = Depends(get_reconciler),
):
    """A user's notifications, newest first, without snoozed ones."""
    try:
        notifications = await reconciler.visible_notifications(user_id)
    except DataUnavailable as e:
        raise _unavailable(e)
    return NotificationListResponse(
        notifications=[n.to_dict() for n in notifications],
        total=len(notifications),
    )


@router.get("/counts", response_model=UnreadCountsResponse)
async def get_unread_counts(
    user_id: str = Query(...),
    reconciler: NotificationReconciler = Depends(get_reconciler),
):
    """Unread counts, using the same snooze filter as the feed."""
    try:
        return await reconciler.unread_counts(user_id)
    except DataUnavailable as e:
        raise _unavailable(e)


@router.get("/snoozes", response_model=List[SnoozeResponse])
async def list_snoozes(
    notification_type: Optional[NotificationType] = None,
    account_id: Optional[str] = None,
    snooze_store: SnoozeStore = Depends(get_snooze_store),
):
    """Snoozes that are currently in effect."""
    try:
        snoozes = await snooze_store.list_active_snoozes(
            notification_type=notification_type.value if notification_type else None,
            account_id=account_id,
        )
    except DataUnavailable as e:
        raise _unavailable(e)
    return [_snooze_response(s) for s in snoozes]


@router.post("/snoozes", response_model=SnoozeResponse, status_code=status.HTTP_201_CREATED)
async def create_snooze(
    body: SnoozeCreate,
    request: Request,
    snooze_store: SnoozeStore = Depends(get_snooze_store),
):
    """Create or extend a snooze for (type, account)."""
    until = body.snoozed_until
    if until.tzinfo is None:
        until = until.replace(tzinfo=timezone.utc)
    if until <= datetime.now(timezone.utc):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="snoozed_until must be in the future")

    try:
        snooze = await snooze_store.upsert_snooze(
            NotificationSnooze(
                notification_type=body.notification_type.value,
                related_account_id=body.related_account_id,
                snoozed_until=until,
                snoozed_by=body.snoozed_by,
            )
        )
    except DataUnavailable as e:
        raise _unavailable(e)

    # Snooze writes go through a Core upsert, which the change feed does not see
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is not None:
        coordinator.invalidate("snooze updated")
    return _snooze_response(snooze)
