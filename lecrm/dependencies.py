"""FastAPI dependencies for the engine components held on app.state."""
from fastapi import HTTPException, Request, status

from lecrm.cache.coordinator import CacheCoordinator
from lecrm.notifications.reconciler import NotificationReconciler
from lecrm.store.base import SnoozeStore


def _component(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} is not initialised",
        )
    return component


def get_coordinator(request: Request) -> CacheCoordinator:
    return _component(request, "coordinator")


def get_reconciler(request: Request) -> NotificationReconciler:
    return _component(request, "reconciler")


def get_snooze_store(request: Request) -> SnoozeStore:
    return _component(request, "store")
