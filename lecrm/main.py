"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lecrm.cache.coordinator import CacheCoordinator
from lecrm.cache.scheduler import RecomputeScheduler
from lecrm.config import settings
from lecrm.database import async_session_maker, engine
from lecrm.notifications import routes as notification_routes
from lecrm.notifications.reconciler import NotificationReconciler
from lecrm.renewals import routes as renewal_routes
from lecrm.store.changes import ChangeFeed, PgChangeListener, register_change_listeners
from lecrm.store.sql import SqlAlchemyStore

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the store, coordinator and scheduler; tear them down on exit."""
    store = SqlAlchemyStore(async_session_maker)
    feed = ChangeFeed()
    remove_listeners = register_change_listeners(feed)

    reconciler = NotificationReconciler(store, store)
    coordinator = CacheCoordinator(store, store, store, reconciler=reconciler)
    listener = PgChangeListener(feed) if settings.CHANGE_LISTENER_ENABLED else None
    scheduler = RecomputeScheduler(coordinator, feed, listener=listener)

    app.state.store = store
    app.state.feed = feed
    app.state.reconciler = reconciler
    app.state.coordinator = coordinator
    app.state.scheduler = scheduler

    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("Recompute scheduler disabled")

    try:
        yield
    finally:
        await scheduler.shutdown()
        remove_listeners()
        await engine.dispose()


# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="LECRM Renewal Engine",
    description="Renewal risk, neglect detection and notification reconciliation for the CRM",
    version="0.1.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(renewal_routes.router, prefix=settings.API_V1_PREFIX)
app.include_router(notification_routes.router, prefix=settings.API_V1_PREFIX)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "LECRM Renewal Engine",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    coordinator = getattr(app.state, "coordinator", None)
    return {
        "status": "healthy",
        "cache_state": coordinator.state.value if coordinator else None,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "lecrm.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
