"""
Recompute Scheduler

Drives the cache coordinator from two sources:
- a periodic tick (APScheduler interval job, one instance at a time)
- change events from the store, which invalidate the cache
- the optional Postgres change listener, kept connected from the tick

Both funnel into the coordinator, which collapses concurrent triggers into
one pass. Owned by the application lifespan.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from lecrm.config import settings
from lecrm.store.changes import ChangeEvent, ChangeFeed, PgChangeListener

from .coordinator import CacheCoordinator, RecomputeResult

logger = logging.getLogger(__name__)

RECOMPUTE_JOB_ID = "at_risk_recompute"


class RecomputeScheduler:
    """Periodic ticker plus change-feed subscription for one coordinator."""

    def __init__(
        self,
        coordinator: CacheCoordinator,
        feed: Optional[ChangeFeed] = None,
        interval_seconds: Optional[int] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
        listener: Optional[PgChangeListener] = None,
    ):
        self.coordinator = coordinator
        self.feed = feed
        self.listener = listener
        self.interval_seconds = interval_seconds or settings.CACHE_STALENESS_SECONDS
        self.scheduler = scheduler
        self._stop = asyncio.Event()
        self._unsubscribe: Optional[Callable[[], None]] = None

    async def run_tick(self) -> Optional[RecomputeResult]:
        """
        Scheduled recompute.

        Should be scheduled every CACHE_STALENESS_SECONDS.
        """
        if self._stop.is_set():
            return None
        if self.listener is not None:
            await self.listener.ensure_started()
        result = await self.coordinator.refresh("scheduled tick")
        if not result.ok:
            logger.warning(f"Scheduled recompute ended with status {result.status}, retrying next tick")
        return result

    def on_change(self, change: ChangeEvent) -> None:
        """Change feed subscriber: invalidate, the coordinator debounces."""
        if self._stop.is_set():
            return
        self.coordinator.invalidate(f"{change.table} changed")

    def start(self) -> None:
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._stop.clear()
        setup_apscheduler(self.scheduler, self)
        if self.feed is not None:
            self._unsubscribe = self.feed.subscribe(self.on_change)
        self.scheduler.start()
        logger.info(f"Recompute scheduler started (every {self.interval_seconds}s)")

    async def shutdown(self) -> None:
        self._stop.set()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        if self.listener is not None:
            await self.listener.stop()
        await self.coordinator.close()
        logger.info("Recompute scheduler stopped")


def setup_apscheduler(scheduler, recompute_scheduler: RecomputeScheduler):
    """
    Configure APScheduler with the at-risk recompute job.

    Usage:
        scheduler = AsyncIOScheduler()
        setup_apscheduler(scheduler, RecomputeScheduler(coordinator))
        scheduler.start()

    The first run fires immediately so a fresh process never serves an
    empty cache for a whole interval.
    """
    scheduler.add_job(
        recompute_scheduler.run_tick,
        'interval',
        seconds=recompute_scheduler.interval_seconds,
        id=RECOMPUTE_JOB_ID,
        name='At-Risk Cache Recompute',
        max_instances=1,
        coalesce=True,
        replace_existing=True,
        next_run_time=datetime.now(timezone.utc),
    )

    logger.info("Recompute scheduler jobs configured")
