"""
Change feed - invalidation hints for the at-risk cache.

The SQLAlchemy session listeners record which tracked tables a flush
touched and publish one ChangeEvent per table after the transaction
commits. Rolled back work publishes nothing. PgChangeListener adds the
database-side source: NOTIFYs raised by triggers on the tracked tables.

Events are hints only: subscribers must not trust the payload for
correctness, they just schedule a recompute.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, List, Optional, Set

import asyncpg
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session

from lecrm.config import settings

logger = logging.getLogger(__name__)

# Tables whose changes can move an account in or out of the derived sets.
# The cache table itself is excluded so a recompute never re-triggers itself.
TRACKED_TABLES: FrozenSet[str] = frozenset({
    "accounts",
    "estimates",
    "notification_snoozes",
})

_SESSION_KEY = "lecrm_pending_changes"

LISTENER_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)

Subscriber = Callable[["ChangeEvent"], None]


@dataclass(frozen=True)
class ChangeEvent:
    """A committed write to one tracked table."""
    table: str
    ids: FrozenSet[str] = frozenset()
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ChangeFeed:
    """In-process publish/subscribe channel for change events."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, change: ChangeEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(change)
            except Exception as e:
                # The transaction has already committed
                logger.error(f"Change subscriber failed for {change.table}: {e}")


def _pending(session: Session) -> Dict[str, Set[str]]:
    return session.info.setdefault(_SESSION_KEY, {})


def _record(session: Session, instances) -> None:
    pending = _pending(session)
    for instance in instances:
        table = getattr(instance, "__tablename__", None)
        if table not in TRACKED_TABLES:
            continue
        ids = pending.setdefault(table, set())
        instance_id = getattr(instance, "id", None)
        if instance_id is not None:
            ids.add(str(instance_id))


def register_change_listeners(feed: ChangeFeed, session_class=Session) -> Callable[[], None]:
    """
    Hook the feed into SQLAlchemy session events.

    Core-level UPDATE statements (such as the status write-back) do not pass
    through the unit of work and therefore publish nothing.

    Returns a function that removes the listeners again.
    """

    def after_flush(session, flush_context):
        _record(session, session.new)
        _record(session, session.dirty)
        _record(session, session.deleted)

    def after_commit(session):
        pending = session.info.pop(_SESSION_KEY, None)
        if not pending:
            return
        for table, ids in pending.items():
            logger.debug(f"Publishing change on {table} ({len(ids)} rows)")
            feed.publish(ChangeEvent(table=table, ids=frozenset(ids)))

    def after_rollback(session, previous_transaction):
        session.info.pop(_SESSION_KEY, None)

    event.listen(session_class, "after_flush", after_flush)
    event.listen(session_class, "after_commit", after_commit)
    event.listen(session_class, "after_soft_rollback", after_rollback)

    def remove() -> None:
        event.remove(session_class, "after_flush", after_flush)
        event.remove(session_class, "after_commit", after_commit)
        event.remove(session_class, "after_soft_rollback", after_rollback)

    return remove


class PgChangeListener:
    """
    LISTEN on the Postgres change channel and republish on the feed.

    The notify triggers fire for every committed statement on a tracked
    table, including writes from other processes and raw SQL, which the
    session listeners above never see. The payload is the table name.

    A dropped connection is re-established by ensure_started(), which the
    recompute scheduler calls on every tick. Missed notifications in the
    gap are covered by the periodic recompute.
    """

    def __init__(self, feed: ChangeFeed, dsn: Optional[str] = None, channel: Optional[str] = None):
        self.feed = feed
        self.dsn = dsn or listener_dsn(settings.DATABASE_URL)
        self.channel = channel or settings.CHANGE_NOTIFY_CHANNEL
        self._connection = None

    @property
    def listening(self) -> bool:
        return self._connection is not None and not self._connection.is_closed()

    async def ensure_started(self) -> bool:
        """Connect and LISTEN if not already listening. Returns listening state."""
        if self.listening:
            return True
        await self._discard()
        try:
            connection = await asyncpg.connect(self.dsn)
            await connection.add_listener(self.channel, self._on_notify)
        except LISTENER_ERRORS as e:
            logger.warning(f"Change listener unavailable on {self.channel}: {e}")
            return False
        self._connection = connection
        logger.info(f"Listening for database changes on {self.channel}")
        return True

    def _on_notify(self, connection, pid: int, channel: str, payload: str) -> None:
        table = (payload or "").strip()
        if table not in TRACKED_TABLES:
            logger.debug(f"Ignoring notification for untracked table {table!r}")
            return
        self.feed.publish(ChangeEvent(table=table))

    async def _discard(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None or connection.is_closed():
            return
        try:
            await connection.close()
        except LISTENER_ERRORS as e:
            logger.debug(f"Closing change listener connection failed: {e}")

    async def stop(self) -> None:
        if self._connection is not None and not self._connection.is_closed():
            try:
                await self._connection.remove_listener(self.channel, self._on_notify)
            except LISTENER_ERRORS as e:
                logger.debug(f"Removing change listener failed: {e}")
        await self._discard()


def listener_dsn(database_url: str) -> str:
    """Plain libpq DSN for asyncpg from the SQLAlchemy database URL."""
    url = make_url(database_url).set(drivername="postgresql")
    return url.render_as_string(hide_password=False)
