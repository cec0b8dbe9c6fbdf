"""Error taxonomy for the renewal engine.

Raised by the cache coordinator, the notification reconciler, the stores
and strict snooze matching. Classification itself never raises on bad data.
"""
from typing import Optional


class EngineError(Exception):
    """Base class for renewal engine errors."""


class DataUnavailable(EngineError):
    """The backing store could not be reached."""


class MalformedRecord(EngineError):
    """A single account, estimate or snooze carries unusable data."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class RecomputeTimeout(EngineError):
    """A recompute pass exceeded its time budget and was abandoned."""


class SnoozeAmbiguous(EngineError):
    """A snooze pairs a null account id with a non-null query (or the reverse)."""
