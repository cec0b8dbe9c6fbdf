"""
Cache Module

Keeps the derived at-risk cache consistent under concurrent triggers.
"""

from .coordinator import CacheCoordinator, ClassificationOutcome, RecomputeResult, build_snapshot
from .scheduler import RecomputeScheduler, setup_apscheduler

__all__ = [
    "CacheCoordinator",
    "ClassificationOutcome",
    "RecomputeResult",
    "build_snapshot",
    "RecomputeScheduler",
    "setup_apscheduler",
]
