"""Shared test fixtures and configuration for the renewal engine tests."""
from datetime import date, datetime, timezone

import pytest

from tests.fakes import FakeStore, FixedClock

# 18:00 UTC is 11:00 on the same calendar day in the GMT-7 business timezone
NOW = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)
TODAY = date(2026, 3, 1)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def store():
    return FakeStore()
