"""
Tests for snooze matching and the batch snooze index.
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from lecrm.renewals.exceptions import SnoozeAmbiguous
from lecrm.renewals.snooze import (
    SnoozeIndex,
    SnoozeMatch,
    active_snoozes,
    is_active,
    is_snoozed,
    match_snooze,
    parse_timestamp,
)
from lecrm.renewals.types import NotificationSnooze, NotificationType

NOW = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)
LATER = NOW + timedelta(days=7)


def snooze(account_id=None, until=LATER, notification_type="renewal_reminder"):
    return NotificationSnooze(notification_type, until, related_account_id=account_id)


class TestParseTimestamp:

    def test_naive_datetime_read_as_utc(self):
        assert parse_timestamp(datetime(2026, 3, 1, 12, 0)) == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_iso_strings(self):
        assert parse_timestamp("2026-03-01T12:00:00Z") == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert parse_timestamp("2026-03-01T05:00:00-07:00") == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert parse_timestamp("2026-03-01T12:00:00") == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_unparsable(self):
        assert parse_timestamp("next tuesday") is None
        assert parse_timestamp(None) is None
        assert parse_timestamp(12345) is None


class TestIsActive:

    def test_future_is_active(self):
        assert is_active(snooze(until=NOW + timedelta(seconds=1)), NOW)

    def test_expiry_is_strict(self):
        assert not is_active(snooze(until=NOW), NOW)
        assert not is_active(snooze(until=NOW - timedelta(seconds=1)), NOW)

    def test_unparsable_is_inactive(self):
        assert not is_active(snooze(until="garbage"), NOW)

    def test_active_snoozes(self):
        live, expired = snooze("1"), snooze("2", until=NOW - timedelta(days=1))
        assert active_snoozes([live, expired], NOW) == [live]


class TestMatchSnooze:

    def test_null_snooze_vs_specific_account_does_not_match(self):
        assert match_snooze(snooze(None), "renewal_reminder", "123", NOW) == SnoozeMatch.AMBIGUOUS
        assert is_snoozed([snooze(None)], "renewal_reminder", "123", NOW) is False

    def test_specific_snooze_vs_null_account_does_not_match(self):
        assert match_snooze(snooze("123"), "renewal_reminder", None, NOW) == SnoozeMatch.AMBIGUOUS
        assert is_snoozed([snooze("123")], "renewal_reminder", None, NOW) is False

    def test_null_vs_null_matches(self):
        assert is_snoozed([snooze(None)], "renewal_reminder", None, NOW) is True
        assert is_snoozed([snooze("")], "renewal_reminder", "  ", NOW) is True

    def test_numeric_and_string_ids_compare_equal(self):
        assert is_snoozed([snooze(123)], "renewal_reminder", "123", NOW)
        assert is_snoozed([snooze("123")], "renewal_reminder", 123.0, NOW)

    def test_different_account(self):
        assert match_snooze(snooze("123"), "renewal_reminder", "124", NOW) == SnoozeMatch.NO_MATCH

    def test_type_must_match(self):
        assert not is_snoozed([snooze("123")], "neglected_account", "123", NOW)

    def test_enum_type_matches_string(self):
        assert is_snoozed([snooze("123")], NotificationType.RENEWAL_REMINDER, "123", NOW)

    def test_expired_does_not_match(self):
        assert not is_snoozed([snooze("123", until=NOW)], "renewal_reminder", "123", NOW)

    def test_strict_mode_raises_on_ambiguous(self):
        with pytest.raises(SnoozeAmbiguous):
            match_snooze(snooze(None), "renewal_reminder", "123", NOW, strict=True)

    def test_ambiguous_pairing_is_logged(self, caplog):
        caplog.set_level(logging.DEBUG, logger="lecrm.renewals.snooze")

        assert is_snoozed([snooze(None)], "renewal_reminder", "123", NOW) is False

        messages = [r.getMessage() for r in caplog.records if r.name == "lecrm.renewals.snooze"]
        assert len(messages) == 1
        assert "renewal_reminder" in messages[0]
        assert "non-matching" in messages[0]

    def test_unambiguous_queries_log_nothing(self, caplog):
        caplog.set_level(logging.DEBUG, logger="lecrm.renewals.snooze")

        is_snoozed([snooze("123")], "renewal_reminder", "124", NOW)
        is_snoozed([snooze(None)], "renewal_reminder", None, NOW)

        assert [r for r in caplog.records if r.name == "lecrm.renewals.snooze"] == []

    def test_dict_records(self):
        record = {"notification_type": "renewal_reminder", "related_account_id": "9", "snoozed_until": LATER.isoformat()}
        assert is_snoozed([record], "renewal_reminder", "9", NOW)


class TestSnoozeIndex:

    def test_agrees_with_is_snoozed(self):
        snoozes = [
            snooze(None),
            snooze("123"),
            snooze(456.0, notification_type="neglected_account"),
            snooze("789", until=NOW - timedelta(hours=1)),
            snooze("321", until="not a timestamp"),
        ]
        index = SnoozeIndex(snoozes, NOW)

        queries = [
            ("renewal_reminder", None),
            ("renewal_reminder", "123"),
            ("renewal_reminder", 123),
            ("renewal_reminder", "456"),
            ("neglected_account", "456"),
            ("neglected_account", None),
            ("renewal_reminder", "789"),
            ("renewal_reminder", "321"),
            ("task_overdue", None),
        ]
        for notification_type, account_id in queries:
            assert index.is_snoozed(notification_type, account_id) == is_snoozed(
                snoozes, notification_type, account_id, NOW
            ), (notification_type, account_id)

    def test_keeps_latest_expiry(self):
        index = SnoozeIndex([snooze("1", until=LATER), snooze("1", until=LATER + timedelta(days=1))], NOW)
        assert index.snoozed_until("renewal_reminder", "1") == LATER + timedelta(days=1)
        assert len(index) == 1

    def test_index_logs_ambiguous_pairings(self, caplog):
        caplog.set_level(logging.DEBUG, logger="lecrm.renewals.snooze")
        index = SnoozeIndex([snooze(None), snooze("9", notification_type="neglected_account")], NOW)

        assert index.is_snoozed("renewal_reminder", "123") is False
        assert index.is_snoozed("neglected_account", None) is False
        assert index.is_snoozed("renewal_reminder", None) is True

        messages = [r.getMessage() for r in caplog.records if r.name == "lecrm.renewals.snooze"]
        assert len(messages) == 2
        assert all("non-matching" in m for m in messages)
