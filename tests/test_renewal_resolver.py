"""
Tests for renewal date resolution and duplicate contract detection.
"""

from datetime import date, datetime, timedelta

import pytest

from lecrm.renewals.dates import normalize_date, to_date
from lecrm.renewals.resolver import (
    contract_site_key,
    find_duplicate_contracts,
    resolve_renewal,
    resolve_renewal_date,
    won_contracts,
)
from lecrm.renewals.rules import OVERDUE_RISK_WINDOW
from lecrm.renewals.types import Estimate

TODAY = date(2026, 3, 1)


def won(estimate_id, contract_end, **fields):
    fields.setdefault("status", "Contract Signed")
    return Estimate(id=estimate_id, account_id="acct-1", contract_end=contract_end, **fields)


# =============================================================================
# Date normalization
# =============================================================================

class TestNormalizeDate:

    def test_date_and_datetime_objects(self):
        assert normalize_date(date(2026, 5, 1)) == "2026-05-01"
        assert normalize_date(datetime(2026, 5, 1, 23, 59)) == "2026-05-01"

    def test_iso_prefix_strings(self):
        assert normalize_date("2026-05-01") == "2026-05-01"
        assert normalize_date("2026-05-01T10:00:00Z") == "2026-05-01"
        assert normalize_date("  2026-05-01 ") == "2026-05-01"

    def test_malformed_values(self):
        assert normalize_date(None) is None
        assert normalize_date("") is None
        assert normalize_date("05/01/2026") is None
        assert normalize_date("2026-02-30") is None
        assert normalize_date(20260501) is None

    def test_to_date(self):
        assert to_date("2026-05-01") == date(2026, 5, 1)
        assert to_date("garbage") is None


# =============================================================================
# Renewal resolution
# =============================================================================

class TestResolveRenewalDate:

    def test_no_estimates(self):
        assert resolve_renewal_date([]) is None
        assert resolve_renewal_date(None) is None

    def test_no_won_estimate_returns_none(self):
        estimates = [
            won("e1", "2026-06-01", status="Proposal Sent"),
            won("e2", "2026-07-01", status="Lost"),
        ]
        assert resolve_renewal_date(estimates) is None

    def test_won_without_contract_end_returns_none(self):
        estimates = [won("e1", None), won("e2", "")]
        assert resolve_renewal_date(estimates) is None

    def test_picks_latest_contract_end(self):
        estimates = [
            won("e1", "2026-04-01"),
            won("e2", "2026-09-15"),
            won("e3", "2026-06-30"),
        ]
        assert resolve_renewal_date(estimates) == date(2026, 9, 15)

    def test_ignores_lost_estimate_with_later_date(self):
        estimates = [
            won("e1", "2026-04-01"),
            won("e2", "2027-01-01", status="Lost"),
        ]
        assert resolve_renewal_date(estimates) == date(2026, 4, 1)

    def test_malformed_dates_are_dropped(self):
        estimates = [
            won("e1", "not a date"),
            won("e2", "2026-13-01"),
            won("e3", "2026-05-05"),
        ]
        assert resolve_renewal_date(estimates) == date(2026, 5, 5)

    def test_won_status_is_case_and_whitespace_insensitive(self):
        estimates = [won("e1", "2026-05-05", status="  WORK IN PROGRESS ")]
        assert resolve_renewal_date(estimates) == date(2026, 5, 5)

    def test_sold_pipeline_status_counts_as_won(self):
        estimates = [won("e1", "2026-05-05", status="Pending", pipeline_status="Sold - Awaiting PO")]
        assert resolve_renewal_date(estimates) == date(2026, 5, 5)

    def test_accepts_dict_records(self):
        estimates = [{"id": "e1", "status": "won", "contract_end": "2026-08-08"}]
        assert resolve_renewal_date(estimates) == date(2026, 8, 8)

    def test_tie_resolves_to_smallest_id_regardless_of_order(self):
        a = won("e-b", "2026-09-01", estimate_number="200")
        b = won("e-a", "2026-09-01", estimate_number="100")

        first = resolve_renewal([a, b])
        second = resolve_renewal([b, a])

        assert first.driving.estimate_id == "e-a"
        assert second.driving.estimate_id == "e-a"
        assert first.driving.estimate_number == "100"

    def test_repeated_estimate_id_counted_once(self):
        estimate = won("e1", "2026-05-05")
        assert len(won_contracts([estimate, estimate])) == 1

    def test_repeated_estimate_id_keeps_latest_end(self):
        earlier = won("e1", "2026-04-01")
        later = won("e1", "2026-12-01")

        assert resolve_renewal_date([earlier, later]) == date(2026, 12, 1)
        assert resolve_renewal_date([later, earlier]) == date(2026, 12, 1)
        assert [c.end_date for c in won_contracts([earlier, later])] == ["2026-12-01"]


# =============================================================================
# Duplicate contracts
# =============================================================================

class TestFindDuplicateContracts:

    def test_single_contract_has_no_duplicates(self):
        estimates = [won("e1", TODAY + timedelta(days=90))]
        assert find_duplicate_contracts(estimates, TODAY) == []

    def test_flags_other_live_contracts_in_window(self):
        estimates = [
            won("e1", (TODAY + timedelta(days=120)).isoformat(), estimate_number="1001"),
            won("e2", (TODAY + timedelta(days=60)).isoformat(), estimate_number="1002"),
            won("e3", (TODAY + timedelta(days=30)).isoformat(), estimate_number="1003"),
        ]

        duplicates = find_duplicate_contracts(estimates, TODAY)

        assert [d.id for d in duplicates] == ["e2", "e3"]
        assert duplicates[0].estimate_number == "1002"
        assert duplicates[0].contract_end == (TODAY + timedelta(days=60)).isoformat()

    def test_contract_outside_window_not_flagged(self):
        estimates = [
            won("e1", (TODAY + timedelta(days=120)).isoformat()),
            won("e2", (TODAY - timedelta(days=10)).isoformat()),
        ]
        assert find_duplicate_contracts(estimates, TODAY) == []

    def test_overdue_contract_flagged_under_overdue_policy(self):
        estimates = [
            won("e1", (TODAY + timedelta(days=120)).isoformat()),
            won("e2", (TODAY - timedelta(days=10)).isoformat()),
        ]
        duplicates = find_duplicate_contracts(estimates, TODAY, OVERDUE_RISK_WINDOW)
        assert [d.id for d in duplicates] == ["e2"]

    def test_different_site_not_flagged(self):
        estimates = [
            won("e1", (TODAY + timedelta(days=120)).isoformat(), division="Maintenance", address="1 Main St"),
            won("e2", (TODAY + timedelta(days=60)).isoformat(), division="Maintenance", address="9 Elm Ave"),
            won("e3", (TODAY + timedelta(days=50)).isoformat(), division="maintenance ", address="1  main st"),
        ]

        duplicates = find_duplicate_contracts(estimates, TODAY)

        assert [d.id for d in duplicates] == ["e3"]

    def test_duplicates_never_change_renewal_date(self):
        estimates = [
            won("e1", (TODAY + timedelta(days=120)).isoformat()),
            won("e2", (TODAY + timedelta(days=60)).isoformat()),
        ]
        find_duplicate_contracts(estimates, TODAY)
        assert resolve_renewal_date(estimates) == TODAY + timedelta(days=120)

    def test_site_key_normalizes_blanks(self):
        assert contract_site_key(won("e1", None)) == ("", "")
        assert contract_site_key(won("e1", None, division=" Snow ", address="A  B")) == ("snow", "a b")
