"""Unit tests for the status engine."""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from itertools import product

import pytest

from hostel_ledger.services.errors import UnknownStatusError
from hostel_ledger.services.status_service import (
    STATUS_ALIASES,
    STATUS_ALIASES_VERSION,
    FeeStatus,
    FeeTab,
    count_by_status,
    count_by_tab,
    days_overdue,
    derive_balance,
    derive_status,
    normalize_status,
    status_for,
    tab_for,
)

pytestmark = pytest.mark.unit

TODAY = date(2024, 3, 10)


class TestDeriveStatus:
    """Rules are evaluated in order; first match wins."""

    def test_fully_paid(self):
        assert derive_status("500", "500", TODAY, TODAY) == FeeStatus.PAID

    def test_overshoot_is_paid(self):
        assert derive_status("500", "800", TODAY - timedelta(days=30), TODAY) == FeeStatus.PAID

    def test_partial_wins_over_overdue(self):
        assert derive_status("500", "200", TODAY - timedelta(days=30), TODAY) == FeeStatus.PARTIAL

    def test_no_due_date_is_unpaid(self):
        assert derive_status("500", "0", None, TODAY) == FeeStatus.UNPAID

    def test_overdue(self):
        assert derive_status("500", None, TODAY - timedelta(days=1), TODAY) == FeeStatus.OVERDUE

    def test_due_today_is_due_soon(self):
        assert derive_status("500", "0", TODAY, TODAY) == FeeStatus.DUE_SOON

    def test_due_soon_window_boundary(self):
        assert derive_status("500", "0", TODAY + timedelta(days=7), TODAY) == FeeStatus.DUE_SOON
        assert derive_status("500", "0", TODAY + timedelta(days=8), TODAY) == FeeStatus.UPCOMING

    def test_custom_window(self):
        due = TODAY + timedelta(days=10)
        assert derive_status("500", "0", due, TODAY, due_soon_days=10) == FeeStatus.DUE_SOON

    def test_due_date_as_iso_string(self):
        assert derive_status("500", "0", "2024-03-01", TODAY) == FeeStatus.OVERDUE

    def test_zero_total_is_paid(self):
        assert derive_status("0", "0", TODAY, TODAY) == FeeStatus.PAID

    def test_garbage_amounts_count_as_zero(self):
        assert derive_status("abc", None, None, TODAY) == FeeStatus.PAID
        assert derive_status("500", "n/a", None, TODAY) == FeeStatus.UNPAID

    def test_every_input_yields_exactly_one_status(self):
        amounts = [None, "", "0", "250", "500", "800", "garbage", 500.0]
        dates = [None, TODAY - timedelta(days=3), TODAY, TODAY + timedelta(days=3), TODAY + timedelta(days=30)]
        for total, paid, due in product(amounts, amounts, dates):
            assert isinstance(derive_status(total, paid, due, TODAY), FeeStatus)


class TestBalance:
    def test_balance(self):
        assert derive_balance("500", "200") == Decimal("300")

    def test_balance_never_negative(self):
        assert derive_balance("500", "800") == Decimal("0")

    def test_missing_values(self):
        assert derive_balance(None, None) == Decimal("0")


@dataclass
class _Record:
    total_due: object
    amount_paid: object
    due_date: object


class TestStatusFor:
    def test_any_object_with_fields(self):
        record = _Record(Decimal("500"), Decimal("0"), TODAY - timedelta(days=2))
        assert status_for(record, TODAY) == FeeStatus.OVERDUE

    def test_object_missing_fields(self):
        assert status_for(object(), TODAY) == FeeStatus.PAID


class TestNormalizeStatus:
    @pytest.mark.parametrize("value", ["Fully Paid", "fully paid", "PAID", "  fully   PAID ", "Cleared"])
    def test_paid_aliases(self, value):
        assert normalize_status(value) == FeeStatus.PAID

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Partially Paid", FeeStatus.PARTIAL),
            ("Pending", FeeStatus.UNPAID),
            ("Overdue", FeeStatus.OVERDUE),
            ("late", FeeStatus.OVERDUE),
            ("DueSoon", FeeStatus.DUE_SOON),
            ("due soon", FeeStatus.DUE_SOON),
            ("Upcoming", FeeStatus.UPCOMING),
        ],
    )
    def test_other_aliases(self, value, expected):
        assert normalize_status(value) == expected

    def test_canonical_values_round_trip(self):
        for status in FeeStatus:
            assert normalize_status(status.value) == status
            assert normalize_status(status) is status

    @pytest.mark.parametrize("value", ["", "settled?", "half", None, 3])
    def test_unknown_raises(self, value):
        with pytest.raises(UnknownStatusError):
            normalize_status(value)

    def test_unknown_is_value_error(self):
        with pytest.raises(ValueError, match="Unknown fee status"):
            normalize_status("refunded")

    def test_alias_table_is_versioned_and_lowercase(self):
        assert STATUS_ALIASES_VERSION >= 1
        assert all(key == " ".join(key.lower().split()) for key in STATUS_ALIASES)


class TestTabs:
    def test_tab_buckets(self):
        for status in (FeeStatus.UNPAID, FeeStatus.OVERDUE, FeeStatus.DUE_SOON, FeeStatus.UPCOMING):
            assert tab_for(status) == FeeTab.UNPAID
        assert tab_for(FeeStatus.PARTIAL) == FeeTab.PARTIAL
        assert tab_for(FeeStatus.PAID) == FeeTab.PAID

    def test_count_by_tab(self):
        statuses = [FeeStatus.OVERDUE, FeeStatus.UPCOMING, FeeStatus.PARTIAL, FeeStatus.PAID, FeeStatus.PAID]
        assert count_by_tab(statuses) == {"Unpaid": 2, "Partial": 1, "Paid": 2, "All": 5}

    def test_count_by_status_includes_zeroes(self):
        counts = count_by_status([FeeStatus.PAID])
        assert counts["Paid"] == 1
        assert counts["Overdue"] == 0
        assert set(counts) == {s.value for s in FeeStatus}


class TestDaysOverdue:
    def test_overdue_days(self):
        assert days_overdue(date(2024, 3, 5), TODAY) == 5

    def test_not_overdue(self):
        assert days_overdue(TODAY, TODAY) == 0
        assert days_overdue(None, TODAY) == 0
