"""Status engine: canonical fee status and balance derivation.

Every screen, endpoint and report derives status through this module. Rules,
evaluated in order (first match wins):

1. balance = max(0, total_due - amount_paid)
2. balance == 0                      -> Paid (an accepted overshoot is still Paid)
3. amount_paid > 0                   -> Partial
4. no due date                       -> Unpaid
5. due_date < today                  -> Overdue
6. due_date - today <= due_soon_days -> DueSoon
7. otherwise                         -> Upcoming

Status strings from historical sources ("Fully Paid", "Pending", "cleared")
are mapped through STATUS_ALIASES before they are compared or counted.
"""

from collections import Counter
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from hostel_ledger.services.errors import UnknownStatusError
from hostel_ledger.services.parsers import ZERO, parse_amount, parse_iso_date

DEFAULT_DUE_SOON_DAYS = 7


class FeeStatus(str, Enum):
    """Canonical status of a fee period."""

    UPCOMING = "Upcoming"
    DUE_SOON = "DueSoon"
    UNPAID = "Unpaid"
    OVERDUE = "Overdue"
    PARTIAL = "Partial"
    PAID = "Paid"


class FeeTab(str, Enum):
    """Collection screen tab a status is listed under."""

    UNPAID = "Unpaid"
    PARTIAL = "Partial"
    PAID = "Paid"


TAB_BY_STATUS: Dict[FeeStatus, FeeTab] = {
    FeeStatus.UPCOMING: FeeTab.UNPAID,
    FeeStatus.DUE_SOON: FeeTab.UNPAID,
    FeeStatus.UNPAID: FeeTab.UNPAID,
    FeeStatus.OVERDUE: FeeTab.UNPAID,
    FeeStatus.PARTIAL: FeeTab.PARTIAL,
    FeeStatus.PAID: FeeTab.PAID,
}

# Closed mapping of every status spelling ever emitted by older backends and
# screens. Keys are lowercase with single spaces. Bump the version when adding one.
STATUS_ALIASES_VERSION = 1
STATUS_ALIASES: Dict[str, FeeStatus] = {
    # canonical
    "upcoming": FeeStatus.UPCOMING,
    "duesoon": FeeStatus.DUE_SOON,
    "unpaid": FeeStatus.UNPAID,
    "overdue": FeeStatus.OVERDUE,
    "partial": FeeStatus.PARTIAL,
    "paid": FeeStatus.PAID,
    # legacy
    "fully paid": FeeStatus.PAID,
    "cleared": FeeStatus.PAID,
    "partially paid": FeeStatus.PARTIAL,
    "part paid": FeeStatus.PARTIAL,
    "pending": FeeStatus.UNPAID,
    "due": FeeStatus.UNPAID,
    "pending due": FeeStatus.UNPAID,
    "unpaid due": FeeStatus.UNPAID,
    "late": FeeStatus.OVERDUE,
    "due soon": FeeStatus.DUE_SOON,
    "due_soon": FeeStatus.DUE_SOON,
}


def derive_balance(total_due: Any, amount_paid: Any) -> Decimal:
    """Outstanding amount of a period, never negative."""
    return max(ZERO, parse_amount(total_due) - parse_amount(amount_paid))


def derive_status(
    total_due: Any,
    amount_paid: Any,
    due_date: Any,
    today: date,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> FeeStatus:
    """Derive the canonical status of a fee period.

    Args:
        total_due: Amount charged (any transport representation)
        amount_paid: Amount credited so far (any transport representation)
        due_date: date, ISO string or None
        today: Reference date
        due_soon_days: Window before the due date reported as DueSoon

    Returns:
        Exactly one FeeStatus for every input combination
    """
    paid = parse_amount(amount_paid)
    if derive_balance(total_due, paid) == ZERO:
        return FeeStatus.PAID
    if paid > ZERO:
        return FeeStatus.PARTIAL

    due = parse_iso_date(due_date)
    if due is None:
        return FeeStatus.UNPAID
    if due < today:
        return FeeStatus.OVERDUE
    if (due - today).days <= due_soon_days:
        return FeeStatus.DUE_SOON
    return FeeStatus.UPCOMING


def status_for(period: Any, today: date, due_soon_days: int = DEFAULT_DUE_SOON_DAYS) -> FeeStatus:
    """Derive status from any object exposing total_due, amount_paid and due_date."""
    return derive_status(
        getattr(period, "total_due", None),
        getattr(period, "amount_paid", None),
        getattr(period, "due_date", None),
        today,
        due_soon_days,
    )


def normalize_status(value: Any) -> FeeStatus:
    """Map a status string from any source to the canonical status.

    Raises:
        UnknownStatusError: If the string is not in STATUS_ALIASES
    """
    if isinstance(value, FeeStatus):
        return value
    if not isinstance(value, str):
        raise UnknownStatusError(value)

    key = " ".join(value.strip().lower().split())
    try:
        return STATUS_ALIASES[key]
    except KeyError:
        raise UnknownStatusError(value) from None


def tab_for(status: FeeStatus) -> FeeTab:
    return TAB_BY_STATUS[status]


def count_by_status(statuses: Iterable[FeeStatus]) -> Dict[str, int]:
    """Count statuses, reporting every canonical status (zero included)."""
    counts = Counter(statuses)
    return {status.value: counts.get(status, 0) for status in FeeStatus}


def count_by_tab(statuses: Iterable[FeeStatus]) -> Dict[str, int]:
    """Count statuses per collection tab plus an "All" total."""
    counts = Counter(TAB_BY_STATUS[status] for status in statuses)
    result = {tab.value: counts.get(tab, 0) for tab in FeeTab}
    result["All"] = sum(counts.values())
    return result


def days_overdue(due_date: Optional[date], today: date) -> int:
    """Days past the due date (0 when not yet due or unknown)."""
    if due_date is None or due_date >= today:
        return 0
    return (today - due_date).days
