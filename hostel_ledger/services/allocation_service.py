"""Payment application engine: splits one payment across a student's fee periods.

Policy:
- Only periods with a positive balance are open.
- An explicit target month is served first, then the oldest open month, then
  the next oldest, so a tenant's oldest debt is always cleared first.
- Money left after every open period is settled is credited as an advance to
  new future periods, one month at a time, each up to the student's rent.
  Advance months never start before the month after the current one.
- Money is never dropped: if it cannot be advanced, the payment is rejected.

Ensures: sum(allocation.applied_amount) == payment amount (zero money loss/creation)
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from hostel_ledger.services.errors import InvalidAmountError, NoOpenPeriodsError
from hostel_ledger.services.parsers import ZERO, is_whole_cents, next_month, parse_amount


@dataclass(frozen=True)
class PeriodSnapshot:
    """Amounts of one fee period as read inside the allocation transaction."""

    fee_month: str
    total_due: Decimal
    amount_paid: Decimal

    @property
    def balance(self) -> Decimal:
        return max(ZERO, self.total_due - self.amount_paid)

    @classmethod
    def of(cls, period: Any) -> "PeriodSnapshot":
        """Snapshot any object exposing fee_month, total_due and amount_paid."""
        return cls(
            fee_month=period.fee_month,
            total_due=parse_amount(period.total_due),
            amount_paid=parse_amount(period.amount_paid),
        )


@dataclass(frozen=True)
class Allocation:
    """Amount credited to one fee month."""

    fee_month: str
    applied_amount: Decimal
    creates_period: bool = False


@dataclass
class AllocationPlan:
    """Result of allocating one payment."""

    amount: Decimal
    allocations: List[Allocation] = field(default_factory=list)

    @property
    def applied_total(self) -> Decimal:
        return sum((a.applied_amount for a in self.allocations), ZERO)

    @property
    def advance_amount(self) -> Decimal:
        """Part of the payment credited to periods that did not exist yet."""
        return sum((a.applied_amount for a in self.allocations if a.creates_period), ZERO)

    @property
    def fee_months(self) -> List[str]:
        return [a.fee_month for a in self.allocations]


class PaymentApplicationEngine:
    """Pure allocation logic; the ledger service persists its plans."""

    def __init__(self, max_advance_months: int = 12):
        """Initialize engine.

        Args:
            max_advance_months: New future months an overpayment may be spread
                across; the last one absorbs whatever is left.
        """
        if max_advance_months < 1:
            raise ValueError("max_advance_months must be at least 1")
        self.max_advance_months = max_advance_months

    @staticmethod
    def validate_amount(amount: Any) -> Decimal:
        """Parse a payment amount and reject zero, negative or sub-cent values.

        Raises:
            InvalidAmountError: If the amount cannot be recorded exactly
        """
        value = parse_amount(amount)
        if value <= ZERO:
            raise InvalidAmountError(f"Payment amount must be positive, got {amount!r}")
        if not is_whole_cents(value):
            raise InvalidAmountError(f"Payment amount has sub-cent precision: {amount!r}")
        return value

    def order_periods(
        self,
        periods: Iterable[PeriodSnapshot],
        target_month: Optional[str] = None,
    ) -> List[PeriodSnapshot]:
        """Return open periods in allocation order.

        Args:
            periods: All of the student's periods
            target_month: Month the caller asked to settle first (optional)

        Returns:
            Open periods: target month first, then ascending fee_month
        """
        open_periods = sorted(
            (p for p in periods if p.balance > ZERO),
            key=lambda p: p.fee_month,
        )
        if target_month:
            open_periods.sort(key=lambda p: p.fee_month != target_month)
        return open_periods

    def allocate(
        self,
        amount: Any,
        periods: Iterable[Any],
        target_month: Optional[str] = None,
        advance_rent: Optional[Decimal] = None,
        current_month: Optional[str] = None,
    ) -> AllocationPlan:
        """Allocate a payment across fee periods.

        Algorithm:
        1. Walk open periods in allocation order
        2. Apply min(remaining, balance) to each, stop when nothing remains
        3. Credit any remainder to new months after the latest known month
           (and after current_month), each taking at most advance_rent

        Args:
            amount: Payment amount
            periods: Student's fee periods (snapshots or ORM objects)
            target_month: Month to settle first (optional)
            advance_rent: Rent of a new future period; None or <= 0 when the
                student cannot get new periods (moved out, no rent)
            current_month: Month of the payment (YYYY-MM); advance periods are
                never created for it or for earlier months

        Returns:
            AllocationPlan whose applied_total equals amount

        Raises:
            InvalidAmountError: If amount is not a positive whole-cent value
            NoOpenPeriodsError: If money is left over and cannot be advanced
        """
        total = self.validate_amount(amount)
        snapshots = [p if isinstance(p, PeriodSnapshot) else PeriodSnapshot.of(p) for p in periods]

        plan = AllocationPlan(amount=total)
        remaining = total

        for period in self.order_periods(snapshots, target_month):
            if remaining == ZERO:
                break
            applied = min(remaining, period.balance)
            plan.allocations.append(Allocation(period.fee_month, applied))
            remaining -= applied

        if remaining > ZERO:
            self._allocate_advance(plan, remaining, snapshots, target_month, advance_rent, current_month)

        return plan

    def _allocate_advance(
        self,
        plan: AllocationPlan,
        remaining: Decimal,
        snapshots: List[PeriodSnapshot],
        target_month: Optional[str],
        advance_rent: Optional[Decimal],
        current_month: Optional[str] = None,
    ) -> None:
        rent = parse_amount(advance_rent)
        if rent <= ZERO:
            raise NoOpenPeriodsError(
                f"{remaining} of the payment has no open fee period and no future "
                "period can be created for this student"
            )

        known_months = [s.fee_month for s in snapshots]
        if target_month:
            known_months.append(target_month)
        if not known_months:
            raise NoOpenPeriodsError("Student has no fee periods and no target month was given")

        # Advances start after the current month
        month = max(known_months + [current_month]) if current_month else max(known_months)
        for index in range(self.max_advance_months):
            month = next_month(month)
            is_last = index == self.max_advance_months - 1
            applied = remaining if is_last else min(remaining, rent)
            plan.allocations.append(Allocation(month, applied, creates_period=True))
            remaining -= applied
            if remaining == ZERO:
                break


__all__ = ["PaymentApplicationEngine", "AllocationPlan", "Allocation", "PeriodSnapshot"]
