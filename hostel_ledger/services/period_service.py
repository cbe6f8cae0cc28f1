"""Fee period service: the only constructor of FeePeriod rows."""

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from hostel_ledger.models.fee_period import FeePeriod
from hostel_ledger.models.student import Student
from hostel_ledger.services.audit_service import AuditService
from hostel_ledger.services.errors import (
    DuplicatePeriodError,
    FeePeriodNotFoundError,
    InvalidAmountError,
    UnknownStudentError,
)
from hostel_ledger.services.parsers import (
    ZERO,
    due_date_for_month,
    is_whole_cents,
    parse_amount,
    parse_fee_month,
)

logger = logging.getLogger(__name__)


class FeePeriodService:
    """Service for fee period database operations.

    Validates and creates fee periods so that the (student_id, fee_month)
    uniqueness and positive-rent invariants hold everywhere.
    """

    def __init__(self, db_session: Session, due_day_of_month: int = 5):
        """Initialize with database session.

        Args:
            db_session: SQLAlchemy session
            due_day_of_month: Due day used when a period is created without a due date
        """
        self.db = db_session
        self.due_day_of_month = due_day_of_month

    def default_due_date(self, fee_month: str) -> date:
        """Configured due day within fee_month, clamped to the month length."""
        return due_date_for_month(fee_month, self.due_day_of_month)

    def get_period(self, student_id: int, fee_month: str) -> FeePeriod | None:
        """Get the period of a student for a month, or None."""
        stmt = select(FeePeriod).where(
            FeePeriod.student_id == student_id,
            FeePeriod.fee_month == fee_month,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_student_periods(self, student_id: int, for_update: bool = False) -> list[FeePeriod]:
        """List all periods of a student ordered by fee_month ascending.

        Args:
            student_id: Student ID
            for_update: Lock the rows until the transaction ends (SELECT ... FOR UPDATE)

        Returns:
            List of FeePeriod objects
        """
        stmt = (
            select(FeePeriod)
            .where(FeePeriod.student_id == student_id)
            .order_by(FeePeriod.fee_month)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.db.execute(stmt).scalars().all())

    def get_open_periods(self, student_id: int) -> list[FeePeriod]:
        """Periods with an outstanding balance, oldest first."""
        return [p for p in self.list_student_periods(student_id) if p.balance > ZERO]

    def create_period(
        self,
        student_id: int,
        fee_month: str,
        total_due: Any,
        due_date: date | None = None,
        actor_id: int | None = None,
        commit: bool = True,
    ) -> FeePeriod:
        """Create a fee period.

        Args:
            student_id: Student charged
            fee_month: Month in YYYY-MM format
            total_due: Rent for the month, must be positive
            due_date: Due date (default: configured due day of fee_month)
            actor_id: Staff user creating the period (optional)
            commit: Commit immediately; False when part of a larger transaction

        Returns:
            Created FeePeriod object

        Raises:
            ValueError: If fee_month is malformed
            InvalidAmountError: If total_due <= 0
            UnknownStudentError: If the student does not exist
            DuplicatePeriodError: If the student already has a period for fee_month
        """
        fee_month = parse_fee_month(fee_month)
        amount = parse_amount(total_due)
        if amount <= ZERO or not is_whole_cents(amount):
            logger.warning(
                "Rejected fee period: student_id=%s month=%s total_due=%r",
                student_id,
                fee_month,
                total_due,
            )
            raise InvalidAmountError(f"total_due must be a positive amount, got {total_due!r}")

        if self.db.get(Student, student_id) is None:
            raise UnknownStudentError(f"Student {student_id} not found")

        if self.get_period(student_id, fee_month) is not None:
            raise DuplicatePeriodError(
                f"Fee period {fee_month} already exists for student {student_id}"
            )

        period = FeePeriod(
            student_id=student_id,
            fee_month=fee_month,
            total_due=amount,
            amount_paid=ZERO,
            due_date=due_date or self.default_due_date(fee_month),
        )
        self.db.add(period)
        self.db.flush()

        AuditService.log(
            self.db,
            "fee_period",
            period.id,
            "create",
            actor_id,
            {"student_id": student_id, "fee_month": fee_month, "total_due": str(amount)},
        )
        if commit:
            self.db.commit()

        logger.info(
            "Created fee period: id=%d, student_id=%d, month=%s, total_due=%s, due=%s",
            period.id,
            student_id,
            fee_month,
            amount,
            period.due_date,
        )
        return period

    def amend_total_due(
        self,
        student_id: int,
        fee_month: str,
        total_due: Any,
        actor_id: int | None = None,
    ) -> FeePeriod:
        """Change the amount charged for an existing period.

        Raises:
            InvalidAmountError: If total_due <= 0 or below the amount already paid
            FeePeriodNotFoundError: If the period does not exist
        """
        period = self.get_period(student_id, parse_fee_month(fee_month))
        if period is None:
            raise FeePeriodNotFoundError(f"Fee period {fee_month} not found for student {student_id}")

        amount = parse_amount(total_due)
        if amount <= ZERO or not is_whole_cents(amount):
            raise InvalidAmountError(f"total_due must be a positive amount, got {total_due!r}")
        if amount < period.amount_paid:
            raise InvalidAmountError(
                f"total_due {amount} is below the amount already paid ({period.amount_paid})"
            )

        previous = period.total_due
        period.total_due = amount
        AuditService.log(
            self.db,
            "fee_period",
            period.id,
            "amend",
            actor_id,
            {"total_due": {"from": str(previous), "to": str(amount)}},
        )
        self.db.commit()

        logger.info(
            "Amended fee period: id=%d, month=%s, total_due %s -> %s",
            period.id,
            period.fee_month,
            previous,
            amount,
        )
        return period

    def generate_month_periods(
        self,
        hostel_id: int,
        fee_month: str,
        actor_id: int | None = None,
    ) -> list[FeePeriod]:
        """Create the month's period for every active student of a hostel that lacks one.

        Students with no rent configured are skipped. Safe to call repeatedly.

        Returns:
            Newly created FeePeriod objects
        """
        fee_month = parse_fee_month(fee_month)
        existing = select(FeePeriod.student_id).where(FeePeriod.fee_month == fee_month)
        stmt = (
            select(Student)
            .where(
                Student.hostel_id == hostel_id,
                Student.is_active.is_(True),
                Student.monthly_rent > Decimal("0"),
                Student.id.not_in(existing),
            )
            .order_by(Student.id)
        )
        students = self.db.execute(stmt).scalars().all()

        created = [
            self.create_period(student.id, fee_month, student.monthly_rent, actor_id=actor_id, commit=False)
            for student in students
        ]
        self.db.commit()

        logger.info(
            "Generated %d fee periods for hostel_id=%d month=%s",
            len(created),
            hostel_id,
            fee_month,
        )
        return created


__all__ = ["FeePeriodService"]
