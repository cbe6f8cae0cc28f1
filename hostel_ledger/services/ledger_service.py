"""Ledger reconciliation service: the only writer of fee periods and payments.

Recording a payment is one atomic unit per student:
read the student's periods (row-locked), let the payment application engine
allocate the amount, write the payment, its allocations and the period
updates, commit. Writes for one student are serialized by an in-process lock,
by SELECT ... FOR UPDATE where the database supports it, and by the version
column on FeePeriod. A lost race surfaces as ConcurrentModificationError and
is retried against a fresh snapshot.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from hostel_ledger.models.fee_period import FeePeriod
from hostel_ledger.models.payment import Payment, PaymentAllocation, PaymentMode
from hostel_ledger.models.student import Student
from hostel_ledger.services.allocation_service import AllocationPlan, PaymentApplicationEngine
from hostel_ledger.services.audit_service import AuditService
from hostel_ledger.services.errors import (
    ConcurrentModificationError,
    DuplicatePeriodError,
    LedgerError,
    NoOpenPeriodsError,
    UnknownPaymentModeError,
    UnknownStudentError,
)
from hostel_ledger.services.parsers import ZERO, format_amount, month_key, parse_fee_month
from hostel_ledger.services.period_service import FeePeriodService
from hostel_ledger.services.status_service import (
    DEFAULT_DUE_SOON_DAYS,
    FeeStatus,
    count_by_status,
    count_by_tab,
    days_overdue,
    status_for,
)

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_MODES = ("Cash", "UPI", "Bank Transfer", "Card", "Cheque")


class StudentLockRegistry:
    """One lock per student id, created on first use."""

    def __init__(self):
        self._locks: Dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, student_id: int) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(student_id, threading.Lock())
        with lock:
            yield


# Shared by every service instance in the process (one instance per request)
student_locks = StudentLockRegistry()


@dataclass
class PaymentRequest:
    """Input of record_payment, decoupled from the HTTP schema."""

    student_id: int
    amount: Any
    payment_mode_id: int
    payment_date: Optional[date] = None
    due_date: Optional[date] = None
    fee_month: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    actor_id: Optional[int] = None

    def audit_payload(self) -> Dict[str, Any]:
        """Full request for rejection logs."""
        return {
            "student_id": self.student_id,
            "amount": str(self.amount),
            "payment_mode_id": self.payment_mode_id,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "fee_month": self.fee_month,
            "transaction_id": self.transaction_id,
            "notes": self.notes,
            "actor_id": self.actor_id,
        }


@dataclass
class PaymentResult:
    """Outcome of record_payment."""

    payment: Payment
    updated_periods: List[FeePeriod]
    replayed: bool = False

    @property
    def allocations(self) -> List[PaymentAllocation]:
        return list(self.payment.allocations)


@dataclass
class FeeRow:
    """Fee period with derived status, as shown on dashboards."""

    period: FeePeriod
    student: Student
    status: FeeStatus
    balance: Decimal
    days_overdue: int = 0


@dataclass
class MonthSummary:
    """All fee periods of a hostel month with derived status and totals."""

    hostel_id: int
    fee_month: str
    rows: List[FeeRow] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)

    @property
    def total_due(self) -> Decimal:
        return sum((row.period.total_due for row in self.rows), ZERO)

    @property
    def total_paid(self) -> Decimal:
        return sum((row.period.amount_paid for row in self.rows), ZERO)

    @property
    def total_pending(self) -> Decimal:
        return sum((row.balance for row in self.rows), ZERO)

    @property
    def status_counts(self) -> Dict[str, int]:
        return count_by_status(row.status for row in self.rows)

    @property
    def tab_counts(self) -> Dict[str, int]:
        return count_by_tab(row.status for row in self.rows)

    def top_defaulters(self, limit: int = 5) -> List[FeeRow]:
        """Rows with the largest outstanding balance."""
        owing = [row for row in self.rows if row.balance > ZERO]
        return sorted(owing, key=lambda row: row.balance, reverse=True)[:limit]


@dataclass
class StudentLedger:
    """Every period and payment of one student."""

    student: Student
    rows: List[FeeRow] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)

    @property
    def total_balance(self) -> Decimal:
        return sum((row.balance for row in self.rows), ZERO)


class LedgerReconciliationService:
    """Persists payments and serves the month ledger.

    Used by the monthly-fees API; one instance per database session.
    """

    def __init__(
        self,
        db_session: Session,
        engine: Optional[PaymentApplicationEngine] = None,
        due_day_of_month: int = 5,
        due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
        max_retries: int = 1,
        today: Callable[[], date] = date.today,
        locks: StudentLockRegistry = student_locks,
    ):
        """Initialize with database session.

        Args:
            db_session: SQLAlchemy session
            engine: Allocation engine (default: PaymentApplicationEngine())
            due_day_of_month: Due day for periods created while recording payments
            due_soon_days: DueSoon window of the status engine
            max_retries: Retries after a concurrent modification
            today: Clock used for payment dates and status derivation
            locks: Per-student lock registry
        """
        self.db = db_session
        self.engine = engine or PaymentApplicationEngine()
        self.periods = FeePeriodService(db_session, due_day_of_month=due_day_of_month)
        self.due_soon_days = due_soon_days
        self.max_retries = max_retries
        self.today = today
        self.locks = locks

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def record_payment(self, request: PaymentRequest) -> PaymentResult:
        """Record a payment and apply it to the student's fee periods.

        Args:
            request: Payment input

        Returns:
            PaymentResult with the payment, its allocations and updated periods;
            replayed=True when transaction_id matched an earlier payment

        Raises:
            InvalidAmountError, InvalidFeeMonthError, UnknownStudentError,
            UnknownPaymentModeError: Rejected before any write
            NoOpenPeriodsError: Money could not be applied anywhere
            ConcurrentModificationError: Retries exhausted
        """
        try:
            self._validate(request)
            with self.locks.hold(request.student_id):
                return self._record_with_retry(request)
        except LedgerError as e:
            logger.warning(
                "Payment rejected: code=%s error=%s payload=%s",
                e.code,
                e.message,
                request.audit_payload(),
            )
            raise

    def _validate(self, request: PaymentRequest) -> None:
        self.engine.validate_amount(request.amount)
        if request.fee_month is not None:
            request.fee_month = parse_fee_month(request.fee_month)
        if self.db.get(Student, request.student_id) is None:
            raise UnknownStudentError(f"Student {request.student_id} not found")
        mode = self.db.get(PaymentMode, request.payment_mode_id)
        if mode is None or not mode.is_active:
            raise UnknownPaymentModeError(f"Payment mode {request.payment_mode_id} not found")

    def _record_with_retry(self, request: PaymentRequest) -> PaymentResult:
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._record_once(request)
            except ConcurrentModificationError:
                self.db.rollback()
                if attempt == attempts:
                    raise
                logger.info(
                    "Concurrent modification for student_id=%d, retrying (%d/%d)",
                    request.student_id,
                    attempt,
                    self.max_retries,
                )
        raise ConcurrentModificationError()  # pragma: no cover

    def _record_once(self, request: PaymentRequest) -> PaymentResult:
        replay = self._find_replay(request)
        if replay is not None:
            return replay

        try:
            payment, updated = self._apply(request)
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            raise ConcurrentModificationError(
                f"Fee periods of student {request.student_id} changed during allocation"
            ) from e
        except IntegrityError as e:
            self.db.rollback()
            replay = self._find_replay(request)
            if replay is not None:
                return replay
            raise ConcurrentModificationError(
                f"Conflicting write for student {request.student_id}"
            ) from e
        except DuplicatePeriodError as e:
            self.db.rollback()
            raise ConcurrentModificationError(
                f"Fee period of student {request.student_id} was created concurrently"
            ) from e
        except LedgerError:
            self.db.rollback()
            raise

        logger.info(
            "Recorded payment: id=%d, student_id=%d, amount=%s, allocations=%s",
            payment.id,
            payment.student_id,
            payment.amount,
            {a.fee_month: str(a.applied_amount) for a in payment.allocations},
        )
        return PaymentResult(payment=payment, updated_periods=updated)

    def _apply(self, request: PaymentRequest) -> tuple[Payment, List[FeePeriod]]:
        student = self.db.get(Student, request.student_id)
        periods = self.periods.list_student_periods(student.id, for_update=True)
        can_open = student.is_active and student.monthly_rent > ZERO

        target = request.fee_month
        if target and all(p.fee_month != target for p in periods):
            if not can_open:
                raise NoOpenPeriodsError(
                    f"Student {student.id} has no fee period for {target} and cannot get a new one"
                )
            periods.append(
                self.periods.create_period(
                    student.id,
                    target,
                    student.monthly_rent,
                    due_date=request.due_date,
                    actor_id=request.actor_id,
                    commit=False,
                )
            )

        plan = self.engine.allocate(
            request.amount,
            periods,
            target_month=target,
            advance_rent=student.monthly_rent if can_open else None,
            current_month=month_key(self.today()),
        )

        payment = Payment(
            student_id=student.id,
            amount=plan.amount,
            payment_date=request.payment_date or self.today(),
            payment_mode_id=request.payment_mode_id,
            transaction_id=request.transaction_id or None,
            notes=request.notes,
        )
        self.db.add(payment)
        updated = self._apply_plan(payment, plan, student, {p.fee_month: p for p in periods}, request)
        self.db.flush()

        AuditService.log(
            self.db,
            "payment",
            payment.id,
            "record",
            request.actor_id,
            {
                "student_id": student.id,
                "amount": format_amount(plan.amount),
                "transaction_id": payment.transaction_id,
                "allocations": {a.fee_month: format_amount(a.applied_amount) for a in plan.allocations},
            },
        )
        return payment, updated

    def _apply_plan(
        self,
        payment: Payment,
        plan: AllocationPlan,
        student: Student,
        by_month: Dict[str, FeePeriod],
        request: PaymentRequest,
    ) -> List[FeePeriod]:
        updated = []
        for line in plan.allocations:
            if line.creates_period:
                period = self.periods.create_period(
                    student.id,
                    line.fee_month,
                    student.monthly_rent,
                    actor_id=request.actor_id,
                    commit=False,
                )
            else:
                period = by_month[line.fee_month]

            period.amount_paid = (period.amount_paid or ZERO) + line.applied_amount
            payment.allocations.append(
                PaymentAllocation(
                    fee_period=period,
                    fee_month=line.fee_month,
                    applied_amount=line.applied_amount,
                )
            )
            updated.append(period)
        return updated

    def _find_replay(self, request: PaymentRequest) -> Optional[PaymentResult]:
        if not request.transaction_id:
            return None

        stmt = (
            select(Payment)
            .where(
                Payment.student_id == request.student_id,
                Payment.transaction_id == request.transaction_id,
            )
            .options(selectinload(Payment.allocations).selectinload(PaymentAllocation.fee_period))
        )
        payment = self.db.execute(stmt).scalar_one_or_none()
        if payment is None:
            return None

        if payment.amount != self.engine.validate_amount(request.amount):
            logger.warning(
                "Transaction id %s reused with a different amount: recorded=%s requested=%s",
                request.transaction_id,
                payment.amount,
                request.amount,
            )
        logger.info(
            "Replayed payment: id=%d, student_id=%d, transaction_id=%s",
            payment.id,
            payment.student_id,
            payment.transaction_id,
        )
        return PaymentResult(
            payment=payment,
            updated_periods=[a.fee_period for a in payment.allocations],
            replayed=True,
        )

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def fee_row(
        self,
        period: FeePeriod,
        student: Optional[Student] = None,
        today: Optional[date] = None,
    ) -> FeeRow:
        """Attach derived status and balance to a period."""
        today = today or self.today()
        return FeeRow(
            period=period,
            student=student or period.student,
            status=status_for(period, today, self.due_soon_days),
            balance=period.balance,
            days_overdue=days_overdue(period.due_date, today) if period.balance > ZERO else 0,
        )

    def summary(self, hostel_id: int, fee_month: str) -> MonthSummary:
        """All fee periods of a hostel month with derived status. Read only.

        Args:
            hostel_id: Hostel ID
            fee_month: Month in YYYY-MM format

        Returns:
            MonthSummary with rows, totals and the payments credited to the month
        """
        fee_month = parse_fee_month(fee_month)
        today = self.today()

        stmt = (
            select(FeePeriod, Student)
            .join(Student, FeePeriod.student_id == Student.id)
            .where(Student.hostel_id == hostel_id, FeePeriod.fee_month == fee_month)
            .order_by(Student.first_name, Student.last_name, Student.id)
        )
        rows = [self.fee_row(period, student, today) for period, student in self.db.execute(stmt).all()]

        payments_stmt = (
            select(Payment)
            .join(PaymentAllocation, PaymentAllocation.payment_id == Payment.id)
            .join(Student, Payment.student_id == Student.id)
            .where(Student.hostel_id == hostel_id, PaymentAllocation.fee_month == fee_month)
            .options(selectinload(Payment.allocations))
            .order_by(Payment.payment_date, Payment.id)
            .distinct()
        )
        payments = list(self.db.execute(payments_stmt).scalars().all())

        return MonthSummary(hostel_id=hostel_id, fee_month=fee_month, rows=rows, payments=payments)

    def student_ledger(self, student_id: int) -> StudentLedger:
        """Every period (with status) and payment of a student, oldest first.

        Raises:
            UnknownStudentError: If the student does not exist
        """
        student = self.db.get(Student, student_id)
        if student is None:
            raise UnknownStudentError(f"Student {student_id} not found")

        today = self.today()
        rows = [self.fee_row(p, student, today) for p in self.periods.list_student_periods(student_id)]
        stmt = (
            select(Payment)
            .where(Payment.student_id == student_id)
            .options(selectinload(Payment.allocations))
            .order_by(Payment.payment_date, Payment.id)
        )
        payments = list(self.db.execute(stmt).scalars().all())
        return StudentLedger(student=student, rows=rows, payments=payments)

    def list_payment_modes(self) -> List[PaymentMode]:
        """Active payment modes ordered by id."""
        stmt = select(PaymentMode).where(PaymentMode.is_active.is_(True)).order_by(PaymentMode.id)
        return list(self.db.execute(stmt).scalars().all())

    def ensure_default_payment_modes(self) -> List[PaymentMode]:
        """Insert any missing default payment mode; returns the created ones."""
        existing = set(self.db.execute(select(PaymentMode.name)).scalars().all())
        created = [PaymentMode(name=name) for name in DEFAULT_PAYMENT_MODES if name not in existing]
        if created:
            self.db.add_all(created)
            self.db.commit()
            logger.info("Created payment modes: %s", ", ".join(m.name for m in created))
        return created


__all__ = [
    "LedgerReconciliationService",
    "PaymentRequest",
    "PaymentResult",
    "FeeRow",
    "MonthSummary",
    "StudentLedger",
    "StudentLockRegistry",
    "DEFAULT_PAYMENT_MODES",
]
