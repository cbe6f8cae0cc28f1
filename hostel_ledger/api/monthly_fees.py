"""Monthly fee ledger API endpoints.

Amounts are serialized as fixed two-decimal strings; the mobile client parses
them back to Decimal, never to floating point.
"""

import logging
import time
from datetime import date
from typing import Any, Dict, Generic, List, Optional, TypeVar

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from hostel_ledger.config import settings
from hostel_ledger.models.payment import Payment, PaymentMode
from hostel_ledger.services import get_db
from hostel_ledger.services.allocation_service import PaymentApplicationEngine
from hostel_ledger.services.ledger_service import (
    FeeRow,
    LedgerReconciliationService,
    PaymentRequest,
)
from hostel_ledger.services.parsers import format_amount, parse_fee_month

logger = logging.getLogger(__name__)

T = TypeVar("T")

router = APIRouter(prefix="/api/monthly-fees", tags=["monthly-fees"])


def _log_debug(endpoint: str, start_time: float, **kwargs: Any) -> None:
    """Log API request with timing at DEBUG level."""
    duration_ms = int((time.time() - start_time) * 1000)
    extra = " ".join(f"{k}={v}" for k, v in kwargs.items())
    logger.debug("monthly_fees.%s: %s duration_ms=%d", endpoint, extra, duration_ms)


# Response envelope
class ApiResponse(BaseModel, Generic[T]):
    """Standard success envelope."""

    success: bool = True
    data: T


# Response schemas
class FeePeriodResponse(BaseModel):
    """One fee period with derived status and student display fields."""

    fee_id: int
    student_id: int
    hostel_id: int
    first_name: str
    last_name: str | None
    phone: str | None
    room_number: str | None
    fee_month: str
    total_due: str  # Decimal as string
    amount_paid: str
    balance: str
    due_date: date
    fee_status: str  # Canonical status
    days_overdue: int

    model_config = ConfigDict(from_attributes=True)


class AllocationResponse(BaseModel):
    """Portion of a payment credited to one month."""

    fee_month: str
    applied_amount: str

    model_config = ConfigDict(from_attributes=True)


class PaymentResponse(BaseModel):
    """Recorded payment."""

    payment_id: int
    student_id: int
    amount: str
    payment_date: date
    payment_mode_id: int
    transaction_id: str | None
    notes: str | None
    allocations: list[AllocationResponse]

    model_config = ConfigDict(from_attributes=True)


class SummaryTotalsResponse(BaseModel):
    """Month totals and counts for dashboard cards and tab badges."""

    total_due: str
    total_paid: str
    total_pending: str
    status_counts: Dict[str, int]
    tab_counts: Dict[str, int]
    top_defaulters: list[FeePeriodResponse]


class MonthSummaryResponse(BaseModel):
    """Response schema for /summary."""

    hostel_id: int
    fee_month: str
    fees: list[FeePeriodResponse]
    payments: list[PaymentResponse]
    summary: SummaryTotalsResponse


class RecordPaymentResponse(BaseModel):
    """Response schema for /record-payment."""

    payment: PaymentResponse
    allocations: list[AllocationResponse]
    updated_periods: list[FeePeriodResponse]
    replayed: bool = False


class PaymentModeResponse(BaseModel):
    """Response schema for one payment mode."""

    payment_mode_id: int
    name: str


class StudentLedgerResponse(BaseModel):
    """Response schema for a student's full ledger."""

    student_id: int
    name: str
    room_number: str | None
    monthly_rent: str
    is_active: bool
    total_balance: str
    fees: list[FeePeriodResponse]
    payments: list[PaymentResponse]


class GenerateResponse(BaseModel):
    """Response schema for /generate."""

    hostel_id: int
    fee_month: str
    created: int
    fees: list[FeePeriodResponse]


# Request schemas
class RecordPaymentRequest(BaseModel):
    """Request body for /record-payment.

    amount may be a string or a number; it is parsed to Decimal server-side.
    """

    student_id: int
    amount: str | int | float | None = None
    payment_mode_id: int
    payment_date: Optional[date] = None
    due_date: Optional[date] = None
    fee_month: Optional[str] = None
    transaction_id: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None
    hostel_id: Optional[int] = None

    def to_request(self) -> PaymentRequest:
        return PaymentRequest(
            student_id=self.student_id,
            amount=self.amount,
            payment_mode_id=self.payment_mode_id,
            payment_date=self.payment_date,
            due_date=self.due_date,
            fee_month=self.fee_month or None,
            transaction_id=(self.transaction_id or "").strip() or None,
            notes=self.notes,
        )


def get_ledger_service(db: Session = Depends(get_db)) -> LedgerReconciliationService:
    """Build the ledger service for one request from settings."""
    return LedgerReconciliationService(
        db,
        engine=PaymentApplicationEngine(max_advance_months=settings.max_advance_months),
        due_day_of_month=settings.due_day_of_month,
        due_soon_days=settings.due_soon_days,
        max_retries=settings.max_payment_retries,
    )


def _fee_response(row: FeeRow) -> FeePeriodResponse:
    period, student = row.period, row.student
    return FeePeriodResponse(
        fee_id=period.id,
        student_id=student.id,
        hostel_id=student.hostel_id,
        first_name=student.first_name,
        last_name=student.last_name,
        phone=student.phone,
        room_number=student.room_number,
        fee_month=period.fee_month,
        total_due=format_amount(period.total_due),
        amount_paid=format_amount(period.amount_paid),
        balance=format_amount(row.balance),
        due_date=period.due_date,
        fee_status=row.status.value,
        days_overdue=row.days_overdue,
    )


def _allocation_responses(payment: Payment) -> list[AllocationResponse]:
    return [
        AllocationResponse(fee_month=a.fee_month, applied_amount=format_amount(a.applied_amount))
        for a in payment.allocations
    ]


def _payment_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse(
        payment_id=payment.id,
        student_id=payment.student_id,
        amount=format_amount(payment.amount),
        payment_date=payment.payment_date,
        payment_mode_id=payment.payment_mode_id,
        transaction_id=payment.transaction_id,
        notes=payment.notes,
        allocations=_allocation_responses(payment),
    )


def _mode_response(mode: PaymentMode) -> PaymentModeResponse:
    return PaymentModeResponse(payment_mode_id=mode.id, name=mode.name)


@router.get("/summary", response_model=ApiResponse[MonthSummaryResponse])
def get_month_summary(
    fee_month: str = Query(..., description="Month in YYYY-MM format"),
    hostel_id: Optional[int] = Query(default=None),
    service: LedgerReconciliationService = Depends(get_ledger_service),
) -> ApiResponse[MonthSummaryResponse]:
    """All fee periods of a hostel month with derived status and totals."""
    start_time = time.time()
    hostel_id = hostel_id or settings.default_hostel_id
    summary = service.summary(hostel_id, fee_month)

    data = MonthSummaryResponse(
        hostel_id=summary.hostel_id,
        fee_month=summary.fee_month,
        fees=[_fee_response(row) for row in summary.rows],
        payments=[_payment_response(p) for p in summary.payments],
        summary=SummaryTotalsResponse(
            total_due=format_amount(summary.total_due),
            total_paid=format_amount(summary.total_paid),
            total_pending=format_amount(summary.total_pending),
            status_counts=summary.status_counts,
            tab_counts=summary.tab_counts,
            top_defaulters=[_fee_response(row) for row in summary.top_defaulters()],
        ),
    )
    _log_debug("summary", start_time, hostel_id=hostel_id, fee_month=fee_month, count=len(summary.rows))
    return ApiResponse(data=data)


@router.post("/record-payment", response_model=ApiResponse[RecordPaymentResponse])
def record_payment(
    body: RecordPaymentRequest,
    service: LedgerReconciliationService = Depends(get_ledger_service),
) -> ApiResponse[RecordPaymentResponse]:
    """Record a payment; the server decides how it is allocated."""
    start_time = time.time()
    result = service.record_payment(body.to_request())

    today = service.today()
    data = RecordPaymentResponse(
        payment=_payment_response(result.payment),
        allocations=_allocation_responses(result.payment),
        updated_periods=[_fee_response(service.fee_row(p, today=today)) for p in result.updated_periods],
        replayed=result.replayed,
    )
    _log_debug(
        "record_payment",
        start_time,
        student_id=body.student_id,
        hostel_id=body.hostel_id,
        payment_id=result.payment.id,
        replayed=result.replayed,
    )
    return ApiResponse(data=data)


@router.get("/payment-modes", response_model=ApiResponse[List[PaymentModeResponse]])
def get_payment_modes(
    service: LedgerReconciliationService = Depends(get_ledger_service),
) -> ApiResponse[List[PaymentModeResponse]]:
    """Active payment modes."""
    return ApiResponse(data=[_mode_response(m) for m in service.list_payment_modes()])


@router.get("/students/{student_id}", response_model=ApiResponse[StudentLedgerResponse])
def get_student_ledger(
    student_id: int,
    service: LedgerReconciliationService = Depends(get_ledger_service),
) -> ApiResponse[StudentLedgerResponse]:
    """Every fee period and payment of one student."""
    ledger = service.student_ledger(student_id)
    student = ledger.student
    data = StudentLedgerResponse(
        student_id=student.id,
        name=student.full_name,
        room_number=student.room_number,
        monthly_rent=format_amount(student.monthly_rent),
        is_active=student.is_active,
        total_balance=format_amount(ledger.total_balance),
        fees=[_fee_response(row) for row in ledger.rows],
        payments=[_payment_response(p) for p in ledger.payments],
    )
    return ApiResponse(data=data)


@router.post("/generate", response_model=ApiResponse[GenerateResponse])
def generate_month(
    fee_month: str = Query(..., description="Month in YYYY-MM format"),
    hostel_id: Optional[int] = Query(default=None),
    service: LedgerReconciliationService = Depends(get_ledger_service),
) -> ApiResponse[GenerateResponse]:
    """Create missing fee periods of a month for every active student."""
    hostel_id = hostel_id or settings.default_hostel_id
    fee_month = parse_fee_month(fee_month)

    created = service.periods.generate_month_periods(hostel_id, fee_month)

    today = service.today()
    data = GenerateResponse(
        hostel_id=hostel_id,
        fee_month=fee_month,
        created=len(created),
        fees=[_fee_response(service.fee_row(p, today=today)) for p in created],
    )
    return ApiResponse(data=data)


__all__ = ["router", "get_ledger_service"]
