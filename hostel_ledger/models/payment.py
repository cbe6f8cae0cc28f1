"""Payment, allocation and payment mode ORM models."""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, ForeignKey, Index, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hostel_ledger.models import Base, BaseModel


class PaymentMode(Base, BaseModel):
    """Channel a payment was received through (cash, UPI, ...)."""

    __tablename__ = "payment_modes"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<PaymentMode(id={self.id}, name={self.name})>"


class Payment(Base, BaseModel):
    """Immutable record of money received from a student.

    Corrections are new payments, never edits. The amount is split across fee
    periods by PaymentAllocation rows that always add up to the amount.
    """

    __tablename__ = "payments"

    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id"),
        nullable=False,
        index=True,
        comment="Student who paid",
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Amount received",
    )
    payment_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        index=True,
        comment="Date money was received",
    )
    payment_mode_id: Mapped[int] = mapped_column(
        ForeignKey("payment_modes.id"),
        nullable=False,
    )
    transaction_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Client idempotency key / bank reference",
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    payment_mode: Mapped["PaymentMode"] = relationship("PaymentMode")
    allocations: Mapped[list["PaymentAllocation"]] = relationship(
        "PaymentAllocation",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentAllocation.fee_month",
    )

    __table_args__ = (
        UniqueConstraint("student_id", "transaction_id", name="uq_payment_student_transaction"),
    )

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, student_id={self.student_id}, amount={self.amount}, "
            f"date={self.payment_date}, transaction_id={self.transaction_id})>"
        )


class PaymentAllocation(Base, BaseModel):
    """Portion of a payment credited to one fee period."""

    __tablename__ = "payment_allocations"

    payment_id: Mapped[int] = mapped_column(
        ForeignKey("payments.id"),
        nullable=False,
        index=True,
    )
    fee_period_id: Mapped[int] = mapped_column(
        ForeignKey("monthly_fees.id"),
        nullable=False,
        index=True,
    )
    fee_month: Mapped[str] = mapped_column(String(7), nullable=False)
    applied_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    payment: Mapped["Payment"] = relationship("Payment", back_populates="allocations")
    fee_period: Mapped["FeePeriod"] = relationship(  # noqa: F821
        "FeePeriod",
        back_populates="allocations",
    )

    __table_args__ = (Index("idx_allocation_month", "fee_month"),)

    def __repr__(self) -> str:
        return (
            f"<PaymentAllocation(payment_id={self.payment_id}, month={self.fee_month}, "
            f"applied={self.applied_amount})>"
        )


__all__ = ["Payment", "PaymentAllocation", "PaymentMode"]
