"""Monthly fee period ORM model."""

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hostel_ledger.models import Base, BaseModel


class FeePeriod(Base, BaseModel):
    """Expected rent charge for one student for one calendar month.

    Status is never stored; it is derived from the amounts and the due date by
    the status engine. ``version`` is bumped on every update and checked by
    SQLAlchemy, so a write based on a stale snapshot fails instead of
    overwriting a concurrent payment.
    """

    __tablename__ = "monthly_fees"

    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id"),
        nullable=False,
        index=True,
        comment="Student charged",
    )
    fee_month: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        comment="Calendar month in YYYY-MM format",
    )
    total_due: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Rent assigned at period creation",
    )
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Sum of payment allocations credited to this period",
    )
    due_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="Date by which payment is expected",
    )
    version: Mapped[int] = mapped_column(nullable=False)

    student: Mapped["Student"] = relationship(  # noqa: F821
        "Student",
        back_populates="fee_periods",
    )
    allocations: Mapped[list["PaymentAllocation"]] = relationship(  # noqa: F821
        "PaymentAllocation",
        back_populates="fee_period",
    )

    __table_args__ = (
        UniqueConstraint("student_id", "fee_month", name="uq_monthly_fee_student_month"),
        Index("idx_monthly_fee_month", "fee_month"),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def balance(self) -> Decimal:
        """Outstanding amount, never negative."""
        return max(Decimal("0"), (self.total_due or Decimal("0")) - (self.amount_paid or Decimal("0")))

    def __repr__(self) -> str:
        return (
            f"<FeePeriod(id={self.id}, student_id={self.student_id}, month={self.fee_month}, "
            f"total_due={self.total_due}, amount_paid={self.amount_paid})>"
        )


__all__ = ["FeePeriod"]
