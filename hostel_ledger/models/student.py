"""Student directory ORM model (read-only for the ledger)."""

from decimal import Decimal

from sqlalchemy import Boolean, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hostel_ledger.models import Base, BaseModel


class Student(Base, BaseModel):
    """Tenant of a hostel.

    Owned by the student/room directory. The ledger reads it for identity,
    hostel membership and the rent used when a new fee period is created.
    """

    __tablename__ = "students"

    hostel_id: Mapped[int] = mapped_column(
        nullable=False,
        index=True,
        comment="Hostel the student lives in",
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    room_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    monthly_rent: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Rent assigned to new fee periods",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="False after move-out; no new fee periods are created",
    )

    fee_periods: Mapped[list["FeePeriod"]] = relationship(  # noqa: F821
        "FeePeriod",
        back_populates="student",
        order_by="FeePeriod.fee_month",
    )

    __table_args__ = (Index("idx_student_hostel_active", "hostel_id", "is_active"),)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def __repr__(self) -> str:
        return f"<Student(id={self.id}, hostel_id={self.hostel_id}, name={self.full_name})>"


__all__ = ["Student"]
