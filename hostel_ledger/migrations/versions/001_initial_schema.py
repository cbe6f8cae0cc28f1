"""Initial schema: students directory, fee ledger, payments and audit log.

Revision ID: 001_initial_schema
Revises:
Create Date: 2024-03-01 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
    ]


def upgrade() -> None:
    # Create students table (directory, read-only for the ledger)
    op.create_table(
        "students",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("hostel_id", sa.Integer(), nullable=False, comment="Hostel the student lives in"),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("room_number", sa.String(length=20), nullable=True),
        sa.Column(
            "monthly_rent",
            sa.Numeric(precision=10, scale=2),
            nullable=False,
            server_default="0",
            comment="Rent assigned to new fee periods",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_students_hostel_id", "hostel_id"),
        sa.Index("idx_student_hostel_active", "hostel_id", "is_active"),
    )

    # Create payment_modes table
    op.create_table(
        "payment_modes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    # Create monthly_fees table (one row per student per month)
    op.create_table(
        "monthly_fees",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("fee_month", sa.String(length=7), nullable=False, comment="YYYY-MM"),
        sa.Column("total_due", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("amount_paid", sa.Numeric(precision=10, scale=2), nullable=False, server_default="0"),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("student_id", "fee_month", name="uq_monthly_fee_student_month"),
        sa.Index("ix_monthly_fees_student_id", "student_id"),
        sa.Index("idx_monthly_fee_month", "fee_month"),
    )

    # Create payments table
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("payment_mode_id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.String(length=100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
        sa.ForeignKeyConstraint(["payment_mode_id"], ["payment_modes.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("student_id", "transaction_id", name="uq_payment_student_transaction"),
        sa.Index("ix_payments_student_id", "student_id"),
        sa.Index("ix_payments_payment_date", "payment_date"),
    )

    # Create payment_allocations table
    op.create_table(
        "payment_allocations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=False),
        sa.Column("fee_period_id", sa.Integer(), nullable=False),
        sa.Column("fee_month", sa.String(length=7), nullable=False),
        sa.Column("applied_amount", sa.Numeric(precision=10, scale=2), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.ForeignKeyConstraint(["fee_period_id"], ["monthly_fees.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_payment_allocations_payment_id", "payment_id"),
        sa.Index("ix_payment_allocations_fee_period_id", "fee_period_id"),
        sa.Index("idx_allocation_month", "fee_month"),
    )

    # Create audit_logs table
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("payment_allocations")
    op.drop_table("payments")
    op.drop_table("monthly_fees")
    op.drop_table("payment_modes")
    op.drop_table("students")
