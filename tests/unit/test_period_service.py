"""Unit tests for FeePeriodService."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from hostel_ledger.models import AuditLog, FeePeriod
from hostel_ledger.services.errors import (
    DuplicatePeriodError,
    FeePeriodNotFoundError,
    InvalidAmountError,
    LedgerError,
    UnknownStudentError,
)

pytestmark = pytest.mark.unit


class TestCreatePeriod:
    def test_create_period(self, period_service, make_student):
        student = make_student()
        period = period_service.create_period(student.id, "2024-03", "500")

        assert period.id is not None
        assert period.total_due == Decimal("500")
        assert period.amount_paid == Decimal("0")
        assert period.due_date == date(2024, 3, 5)
        assert period.version == 1

    def test_explicit_due_date(self, period_service, make_student):
        student = make_student()
        period = period_service.create_period(student.id, "2024-03", "500", due_date=date(2024, 3, 20))
        assert period.due_date == date(2024, 3, 20)

    def test_writes_audit_entry(self, period_service, make_student, db_session):
        student = make_student()
        period = period_service.create_period(student.id, "2024-03", "500", actor_id=7)

        entry = db_session.execute(select(AuditLog).where(AuditLog.entity_type == "fee_period")).scalar_one()
        assert entry.entity_id == period.id
        assert entry.action == "create"
        assert entry.actor_id == 7
        assert entry.changes["total_due"] == "500"

    @pytest.mark.parametrize("total_due", ["0", "-100", None, "abc", "10.001"])
    def test_invalid_total_due(self, period_service, make_student, total_due):
        student = make_student()
        with pytest.raises(InvalidAmountError):
            period_service.create_period(student.id, "2024-03", total_due)

    def test_malformed_month(self, period_service, make_student):
        student = make_student()
        with pytest.raises(ValueError):
            period_service.create_period(student.id, "2024-3", "500")

    def test_unknown_student(self, period_service):
        with pytest.raises(UnknownStudentError):
            period_service.create_period(999, "2024-03", "500")

    def test_duplicate_period(self, period_service, make_student):
        student = make_student()
        period_service.create_period(student.id, "2024-03", "500")
        with pytest.raises(DuplicatePeriodError):
            period_service.create_period(student.id, "2024-03", "600")


class TestReadHelpers:
    def test_list_and_open_periods(self, period_service, make_student, make_period, db_session):
        student = make_student()
        make_period(student, "2024-02")
        make_period(student, "2024-01")
        paid = make_period(student, "2024-03")
        paid.amount_paid = Decimal("500")
        db_session.commit()

        assert [p.fee_month for p in period_service.list_student_periods(student.id)] == [
            "2024-01",
            "2024-02",
            "2024-03",
        ]
        assert [p.fee_month for p in period_service.get_open_periods(student.id)] == ["2024-01", "2024-02"]

    def test_get_period(self, period_service, make_student, make_period):
        student = make_student()
        make_period(student, "2024-01")
        assert period_service.get_period(student.id, "2024-01") is not None
        assert period_service.get_period(student.id, "2024-02") is None


class TestAmendTotalDue:
    def test_amend(self, period_service, make_student, make_period):
        student = make_student()
        make_period(student, "2024-01")
        period = period_service.amend_total_due(student.id, "2024-01", "650")
        assert period.total_due == Decimal("650")
        assert period.version == 2

    def test_amend_below_paid_rejected(self, period_service, make_student, make_period, db_session):
        student = make_student()
        period = make_period(student, "2024-01")
        period.amount_paid = Decimal("300")
        db_session.commit()
        with pytest.raises(InvalidAmountError, match="below the amount already paid"):
            period_service.amend_total_due(student.id, "2024-01", "200")

    def test_amend_missing_period(self, period_service, make_student):
        student = make_student()
        with pytest.raises(FeePeriodNotFoundError, match="not found") as exc_info:
            period_service.amend_total_due(student.id, "2024-01", "500")
        assert isinstance(exc_info.value, LedgerError)
        assert exc_info.value.code == "fee_period_not_found"
        assert exc_info.value.http_status == 404


class TestGenerateMonthPeriods:
    def test_generates_for_active_students_with_rent(self, period_service, make_student, db_session):
        active = make_student(first_name="Asha", monthly_rent="500")
        make_student(first_name="Ravi", monthly_rent="650")
        make_student(first_name="Moved", is_active=False)
        make_student(first_name="NoRent", monthly_rent="0")
        make_student(first_name="Other", hostel_id=2)

        created = period_service.generate_month_periods(1, "2024-04")

        assert len(created) == 2
        assert {p.total_due for p in created} == {Decimal("500"), Decimal("650")}
        assert period_service.get_period(active.id, "2024-04").due_date == date(2024, 4, 5)

    def test_idempotent(self, period_service, make_student, db_session):
        make_student()
        assert len(period_service.generate_month_periods(1, "2024-04")) == 1
        assert period_service.generate_month_periods(1, "2024-04") == []
        count = db_session.execute(select(FeePeriod)).scalars().all()
        assert len(count) == 1
