"""Pytest configuration: in-memory database, seeded directory and API client."""

import os
from datetime import date
from decimal import Decimal

# Set test database URL BEFORE any imports from hostel_ledger
# This ensures the module-level engine never touches a file database
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from hostel_ledger.api.app import create_app
from hostel_ledger.api.monthly_fees import get_ledger_service
from hostel_ledger.models import Base, FeePeriod, Student
from hostel_ledger.services.allocation_service import PaymentApplicationEngine
from hostel_ledger.services.ledger_service import (
    LedgerReconciliationService,
    StudentLockRegistry,
)
from hostel_ledger.services.period_service import FeePeriodService

# Fixed clock for status derivation
TODAY = date(2024, 3, 10)


@pytest.fixture
def engine():
    """Shared in-memory SQLite engine (one connection, usable across threads)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Create test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_student(db_session):
    """Factory creating committed students."""

    def _make(
        first_name: str = "Asha",
        last_name: str | None = "Rao",
        monthly_rent: str = "500.00",
        hostel_id: int = 1,
        room_number: str | None = "101",
        phone: str | None = "9876543210",
        is_active: bool = True,
    ) -> Student:
        student = Student(
            hostel_id=hostel_id,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            room_number=room_number,
            monthly_rent=Decimal(monthly_rent),
            is_active=is_active,
        )
        db_session.add(student)
        db_session.commit()
        return student

    return _make


@pytest.fixture
def period_service(db_session):
    return FeePeriodService(db_session, due_day_of_month=5)


@pytest.fixture
def make_period(period_service):
    """Factory creating committed fee periods."""

    def _make(student: Student, fee_month: str, total_due: str = "500.00", due_date: date | None = None) -> FeePeriod:
        return period_service.create_period(student.id, fee_month, total_due, due_date=due_date)

    return _make


@pytest.fixture
def ledger_service(db_session):
    """Ledger service with a fixed clock and private lock registry."""
    service = LedgerReconciliationService(
        db_session,
        engine=PaymentApplicationEngine(max_advance_months=12),
        today=lambda: TODAY,
        locks=StudentLockRegistry(),
    )
    service.ensure_default_payment_modes()
    return service


@pytest.fixture
def cash_mode_id(ledger_service):
    return ledger_service.list_payment_modes()[0].id


@pytest.fixture
def app(session_factory, ledger_service):
    """Application wired to the test database and clock."""
    app = create_app()

    def override_ledger_service():
        session = session_factory()
        try:
            yield LedgerReconciliationService(
                session,
                today=lambda: TODAY,
                locks=StudentLockRegistry(),
            )
        finally:
            session.close()

    app.dependency_overrides[get_ledger_service] = override_ledger_service
    return app


@pytest.fixture
def client(app):
    """FastAPI test client (lifespan not run; tables come from the engine fixture)."""
    return TestClient(app)
