"""Database connection and session management."""

from typing import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from hostel_ledger.config import settings

DATABASE_URL = settings.database_url


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine for the given URL.

    In-memory SQLite lives on a single connection, so it is shared through
    StaticPool. File SQLite keeps one connection per session; SQLite's own
    write lock then serializes writers without mixing their transactions.
    """
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            return create_engine(
                database_url, echo=echo, connect_args=connect_args, poolclass=StaticPool
            )
        return create_engine(database_url, echo=echo, connect_args=connect_args)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


engine = create_db_engine(DATABASE_URL, echo=settings.database_echo)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


__all__ = [
    "engine",
    "SessionLocal",
    "create_db_engine",
    "get_db",
]
