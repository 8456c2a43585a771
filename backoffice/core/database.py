"""Database engine and session management (PostgreSQL, SQLite for local runs)."""

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from backoffice.core.config import settings


def _connect_args(database_url: str, statement_timeout_ms: int) -> dict[str, Any]:
    """Per-dialect DBAPI connect arguments."""
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    if statement_timeout_ms > 0:
        return {"options": f"-c statement_timeout={statement_timeout_ms}"}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    echo=settings.DEBUG,
    connect_args=_connect_args(settings.DATABASE_URL, settings.DB_STATEMENT_TIMEOUT_MS),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Dependency that yields a DB session and closes it when done."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
