"""Shared test fixtures: in-memory SQLite database and fast settings."""

from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice.core.config import Settings
from backoffice.models import Base
from backoffice.scripts.manage_accounts import seed_roles

STRONG_PASSWORD = "Str0ng!Pass"
NEW_PASSWORD = "NewPass1!"
FRONTEND_URL = "https://app.example.com"

_TEST_SETTINGS: dict[str, Any] = {
    "DATABASE_URL": "sqlite://",
    "JWT_SECRET": "test-secret-key-that-is-at-least-32-bytes-long",
    "BCRYPT_ROUNDS": 4,
    "ALLOWED_FRONTEND_URLS": [FRONTEND_URL],
    "EXPOSE_RECOVERY_TOKEN": True,
    "NOTIFY_WEBHOOK_URL": None,
}


def make_settings(**overrides: Any) -> Settings:
    """Settings with a cheap bcrypt cost and a fixed JWT secret."""
    return Settings(**{**_TEST_SETTINGS, **overrides})


def make_engine() -> Engine:
    """Fresh in-memory database shared by every connection of the engine."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


def make_file_engine(path: str) -> Engine:
    """SQLite database in a file, so independent sessions use separate connections."""
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    return engine


def make_session(engine: Engine, seed: bool = True) -> Session:
    """Session on engine; seed=True creates the default roles and permissions."""
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    db = factory()
    if seed:
        seed_roles(db)
    return db


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)
