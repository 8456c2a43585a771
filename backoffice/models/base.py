"""SQLAlchemy declarative Base and the UTC clock shared by the models and stores."""

from datetime import UTC, datetime

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for accounts, roles and token tables."""

    pass


def utcnow() -> datetime:
    """Timezone-aware current time; all persisted timestamps are UTC."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends without tz support (SQLite)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
