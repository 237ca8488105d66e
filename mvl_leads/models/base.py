"""
Base model classes for the lead service.

Provides SQLAlchemy declarative base and UTC time helpers.
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value):
    """
    Normalize a datetime read back from the database to aware UTC.

    SQLite drops tzinfo on round-trip; Postgres keeps it.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_ms(value) -> Optional[str]:
    """Render a datetime as an ISO 8601 string with millisecond precision and Z suffix."""
    value = as_utc(value)
    if value is None:
        return None
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")
