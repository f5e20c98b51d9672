"""
Shared column types and mixins.

All timestamps are stored and returned as timezone-aware UTC datetimes.
SQLite drops tzinfo on the way in, so values read back are re-tagged as UTC.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime
from sqlalchemy.types import TypeDecorator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """DateTime column that always round-trips aware UTC values."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return ensure_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return ensure_utc(value)


class TimestampMixin:
    """Adds created_at / updated_at columns."""

    created_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utc_now,
        comment="Row creation time",
    )
    updated_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
        comment="Last modification time",
    )
