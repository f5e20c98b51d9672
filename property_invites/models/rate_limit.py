"""
RateLimitBucket model: persistent token-bucket state, one row per limiter key.

Used by the database bucket backend so counters are shared by every
process talking to the same database.
"""

import uuid

from sqlalchemy import Column, Index, Integer, String

from property_invites.db_base import Base
from property_invites.models.base import TimestampMixin, UTCDateTime, utc_now


class RateLimitBucket(Base, TimestampMixin):
    """Token bucket for one limiter key (e.g. 'validate_invite:client:10.0.0.1')."""

    __tablename__ = "rate_limits"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    limiter_key = Column(String(255), nullable=False, unique=True, index=True)
    tokens = Column(Integer, nullable=False)
    last_refill = Column(UTCDateTime(), nullable=False, default=utc_now)
    max_tokens = Column(Integer, nullable=False)
    refill_rate = Column(Integer, nullable=False)
    window_seconds = Column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_rate_limits_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<RateLimitBucket(key={self.limiter_key}, tokens={self.tokens})>"
