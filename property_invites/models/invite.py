"""
Invite model for token-based property invitations.

An Invite grants one identity the ability to link itself to one property.

Lifecycle:
1. Landlord creates an invite; the plaintext token is returned once
2. Prospective tenant validates the token (read-only, any number of times)
3. Authenticated tenant accepts it (at most once, first writer wins)
4. Cleanup soft-deletes it after the retention window

SECURITY:
- Only sha256(token || salt), the salt and a keyed lookup fingerprint are stored
- intended_email is delivery metadata, never a credential
- Status is derived from timestamps at read time, never stored
"""

import enum
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

from property_invites.db_base import Base
from property_invites.models.base import UTCDateTime, ensure_utc, utc_now


class DeliveryMethod(str, enum.Enum):
    """How the invite reaches the tenant."""
    EMAIL = "email"   # Sent to intended_email
    CODE = "code"     # Shared by the landlord as a code or link


class InviteStatus(str, enum.Enum):
    """Derived invite status."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    REVOKED = "revoked"
    DELETED = "deleted"


class Invite(Base):
    """Outstanding or historical property invite."""

    __tablename__ = "invites"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Internal UUID primary key"
    )

    property_id = Column(
        String(36),
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Property this invite links to"
    )

    created_by = Column(
        String(255),
        nullable=False,
        comment="Identity of the issuing landlord"
    )

    token_hash = Column(
        String(64),
        nullable=False,
        unique=True,
        comment="sha256(token || salt), hex"
    )

    token_salt = Column(
        String(64),
        nullable=False,
        comment="Per-token salt, hex"
    )

    token_lookup = Column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
        comment="HMAC fingerprint used for indexed lookup"
    )

    intended_email = Column(
        String(320),
        nullable=True,
        comment="Delivery metadata only, never used for authentication"
    )

    delivery_method = Column(
        SAEnum(
            DeliveryMethod,
            name="invite_delivery_method",
            values_callable=lambda e: [member.value for member in e],
            create_constraint=True,
        ),
        nullable=False,
    )

    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)
    expires_at = Column(UTCDateTime(), nullable=False, comment="Default: created_at + 48h")

    accepted_at = Column(UTCDateTime(), nullable=True)
    accepted_by = Column(String(255), nullable=True, index=True)

    revoked_at = Column(UTCDateTime(), nullable=True)
    revoked_by = Column(String(255), nullable=True)

    deleted_at = Column(UTCDateTime(), nullable=True, comment="Soft delete by retention cleanup")

    validation_attempts = Column(Integer, nullable=False, default=0)
    last_validation_attempt = Column(UTCDateTime(), nullable=True)

    property = relationship("Property")

    __table_args__ = (
        CheckConstraint(
            "(accepted_at IS NULL AND accepted_by IS NULL) OR "
            "(accepted_at IS NOT NULL AND accepted_by IS NOT NULL)",
            name="ck_invites_acceptance_pair",
        ),
        CheckConstraint(
            "delivery_method <> 'email' OR intended_email IS NOT NULL",
            name="ck_invites_email_delivery_has_email",
        ),
        # Bounds the per-row re-hash scan to invites that can still be used
        Index(
            "ix_invites_active",
            "expires_at",
            postgresql_where=text("accepted_at IS NULL AND deleted_at IS NULL AND revoked_at IS NULL"),
            sqlite_where=text("accepted_at IS NULL AND deleted_at IS NULL AND revoked_at IS NULL"),
        ),
        Index(
            "ix_invites_cleanup",
            "expires_at",
            "accepted_at",
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index("ix_invites_property_created", "property_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Invite(id={self.id}, property_id={self.property_id}, "
            f"status={self.status_at(utc_now()).value})>"
        )

    def status_at(self, now: datetime) -> InviteStatus:
        """Derive the lifecycle status from the timestamps."""
        if self.deleted_at is not None:
            return InviteStatus.DELETED
        if self.accepted_at is not None:
            return InviteStatus.ACCEPTED
        if self.revoked_at is not None:
            return InviteStatus.REVOKED
        if ensure_utc(self.expires_at) <= ensure_utc(now):
            return InviteStatus.EXPIRED
        return InviteStatus.PENDING

    @classmethod
    def build(
        cls,
        property_id: str,
        created_by: str,
        token_hash: str,
        token_salt: str,
        token_lookup: str,
        delivery_method: DeliveryMethod,
        ttl: timedelta,
        now: datetime,
        intended_email: Optional[str] = None,
    ) -> "Invite":
        """Factory for a new pending invite."""
        return cls(
            id=str(uuid.uuid4()),
            property_id=property_id,
            created_by=created_by,
            token_hash=token_hash,
            token_salt=token_salt,
            token_lookup=token_lookup,
            intended_email=intended_email,
            delivery_method=delivery_method,
            created_at=now,
            expires_at=now + ttl,
            validation_attempts=0,
        )
