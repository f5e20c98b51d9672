"""
TenantPropertyLink model.

A tenant's durable relationship to a property. Product rule: a tenant has
exactly one "home", so at most one link per tenant may be active. The
partial unique index enforces that at the database; the acceptance
transaction deactivates other links before activating a new one.

Links are never hard-deleted during normal operation.
"""

import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    text,
    Enum as SAEnum,
)

from property_invites.db_base import Base
from property_invites.models.base import TimestampMixin, UTCDateTime


class LinkStatus(str, enum.Enum):
    """Invitation status carried by a link."""
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class TenantPropertyLink(Base, TimestampMixin):
    """Tenant ↔ property relationship."""

    __tablename__ = "tenant_property_links"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(255), nullable=False, index=True)
    property_id = Column(
        String(36),
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_active = Column(Boolean, nullable=False, default=False)
    invitation_status = Column(
        SAEnum(
            LinkStatus,
            name="link_invitation_status",
            values_callable=lambda e: [member.value for member in e],
            create_constraint=True,
        ),
        nullable=False,
        default=LinkStatus.PENDING,
    )
    accepted_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "property_id", name="uq_tenant_property_links_tenant_property"),
        Index(
            "uq_tenant_property_links_one_active",
            "tenant_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<TenantPropertyLink(tenant_id={self.tenant_id}, "
            f"property_id={self.property_id}, is_active={self.is_active})>"
        )
