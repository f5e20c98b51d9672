"""
Property and Profile mirrors.

Both tables are owned by other modules (property CRUD, identity). This
service only reads `properties.landlord_id` for ownership checks and the
display fields for invite previews, writes the property join code
columns, and only ever moves `profiles.role` from NULL to "tenant".
"""

import enum
import uuid

from sqlalchemy import Boolean, Column, String, true, Enum as SAEnum

from property_invites.db_base import Base
from property_invites.models.base import TimestampMixin, UTCDateTime


class UserRole(str, enum.Enum):
    """Account role. A profile without a role has not chosen one yet."""
    LANDLORD = "landlord"
    TENANT = "tenant"


class Property(Base, TimestampMixin):
    """A rentable property owned by one landlord."""

    __tablename__ = "properties"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    landlord_id = Column(String(255), nullable=False, index=True, comment="Identity of the owning landlord")
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)
    property_type = Column(String(50), nullable=True)
    unit = Column(String(50), nullable=True)

    # Never exposed before authentication
    wifi_network = Column(String(255), nullable=True)
    wifi_password = Column(String(255), nullable=True)
    monthly_rent_cents = Column(String(20), nullable=True)

    # Join code a tenant can type to link without an invite
    property_code = Column(String(6), nullable=True, unique=True, index=True, comment="AAA999, uppercase")
    code_expires_at = Column(UTCDateTime(), nullable=True)
    allow_tenant_signup = Column(Boolean, nullable=False, default=True, server_default=true())

    def __repr__(self) -> str:
        return f"<Property(id={self.id}, landlord_id={self.landlord_id})>"


class Profile(Base, TimestampMixin):
    """User profile keyed by the external identity id."""

    __tablename__ = "profiles"

    id = Column(String(255), primary_key=True, comment="External identity id")
    display_name = Column(String(255), nullable=True)
    role = Column(
        SAEnum(
            UserRole,
            name="user_role",
            values_callable=lambda e: [member.value for member in e],
            create_constraint=True,
        ),
        nullable=True,
        comment="NULL until the user becomes a landlord or tenant",
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, role={self.role.value if self.role else None})>"
