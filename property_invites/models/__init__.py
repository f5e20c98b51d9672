"""
Database models for the invite service.

Importing this package registers every table on the shared metadata.
"""

from property_invites.models.base import TimestampMixin, UTCDateTime
from property_invites.models.property import Property, Profile, UserRole
from property_invites.models.invite import Invite, InviteStatus, DeliveryMethod
from property_invites.models.tenant_property_link import TenantPropertyLink, LinkStatus
from property_invites.models.rate_limit import RateLimitBucket
from property_invites.platform.audit import AuditLog

__all__ = [
    "AuditLog",
    "DeliveryMethod",
    "Invite",
    "InviteStatus",
    "LinkStatus",
    "Profile",
    "Property",
    "RateLimitBucket",
    "TenantPropertyLink",
    "TimestampMixin",
    "UTCDateTime",
    "UserRole",
]
