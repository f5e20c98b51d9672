"""Configuration module for the invite service."""

from property_invites.config.invites import (
    InviteSettings,
    get_invite_settings,
)
from property_invites.config.rate_limits import BucketPolicy

__all__ = [
    "BucketPolicy",
    "InviteSettings",
    "get_invite_settings",
]
