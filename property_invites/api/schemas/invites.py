"""
Pydantic schemas for the invites API.

Request and response models for invite endpoints.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreateInviteRequest(BaseModel):
    """Request body for creating an invite."""

    property_id: str = Field(..., min_length=1, description="Property the invite links to")
    delivery_method: str = Field(..., description="Delivery method: email or code")
    intended_email: Optional[str] = Field(
        None,
        max_length=320,
        description="Recipient address; required for email delivery, never used to authenticate",
    )


class CreateInviteResponse(BaseModel):
    """Returned once on creation. The token is not retrievable later."""

    token: str = Field(..., description="Plaintext invite token")
    invite_id: str = Field(..., description="Invite identifier")
    expires_at: datetime = Field(..., description="When the invite stops being accepted")


class TokenRequest(BaseModel):
    """Request body carrying an invite token."""

    token: str = Field("", max_length=64, description="Invite token as typed or linked")


class PropertyPreviewResponse(BaseModel):
    """Property fields safe to show before sign-in."""

    id: str
    name: str
    address: Optional[str] = None
    property_type: Optional[str] = None
    unit: Optional[str] = None


class ValidateInviteResponse(BaseModel):
    """Validation result. Every failure has the same shape: valid=false."""

    valid: bool = Field(..., description="Whether the token can be accepted")
    property: Optional[PropertyPreviewResponse] = Field(None, description="Preview when valid")
    expires_at: Optional[datetime] = Field(None, description="Expiry when valid")


class AcceptInviteResponse(BaseModel):
    """Acceptance outcome."""

    success: bool = Field(..., description="True for OK and ALREADY_LINKED")
    status: str = Field(..., description="OK, ALREADY_LINKED, NOT_AUTHENTICATED, INVALID, EXPIRED, REVOKED, RATE_LIMITED or ERROR")
    property_id: Optional[str] = None
    property_name: Optional[str] = None
    error: Optional[str] = Field(None, description="User-facing message for failures")


class InviteSummaryResponse(BaseModel):
    """Owner-facing invite record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    property_id: str
    delivery_method: str
    intended_email: Optional[str] = None
    status: str = Field(..., description="pending, accepted, expired or revoked")
    created_at: datetime
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    accepted_by: Optional[str] = None
    revoked_at: Optional[datetime] = None
    validation_attempts: int = 0


class InviteListResponse(BaseModel):
    """Invites for one property."""

    invites: List[InviteSummaryResponse] = Field(..., description="Newest first")
    total: int = Field(..., description="Number of invites returned")


class PropertyCodeRequest(BaseModel):
    """Request body carrying a property join code."""

    code: str = Field("", max_length=16, description="Join code as typed, e.g. KQZ042")


class PropertyCodeResponse(BaseModel):
    """A property's current join code. Owner only."""

    code: str = Field(..., description="Three letters then three digits")
    property_id: str
    expires_at: datetime = Field(..., description="When the code stops linking tenants")
