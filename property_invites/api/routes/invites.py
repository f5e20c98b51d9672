"""
Invite API routes.

Provides endpoints for:
- Creating an invite (landlord owner)
- Validating a token (public, rate-limited, enumeration resistant)
- Accepting an invite (authenticated)
- Revoking an invite (creator)
- Listing a property's invites (owner)
- Issuing a property join code (owner) and linking by code (authenticated)

SECURITY:
- Caller identity comes from the verified Bearer token only
- Validation failures are indistinguishable from each other
- Tokens are never logged
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from property_invites.api.dependencies.invites import get_invite_service
from property_invites.api.schemas.invites import (
    AcceptInviteResponse,
    CreateInviteRequest,
    CreateInviteResponse,
    InviteListResponse,
    InviteSummaryResponse,
    PropertyCodeRequest,
    PropertyCodeResponse,
    TokenRequest,
    ValidateInviteResponse,
)
from property_invites.config.rate_limits import create_user_policy
from property_invites.middleware.rate_limit import client_key, rate_limit_dependency
from property_invites.platform.auth_context import Caller, get_optional_caller, require_caller
from property_invites.services.invite_service import InviteService, InviteSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["invites"])


def _summary_to_response(summary: InviteSummary) -> InviteSummaryResponse:
    return InviteSummaryResponse(
        id=summary.id,
        property_id=summary.property_id,
        delivery_method=summary.delivery_method.value,
        intended_email=summary.intended_email,
        status=summary.status.value,
        created_at=summary.created_at,
        expires_at=summary.expires_at,
        accepted_at=summary.accepted_at,
        accepted_by=summary.accepted_by,
        revoked_at=summary.revoked_at,
        validation_attempts=summary.validation_attempts,
    )


@router.post(
    "/invites",
    response_model=CreateInviteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_invite(
    body: CreateInviteRequest,
    caller: Caller = Depends(require_caller),
    service: InviteService = Depends(get_invite_service),
    _rate_limit=Depends(rate_limit_dependency("create_invite", create_user_policy)),
):
    """
    Create an invite for a property the caller owns.

    The plaintext token is in this response only.
    """
    created = service.create_invite(
        caller,
        property_id=body.property_id,
        delivery_method=body.delivery_method,
        intended_email=body.intended_email,
    )
    return CreateInviteResponse(
        token=created.token,
        invite_id=created.invite_id,
        expires_at=created.expires_at,
    )


@router.post("/invites/validate", response_model=ValidateInviteResponse)
async def validate_invite(
    body: TokenRequest,
    request: Request,
    service: InviteService = Depends(get_invite_service),
):
    """
    Preview the property behind a token. No authentication required.

    SECURITY: every failure returns {"valid": false}.
    """
    result = service.validate_invite(body.token, client_key=client_key(request))
    return ValidateInviteResponse(**result.to_dict())


@router.post("/invites/accept", response_model=AcceptInviteResponse)
async def accept_invite(
    body: TokenRequest,
    caller: Optional[Caller] = Depends(get_optional_caller),
    service: InviteService = Depends(get_invite_service),
):
    """Accept an invite as the authenticated caller."""
    result = service.accept_invite(caller, body.token)
    return AcceptInviteResponse(**result.to_dict())


@router.post("/invites/{invite_id}/revoke", response_model=InviteSummaryResponse)
async def revoke_invite(
    invite_id: str,
    caller: Caller = Depends(require_caller),
    service: InviteService = Depends(get_invite_service),
):
    """Revoke a pending invite. Creator only."""
    return _summary_to_response(service.revoke_invite(caller, invite_id))


@router.get("/properties/{property_id}/invites", response_model=InviteListResponse)
async def list_property_invites(
    property_id: str,
    include_inactive: bool = Query(False, description="Include accepted, expired and revoked invites"),
    caller: Caller = Depends(require_caller),
    service: InviteService = Depends(get_invite_service),
):
    """List a property's invites. Owner only."""
    summaries = service.list_invites(caller, property_id, include_inactive=include_inactive)
    return InviteListResponse(
        invites=[_summary_to_response(s) for s in summaries],
        total=len(summaries),
    )


@router.post("/properties/{property_id}/code", response_model=PropertyCodeResponse)
async def issue_property_code(
    property_id: str,
    caller: Caller = Depends(require_caller),
    service: InviteService = Depends(get_invite_service),
    _rate_limit=Depends(rate_limit_dependency("issue_property_code", create_user_policy)),
):
    """Issue a new join code for the property, replacing the current one. Owner only."""
    issued = service.issue_property_code(caller, property_id)
    return PropertyCodeResponse(code=issued.code, property_id=issued.property_id, expires_at=issued.expires_at)


@router.post("/properties/link", response_model=AcceptInviteResponse)
async def link_by_property_code(
    body: PropertyCodeRequest,
    caller: Optional[Caller] = Depends(get_optional_caller),
    service: InviteService = Depends(get_invite_service),
):
    """Link the caller to the property behind a join code."""
    result = service.link_by_property_code(caller, body.code)
    return AcceptInviteResponse(**result.to_dict())
