"""Dependencies that build request-scoped invite services."""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from property_invites.database.session import get_db_session
from property_invites.middleware.rate_limit import RateLimiter, get_request_rate_limiter
from property_invites.platform.errors import get_correlation_id
from property_invites.services.invite_service import InviteService


def get_invite_service(
    request: Request,
    session: Session = Depends(get_db_session),
    limiter: RateLimiter = Depends(get_request_rate_limiter),
) -> InviteService:
    return InviteService(
        session,
        limiter=limiter,
        correlation_id=get_correlation_id(request),
    )
