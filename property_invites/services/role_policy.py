"""
Role assignment policy.

A profile role is NULL until the user becomes a landlord or tenant.
Accepting an invite may fill a NULL role with "tenant"; it never replaces
an existing role.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from property_invites.models.property import Profile, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleAssignment:
    assigned: bool
    role: Optional[UserRole]


def should_assign(current: Optional[UserRole], proposed: UserRole) -> bool:
    """Only an unset role may be assigned."""
    return current is None


def ensure_role(session: Session, identity_id: str, proposed: UserRole) -> RoleAssignment:
    """
    Set `proposed` as the identity's role if, and only if, it is unset.

    Runs as one conditional UPDATE inside the caller's transaction. A
    missing profile row is created with the proposed role.
    """
    updated = (
        session.query(Profile)
        .filter(Profile.id == identity_id, Profile.role.is_(None))
        .update({Profile.role: proposed}, synchronize_session="fetch")
    )
    if updated:
        logger.info("Role assigned", extra={"identity_id": identity_id, "role": proposed.value})
        return RoleAssignment(assigned=True, role=proposed)

    profile = session.get(Profile, identity_id)
    if profile is not None:
        return RoleAssignment(assigned=False, role=profile.role)

    try:
        with session.begin_nested():
            session.add(Profile(id=identity_id, role=proposed))
    except IntegrityError:
        profile = session.get(Profile, identity_id, populate_existing=True)
        current = profile.role if profile is not None else None
        if should_assign(current, proposed):
            return ensure_role(session, identity_id, proposed)
        return RoleAssignment(assigned=False, role=current)

    logger.info("Profile created with role", extra={"identity_id": identity_id, "role": proposed.value})
    return RoleAssignment(assigned=True, role=proposed)
