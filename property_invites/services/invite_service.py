"""
InviteService for token-based property invitations.

Handles:
- Creating invites (landlord owner only, plaintext token returned once)
- Validating tokens for unauthenticated previews (enumeration resistant)
- Accepting invites (one transaction, invite row locked)
- Revoking and listing invites (creator / owner only)
- Property join codes: issuing (owner) and linking by code (authenticated)
- Retention cleanup (scheduled job)
- Audit event emission

Acceptance steps, all in one unit of work:
1. Locate the invite by token among non-deleted, unexpired rows, row locked
2. Replays by the original acceptor make the property active again and
   resolve to ALREADY_LINKED
3. An existing active link to the property resolves to ALREADY_LINKED
4. Deactivate the tenant's other active links
5. Create or reactivate the (tenant, property) link
6. Mark the invite accepted, guarded by accepted_at IS NULL
7. Assign the tenant role only if the caller has none
Any failure rolls the whole unit back.
"""

import enum
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from property_invites.config import rate_limits as rate_limit_config
from property_invites.config.invites import InviteSettings, get_invite_settings
from property_invites.middleware.rate_limit import RateLimiter, build_rate_limiter
from property_invites.models.base import ensure_utc, utc_now
from property_invites.models.invite import DeliveryMethod, Invite, InviteStatus
from property_invites.models.property import Profile, Property, UserRole
from property_invites.platform.audit import (
    AuditAction,
    AuditEvent,
    AuditOutcome,
    log_system_audit_event_sync,
    write_audit_log_sync,
)
from property_invites.platform.auth_context import Caller
from property_invites.platform.errors import (
    GENERIC_INVITE_MESSAGE,
    AuthenticationError,
    ConflictError,
    InvalidInputError,
    NotAuthorizedError,
    NotFoundError,
    ServiceUnavailableError,
)
from property_invites.services import token_codec
from property_invites.services.invite_notifier import (
    InviteEmail,
    InviteNotifier,
    build_invite_notifier,
)
from property_invites.services.invite_store import InviteStore, build_lookup_strategy
from property_invites.services.link_store import LinkStore
from property_invites.services.role_policy import RoleAssignment, ensure_role

logger = logging.getLogger(__name__)

MAX_TOKEN_ATTEMPTS = 3

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Never matches a stored invite; keeps malformed input on the lookup path
_DECOY_TOKEN = "#" * 12


# =============================================================================
# Result types
# =============================================================================

@dataclass(frozen=True)
class PropertyPreview:
    """Property fields that are safe to show before authentication."""
    id: str
    name: str
    address: Optional[str]
    property_type: Optional[str]
    unit: Optional[str]

    @classmethod
    def from_property(cls, prop: Property) -> "PropertyPreview":
        return cls(
            id=prop.id,
            name=prop.name,
            address=prop.address,
            property_type=prop.property_type,
            unit=prop.unit,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "property_type": self.property_type,
            "unit": self.unit,
        }


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    property: Optional[PropertyPreview] = None
    expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "property": self.property.to_dict() if self.property else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


# Every validation failure returns this same object
INVALID_VALIDATION = ValidationResult(valid=False)


class AcceptStatus(str, enum.Enum):
    OK = "OK"
    ALREADY_LINKED = "ALREADY_LINKED"
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    INVALID = "INVALID"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    RATE_LIMITED = "RATE_LIMITED"
    ERROR = "ERROR"


_FAILURE_MESSAGES = {
    AcceptStatus.NOT_AUTHENTICATED: "Sign in to accept this invite.",
    AcceptStatus.INVALID: GENERIC_INVITE_MESSAGE,
    AcceptStatus.EXPIRED: "This invite has expired. Please ask your landlord for a new one.",
    AcceptStatus.REVOKED: "This invite was cancelled. Please ask your landlord for a new one.",
    AcceptStatus.RATE_LIMITED: "Too many attempts. Please wait a minute and try again.",
    AcceptStatus.ERROR: "Something went wrong. Please try again.",
}


@dataclass(frozen=True)
class AcceptResult:
    success: bool
    status: AcceptStatus
    property_id: Optional[str] = None
    property_name: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def linked(cls, status: AcceptStatus, prop: Property) -> "AcceptResult":
        return cls(success=True, status=status, property_id=prop.id, property_name=prop.name)

    @classmethod
    def failure(cls, status: AcceptStatus) -> "AcceptResult":
        return cls(success=False, status=status, error=_FAILURE_MESSAGES[status])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "property_id": self.property_id,
            "property_name": self.property_name,
            "error": self.error,
        }


@dataclass(frozen=True)
class CreatedInvite:
    """Creation result. `token` is the only copy of the plaintext."""
    token: str
    invite_id: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"CreatedInvite(invite_id={self.invite_id}, expires_at={self.expires_at.isoformat()})"


@dataclass(frozen=True)
class PropertyJoinCode:
    """A property's current join code, shown to its owner."""
    code: str
    property_id: str
    expires_at: datetime


@dataclass(frozen=True)
class InviteSummary:
    """Owner-facing view of an invite. Never carries token material."""
    id: str
    property_id: str
    delivery_method: DeliveryMethod
    intended_email: Optional[str]
    status: InviteStatus
    created_at: datetime
    expires_at: datetime
    accepted_at: Optional[datetime]
    accepted_by: Optional[str]
    revoked_at: Optional[datetime]
    validation_attempts: int

    @classmethod
    def from_invite(cls, invite: Invite, now: datetime) -> "InviteSummary":
        return cls(
            id=invite.id,
            property_id=invite.property_id,
            delivery_method=invite.delivery_method,
            intended_email=invite.intended_email,
            status=invite.status_at(now),
            created_at=invite.created_at,
            expires_at=invite.expires_at,
            accepted_at=invite.accepted_at,
            accepted_by=invite.accepted_by,
            revoked_at=invite.revoked_at,
            validation_attempts=invite.validation_attempts or 0,
        )


# =============================================================================
# Service
# =============================================================================

class InviteService:
    """Service for the invite lifecycle. Owns commit/rollback per operation."""

    def __init__(
        self,
        session: Session,
        limiter: Optional[RateLimiter] = None,
        settings: Optional[InviteSettings] = None,
        notifier: Optional[InviteNotifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
        correlation_id: Optional[str] = None,
    ):
        """
        Args:
            session: SQLAlchemy session for database operations
            limiter: Rate limiter; built from configuration when omitted
            settings: Invite settings; loaded from the environment when omitted
            notifier: Email dispatcher; built from settings when omitted
            clock: Returns the current UTC time (injectable for tests)
            correlation_id: Optional correlation ID for audit event tracing
        """
        self.session = session
        self.settings = settings or get_invite_settings()
        self.limiter = limiter if limiter is not None else build_rate_limiter(session)
        self.notifier = notifier or build_invite_notifier(self.settings)
        self._clock = clock or utc_now
        self.correlation_id = correlation_id or str(uuid.uuid4())

        self.invites = InviteStore(session, build_lookup_strategy(self.settings))
        self.links = LinkStore(session)

    # =========================================================================
    # Create
    # =========================================================================

    def create_invite(
        self,
        caller: Optional[Caller],
        property_id: str,
        delivery_method: Union[DeliveryMethod, str],
        intended_email: Optional[str] = None,
    ) -> CreatedInvite:
        """
        Create an invite for a property the caller owns.

        Raises:
            AuthenticationError: No caller
            InvalidInputError: Bad delivery method or email
            NotAuthorizedError: Property missing or not owned by the caller
        """
        if caller is None:
            raise AuthenticationError()

        method = self._parse_delivery_method(delivery_method)
        email = self._clean_email(intended_email, required=method == DeliveryMethod.EMAIL)

        prop = self.session.query(Property).filter(Property.id == property_id).first()
        if prop is None or prop.landlord_id != caller.user_id:
            # Same answer for "missing" and "someone else's"
            raise NotAuthorizedError("Property not found or access denied")

        now = self._clock()
        try:
            invite, plaintext = self._insert_with_fresh_token(caller, prop, method, email, now)

            write_audit_log_sync(self.session, AuditEvent(
                action=AuditAction.INVITE_CREATED,
                actor_id=caller.user_id,
                property_id=prop.id,
                resource_type="invite",
                resource_id=invite.id,
                metadata={
                    "delivery_method": method.value,
                    "intended_email": email,
                    "expires_at": invite.expires_at.isoformat(),
                },
                correlation_id=self.correlation_id,
            ))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "Invite created",
            extra={
                "invite_id": invite.id,
                "property_id": prop.id,
                "delivery_method": method.value,
                "correlation_id": self.correlation_id,
            },
        )

        if method == DeliveryMethod.EMAIL:
            self._dispatch_email(invite, prop, email, plaintext, caller)

        return CreatedInvite(token=plaintext, invite_id=invite.id, expires_at=invite.expires_at)

    def _insert_with_fresh_token(self, caller, prop, method, email, now):
        for attempt in range(1, MAX_TOKEN_ATTEMPTS + 1):
            generated = token_codec.generate(self.settings.token_length)
            invite = Invite.build(
                property_id=prop.id,
                created_by=caller.user_id,
                token_hash=generated.token_hash,
                token_salt=generated.salt,
                token_lookup=token_codec.fingerprint(generated.plaintext, self.settings.token_pepper),
                delivery_method=method,
                ttl=self.settings.ttl,
                now=now,
                intended_email=email,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(invite)
                return invite, generated.plaintext
            except IntegrityError:
                logger.warning(
                    "Invite token collision, regenerating",
                    extra={"attempt": attempt, "property_id": prop.id},
                )
        raise ServiceUnavailableError("Could not allocate an invite token")

    def _dispatch_email(self, invite, prop, email, plaintext, caller) -> None:
        landlord = self.session.get(Profile, caller.user_id)
        message = InviteEmail(
            recipient_email=email,
            property_name=prop.name,
            invite_url=self.settings.invite_url(plaintext),
            landlord_name=landlord.display_name if landlord else None,
        )
        try:
            self.notifier.send_invite(message)
        except Exception:
            # The invite stays valid; the landlord can still share the code
            logger.exception(
                "Invite email dispatch failed",
                extra={"invite_id": invite.id, "correlation_id": self.correlation_id},
            )

    @staticmethod
    def _parse_delivery_method(value: Union[DeliveryMethod, str]) -> DeliveryMethod:
        try:
            return DeliveryMethod(value)
        except ValueError:
            raise InvalidInputError(
                "delivery_method must be 'email' or 'code'",
                details={"field": "delivery_method"},
            )

    @staticmethod
    def _clean_email(value: Optional[str], required: bool) -> Optional[str]:
        email = (value or "").strip()
        if not email:
            if required:
                raise InvalidInputError(
                    "intended_email is required for email delivery",
                    details={"field": "intended_email"},
                )
            return None
        if not _EMAIL_PATTERN.match(email):
            raise InvalidInputError("intended_email is not a valid address", details={"field": "intended_email"})
        return email.lower()

    # =========================================================================
    # Validate
    # =========================================================================

    def validate_invite(self, token: Optional[str], client_key: Optional[str] = None) -> ValidationResult:
        """
        Preview the property behind a token, for unauthenticated callers.

        Returns INVALID_VALIDATION for every failure, including rate
        limiting, so callers cannot tell why a token was rejected.
        """
        try:
            if not self._validation_budget_available(client_key):
                return INVALID_VALIDATION

            now = self._clock()
            candidate = token_codec.normalize(token, self.settings.token_length)
            invite = self.invites.find_active_by_token(candidate or _DECOY_TOKEN, now)
            if candidate is None or invite is None:
                self.session.rollback()
                return INVALID_VALIDATION

            prop = invite.property
            if prop is None:
                self.session.rollback()
                return INVALID_VALIDATION

            preview = PropertyPreview.from_property(prop)
            expires_at = invite.expires_at
            self.invites.record_validation_attempt(invite.id, now)
            self.session.commit()
            return ValidationResult(valid=True, property=preview, expires_at=expires_at)

        except Exception:
            self.session.rollback()
            logger.exception("Invite validation failed", extra={"correlation_id": self.correlation_id})
            return INVALID_VALIDATION

    def _validation_budget_available(self, client_key: Optional[str]) -> bool:
        per_client = self.limiter.check_and_consume(
            f"validate_invite:client:{client_key or 'anonymous'}",
            rate_limit_config.validate_client_policy(),
        )
        if not per_client.allowed:
            return False
        overall = self.limiter.check_and_consume(
            "validate_invite:global",
            rate_limit_config.validate_global_policy(),
        )
        return overall.allowed

    # =========================================================================
    # Accept
    # =========================================================================

    def accept_invite(self, caller: Optional[Caller], token: Optional[str]) -> AcceptResult:
        """
        Link the caller to the invite's property.

        Never raises: unexpected failures are rolled back, logged, and
        returned as a generic ERROR.
        """
        if caller is None:
            return AcceptResult.failure(AcceptStatus.NOT_AUTHENTICATED)
        if not token or not token.strip():
            return AcceptResult.failure(AcceptStatus.INVALID)

        try:
            budget = self.limiter.check_and_consume(
                f"accept_invite:user:{caller.user_id}",
                rate_limit_config.accept_user_policy(),
            )
            if not budget.allowed:
                return AcceptResult.failure(AcceptStatus.RATE_LIMITED)

            candidate = token_codec.normalize(token, self.settings.token_length)
            if candidate is None:
                return AcceptResult.failure(AcceptStatus.INVALID)

            return self._accept_locked(caller, candidate, self._clock())

        except Exception:
            self.session.rollback()
            logger.exception(
                "Invite acceptance failed",
                extra={"tenant_id": caller.user_id, "correlation_id": self.correlation_id},
            )
            return AcceptResult.failure(AcceptStatus.ERROR)

    def _accept_locked(self, caller: Caller, candidate: str, now: datetime) -> AcceptResult:
        invite = self.invites.find_by_token(
            candidate,
            now,
            acceptor_id=caller.user_id,
            include_terminal=self.settings.reveal_authenticated_reasons,
            lock=True,
        )
        if invite is None:
            return self._reject(AcceptStatus.INVALID)

        # Expiry wins over acceptance: an old accepted token is not a credential
        if ensure_utc(invite.expires_at) <= now:
            return self._reject(AcceptStatus.EXPIRED)

        status = invite.status_at(now)
        if status == InviteStatus.ACCEPTED:
            if invite.accepted_by != caller.user_id:
                return self._reject(AcceptStatus.INVALID)
            return self._replay_acceptance(caller, invite, now)
        if status == InviteStatus.REVOKED:
            return self._reject(AcceptStatus.REVOKED)

        prop = invite.property
        if prop is None:
            return self._reject(AcceptStatus.INVALID)

        existing = self.links.get(caller.user_id, prop.id, lock=True)
        if existing is not None and existing.is_active:
            # Recovery path for a prior attempt that linked but did not finish
            self._assign_tenant_role(caller, prop.id)
            self.session.commit()
            return AcceptResult.linked(AcceptStatus.ALREADY_LINKED, prop)

        deactivated = self.links.deactivate_others(caller.user_id, prop.id, now)
        outcome = self.links.activate(caller.user_id, prop.id, now)

        if not self.invites.mark_accepted(invite.id, caller.user_id, now):
            invite_id, linked = invite.id, AcceptResult.linked(AcceptStatus.ALREADY_LINKED, prop)
            self.session.rollback()
            current = self.invites.get(invite_id)
            accepted_by = current.accepted_by if current is not None else None
            self.session.rollback()
            if accepted_by == caller.user_id:
                return linked
            return AcceptResult.failure(AcceptStatus.INVALID)

        self._assign_tenant_role(caller, prop.id)
        self._audit_acceptance(caller, invite, prop, deactivated)
        self.session.commit()

        logger.info(
            "Invite accepted",
            extra={
                "invite_id": invite.id,
                "property_id": prop.id,
                "tenant_id": caller.user_id,
                "deactivated_links": len(deactivated),
                "correlation_id": self.correlation_id,
            },
        )

        if not outcome.created and not outcome.reactivated:
            return AcceptResult.linked(AcceptStatus.ALREADY_LINKED, prop)
        return AcceptResult.linked(AcceptStatus.OK, prop)

    def _replay_acceptance(self, caller: Caller, invite: Invite, now: datetime) -> AcceptResult:
        """
        Same caller presenting a token they already accepted.

        The invite's property becomes the caller's home again if the link
        went missing or the caller has since moved to another property.
        """
        prop = invite.property
        if prop is None:
            return self._reject(AcceptStatus.INVALID)

        link = self.links.get(caller.user_id, prop.id, lock=True)
        if link is None or not link.is_active:
            deactivated = self.links.deactivate_others(caller.user_id, prop.id, now)
            self.links.activate(caller.user_id, prop.id, now)
            for property_id in deactivated:
                self._audit_link_deactivated(caller, property_id, reason="invite_replay")
            self._audit_link_activated(caller, prop.id, source="invite_replay")

        self._assign_tenant_role(caller, prop.id)
        self.session.commit()
        return AcceptResult.linked(AcceptStatus.ALREADY_LINKED, prop)

    def _reject(self, status: AcceptStatus) -> AcceptResult:
        # Releases the row lock
        self.session.rollback()
        if status in (AcceptStatus.EXPIRED, AcceptStatus.REVOKED) and not self.settings.reveal_authenticated_reasons:
            status = AcceptStatus.INVALID
        return AcceptResult.failure(status)

    def _assign_tenant_role(self, caller: Caller, property_id: str) -> RoleAssignment:
        assignment = ensure_role(self.session, caller.user_id, UserRole.TENANT)
        if assignment.assigned:
            write_audit_log_sync(self.session, AuditEvent(
                action=AuditAction.ROLE_ASSIGNED,
                actor_id=caller.user_id,
                property_id=property_id,
                resource_type="profile",
                resource_id=caller.user_id,
                metadata={"role": UserRole.TENANT.value},
                correlation_id=self.correlation_id,
            ))
        return assignment

    def _audit_acceptance(self, caller: Caller, invite: Invite, prop: Property, deactivated: List[str]) -> None:
        for property_id in deactivated:
            self._audit_link_deactivated(caller, property_id, reason="accepted_other_invite")
        self._audit_link_activated(caller, prop.id, source="invite")

        write_audit_log_sync(self.session, AuditEvent(
            action=AuditAction.INVITE_ACCEPTED,
            actor_id=caller.user_id,
            property_id=prop.id,
            resource_type="invite",
            resource_id=invite.id,
            metadata={"created_by": invite.created_by},
            correlation_id=self.correlation_id,
        ))

    def _audit_link_activated(self, caller: Caller, property_id: str, source: str) -> None:
        write_audit_log_sync(self.session, AuditEvent(
            action=AuditAction.LINK_ACTIVATED,
            actor_id=caller.user_id,
            property_id=property_id,
            resource_type="tenant_property_link",
            resource_id=f"{caller.user_id}:{property_id}",
            metadata={"source": source},
            correlation_id=self.correlation_id,
        ))

    def _audit_link_deactivated(self, caller: Caller, property_id: str, reason: str) -> None:
        write_audit_log_sync(self.session, AuditEvent(
            action=AuditAction.LINK_DEACTIVATED,
            actor_id=caller.user_id,
            property_id=property_id,
            resource_type="tenant_property_link",
            resource_id=f"{caller.user_id}:{property_id}",
            metadata={"reason": reason},
            correlation_id=self.correlation_id,
        ))

    # =========================================================================
    # Property join codes
    # =========================================================================

    def issue_property_code(self, caller: Optional[Caller], property_id: str) -> PropertyJoinCode:
        """
        Give a property a fresh join code, replacing any previous one.

        Raises:
            AuthenticationError: No caller
            NotAuthorizedError: Property missing or not owned by the caller
            ServiceUnavailableError: No free code after several attempts
        """
        if caller is None:
            raise AuthenticationError()

        now = self._clock()
        try:
            prop = self.session.query(Property).filter(Property.id == property_id).with_for_update().first()
            if prop is None or prop.landlord_id != caller.user_id:
                raise NotAuthorizedError("Property not found or access denied")

            code = self._assign_fresh_property_code(prop, now + self.settings.property_code_ttl)

            write_audit_log_sync(self.session, AuditEvent(
                action=AuditAction.PROPERTY_CODE_ISSUED,
                actor_id=caller.user_id,
                property_id=prop.id,
                resource_type="property",
                resource_id=prop.id,
                metadata={"expires_at": prop.code_expires_at.isoformat()},
                correlation_id=self.correlation_id,
            ))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "Property code issued",
            extra={"property_id": prop.id, "correlation_id": self.correlation_id},
        )
        return PropertyJoinCode(code=code, property_id=prop.id, expires_at=prop.code_expires_at)

    def _assign_fresh_property_code(self, prop: Property, expires_at: datetime) -> str:
        for attempt in range(1, MAX_TOKEN_ATTEMPTS + 1):
            code = token_codec.generate_property_code()
            try:
                with self.session.begin_nested():
                    prop.property_code = code
                    prop.code_expires_at = expires_at
                return code
            except IntegrityError:
                logger.warning(
                    "Property code collision, regenerating",
                    extra={"attempt": attempt, "property_id": prop.id},
                )
        raise ServiceUnavailableError("Could not allocate a property code")

    def link_by_property_code(self, caller: Optional[Caller], code: Optional[str]) -> AcceptResult:
        """
        Link the caller to the property behind a join code.

        Same outcomes and single-active-link rule as accept_invite; a code
        is reusable until it expires or is replaced. Never raises.
        """
        if caller is None:
            return AcceptResult.failure(AcceptStatus.NOT_AUTHENTICATED)

        try:
            budget = self.limiter.check_and_consume(
                f"link_property_code:user:{caller.user_id}",
                rate_limit_config.link_code_user_policy(),
            )
            if not budget.allowed:
                return AcceptResult.failure(AcceptStatus.RATE_LIMITED)

            candidate = token_codec.normalize_property_code(code)
            if candidate is None:
                return AcceptResult.failure(AcceptStatus.INVALID)

            return self._link_by_code(caller, candidate, self._clock())

        except Exception:
            self.session.rollback()
            logger.exception(
                "Property code link failed",
                extra={"tenant_id": caller.user_id, "correlation_id": self.correlation_id},
            )
            return AcceptResult.failure(AcceptStatus.ERROR)

    def _link_by_code(self, caller: Caller, code: str, now: datetime) -> AcceptResult:
        prop = self.session.query(Property).filter(Property.property_code == code).first()
        if prop is None or not prop.allow_tenant_signup:
            return self._reject(AcceptStatus.INVALID)
        if prop.code_expires_at is not None and ensure_utc(prop.code_expires_at) <= now:
            return self._reject(AcceptStatus.EXPIRED)

        active = self.links.get_active(caller.user_id)
        if active is not None and active.property_id == prop.id:
            self._assign_tenant_role(caller, prop.id)
            self.session.commit()
            return AcceptResult.linked(AcceptStatus.ALREADY_LINKED, prop)

        deactivated = self.links.deactivate_others(caller.user_id, prop.id, now)
        self.links.activate(caller.user_id, prop.id, now)
        for property_id in deactivated:
            self._audit_link_deactivated(caller, property_id, reason="linked_by_property_code")
        self._audit_link_activated(caller, prop.id, source="property_code")
        self._assign_tenant_role(caller, prop.id)
        self.session.commit()

        logger.info(
            "Tenant linked by property code",
            extra={
                "property_id": prop.id,
                "tenant_id": caller.user_id,
                "deactivated_links": len(deactivated),
                "correlation_id": self.correlation_id,
            },
        )
        return AcceptResult.linked(AcceptStatus.OK, prop)

    # =========================================================================
    # Revoke / list
    # =========================================================================

    def revoke_invite(self, caller: Optional[Caller], invite_id: str) -> InviteSummary:
        """
        Revoke a pending invite. Only its creator may revoke it.

        Raises:
            AuthenticationError, NotFoundError, NotAuthorizedError,
            ConflictError (invite is no longer pending)
        """
        if caller is None:
            raise AuthenticationError()

        now = self._clock()
        try:
            invite = self.invites.get(invite_id, lock=True)
            if invite is None or invite.deleted_at is not None:
                raise NotFoundError("Invite", invite_id)
            if invite.created_by != caller.user_id:
                raise NotAuthorizedError("Only the invite creator can revoke it")

            status = invite.status_at(now)
            if status != InviteStatus.PENDING or not self.invites.mark_revoked(invite.id, caller.user_id, now):
                raise ConflictError(
                    f"Invite is {status.value} and cannot be revoked",
                    details={"status": status.value},
                )

            write_audit_log_sync(self.session, AuditEvent(
                action=AuditAction.INVITE_REVOKED,
                actor_id=caller.user_id,
                property_id=invite.property_id,
                resource_type="invite",
                resource_id=invite.id,
                correlation_id=self.correlation_id,
            ))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "Invite revoked",
            extra={"invite_id": invite.id, "property_id": invite.property_id, "correlation_id": self.correlation_id},
        )
        return InviteSummary.from_invite(invite, now)

    def list_invites(
        self,
        caller: Optional[Caller],
        property_id: str,
        include_inactive: bool = False,
    ) -> List[InviteSummary]:
        """List a property's invites for its owner."""
        if caller is None:
            raise AuthenticationError()

        prop = self.session.query(Property).filter(Property.id == property_id).first()
        if prop is None or prop.landlord_id != caller.user_id:
            raise NotAuthorizedError("Property not found or access denied")

        now = self._clock()
        invites = self.invites.list_for_property(property_id, now, include_inactive=include_inactive)
        return [InviteSummary.from_invite(invite, now) for invite in invites]

    # =========================================================================
    # Cleanup
    # =========================================================================

    def cleanup_expired_invites(self) -> int:
        """
        Soft-delete invites past their retention window.

        Safe alongside live traffic: only terminal rows are touched.

        Returns:
            Number of invites soft-deleted
        """
        now = self._clock()
        try:
            count = self.invites.soft_delete_expired(
                now,
                accepted_retention=self.settings.accepted_retention,
                expired_retention=self.settings.expired_retention,
            )
            log_system_audit_event_sync(
                self.session,
                AuditAction.INVITE_CLEANUP_COMPLETED,
                resource_type="invite",
                metadata={"soft_deleted": count},
                correlation_id=self.correlation_id,
                source="worker",
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("Invite cleanup completed", extra={"soft_deleted": count, "correlation_id": self.correlation_id})
        return count

    def record_cleanup_failure(self, error: Exception) -> None:
        """Audit a failed cleanup run in its own unit of work."""
        log_system_audit_event_sync(
            self.session,
            AuditAction.INVITE_CLEANUP_FAILED,
            resource_type="invite",
            metadata={"error_type": type(error).__name__},
            correlation_id=self.correlation_id,
            source="worker",
            outcome=AuditOutcome.FAILURE,
            error_code="CLEANUP_FAILED",
        )
        self.session.commit()
