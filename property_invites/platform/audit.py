"""
Audit logging for the invite service.

CRITICAL SECURITY REQUIREMENTS:
- Audit logs MUST be append-only (no UPDATE/DELETE)
- Invite creation, acceptance, revocation and link changes MUST write an event
- Plaintext tokens, hashes and salts MUST never reach the audit table
- PII fields MUST be redacted before persistence
- Failed logging attempts MUST fall back to secondary logger

Audit rows join the caller's unit of work: they are written inside a
SAVEPOINT and committed (or rolled back) together with the change they
describe.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, Optional

from fastapi import Request
from sqlalchemy import JSON, Column, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session

from property_invites.db_base import Base
from property_invites.models.base import UTCDateTime

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger("audit.fallback")


class AuditAction(str, Enum):
    """Enumeration of all auditable actions."""

    INVITE_CREATED = "invite.created"
    INVITE_ACCEPTED = "invite.accepted"
    INVITE_REVOKED = "invite.revoked"
    INVITE_CLEANUP_COMPLETED = "invite.cleanup_completed"
    INVITE_CLEANUP_FAILED = "invite.cleanup_failed"

    LINK_ACTIVATED = "link.activated"
    LINK_DEACTIVATED = "link.deactivated"

    PROPERTY_CODE_ISSUED = "property_code.issued"

    ROLE_ASSIGNED = "role.assigned"


class AuditOutcome(str, Enum):
    """Outcome of the audited action."""
    SUCCESS = "success"
    FAILURE = "failure"


class PIIRedactor:
    """
    Redacts PII and credentials from audit metadata before persistence.

    Redacted fields are replaced with "[REDACTED]" to maintain
    structure while removing sensitive data.
    """

    REDACTED_FIELDS: FrozenSet[str] = frozenset({
        "email",
        "intended_email",
        "phone",
        "phone_number",
        "token",
        "token_hash",
        "token_salt",
        "token_lookup",
        "property_code",
        "access_token",
        "password",
        "secret",
        "wifi_password",
    })

    REDACTION_MARKER = "[REDACTED]"

    @classmethod
    def redact(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Recursively redact sensitive values from a dictionary."""
        if not isinstance(data, dict):
            return data
        return cls._redact_dict(data)

    @classmethod
    def _redact_dict(cls, d: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in d.items():
            lower_key = key.lower()
            if lower_key in cls.REDACTED_FIELDS:
                result[key] = cls._redact_value(lower_key, value)
            elif isinstance(value, dict):
                result[key] = cls._redact_dict(value)
            elif isinstance(value, list):
                result[key] = cls._redact_list(value)
            else:
                result[key] = value
        return result

    @classmethod
    def _redact_value(cls, key: str, value: Any) -> str:
        """Redact a single value, keeping the domain of email addresses."""
        if value is None:
            return cls.REDACTION_MARKER
        if key in ("email", "intended_email") and isinstance(value, str) and "@" in value:
            return f"***@{value.split('@', 1)[1]}"
        return cls.REDACTION_MARKER

    @classmethod
    def _redact_list(cls, lst: list[Any]) -> list[Any]:
        result = []
        for item in lst:
            if isinstance(item, dict):
                result.append(cls._redact_dict(item))
            elif isinstance(item, list):
                result.append(cls._redact_list(item))
            else:
                result.append(item)
        return result


class AuditLog(Base):
    """
    Audit log database model.

    CRITICAL: This table is append-only. No UPDATE or DELETE operations are allowed.
    """
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    actor_id = Column(String(255), nullable=True, index=True)  # NULL for system events
    property_id = Column(String(36), nullable=True, index=True)
    action = Column(String(100), nullable=False, index=True)
    timestamp = Column(UTCDateTime(), nullable=False, default=lambda: datetime.now(timezone.utc))
    ip_address = Column(String(45), nullable=True)
    resource_type = Column(String(100), nullable=True)
    resource_id = Column(String(255), nullable=True, index=True)
    event_metadata = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    correlation_id = Column(String(36), nullable=False, index=True)
    source = Column(String(50), nullable=False, default="api")  # api, worker, system
    outcome = Column(String(20), nullable=False, default="success")
    error_code = Column(String(50), nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_property_timestamp", "property_id", "timestamp"),
        Index("ix_audit_logs_actor_action", "actor_id", "action"),
    )


@dataclass
class AuditEvent:
    """
    Audit event data structure.

    PII in metadata is automatically redacted before persistence.
    """
    action: AuditAction
    actor_id: Optional[str] = None
    property_id: Optional[str] = None
    ip_address: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "api"
    outcome: AuditOutcome = AuditOutcome.SUCCESS
    error_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for database insertion with PII redaction."""
        return {
            "actor_id": self.actor_id,
            "property_id": self.property_id,
            "action": self.action.value if isinstance(self.action, AuditAction) else self.action,
            "timestamp": self.timestamp,
            "ip_address": self.ip_address,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "event_metadata": PIIRedactor.redact(self.metadata),
            "correlation_id": self.correlation_id,
            "source": self.source,
            "outcome": self.outcome.value if isinstance(self.outcome, AuditOutcome) else self.outcome,
            "error_code": self.error_code,
        }


def extract_client_ip(request: Request) -> Optional[str]:
    """
    Extract client IP from request.

    Handles X-Forwarded-For for proxied requests.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else None


def write_audit_log_sync(
    db: Session,
    event: AuditEvent,
) -> Optional[AuditLog]:
    """
    Add an audit event to the current unit of work.

    The row is flushed inside a SAVEPOINT so a failing audit write never
    poisons the surrounding transaction. It is persisted when the caller
    commits. On failure, writes to the fallback logger and returns None.
    """
    audit_id = str(uuid.uuid4())
    try:
        audit_log = AuditLog(id=audit_id, **event.to_dict())
        with db.begin_nested():
            db.add(audit_log)

        logger.info(
            "Audit event recorded",
            extra={
                "audit_id": audit_id,
                "actor_id": event.actor_id,
                "property_id": event.property_id,
                "action": event.action.value if isinstance(event.action, AuditAction) else event.action,
                "correlation_id": event.correlation_id,
                "source": event.source,
            }
        )
        return audit_log

    except Exception as e:
        _write_fallback_log(event, audit_id, str(e))
        return None


def _write_fallback_log(event: AuditEvent, audit_id: str, error_reason: str) -> None:
    """Write audit event to fallback logger when the primary write fails."""
    fallback_entry = {
        "event_id": audit_id,
        "actor_id": event.actor_id,
        "property_id": event.property_id,
        "action": event.action.value if isinstance(event.action, AuditAction) else event.action,
        "timestamp": event.timestamp.isoformat(),
        "correlation_id": event.correlation_id,
        "source": event.source,
        "outcome": event.outcome.value if isinstance(event.outcome, AuditOutcome) else event.outcome,
        "resource_type": event.resource_type,
        "resource_id": event.resource_id,
        "metadata": PIIRedactor.redact(event.metadata),
        "fallback_reason": error_reason,
    }
    fallback_logger.error(
        "Audit log fallback",
        extra={"audit_entry": json.dumps(fallback_entry, default=str)},
    )


def log_system_audit_event_sync(
    db: Session,
    action: AuditAction,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
    correlation_id: Optional[str] = None,
    source: str = "system",
    outcome: AuditOutcome = AuditOutcome.SUCCESS,
    error_code: Optional[str] = None,
) -> str:
    """
    Log an audit event from a system context (no acting user).

    Returns the correlation_id for tracing.
    """
    correlation_id = correlation_id or str(uuid.uuid4())

    event = AuditEvent(
        action=action,
        actor_id=None,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata=metadata or {},
        correlation_id=correlation_id,
        source=source,
        outcome=outcome,
        error_code=error_code,
    )

    write_audit_log_sync(db, event)
    return correlation_id
