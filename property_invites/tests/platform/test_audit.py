"""
Tests for audit logging.

Audit writes are best-effort: a failure must never break the operation
being audited, and PII must never reach the table.
"""

from unittest.mock import MagicMock

from property_invites.platform.audit import (
    AuditAction,
    AuditEvent,
    AuditLog,
    AuditOutcome,
    PIIRedactor,
    extract_client_ip,
    log_system_audit_event_sync,
    write_audit_log_sync,
)


class TestPIIRedactor:
    """Test metadata redaction."""

    def test_redacts_credentials(self):
        result = PIIRedactor.redact({"token": "ABCDEF123456", "token_hash": "ff", "wifi_password": "hunter2"})
        assert set(result.values()) == {"[REDACTED]"}

    def test_keeps_email_domain(self):
        assert PIIRedactor.redact({"intended_email": "tenant@example.com"}) == {"intended_email": "***@example.com"}

    def test_recurses_into_nested_structures(self):
        result = PIIRedactor.redact({"outer": {"password": "x"}, "items": [{"token": "y"}, "plain"]})
        assert result == {"outer": {"password": "[REDACTED]"}, "items": [{"token": "[REDACTED]"}, "plain"]}

    def test_keys_are_case_insensitive(self):
        assert PIIRedactor.redact({"Email": "a@b.co"}) == {"Email": "***@b.co"}

    def test_leaves_other_fields(self):
        assert PIIRedactor.redact({"delivery_method": "code"}) == {"delivery_method": "code"}


class TestWriteAuditLog:
    """Test persistence of audit events."""

    def test_persists_on_commit(self, db_session):
        write_audit_log_sync(db_session, AuditEvent(
            action=AuditAction.INVITE_CREATED,
            actor_id="landlord-1",
            property_id="prop-1",
            metadata={"token": "ABCDEF123456"},
            correlation_id="corr-1",
        ))
        db_session.commit()

        row = db_session.query(AuditLog).one()
        assert row.action == "invite.created"
        assert row.event_metadata == {"token": "[REDACTED]"}
        assert row.outcome == "success"

    def test_failure_is_not_fatal(self, caplog):
        """A broken session falls back to the log and returns None."""
        session = MagicMock()
        session.begin_nested.side_effect = RuntimeError("db unavailable")

        result = write_audit_log_sync(session, AuditEvent(action=AuditAction.INVITE_REVOKED, actor_id="landlord-1"))

        assert result is None
        assert "Audit log fallback" in caplog.text

    def test_system_event_has_no_actor(self, db_session):
        correlation_id = log_system_audit_event_sync(
            db_session,
            AuditAction.INVITE_CLEANUP_FAILED,
            source="worker",
            outcome=AuditOutcome.FAILURE,
        )
        db_session.commit()

        row = db_session.query(AuditLog).one()
        assert row.actor_id is None
        assert row.source == "worker"
        assert row.outcome == "failure"
        assert row.correlation_id == correlation_id


class TestExtractClientIp:

    def test_forwarded_for(self):
        request = MagicMock()
        request.headers = {"X-Forwarded-For": "198.51.100.4, 10.0.0.1"}
        assert extract_client_ip(request) == "198.51.100.4"

    def test_no_client(self):
        request = MagicMock()
        request.headers = {}
        request.client = None
        assert extract_client_ip(request) is None
