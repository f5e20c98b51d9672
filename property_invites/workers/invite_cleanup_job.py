"""
Invite cleanup job - cron job for invite retention and limiter housekeeping.

Runs daily:
- Soft-deletes accepted invites older than INVITE_ACCEPTED_RETENTION_DAYS (30)
- Soft-deletes never-accepted invites expired more than
  INVITE_EXPIRED_RETENTION_DAYS (7) ago
- Deletes rate-limit buckets idle longer than RATE_LIMIT_STALE_HOURS (24)

CONSTRAINTS:
- Only terminal invites are touched, so it is safe alongside live traffic
- Respects INVITE_CLEANUP_DRY_RUN for safe rollout
- Runs are audit-logged

Run as a daily cron job:
    python -m property_invites.workers.invite_cleanup_job
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from property_invites.config.invites import InviteSettings, get_invite_settings
from property_invites.database.session import session_scope
from property_invites.middleware.rate_limit import RateLimiter, purge_stale_buckets
from property_invites.models.base import utc_now
from property_invites.services.invite_notifier import NullInviteNotifier
from property_invites.services.invite_service import InviteService

logger = logging.getLogger(__name__)


def _dry_run_from_env() -> bool:
    return os.getenv("INVITE_CLEANUP_DRY_RUN", "false").lower() == "true"


@dataclass
class CleanupStats:
    """Statistics from an invite cleanup run."""

    started_at: datetime = field(default_factory=utc_now)
    invites_eligible: int = 0
    invites_deleted: int = 0
    buckets_purged: int = 0
    dry_run: bool = False
    errors: list = field(default_factory=list)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        duration = None
        if self.completed_at:
            duration = (self.completed_at - self.started_at).total_seconds()

        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "invites_eligible": self.invites_eligible,
            "invites_deleted": self.invites_deleted,
            "buckets_purged": self.buckets_purged,
            "dry_run": self.dry_run,
            "error_count": len(self.errors),
            "duration_seconds": duration,
        }


def run_cleanup(
    db_session: Session,
    dry_run: bool = False,
    settings: Optional[InviteSettings] = None,
    now: Optional[datetime] = None,
) -> CleanupStats:
    """
    Execute invite cleanup.

    Args:
        db_session: Database session
        dry_run: If True, only count without deleting
        settings: Retention settings; loaded from the environment when omitted
        now: Reference time (defaults to the current UTC time)

    Returns:
        CleanupStats with results
    """
    settings = settings or get_invite_settings()
    now = now or utc_now()
    stats = CleanupStats(started_at=now, dry_run=dry_run)

    service = InviteService(
        db_session,
        limiter=RateLimiter(None, enabled=False),
        settings=settings,
        notifier=NullInviteNotifier(),
        clock=lambda: now,
    )

    try:
        stats.invites_eligible = service.invites.count_past_retention(
            now, settings.accepted_retention, settings.expired_retention
        )
        logger.info(
            "Invites eligible for cleanup",
            extra={"count": stats.invites_eligible, "dry_run": dry_run},
        )

        if dry_run:
            logger.info("[DRY RUN] Would soft-delete %d invites", stats.invites_eligible)
            db_session.rollback()
            stats.completed_at = utc_now()
            return stats

        stats.invites_deleted = service.cleanup_expired_invites()

        stats.buckets_purged = purge_stale_buckets(db_session, now)
        db_session.commit()

        stats.completed_at = utc_now()
        logger.info("Invite cleanup completed", extra=stats.to_dict())
        return stats

    except Exception as exc:
        db_session.rollback()
        error_msg = f"Invite cleanup failed: {exc}"
        stats.errors.append(error_msg)
        stats.completed_at = utc_now()
        logger.error(error_msg, exc_info=True)
        try:
            service.record_cleanup_failure(exc)
        except Exception as audit_exc:
            logger.error(
                "Failed to log cleanup audit event",
                extra={"error": str(audit_exc)},
            )
        raise


def main():
    """Entry point for the invite cleanup job."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    dry_run = _dry_run_from_env()
    logger.info("Invite Cleanup Job starting", extra={"dry_run": dry_run})

    try:
        with session_scope() as session:
            stats = run_cleanup(session, dry_run=dry_run)
        logger.info("Invite Cleanup Job stats", extra=stats.to_dict())
    except Exception as exc:
        logger.error(
            "Invite Cleanup Job failed",
            extra={"error": str(exc)},
            exc_info=True,
        )
        sys.exit(1)

    logger.info("Invite Cleanup Job finished")


if __name__ == "__main__":
    main()
