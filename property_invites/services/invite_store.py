"""
Persistence for invites.

Token lookup is pluggable:

- FingerprintLookup (default): the candidate's keyed HMAC fingerprint hits
  the unique `token_lookup` index, then the salted hash is verified. One
  indexed lookup regardless of how many invites are outstanding.
- ActiveScanLookup: re-hashes the candidate with every candidate row's
  salt. No server secret needed, but cost grows with the number of rows
  scanned, so it is bounded to the partial "active" index where possible.

Every mutating helper is a single conditional UPDATE so concurrent
callers can never overwrite an existing acceptance or revocation.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Query, Session

from property_invites.config.invites import (
    LOOKUP_STRATEGY_SCAN,
    InviteSettings,
)
from property_invites.models.invite import Invite
from property_invites.services import token_codec

logger = logging.getLogger(__name__)


# =============================================================================
# Lookup strategies
# =============================================================================

class LookupStrategy:
    """Resolves a normalized candidate token to at most one invite row."""

    name = "abstract"

    def find(self, query: Query, candidate: str, lock: bool = False) -> Optional[Invite]:
        raise NotImplementedError


class FingerprintLookup(LookupStrategy):
    """Indexed lookup on the HMAC fingerprint, then salted-hash verification."""

    name = "fingerprint"

    def __init__(self, pepper: str):
        self._pepper = pepper

    def find(self, query: Query, candidate: str, lock: bool = False) -> Optional[Invite]:
        query = query.filter(Invite.token_lookup == token_codec.fingerprint(candidate, self._pepper))
        if lock:
            query = query.with_for_update().populate_existing()
        invite = query.first()
        if invite is None:
            return None
        if not token_codec.verify(candidate, invite.token_hash, invite.token_salt):
            # Fingerprint matched but hash did not: pepper rotated or row tampered
            logger.warning("Invite fingerprint matched without hash match", extra={"invite_id": invite.id})
            return None
        return invite


class ActiveScanLookup(LookupStrategy):
    """Per-row re-hash over the rows selected by the query."""

    name = "scan"

    def find(self, query: Query, candidate: str, lock: bool = False) -> Optional[Invite]:
        match = None
        for invite in query.all():
            # No early exit: every row costs one hash regardless of outcome
            if token_codec.verify(candidate, invite.token_hash, invite.token_salt) and match is None:
                match = invite
        if match is None or not lock:
            return match
        return (
            query.session.query(Invite)
            .filter(Invite.id == match.id)
            .with_for_update()
            .populate_existing()
            .first()
        )


def build_lookup_strategy(settings: InviteSettings) -> LookupStrategy:
    if settings.lookup_strategy == LOOKUP_STRATEGY_SCAN:
        return ActiveScanLookup()
    return FingerprintLookup(settings.token_pepper)


# =============================================================================
# Store
# =============================================================================

class InviteStore:
    """Invite row access for one session. Never commits."""

    def __init__(self, session: Session, lookup: LookupStrategy):
        self.session = session
        self.lookup = lookup

    def insert(self, invite: Invite) -> Invite:
        self.session.add(invite)
        self.session.flush()
        return invite

    def get(self, invite_id: str, lock: bool = False) -> Optional[Invite]:
        query = self.session.query(Invite).filter(Invite.id == invite_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def find_active_by_token(
        self,
        candidate: str,
        now: datetime,
        lock: bool = False,
    ) -> Optional[Invite]:
        """Pending invites only: not deleted, accepted, revoked or expired."""
        query = self.session.query(Invite).filter(
            Invite.deleted_at.is_(None),
            Invite.accepted_at.is_(None),
            Invite.revoked_at.is_(None),
            Invite.expires_at > now,
        )
        return self.lookup.find(query, candidate, lock=lock)

    def find_by_token(
        self,
        candidate: str,
        now: datetime,
        acceptor_id: Optional[str] = None,
        include_terminal: bool = False,
        lock: bool = False,
    ) -> Optional[Invite]:
        """
        Token lookup for acceptance.

        By default only rows acceptance can act on are considered: pending
        invites plus unexpired invites already accepted by `acceptor_id`
        (replays). The scan strategy then touches the partial "active"
        index and the acceptor's own rows only.

        `include_terminal` widens the search to every non-deleted row so
        expired and revoked invites can be reported as such. With the scan
        strategy that costs one hash per non-deleted invite.
        """
        query = self.session.query(Invite).filter(Invite.deleted_at.is_(None))
        if not include_terminal:
            query = query.filter(
                Invite.expires_at > now,
                Invite.revoked_at.is_(None),
                or_(
                    Invite.accepted_at.is_(None),
                    Invite.accepted_by == acceptor_id,
                ),
            )
        return self.lookup.find(query, candidate, lock=lock)

    def mark_accepted(self, invite_id: str, acceptor_id: str, now: datetime) -> bool:
        """
        Record acceptance exactly once.

        Returns False when the row was already accepted (by anyone), revoked
        or deleted; an existing acceptance is never overwritten.
        """
        updated = (
            self.session.query(Invite)
            .filter(
                Invite.id == invite_id,
                Invite.accepted_at.is_(None),
                Invite.revoked_at.is_(None),
                Invite.deleted_at.is_(None),
            )
            .update(
                {Invite.accepted_at: now, Invite.accepted_by: acceptor_id},
                synchronize_session="fetch",
            )
        )
        return updated == 1

    def mark_revoked(self, invite_id: str, revoked_by: str, now: datetime) -> bool:
        updated = (
            self.session.query(Invite)
            .filter(
                Invite.id == invite_id,
                Invite.accepted_at.is_(None),
                Invite.revoked_at.is_(None),
                Invite.deleted_at.is_(None),
            )
            .update(
                {Invite.revoked_at: now, Invite.revoked_by: revoked_by},
                synchronize_session="fetch",
            )
        )
        return updated == 1

    def record_validation_attempt(self, invite_id: str, now: datetime) -> None:
        self.session.query(Invite).filter(Invite.id == invite_id).update(
            {
                Invite.validation_attempts: Invite.validation_attempts + 1,
                Invite.last_validation_attempt: now,
            },
            synchronize_session="fetch",
        )

    def _past_retention(
        self,
        now: datetime,
        accepted_retention: timedelta,
        expired_retention: timedelta,
    ) -> Query:
        # Accepted invites age from accepted_at; never-accepted ones
        # (revoked included) age from expires_at
        return self.session.query(Invite).filter(
            Invite.deleted_at.is_(None),
            or_(
                and_(
                    Invite.accepted_at.isnot(None),
                    Invite.accepted_at < now - accepted_retention,
                ),
                and_(
                    Invite.accepted_at.is_(None),
                    Invite.expires_at < now - expired_retention,
                ),
            ),
        )

    def count_past_retention(
        self,
        now: datetime,
        accepted_retention: timedelta,
        expired_retention: timedelta,
    ) -> int:
        return self._past_retention(now, accepted_retention, expired_retention).count()

    def soft_delete_expired(
        self,
        now: datetime,
        accepted_retention: timedelta,
        expired_retention: timedelta,
    ) -> int:
        """
        Soft-delete terminal invites past their retention window.

        Pending invites are never touched, so this is safe to run while
        acceptances are in flight.
        """
        return self._past_retention(now, accepted_retention, expired_retention).update(
            {Invite.deleted_at: now},
            synchronize_session=False,
        )

    def list_for_property(
        self,
        property_id: str,
        now: datetime,
        include_inactive: bool = False,
    ) -> List[Invite]:
        """Non-deleted invites for a property, newest first."""
        query = self.session.query(Invite).filter(
            Invite.property_id == property_id,
            Invite.deleted_at.is_(None),
        )
        if not include_inactive:
            query = query.filter(
                Invite.accepted_at.is_(None),
                Invite.revoked_at.is_(None),
                Invite.expires_at > now,
            )
        return query.order_by(Invite.created_at.desc()).all()
