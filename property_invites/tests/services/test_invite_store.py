"""
Tests for InviteStore and the token lookup strategies.

Both strategies are run through the same store interface.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from property_invites.models.invite import DeliveryMethod, Invite, InviteStatus
from property_invites.services import token_codec
from property_invites.services.invite_store import (
    ActiveScanLookup,
    FingerprintLookup,
    InviteStore,
)
from property_invites.tests.conftest import TEST_PEPPER


@pytest.fixture(params=["fingerprint", "scan"])
def store(request, db_session):
    lookup = FingerprintLookup(TEST_PEPPER) if request.param == "fingerprint" else ActiveScanLookup()
    return InviteStore(db_session, lookup)


class TestTokenLookup:
    """Tests for find_active_by_token / find_by_token."""

    def test_finds_pending_invite(self, store, make_property, make_invite, clock):
        invite, token = make_invite(make_property())
        found = store.find_active_by_token(token, clock())
        assert found is not None
        assert found.id == invite.id

    def test_unknown_token_returns_none(self, store, make_property, make_invite, clock):
        make_invite(make_property())
        assert store.find_active_by_token("ZZZZZZZZZZZZ", clock()) is None

    def test_expired_invite_is_not_active(self, store, make_property, make_invite, clock):
        _, token = make_invite(make_property(), created_at=clock() - timedelta(hours=49))
        assert store.find_active_by_token(token, clock()) is None

    def test_accepted_revoked_and_deleted_are_not_active(self, store, make_property, make_invite, clock):
        prop = make_property()
        now = clock()
        _, accepted = make_invite(prop, accepted_at=now, accepted_by="tenant-x")
        _, revoked = make_invite(prop, revoked_at=now, revoked_by=prop.landlord_id)
        _, deleted = make_invite(prop, deleted_at=now)
        for token in (accepted, revoked, deleted):
            assert store.find_active_by_token(token, now) is None

    def test_find_by_token_sees_own_acceptance_only(self, store, make_property, make_invite, clock):
        prop = make_property()
        now = clock()
        accepted_invite, accepted = make_invite(prop, accepted_at=now, accepted_by="tenant-x")
        _, deleted = make_invite(prop, deleted_at=now)
        assert store.find_by_token(accepted, now, acceptor_id="tenant-x").id == accepted_invite.id
        assert store.find_by_token(accepted, now, acceptor_id="tenant-y") is None
        assert store.find_by_token(deleted, now, acceptor_id="tenant-x") is None

    def test_find_by_token_skips_expired_and_revoked(self, store, make_property, make_invite, clock):
        prop = make_property()
        now = clock()
        _, expired_replay = make_invite(
            prop,
            created_at=now - timedelta(hours=72),
            accepted_at=now - timedelta(hours=70),
            accepted_by="tenant-x",
        )
        _, revoked = make_invite(prop, revoked_at=now, revoked_by=prop.landlord_id)

        assert store.find_by_token(expired_replay, now, acceptor_id="tenant-x") is None
        assert store.find_by_token(revoked, now, acceptor_id="tenant-x") is None

    def test_include_terminal_sees_expired_and_revoked(self, store, make_property, make_invite, clock):
        prop = make_property()
        now = clock()
        expired_invite, expired = make_invite(prop, created_at=now - timedelta(hours=49))
        revoked_invite, revoked = make_invite(prop, revoked_at=now, revoked_by=prop.landlord_id)

        assert store.find_by_token(expired, now, include_terminal=True).id == expired_invite.id
        assert store.find_by_token(revoked, now, include_terminal=True).id == revoked_invite.id

    def test_lock_returns_same_row(self, store, make_property, make_invite, clock):
        invite, token = make_invite(make_property())
        assert store.find_by_token(token, clock(), lock=True).id == invite.id

    def test_normalized_user_input_matches(self, store, make_property, make_invite, clock):
        _, token = make_invite(make_property())
        typed = f"  {token.lower()} "
        assert store.find_active_by_token(token_codec.normalize(typed), clock()) is not None


class TestFingerprintLookup:
    """Fingerprint-specific behavior."""

    def test_fingerprint_hit_without_hash_match_is_rejected(self, db_session, make_property, make_invite, clock):
        invite, token = make_invite(make_property())
        invite.token_hash = "0" * 64
        db_session.commit()

        store = InviteStore(db_session, FingerprintLookup(TEST_PEPPER))
        assert store.find_active_by_token(token, clock()) is None

    def test_wrong_pepper_finds_nothing(self, db_session, make_property, make_invite, clock):
        _, token = make_invite(make_property())
        store = InviteStore(db_session, FingerprintLookup("rotated-pepper"))
        assert store.find_active_by_token(token, clock()) is None


class TestActiveScanLookup:
    """Scan-specific behavior."""

    def test_hashes_every_candidate_row(self, db_session, make_property, make_invite, clock):
        prop = make_property()
        _, token = make_invite(prop)
        make_invite(prop)
        make_invite(prop)

        store = InviteStore(db_session, ActiveScanLookup())
        with patch("property_invites.services.invite_store.token_codec.verify", wraps=token_codec.verify) as verify:
            assert store.find_active_by_token(token, clock()) is not None
        assert verify.call_count == 3

    def test_accept_lookup_skips_other_tenants_history(self, db_session, make_property, make_invite, clock):
        prop = make_property()
        _, token = make_invite(prop)
        make_invite(prop, accepted_at=clock(), accepted_by="tenant-x")
        make_invite(prop, accepted_at=clock(), accepted_by="tenant-y")
        make_invite(prop, created_at=clock() - timedelta(days=3))
        make_invite(prop, revoked_at=clock(), revoked_by=prop.landlord_id)

        store = InviteStore(db_session, ActiveScanLookup())
        with patch("property_invites.services.invite_store.token_codec.verify", wraps=token_codec.verify) as verify:
            assert store.find_by_token(token, clock(), acceptor_id="tenant-x") is not None
        assert verify.call_count == 2


class TestMarkAccepted:
    """Tests for the guarded acceptance write."""

    def test_first_acceptance_wins(self, store, db_session, make_property, make_invite, clock):
        invite, _ = make_invite(make_property())
        now = clock()

        assert store.mark_accepted(invite.id, "tenant-a", now) is True
        assert store.mark_accepted(invite.id, "tenant-b", now) is False
        db_session.commit()

        db_session.expire_all()
        reloaded = store.get(invite.id)
        assert reloaded.accepted_by == "tenant-a"
        assert reloaded.status_at(now) == InviteStatus.ACCEPTED

    def test_revoked_invite_cannot_be_accepted(self, store, make_property, make_invite, clock):
        invite, _ = make_invite(make_property(), revoked_at=clock(), revoked_by="landlord-1")
        assert store.mark_accepted(invite.id, "tenant-a", clock()) is False


class TestMarkRevoked:

    def test_revokes_pending_once(self, store, make_property, make_invite, clock):
        invite, _ = make_invite(make_property())
        assert store.mark_revoked(invite.id, "landlord-1", clock()) is True
        assert store.mark_revoked(invite.id, "landlord-1", clock()) is False

    def test_accepted_invite_is_not_revoked(self, store, make_property, make_invite, clock):
        invite, _ = make_invite(make_property(), accepted_at=clock(), accepted_by="tenant-a")
        assert store.mark_revoked(invite.id, "landlord-1", clock()) is False


class TestValidationAttempts:

    def test_increments_counter_and_timestamp(self, store, db_session, make_property, make_invite, clock):
        invite, _ = make_invite(make_property())
        store.record_validation_attempt(invite.id, clock())
        store.record_validation_attempt(invite.id, clock())
        db_session.commit()

        db_session.expire_all()
        reloaded = store.get(invite.id)
        assert reloaded.validation_attempts == 2
        assert reloaded.last_validation_attempt == clock()


class TestSoftDeleteExpired:
    """Retention windows: accepted 30 days, never-accepted 7 days past expiry."""

    def test_retention_windows(self, store, db_session, make_property, make_invite, clock):
        prop = make_property()
        now = clock()

        old_accepted, _ = make_invite(prop, accepted_at=now - timedelta(days=31), accepted_by="t1")
        recent_accepted, _ = make_invite(prop, accepted_at=now - timedelta(days=29), accepted_by="t2")
        long_expired, _ = make_invite(prop, created_at=now - timedelta(days=10))
        recently_expired, _ = make_invite(prop, created_at=now - timedelta(days=5))
        old_revoked, _ = make_invite(
            prop,
            created_at=now - timedelta(days=12),
            revoked_at=now - timedelta(days=11),
            revoked_by=prop.landlord_id,
        )
        pending, _ = make_invite(prop)

        assert store.count_past_retention(now, timedelta(days=30), timedelta(days=7)) == 3
        deleted = store.soft_delete_expired(now, timedelta(days=30), timedelta(days=7))
        db_session.commit()
        assert deleted == 3

        db_session.expire_all()
        status = {i.id: i.status_at(now) for i in db_session.query(Invite).all()}
        assert status[old_accepted.id] == InviteStatus.DELETED
        assert status[long_expired.id] == InviteStatus.DELETED
        assert status[old_revoked.id] == InviteStatus.DELETED
        assert status[recent_accepted.id] == InviteStatus.ACCEPTED
        assert status[recently_expired.id] == InviteStatus.EXPIRED
        assert status[pending.id] == InviteStatus.PENDING

    def test_is_idempotent(self, store, db_session, make_property, make_invite, clock):
        make_invite(make_property(), created_at=clock() - timedelta(days=10))
        assert store.soft_delete_expired(clock(), timedelta(days=30), timedelta(days=7)) == 1
        db_session.commit()
        assert store.soft_delete_expired(clock(), timedelta(days=30), timedelta(days=7)) == 0


class TestListForProperty:

    def test_defaults_to_pending_newest_first(self, store, make_property, make_invite, clock):
        prop = make_property()
        older, _ = make_invite(prop, created_at=clock() - timedelta(hours=2))
        newer, _ = make_invite(prop, created_at=clock() - timedelta(hours=1))
        make_invite(prop, accepted_at=clock(), accepted_by="tenant-a")

        listed = store.list_for_property(prop.id, clock())
        assert [i.id for i in listed] == [newer.id, older.id]

    def test_include_inactive_still_hides_deleted(self, store, make_property, make_invite, clock):
        prop = make_property()
        make_invite(prop)
        make_invite(prop, accepted_at=clock(), accepted_by="tenant-a")
        make_invite(prop, deleted_at=clock())

        assert len(store.list_for_property(prop.id, clock(), include_inactive=True)) == 2


class TestInviteModel:
    """Constraints and derived status on the Invite row."""

    def test_status_precedence(self, make_property, make_invite, clock):
        now = clock()
        invite, _ = make_invite(make_property())
        assert invite.status_at(now) == InviteStatus.PENDING
        assert invite.status_at(now + timedelta(hours=48)) == InviteStatus.EXPIRED

        invite.revoked_at = now
        assert invite.status_at(now) == InviteStatus.REVOKED
        invite.deleted_at = now
        assert invite.status_at(now) == InviteStatus.DELETED

    def test_acceptance_pair_constraint(self, db_session, make_property, make_invite, clock):
        invite, _ = make_invite(make_property())
        invite.accepted_at = clock()
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_email_delivery_requires_email(self, db_session, make_property, clock):
        prop = make_property()
        generated = token_codec.generate()
        invite = Invite.build(
            property_id=prop.id,
            created_by=prop.landlord_id,
            token_hash=generated.token_hash,
            token_salt=generated.salt,
            token_lookup=token_codec.fingerprint(generated.plaintext, TEST_PEPPER),
            delivery_method=DeliveryMethod.EMAIL,
            ttl=timedelta(hours=48),
            now=clock(),
        )
        db_session.add(invite)
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()
