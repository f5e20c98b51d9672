"""
Shared fixtures for invite service tests.

Integration tests run against in-memory SQLite. pysqlite's own
transaction handling is disabled so SAVEPOINTs behave as they do on
Postgres. Row locks (FOR UPDATE) are ignored by SQLite.
"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import property_invites.models  # noqa: F401
from property_invites.config.invites import InviteSettings
from property_invites.db_base import Base
from property_invites.middleware.rate_limit import DatabaseBucketStore, RateLimiter
from property_invites.models.invite import DeliveryMethod, Invite
from property_invites.models.property import Profile, Property
from property_invites.platform.auth_context import Caller
from property_invites.services import token_codec
from property_invites.services.invite_notifier import InviteNotifier
from property_invites.services.invite_service import InviteService

TEST_PEPPER = "test-pepper"
BASE_TIME = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Service wiring
# =============================================================================

@pytest.fixture
def clock():
    return FrozenClock(BASE_TIME)


@pytest.fixture
def settings():
    return InviteSettings(token_pepper=TEST_PEPPER, app_base_url="https://app.test")


@pytest.fixture
def limiter(db_session, clock):
    return RateLimiter(DatabaseBucketStore(db_session), enabled=True, clock=clock)


@pytest.fixture
def notifier():
    return MagicMock(spec=InviteNotifier)


@pytest.fixture
def service(db_session, limiter, settings, notifier, clock):
    return InviteService(
        db_session,
        limiter=limiter,
        settings=settings,
        notifier=notifier,
        clock=clock,
        correlation_id="test-invite-corr",
    )


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_profile(db_session):
    def _make(user_id=None, role=None, display_name=None):
        profile = Profile(id=user_id or f"user-{uuid.uuid4().hex[:8]}", role=role, display_name=display_name)
        db_session.add(profile)
        db_session.commit()
        return profile
    return _make


@pytest.fixture
def make_property(db_session):
    def _make(landlord_id="landlord-1", name="Maple Court", **fields):
        prop = Property(
            id=str(uuid.uuid4()),
            landlord_id=landlord_id,
            name=name,
            address=fields.pop("address", "12 Maple St"),
            property_type=fields.pop("property_type", "apartment"),
            unit=fields.pop("unit", "4B"),
            wifi_network=fields.pop("wifi_network", "MapleNet"),
            wifi_password=fields.pop("wifi_password", "hunter2"),
            **fields,
        )
        db_session.add(prop)
        db_session.commit()
        return prop
    return _make


@pytest.fixture
def make_invite(db_session, settings, clock):
    """Insert an invite directly; returns (invite, plaintext token)."""

    def _make(prop, created_by=None, created_at=None, ttl=None, **fields):
        generated = token_codec.generate(settings.token_length)
        created_at = created_at or clock()
        invite = Invite.build(
            property_id=prop.id,
            created_by=created_by or prop.landlord_id,
            token_hash=generated.token_hash,
            token_salt=generated.salt,
            token_lookup=token_codec.fingerprint(generated.plaintext, settings.token_pepper),
            delivery_method=DeliveryMethod.CODE,
            ttl=ttl or settings.ttl,
            now=created_at,
        )
        for key, value in fields.items():
            setattr(invite, key, value)
        db_session.add(invite)
        db_session.commit()
        return invite, generated.plaintext

    return _make


@pytest.fixture
def landlord():
    return Caller(user_id="landlord-1", role="landlord")


@pytest.fixture
def tenant():
    return Caller(user_id="tenant-a")


@pytest.fixture
def other_tenant():
    return Caller(user_id="tenant-b")
