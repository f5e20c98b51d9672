"""
SQLAlchemy engine and session management.

This module provides:
- Engine configuration from DATABASE_URL
- Session factory for dependency injection
- A context manager for workers and scripts

Usage:
    from property_invites.database.session import get_db_session

    @router.post("/api/invites")
    async def create(db_session=Depends(get_db_session)):
        ...
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

load_dotenv()

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_database_url() -> str:
    """Read DATABASE_URL, normalizing the legacy postgres:// scheme."""
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is required")
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def get_engine() -> Engine:
    """Create the engine lazily so the module imports without a database."""
    global _engine
    if _engine is None:
        _engine = create_engine(
            get_database_url(),
            pool_pre_ping=True,
            pool_recycle=1800,
            echo=os.getenv("SQL_ECHO", "false").lower() == "true",
        )
    return _engine


def get_session_factory() -> sessionmaker:
    """Return the module-level session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
    return _session_factory


def get_db_session() -> Generator[Session, None, None]:
    """
    FastAPI dependency that provides a database session.

    Services own their commit/rollback; this only guarantees the session
    is rolled back on error and always closed.
    """
    session = get_session_factory()()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Context manager for sessions outside of FastAPI routes.

    Usage:
        with session_scope() as session:
            InviteService(session).cleanup_expired_invites()
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
