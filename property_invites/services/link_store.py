"""
Persistence for tenant ↔ property links.

A tenant has at most one active link. Callers must deactivate the other
active links before activating a new one, inside the same transaction.
Links are never hard-deleted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from property_invites.models.tenant_property_link import LinkStatus, TenantPropertyLink

logger = logging.getLogger(__name__)


@dataclass
class LinkOutcome:
    """Result of an activate call."""
    link: TenantPropertyLink
    created: bool
    reactivated: bool


class LinkStore:
    """Link row access for one session. Never commits."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, tenant_id: str, property_id: str, lock: bool = False) -> Optional[TenantPropertyLink]:
        query = self.session.query(TenantPropertyLink).filter(
            TenantPropertyLink.tenant_id == tenant_id,
            TenantPropertyLink.property_id == property_id,
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    def get_active(self, tenant_id: str) -> Optional[TenantPropertyLink]:
        return self.session.query(TenantPropertyLink).filter(
            TenantPropertyLink.tenant_id == tenant_id,
            TenantPropertyLink.is_active.is_(True),
        ).first()

    def list_for_tenant(self, tenant_id: str) -> List[TenantPropertyLink]:
        return (
            self.session.query(TenantPropertyLink)
            .filter(TenantPropertyLink.tenant_id == tenant_id)
            .order_by(TenantPropertyLink.created_at.asc())
            .all()
        )

    def deactivate_others(self, tenant_id: str, keep_property_id: str, now: datetime) -> List[str]:
        """
        Deactivate every active link of the tenant except `keep_property_id`.

        Returns the property ids that were deactivated.
        """
        others = (
            self.session.query(TenantPropertyLink)
            .filter(
                TenantPropertyLink.tenant_id == tenant_id,
                TenantPropertyLink.property_id != keep_property_id,
                TenantPropertyLink.is_active.is_(True),
            )
            .with_for_update()
            .all()
        )
        for link in others:
            link.is_active = False
            link.updated_at = now
        if others:
            self.session.flush()
        return [link.property_id for link in others]

    def activate(self, tenant_id: str, property_id: str, now: datetime) -> LinkOutcome:
        """
        Create or reactivate the (tenant, property) link.

        `accepted_at` keeps its first value. A unique violation on insert
        means a concurrent writer created the row first; it is re-read and
        reported as not created.
        """
        existing = self.get(tenant_id, property_id, lock=True)
        if existing is not None:
            return self._reactivate(existing, now)

        link = TenantPropertyLink(
            tenant_id=tenant_id,
            property_id=property_id,
            is_active=True,
            invitation_status=LinkStatus.ACTIVE,
            accepted_at=now,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.session.begin_nested():
                self.session.add(link)
        except IntegrityError:
            logger.info(
                "Link insert raced with another writer",
                extra={"tenant_id": tenant_id, "property_id": property_id},
            )
            existing = self.get(tenant_id, property_id, lock=True)
            if existing is None:
                raise
            outcome = self._reactivate(existing, now)
            return LinkOutcome(link=outcome.link, created=False, reactivated=False)

        return LinkOutcome(link=link, created=True, reactivated=False)

    def _reactivate(self, link: TenantPropertyLink, now: datetime) -> LinkOutcome:
        was_active = bool(link.is_active)
        link.is_active = True
        link.invitation_status = LinkStatus.ACTIVE
        if link.accepted_at is None:
            link.accepted_at = now
        link.updated_at = now
        self.session.flush()
        return LinkOutcome(link=link, created=False, reactivated=not was_active)
