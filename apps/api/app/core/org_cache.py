"""Org shortcode cache.

Maps the ``org_shortcode`` path segment to the organization's ids. One
instance lives on ``app.state`` and reaches handlers through a dependency;
entries expire after ``ORG_CACHE_TTL_SECONDS`` and can be refreshed or
invalidated explicitly when an org changes.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import NotFoundError
from app.db.models import Organization


@dataclass(frozen=True)
class CachedOrg:
    id: int
    public_id: str
    shortcode: str


@dataclass(frozen=True)
class OrgContext:
    """The organization and acting member a request runs as."""
    org_id: int
    org_public_id: str
    org_shortcode: str
    member_id: int
    member_public_id: str


class OrgShortcodeCache:
    def __init__(self, *, ttl_seconds: int | None = None):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.ORG_CACHE_TTL_SECONDS
        self._entries: dict[str, tuple[CachedOrg, float]] = {}
        self._lock = threading.Lock()

    def get(self, db: Session, shortcode: str) -> CachedOrg:
        """
        Return the org for a shortcode, loading it on a miss or expiry.

        Raises:
            NotFoundError: no org has this shortcode
        """
        with self._lock:
            hit = self._entries.get(shortcode)
        if hit and hit[1] > time.monotonic():
            return hit[0]
        return self.refresh(db, shortcode)

    def refresh(self, db: Session, shortcode: str) -> CachedOrg:
        """Reload one shortcode from the database."""
        row = db.execute(
            select(Organization.id, Organization.public_id, Organization.shortcode).where(
                Organization.shortcode == shortcode
            )
        ).first()
        if row is None:
            self.invalidate(shortcode)
            raise NotFoundError("Organization not found")
        org = CachedOrg(id=row.id, public_id=row.public_id, shortcode=row.shortcode)
        with self._lock:
            self._entries[shortcode] = (org, time.monotonic() + self.ttl_seconds)
        return org

    def invalidate(self, shortcode: str | None = None) -> None:
        """Drop one shortcode, or every entry when none is given."""
        with self._lock:
            if shortcode is None:
                self._entries.clear()
            else:
                self._entries.pop(shortcode, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
