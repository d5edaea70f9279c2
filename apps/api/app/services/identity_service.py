"""Identity resolution for conversation participants.

Turns public ids and free-text addresses into internal identities. Resolving
an address may create the org-scoped Contact and the global reputation row,
so callers run it inside the same unit of work as the operation it serves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import InternalError, ValidationError
from app.db.enums import ContactScreenerStatus, ContactType, OrgMemberStatus
from app.db.models import Contact, ContactGlobalReputation, OrgMember, Team
from app.utils.normalization import split_email_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedOrgMember:
    id: int
    public_id: str
    default_email_identity_id: int | None
    personal_space_id: int | None


@dataclass(frozen=True)
class ResolvedTeam:
    id: int
    public_id: str
    default_email_identity_id: int | None
    default_space_id: int | None


@dataclass(frozen=True)
class ResolvedContact:
    id: int
    public_id: str
    email_address: str
    created: bool = False


@dataclass
class ResolvedIdentities:
    org_members: list[ResolvedOrgMember] = field(default_factory=list)
    teams: list[ResolvedTeam] = field(default_factory=list)
    contacts: list[ResolvedContact] = field(default_factory=list)
    # Contacts resolved from free-text addresses, keyed by the address as given
    email_contacts: dict[str, ResolvedContact] = field(default_factory=dict)

    def all_contacts(self) -> list[ResolvedContact]:
        """Explicit and address-derived contacts, without duplicates."""
        seen: dict[int, ResolvedContact] = {}
        for contact in [*self.contacts, *self.email_contacts.values()]:
            seen.setdefault(contact.id, contact)
        return list(seen.values())


def _unique(values: list[str] | None) -> list[str]:
    return list(dict.fromkeys(values or []))


# =============================================================================
# Public id resolution
# =============================================================================

def resolve_org_members(db: Session, *, org_id: int, public_ids: list[str]) -> list[ResolvedOrgMember]:
    """
    Resolve org member public ids within the org.

    Removed members do not resolve.

    Raises:
        ValidationError: any id is unknown in this org
    """
    wanted = _unique(public_ids)
    if not wanted:
        return []
    rows = db.execute(
        select(
            OrgMember.id,
            OrgMember.public_id,
            OrgMember.default_email_identity_id,
            OrgMember.personal_space_id,
        ).where(
            OrgMember.org_id == org_id,
            OrgMember.public_id.in_(wanted),
            OrgMember.status != OrgMemberStatus.REMOVED,
        )
    ).all()
    if len(rows) != len(wanted):
        raise ValidationError("One or more users is invalid")
    by_public_id = {row.public_id: row for row in rows}
    return [
        ResolvedOrgMember(
            id=by_public_id[pid].id,
            public_id=pid,
            default_email_identity_id=by_public_id[pid].default_email_identity_id,
            personal_space_id=by_public_id[pid].personal_space_id,
        )
        for pid in wanted
    ]


def resolve_teams(db: Session, *, org_id: int, public_ids: list[str]) -> list[ResolvedTeam]:
    """Raises ValidationError when any team id is unknown in this org."""
    wanted = _unique(public_ids)
    if not wanted:
        return []
    rows = db.execute(
        select(
            Team.id, Team.public_id, Team.default_email_identity_id, Team.default_space_id
        ).where(Team.org_id == org_id, Team.public_id.in_(wanted))
    ).all()
    if len(rows) != len(wanted):
        raise ValidationError("One or more teams is invalid")
    by_public_id = {row.public_id: row for row in rows}
    return [
        ResolvedTeam(
            id=by_public_id[pid].id,
            public_id=pid,
            default_email_identity_id=by_public_id[pid].default_email_identity_id,
            default_space_id=by_public_id[pid].default_space_id,
        )
        for pid in wanted
    ]


def resolve_contacts(db: Session, *, org_id: int, public_ids: list[str]) -> list[ResolvedContact]:
    """Raises ValidationError when any contact id is unknown in this org."""
    wanted = _unique(public_ids)
    if not wanted:
        return []
    contacts = db.scalars(
        select(Contact).where(Contact.org_id == org_id, Contact.public_id.in_(wanted))
    ).all()
    if len(contacts) != len(wanted):
        raise ValidationError("One or more contacts is invalid")
    by_public_id = {contact.public_id: contact for contact in contacts}
    return [
        ResolvedContact(
            id=by_public_id[pid].id,
            public_id=pid,
            email_address=by_public_id[pid].email_address,
        )
        for pid in wanted
    ]


# =============================================================================
# Contacts from free-text addresses
# =============================================================================

def get_or_create_reputation(db: Session, *, email_address: str) -> ContactGlobalReputation:
    """
    Return the global reputation row for an address, creating it if needed.

    The row is shared across organizations; a concurrent create for the same
    address loses on the unique constraint and re-reads the winner.
    """
    stmt = select(ContactGlobalReputation).where(
        ContactGlobalReputation.email_address == email_address
    )
    reputation = db.scalars(stmt).first()
    if reputation:
        return reputation

    reputation = ContactGlobalReputation(email_address=email_address)
    try:
        with db.begin_nested():
            db.add(reputation)
            db.flush()
        return reputation
    except IntegrityError:
        existing = db.scalars(stmt).first()
        if existing is None:
            logger.exception("Reputation insert conflicted but no row was found")
            raise InternalError()
        return existing


def get_or_create_contact(db: Session, *, org_id: int, email: str) -> tuple[Contact, bool]:
    """
    Find the org's contact for ``email`` or create it with its reputation.

    New contacts are explicitly invited, so they skip the screener.

    Returns:
        (contact, created)

    Raises:
        ValidationError: the address cannot be split into username and domain
    """
    parts = split_email_address(email)
    if parts is None:
        raise ValidationError("One or more email addresses is invalid")

    stmt = select(Contact).where(
        Contact.org_id == org_id,
        Contact.email_username == parts.username,
        Contact.email_domain == parts.domain,
    )
    contact = db.scalars(stmt).first()
    if contact:
        return contact, False

    reputation = get_or_create_reputation(db, email_address=parts.address)
    contact = Contact(
        org_id=org_id,
        reputation_id=reputation.id,
        email_username=parts.username,
        email_domain=parts.domain,
        type=ContactType.PERSON,
        screener_status=ContactScreenerStatus.APPROVE,
    )
    try:
        with db.begin_nested():
            db.add(contact)
            db.flush()
        return contact, True
    except IntegrityError:
        existing = db.scalars(stmt).first()
        if existing is None:
            logger.exception("Contact insert conflicted but no row was found")
            raise InternalError()
        return existing, False


def resolve_email_contacts(db: Session, *, org_id: int, emails: list[str]) -> dict[str, ResolvedContact]:
    """Resolve free-text addresses to contacts, creating them as needed."""
    resolved: dict[str, ResolvedContact] = {}
    for email in _unique(emails):
        contact, created = get_or_create_contact(db, org_id=org_id, email=email)
        resolved[email] = ResolvedContact(
            id=contact.id,
            public_id=contact.public_id,
            email_address=contact.email_address,
            created=created,
        )
    return resolved


def resolve_identities(
    db: Session,
    *,
    org_id: int,
    org_member_public_ids: list[str] | None = None,
    team_public_ids: list[str] | None = None,
    contact_public_ids: list[str] | None = None,
    emails: list[str] | None = None,
) -> ResolvedIdentities:
    """
    Resolve every participant category for one operation.

    All public ids are checked before any address creates a contact, so an
    invalid id never leaves new rows behind.
    """
    org_members = resolve_org_members(db, org_id=org_id, public_ids=org_member_public_ids or [])
    teams = resolve_teams(db, org_id=org_id, public_ids=team_public_ids or [])
    contacts = resolve_contacts(db, org_id=org_id, public_ids=contact_public_ids or [])
    for email in emails or []:
        if split_email_address(email) is None:
            raise ValidationError("One or more email addresses is invalid")
    email_contacts = resolve_email_contacts(db, org_id=org_id, emails=emails or [])
    return ResolvedIdentities(
        org_members=org_members,
        teams=teams,
        contacts=contacts,
        email_contacts=email_contacts,
    )
