"""Participant registrar.

Materializes ConvoParticipant rows for resolved identities. Team
participants are expanded into one TEAM_MEMBER row per team member, linked
back to the team row; an org member already present in the convo keeps the
row they have.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import InternalError, ValidationError
from app.db.enums import (
    ConvoNotificationPreference,
    ConvoParticipantRole,
    OrgMemberStatus,
    ParticipantKind,
    SpaceType,
)
from app.db.models import (
    ConvoParticipant,
    ConvoParticipantTeamMember,
    OrgMember,
    ParticipantIdentity,
    Space,
    TeamMember,
)
from app.services import space_service
from app.services.identity_service import ResolvedIdentities

logger = logging.getLogger(__name__)

RECIPIENT_EMAIL = "email"


@dataclass(frozen=True)
class ConvoRecipient:
    """
    The participant a new convo is addressed to.

    ``kind`` is a ParticipantKind value or ``"email"``; ``value`` is the
    public id, or the address for ``"email"``.
    """
    kind: str
    value: str


@dataclass
class RegistrationResult:
    author: ConvoParticipant
    participants: list[ConvoParticipant] = field(default_factory=list)
    to_participant_public_id: str | None = None

    @property
    def has_contacts(self) -> bool:
        return any(p.contact_id is not None for p in self.participants)


def validate_recipient(recipient: ConvoRecipient, identities_input: dict[str, list[str]]) -> None:
    """
    The recipient must be one of the participants being added.

    ``identities_input`` maps ``org_member``/``team``/``contact``/``email`` to
    the raw lists supplied by the caller.
    """
    if recipient.value not in (identities_input.get(recipient.kind) or []):
        raise ValidationError("Message recipient must be one of the participants")


# =============================================================================
# Space planning
# =============================================================================

def plan_extra_spaces(db: Session, *, space: Space, identities: ResolvedIdentities) -> list[int]:
    """
    Spaces the convo must also be filed into so every participant can see it.

    A member who cannot access a private filing space gets the convo in
    their personal space; a team with no access gets it in its default space.
    """
    if space.type == SpaceType.OPEN:
        return []
    extra: list[int] = []
    for member in identities.org_members:
        if member.personal_space_id is None:
            continue
        if not space_service.member_can_access(db, space=space, org_member_id=member.id):
            extra.append(member.personal_space_id)
    for team in identities.teams:
        if team.default_space_id is None:
            continue
        if not space_service.team_has_access(db, space=space, team_id=team.id):
            extra.append(team.default_space_id)
    return [space_id for space_id in dict.fromkeys(extra) if space_id != space.id]


# =============================================================================
# Row creation
# =============================================================================

def _insert(db: Session, participant: ConvoParticipant) -> ConvoParticipant:
    """Insert a participant whose uniqueness is not expected to collide."""
    try:
        with db.begin_nested():
            db.add(participant)
            db.flush()
    except IntegrityError:
        logger.exception(
            "Unexpected duplicate participant",
            extra={"convo_id": participant.convo_id},
        )
        raise InternalError()
    return participant


def find_member_participant(db: Session, *, convo_id: int, org_member_id: int) -> ConvoParticipant | None:
    return db.scalars(
        select(ConvoParticipant).where(
            ConvoParticipant.convo_id == convo_id,
            ConvoParticipant.org_member_id == org_member_id,
        )
    ).first()


def get_or_create_member_participant(
    db: Session,
    *,
    org_id: int,
    convo_id: int,
    org_member_id: int,
    role: ConvoParticipantRole,
    email_identity_id: int | None,
) -> tuple[ConvoParticipant, bool]:
    """
    Insert an org member's participant row or converge on the existing one.

    Concurrent inserts for the same (convo, org member) lose on the unique
    constraint; the loser re-reads and returns the winner's row.

    Returns:
        (participant, created)
    """
    existing = find_member_participant(db, convo_id=convo_id, org_member_id=org_member_id)
    if existing:
        return existing, False

    participant = ConvoParticipant.for_identity(
        ParticipantIdentity.org_member(org_member_id),
        org_id=org_id,
        convo_id=convo_id,
        role=role,
        notifications=ConvoNotificationPreference.ACTIVE,
        email_identity_id=email_identity_id,
    )
    try:
        with db.begin_nested():
            db.add(participant)
            db.flush()
        return participant, True
    except IntegrityError:
        winner = find_member_participant(db, convo_id=convo_id, org_member_id=org_member_id)
        if winner is None:
            logger.exception("Participant insert conflicted but no row was found")
            raise InternalError()
        return winner, False


def link_team_member(
    db: Session, *, org_id: int, member_participant_id: int, team_participant_id: int
) -> None:
    exists = db.scalars(
        select(ConvoParticipantTeamMember.id).where(
            ConvoParticipantTeamMember.convo_participant_id == member_participant_id,
            ConvoParticipantTeamMember.team_participant_id == team_participant_id,
        )
    ).first()
    if exists:
        return
    db.add(
        ConvoParticipantTeamMember(
            org_id=org_id,
            convo_participant_id=member_participant_id,
            team_participant_id=team_participant_id,
        )
    )
    db.flush()


def _active_team_member_ids(db: Session, *, team_id: int) -> list[int]:
    return list(
        db.scalars(
            select(TeamMember.org_member_id)
            .join(OrgMember, OrgMember.id == TeamMember.org_member_id)
            .where(TeamMember.team_id == team_id, OrgMember.status != OrgMemberStatus.REMOVED)
            .order_by(TeamMember.id)
        ).all()
    )


def register_participants(
    db: Session,
    *,
    org_id: int,
    convo_id: int,
    author_org_member_id: int,
    author_email_identity_id: int | None,
    identities: ResolvedIdentities,
    recipient: ConvoRecipient | None = None,
) -> RegistrationResult:
    """
    Create the participant rows of a brand new convo.

    The author comes first with role ASSIGNED, then org members, teams (with
    their expanded members) and contacts. Returns every row touched and the
    public id of the row matching ``recipient``.
    """
    author = _insert(
        db,
        ConvoParticipant.for_identity(
            ParticipantIdentity.org_member(author_org_member_id),
            org_id=org_id,
            convo_id=convo_id,
            role=ConvoParticipantRole.ASSIGNED,
            notifications=ConvoNotificationPreference.ACTIVE,
            email_identity_id=author_email_identity_id,
            hidden=False,
        ),
    )
    result = RegistrationResult(author=author, participants=[author])

    def _matches(kind: str, public_id: str) -> bool:
        return recipient is not None and recipient.kind == kind and recipient.value == public_id

    for member in identities.org_members:
        is_recipient = _matches(ParticipantKind.ORG_MEMBER.value, member.public_id)
        if member.id == author_org_member_id:
            if is_recipient:
                result.to_participant_public_id = author.public_id
            continue
        participant = _insert(
            db,
            ConvoParticipant.for_identity(
                ParticipantIdentity.org_member(member.id),
                org_id=org_id,
                convo_id=convo_id,
                role=ConvoParticipantRole.ASSIGNED if is_recipient else ConvoParticipantRole.CONTRIBUTOR,
                email_identity_id=member.default_email_identity_id,
            ),
        )
        result.participants.append(participant)
        if is_recipient:
            result.to_participant_public_id = participant.public_id

    for team in identities.teams:
        team_participant = _insert(
            db,
            ConvoParticipant.for_identity(
                ParticipantIdentity.team(team.id),
                org_id=org_id,
                convo_id=convo_id,
                email_identity_id=team.default_email_identity_id,
            ),
        )
        result.participants.append(team_participant)
        if _matches(ParticipantKind.TEAM.value, team.public_id):
            result.to_participant_public_id = team_participant.public_id

        for org_member_id in _active_team_member_ids(db, team_id=team.id):
            member_participant, created = get_or_create_member_participant(
                db,
                org_id=org_id,
                convo_id=convo_id,
                org_member_id=org_member_id,
                role=ConvoParticipantRole.TEAM_MEMBER,
                email_identity_id=team.default_email_identity_id,
            )
            link_team_member(
                db,
                org_id=org_id,
                member_participant_id=member_participant.id,
                team_participant_id=team_participant.id,
            )
            if created:
                result.participants.append(member_participant)

    email_public_ids = {
        contact.public_id
        for address, contact in identities.email_contacts.items()
        if recipient is not None and recipient.kind == RECIPIENT_EMAIL and recipient.value == address
    }
    for contact in identities.all_contacts():
        participant = _insert(
            db,
            ConvoParticipant.for_identity(
                ParticipantIdentity.contact(contact.id),
                org_id=org_id,
                convo_id=convo_id,
            ),
        )
        result.participants.append(participant)
        if _matches(ParticipantKind.CONTACT.value, contact.public_id) or contact.public_id in email_public_ids:
            result.to_participant_public_id = participant.public_id

    return result


def convo_has_contacts(db: Session, *, convo_id: int) -> bool:
    row = db.scalars(
        select(ConvoParticipant.id).where(
            ConvoParticipant.convo_id == convo_id, ConvoParticipant.contact_id.is_not(None)
        )
    ).first()
    return row is not None


def list_participants(db: Session, *, convo_id: int) -> list[ConvoParticipant]:
    return list(
        db.scalars(
            select(ConvoParticipant)
            .where(ConvoParticipant.convo_id == convo_id)
            .order_by(ConvoParticipant.id)
        ).all()
    )


def participant_org_member_public_ids(db: Session, *, convo_id: int) -> list[str]:
    """Public ids of every org member bound to the convo, for notifications."""
    return list(
        db.scalars(
            select(OrgMember.public_id)
            .join(ConvoParticipant, ConvoParticipant.org_member_id == OrgMember.id)
            .where(ConvoParticipant.convo_id == convo_id)
            .order_by(ConvoParticipant.id)
        ).all()
    )


def is_participant(db: Session, *, convo_id: int, org_member_id: int) -> bool:
    """
    True when the org member is bound to the convo directly, as a
    materialized team member, or through a team participant they belong to.
    """
    if find_member_participant(db, convo_id=convo_id, org_member_id=org_member_id):
        return True
    team_ids = select(TeamMember.team_id).where(TeamMember.org_member_id == org_member_id)
    row = db.scalars(
        select(ConvoParticipant.id).where(
            ConvoParticipant.convo_id == convo_id, ConvoParticipant.team_id.in_(team_ids)
        )
    ).first()
    return row is not None
