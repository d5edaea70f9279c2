"""Conversation lifecycle operations.

Composes identity resolution, space authority, participant registration,
entry writing and the outbound bridge gate. Each mutating operation runs as
one unit of work: every check precedes the first write, everything commits
together, and external side effects (mail bridge, storage purge, realtime)
only happen after the commit.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import (
    InternalError,
    NotFoundError,
    OutboundDispatchError,
    ServiceError,
    UnauthorizedError,
)
from app.core.org_cache import OrgContext
from app.core.structured_logging import build_log_context
from app.db.enums import (
    ConvoEntryType,
    ConvoEntryVisibility,
    ConvoParticipantRole,
    ParticipantKind,
    SpaceType,
    SpaceWorkflowType,
)
from app.db.models import (
    Contact,
    Convo,
    ConvoAttachment,
    ConvoEntry,
    ConvoEntryPrivateVisibilityParticipant,
    ConvoEntryRawHtmlEmail,
    ConvoEntryReply,
    ConvoEntrySeenTimestamp,
    ConvoParticipant,
    ConvoParticipantTeamMember,
    ConvoSeenTimestamp,
    ConvoSubject,
    ConvoTag,
    ConvoToSpace,
    ConvoWorkflow,
    EmailIdentity,
    OrgMember,
    OrgMemberProfile,
    Space,
    SpaceWorkflow,
    Team,
)
from app.db.types import utc_now
from app.schemas.convo import (
    AttachmentRead,
    ConvoCreate,
    ConvoDetailRead,
    ConvoReply,
    ConvoSpaceWorkflowsRead,
    ConvoSummaryRead,
    EntryPreviewRead,
    EntryRead,
    ParticipantIdentityRead,
    ParticipantRead,
    SpaceRead,
    SubjectRead,
    WorkflowRead,
)
from app.services import (
    entry_service,
    identity_service,
    mail_bridge_service,
    participant_service,
    realtime_service,
    space_service,
    storage_service,
)
from app.services.entry_service import AttachmentInput
from app.services.mail_bridge_service import DispatchRequest, MailBridgeClient
from app.services.participant_service import ConvoRecipient
from app.services.realtime_service import RealtimeEvent, RealtimeNotifier
from app.services.storage_service import StorageClient
from app.utils.pagination import CursorPage, decode_cursor, encode_cursor

logger = logging.getLogger(__name__)


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class CreatedConvo:
    convo_public_id: str
    entry_public_id: str


@dataclass(frozen=True)
class CreatedReply:
    convo_public_id: str
    entry_public_id: str
    body_plain_text: str


@dataclass
class ParticipantView:
    participant: ConvoParticipant
    kind: ParticipantKind
    public_id: str
    name: str | None = None
    handle: str | None = None
    color: str | None = None
    email_address: str | None = None
    contact_type: object | None = None
    email_identity_public_id: str | None = None


@dataclass
class AttachmentView:
    attachment: ConvoAttachment
    url: str
    entry_id: int | None = None


@dataclass
class ConvoDetail:
    convo: Convo
    subjects: list[ConvoSubject]
    participants: list[ParticipantView]
    attachments: list[AttachmentView]
    spaces: list[Space]
    own_participant_public_id: str | None


@dataclass
class EntryView:
    entry: ConvoEntry
    author_participant_public_id: str
    reply_to_entry_public_id: str | None = None
    attachments: list[AttachmentView] = field(default_factory=list)


@dataclass
class ConvoSummary:
    convo: Convo
    subject: str | None
    participant_count: int
    own_participant: ConvoParticipant | None
    latest_entry: EntryView | None


@dataclass
class SpaceWorkflowView:
    space: Space
    current_workflow_public_id: str | None
    open: list[SpaceWorkflow] = field(default_factory=list)
    active: list[SpaceWorkflow] = field(default_factory=list)
    closed: list[SpaceWorkflow] = field(default_factory=list)


# =============================================================================
# Helpers
# =============================================================================

@contextmanager
def _unit_of_work(db: Session, **log_context) -> Iterator[None]:
    """
    Commit on success; roll back on any failure.

    Service errors propagate unchanged. Storage failures are logged with
    full detail and surface as a generic InternalError.
    """
    try:
        yield
        db.commit()
    except ServiceError:
        db.rollback()
        raise
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Conversation write failed", extra=build_log_context(**log_context))
        raise InternalError()


def _attachment_inputs(items) -> list[AttachmentInput]:
    return [
        AttachmentInput(
            attachment_public_id=item.attachment_public_id,
            file_name=item.file_name,
            file_type=item.file_type,
            size=item.size,
        )
        for item in items
    ]


def _get_convo(db: Session, *, org_id: int, convo_public_id: str) -> Convo:
    convo = db.scalars(
        select(Convo).where(Convo.org_id == org_id, Convo.public_id == convo_public_id)
    ).first()
    if not convo:
        raise NotFoundError("Conversation not found")
    return convo


def _authorized_spaces(
    db: Session, *, convo_id: int, org_member_id: int, permission: str | None = None
) -> list[tuple[Space, space_service.SpaceMembership]]:
    """Filing spaces where the member is authorized (and holds ``permission``)."""
    granted = []
    for space in space_service.list_convo_spaces(db, convo_id=convo_id):
        membership = space_service.resolve_membership(db, space=space, org_member_id=org_member_id)
        if not membership.authorized:
            continue
        if permission is not None and not membership.can(permission):
            continue
        granted.append((space, membership))
    return granted


def _can_access_convo(db: Session, *, convo: Convo, org_member_id: int) -> bool:
    if participant_service.is_participant(db, convo_id=convo.id, org_member_id=org_member_id):
        return True
    return bool(_authorized_spaces(db, convo_id=convo.id, org_member_id=org_member_id))


def _require_convo_access(db: Session, *, convo: Convo, org_member_id: int) -> None:
    if not _can_access_convo(db, convo=convo, org_member_id=org_member_id):
        raise UnauthorizedError("You are not allowed to access this conversation")


def _space_public_ids(db: Session, space_ids: list[int]) -> list[str]:
    if not space_ids:
        return []
    rows = db.execute(select(Space.id, Space.public_id).where(Space.id.in_(space_ids))).all()
    by_id = {row.id: row.public_id for row in rows}
    return [by_id[space_id] for space_id in space_ids if space_id in by_id]


def _dispatch_safely(
    request: DispatchRequest, *, client: MailBridgeClient | None
) -> OutboundDispatchError | None:
    """Dispatch a committed entry; the failure is returned for re-raising later."""
    try:
        mail_bridge_service.dispatch(request, client=client)
    except OutboundDispatchError as exc:
        return exc
    return None


def _publish(events: list[RealtimeEvent], realtime: RealtimeNotifier | None) -> None:
    (realtime or realtime_service.notifier).publish(events)


# =============================================================================
# Create
# =============================================================================

def create_convo(
    db: Session,
    *,
    org: OrgContext,
    data: ConvoCreate,
    mail_client: MailBridgeClient | None = None,
    realtime: RealtimeNotifier | None = None,
) -> CreatedConvo:
    """
    Start a conversation in a space with its first entry.

    The author must be allowed to create in the filing space. Participants
    who cannot see a private filing space get the convo in their personal
    (or team default) space too. A message addressed to contacts is handed
    to the mail bridge after commit.

    Raises:
        NotFoundError: unknown space or send-as identity
        UnauthorizedError: no create permission in the space
        ValidationError: bad participants, recipient, body or attachments
        OutboundDispatchError: saved, but the mail bridge failed
    """
    space = space_service.get_space(db, org_id=org.org_id, space_shortcode=data.space_shortcode)
    space_service.require_membership(
        db, space=space, org_member_id=org.member_id, permission="can_create"
    )

    recipient = ConvoRecipient(kind=data.to.type, value=data.to.value)
    participant_service.validate_recipient(recipient, data.recipient_candidates())

    has_contacts = bool(data.participants_contact_public_ids or data.participants_emails)
    mail_bridge_service.require_identity_for_dispatch(
        entry_type=data.first_message_type,
        has_contacts=has_contacts,
        identity_public_id=data.send_as_email_identity_public_id,
    )
    identity: EmailIdentity | None = None
    if data.send_as_email_identity_public_id:
        identity = mail_bridge_service.load_send_as_identity(
            db, org_id=org.org_id, identity_public_id=data.send_as_email_identity_public_id
        )

    prepared = entry_service.prepare_body(data.message, org_shortcode=org.org_shortcode)
    attachments = _attachment_inputs(data.attachments)
    entry_service.validate_pending_attachments(db, org_id=org.org_id, attachments=attachments)

    now = utc_now()
    with _unit_of_work(db, org_id=org.org_id, org_member_id=org.member_id):
        identities = identity_service.resolve_identities(
            db,
            org_id=org.org_id,
            org_member_public_ids=data.participants_org_member_public_ids,
            team_public_ids=data.participants_team_public_ids,
            contact_public_ids=data.participants_contact_public_ids,
            emails=data.participants_emails,
        )

        convo = Convo(org_id=org.org_id, last_updated_at=now, created_at=now)
        db.add(convo)
        db.flush()
        subject = ConvoSubject(org_id=org.org_id, convo_id=convo.id, subject=data.topic.strip())
        db.add(subject)
        db.flush()

        space_ids = [space.id, *participant_service.plan_extra_spaces(db, space=space, identities=identities)]
        for space_id in space_ids:
            space_service.file_convo_into_space(
                db, org_id=org.org_id, convo_id=convo.id, space_id=space_id
            )

        registration = participant_service.register_participants(
            db,
            org_id=org.org_id,
            convo_id=convo.id,
            author_org_member_id=org.member_id,
            author_email_identity_id=identity.id if identity else None,
            identities=identities,
            recipient=recipient,
        )

        entry = entry_service.write_entry(
            db,
            convo=convo,
            author=registration.author,
            author_org_member_id=org.member_id,
            prepared=prepared,
            entry_type=data.first_message_type,
            subject_id=subject.id,
            attachments=attachments,
            now=now,
        )
        convo_public_id = convo.public_id
        entry_public_id = entry.public_id
        convo_id = convo.id
        entry_id = entry.id

    logger.info(
        "Created convo %s with %d participants",
        convo_public_id,
        len(registration.participants),
        extra=build_log_context(org_id=org.org_id, convo_public_id=convo_public_id),
    )

    dispatch_error = None
    if identity is not None and mail_bridge_service.requires_dispatch(
        entry_type=data.first_message_type, has_contacts=registration.has_contacts
    ):
        dispatch_error = _dispatch_safely(
            DispatchRequest(
                org_id=org.org_id,
                convo_id=convo_id,
                entry_id=entry_id,
                convo_public_id=convo_public_id,
                entry_public_id=entry_public_id,
                send_as_identity_public_id=identity.public_id,
                to_participant_public_id=registration.to_participant_public_id,
            ),
            client=mail_client,
        )

    payload = {"publicId": convo_public_id}
    events = [
        realtime_service.member_event(
            participant_service.participant_org_member_public_ids(db, convo_id=convo_id),
            realtime_service.EVENT_CONVO_NEW,
            payload,
        )
    ]
    events.extend(
        realtime_service.space_event(space_public_id, realtime_service.EVENT_CONVO_NEW, payload)
        for space_public_id in _space_public_ids(db, space_ids)
    )
    _publish(events, realtime)

    if dispatch_error is not None:
        raise dispatch_error
    return CreatedConvo(convo_public_id=convo_public_id, entry_public_id=entry_public_id)


# =============================================================================
# Reply
# =============================================================================

def reply_to_convo(
    db: Session,
    *,
    org: OrgContext,
    data: ConvoReply,
    mail_client: MailBridgeClient | None = None,
    realtime: RealtimeNotifier | None = None,
) -> CreatedReply:
    """
    Append a reply to an existing entry.

    A member reaching the convo through a team or a filing space without a
    participant row of their own gets one. When the convo has contacts the
    member must be an authorized sender for the chosen identity.

    Raises:
        NotFoundError: unknown entry or send-as identity
        UnauthorizedError: no access to the convo, or not an authorized sender
        ValidationError: bad body or attachments, or a missing identity
        OutboundDispatchError: saved, but the mail bridge failed
    """
    reply_to = db.scalars(
        select(ConvoEntry).where(
            ConvoEntry.org_id == org.org_id,
            ConvoEntry.public_id == data.reply_to_message_public_id,
        )
    ).first()
    if not reply_to:
        raise NotFoundError("Message to reply to not found")
    convo = db.get(Convo, reply_to.convo_id)

    permission = "can_comment" if data.message_type == ConvoEntryType.COMMENT else "can_reply"
    if not participant_service.is_participant(
        db, convo_id=convo.id, org_member_id=org.member_id
    ) and not _authorized_spaces(
        db, convo_id=convo.id, org_member_id=org.member_id, permission=permission
    ):
        raise UnauthorizedError("You are not allowed to reply to this conversation")

    spaces = space_service.list_convo_spaces(db, convo_id=convo.id)
    has_contacts = participant_service.convo_has_contacts(db, convo_id=convo.id)
    mail_bridge_service.require_identity_for_dispatch(
        entry_type=data.message_type,
        has_contacts=has_contacts,
        identity_public_id=data.send_as_email_identity_public_id,
    )
    identity: EmailIdentity | None = None
    if data.send_as_email_identity_public_id:
        identity = mail_bridge_service.load_send_as_identity(
            db, org_id=org.org_id, identity_public_id=data.send_as_email_identity_public_id
        )
        if has_contacts:
            mail_bridge_service.require_authorized_sender(
                db,
                identity_id=identity.id,
                org_member_id=org.member_id,
                convo_space_ids=[space.id for space in spaces],
            )

    prepared = entry_service.prepare_body(data.message, org_shortcode=org.org_shortcode)
    attachments = _attachment_inputs(data.attachments)
    entry_service.validate_pending_attachments(db, org_id=org.org_id, attachments=attachments)

    with _unit_of_work(
        db, org_id=org.org_id, org_member_id=org.member_id, convo_public_id=convo.public_id
    ):
        author, created = participant_service.get_or_create_member_participant(
            db,
            org_id=org.org_id,
            convo_id=convo.id,
            org_member_id=org.member_id,
            role=ConvoParticipantRole.CONTRIBUTOR,
            email_identity_id=identity.id if identity else None,
        )
        if (
            not created
            and identity is not None
            and data.message_type == ConvoEntryType.MESSAGE
            and author.email_identity_id != identity.id
        ):
            author.email_identity_id = identity.id
            db.flush()

        entry = entry_service.write_entry(
            db,
            convo=convo,
            author=author,
            author_org_member_id=org.member_id,
            prepared=prepared,
            entry_type=data.message_type,
            subject_id=reply_to.subject_id,
            reply_to=reply_to,
            attachments=attachments,
        )
        convo_public_id = convo.public_id
        convo_id = convo.id
        entry_public_id = entry.public_id
        entry_id = entry.id

    dispatch_error = None
    if identity is not None and mail_bridge_service.requires_dispatch(
        entry_type=data.message_type, has_contacts=has_contacts
    ):
        dispatch_error = _dispatch_safely(
            DispatchRequest(
                org_id=org.org_id,
                convo_id=convo_id,
                entry_id=entry_id,
                convo_public_id=convo_public_id,
                entry_public_id=entry_public_id,
                send_as_identity_public_id=identity.public_id,
            ),
            client=mail_client,
        )

    payload = {"convoPublicId": convo_public_id, "convoEntryPublicId": entry_public_id}
    events = [
        realtime_service.member_event(
            participant_service.participant_org_member_public_ids(db, convo_id=convo_id),
            realtime_service.EVENT_CONVO_ENTRY_NEW,
            payload,
        )
    ]
    events.extend(
        realtime_service.space_event(space.public_id, realtime_service.EVENT_CONVO_ENTRY_NEW, payload)
        for space in spaces
    )
    _publish(events, realtime)

    if dispatch_error is not None:
        raise dispatch_error
    return CreatedReply(
        convo_public_id=convo_public_id,
        entry_public_id=entry_public_id,
        body_plain_text=prepared.plain_text,
    )


# =============================================================================
# Read
# =============================================================================

def _participant_views(db: Session, participants: list[ConvoParticipant]) -> list[ParticipantView]:
    member_ids = [p.org_member_id for p in participants if p.org_member_id is not None]
    team_ids = [p.team_id for p in participants if p.team_id is not None]
    contact_ids = [p.contact_id for p in participants if p.contact_id is not None]
    identity_ids = [p.email_identity_id for p in participants if p.email_identity_id is not None]

    members = {}
    if member_ids:
        rows = db.execute(
            select(OrgMember, OrgMemberProfile)
            .outerjoin(OrgMemberProfile, OrgMemberProfile.id == OrgMember.org_member_profile_id)
            .where(OrgMember.id.in_(member_ids))
        ).all()
        members = {member.id: (member, profile) for member, profile in rows}
    teams = (
        {team.id: team for team in db.scalars(select(Team).where(Team.id.in_(team_ids))).all()}
        if team_ids
        else {}
    )
    contacts = (
        {c.id: c for c in db.scalars(select(Contact).where(Contact.id.in_(contact_ids))).all()}
        if contact_ids
        else {}
    )
    identities = (
        dict(
            db.execute(
                select(EmailIdentity.id, EmailIdentity.public_id).where(
                    EmailIdentity.id.in_(identity_ids)
                )
            ).all()
        )
        if identity_ids
        else {}
    )

    views = []
    for participant in participants:
        identity_public_id = identities.get(participant.email_identity_id)
        if participant.org_member_id is not None:
            member, profile = members[participant.org_member_id]
            name = None
            if profile is not None:
                name = " ".join(part for part in (profile.first_name, profile.last_name) if part) or None
            view = ParticipantView(
                participant=participant,
                kind=ParticipantKind.ORG_MEMBER,
                public_id=member.public_id,
                name=name,
                handle=profile.handle if profile else None,
            )
        elif participant.team_id is not None:
            team = teams[participant.team_id]
            view = ParticipantView(
                participant=participant,
                kind=ParticipantKind.TEAM,
                public_id=team.public_id,
                name=team.name,
                color=team.color,
            )
        else:
            contact = contacts[participant.contact_id]
            view = ParticipantView(
                participant=participant,
                kind=ParticipantKind.CONTACT,
                public_id=contact.public_id,
                name=contact.set_name or contact.name,
                email_address=contact.email_address,
                contact_type=contact.type,
            )
        view.email_identity_public_id = identity_public_id
        views.append(view)
    return views


def _attachment_views(org: OrgContext, attachments: list[ConvoAttachment]) -> list[AttachmentView]:
    return [
        AttachmentView(
            attachment=attachment,
            url=storage_service.build_attachment_url(
                org_shortcode=org.org_shortcode,
                attachment_public_id=attachment.public_id,
                file_name=attachment.file_name,
            ),
            entry_id=attachment.convo_entry_id,
        )
        for attachment in attachments
    ]


def get_convo(db: Session, *, org: OrgContext, convo_public_id: str) -> ConvoDetail:
    """
    Full view of a convo for a member who can see it.

    Marks the member's own participant row as read.

    Raises:
        NotFoundError: unknown convo
        UnauthorizedError: not a participant and no access to any filing space
    """
    convo = _get_convo(db, org_id=org.org_id, convo_public_id=convo_public_id)
    _require_convo_access(db, convo=convo, org_member_id=org.member_id)

    subjects = list(
        db.scalars(
            select(ConvoSubject)
            .where(ConvoSubject.convo_id == convo.id)
            .order_by(ConvoSubject.created_at, ConvoSubject.id)
        ).all()
    )
    participants = participant_service.list_participants(db, convo_id=convo.id)
    attachments = list(
        db.scalars(
            select(ConvoAttachment)
            .where(ConvoAttachment.convo_id == convo.id)
            .order_by(ConvoAttachment.id)
        ).all()
    )
    spaces = space_service.list_convo_spaces(db, convo_id=convo.id)

    own = next((p for p in participants if p.org_member_id == org.member_id), None)
    if own is not None:
        own.last_read_at = utc_now()
        db.commit()

    return ConvoDetail(
        convo=convo,
        subjects=subjects,
        participants=_participant_views(db, participants),
        attachments=_attachment_views(org, attachments),
        spaces=spaces,
        own_participant_public_id=own.public_id if own else None,
    )


def _entry_views(db: Session, org: OrgContext, entries: list[ConvoEntry]) -> list[EntryView]:
    if not entries:
        return []
    author_ids = {entry.author_id for entry in entries}
    authors = dict(
        db.execute(
            select(ConvoParticipant.id, ConvoParticipant.public_id).where(
                ConvoParticipant.id.in_(author_ids)
            )
        ).all()
    )
    reply_ids = {entry.reply_to_id for entry in entries if entry.reply_to_id is not None}
    replies = (
        dict(
            db.execute(
                select(ConvoEntry.id, ConvoEntry.public_id).where(ConvoEntry.id.in_(reply_ids))
            ).all()
        )
        if reply_ids
        else {}
    )
    attachments = db.scalars(
        select(ConvoAttachment)
        .where(ConvoAttachment.convo_entry_id.in_([entry.id for entry in entries]))
        .order_by(ConvoAttachment.id)
    ).all()
    by_entry: dict[int, list[AttachmentView]] = defaultdict(list)
    for view in _attachment_views(org, list(attachments)):
        by_entry[view.entry_id].append(view)

    return [
        EntryView(
            entry=entry,
            author_participant_public_id=authors[entry.author_id],
            reply_to_entry_public_id=replies.get(entry.reply_to_id),
            attachments=by_entry.get(entry.id, []),
        )
        for entry in entries
    ]


def _visible_entries_stmt(*, convo_id: int, org_member_id: int):
    own_participant_ids = select(ConvoParticipant.id).where(
        ConvoParticipant.convo_id == convo_id, ConvoParticipant.org_member_id == org_member_id
    )
    private_entry_ids = select(ConvoEntryPrivateVisibilityParticipant.entry_id).where(
        ConvoEntryPrivateVisibilityParticipant.convo_member_id.in_(own_participant_ids)
    )
    return select(ConvoEntry).where(
        ConvoEntry.convo_id == convo_id,
        or_(
            ConvoEntry.visibility != ConvoEntryVisibility.PRIVATE,
            ConvoEntry.id.in_(private_entry_ids),
        ),
    )


def list_convo_entries(
    db: Session,
    *,
    org: OrgContext,
    convo_public_id: str,
    cursor: str | None = None,
    limit: int = 15,
) -> CursorPage[EntryView]:
    """
    Entries of a convo, newest first.

    Private entries are only listed for participants named on them.
    """
    convo = _get_convo(db, org_id=org.org_id, convo_public_id=convo_public_id)
    _require_convo_access(db, convo=convo, org_member_id=org.member_id)

    stmt = _visible_entries_stmt(convo_id=convo.id, org_member_id=org.member_id)
    if cursor:
        cursor_ts, cursor_id = decode_cursor(cursor)
        stmt = stmt.where(
            or_(
                ConvoEntry.created_at < cursor_ts,
                (ConvoEntry.created_at == cursor_ts) & (ConvoEntry.id < cursor_id),
            )
        )
    rows = list(
        db.scalars(
            stmt.order_by(ConvoEntry.created_at.desc(), ConvoEntry.id.desc()).limit(limit + 1)
        ).all()
    )
    next_cursor = None
    if len(rows) > limit:
        rows = rows[:limit]
        last = rows[-1]
        next_cursor = encode_cursor(sort_ts=last.created_at, row_id=last.id)
    return CursorPage(items=_entry_views(db, org, rows), next_cursor=next_cursor)


def get_org_member_specific_convo(
    db: Session, *, org: OrgContext, convo_public_id: str
) -> ConvoSummary | None:
    """
    Lightweight per-member view of a convo with its latest visible entry.

    Returns None when the convo does not exist or the member cannot see it.
    """
    convo = db.scalars(
        select(Convo).where(Convo.org_id == org.org_id, Convo.public_id == convo_public_id)
    ).first()
    if convo is None or not _can_access_convo(db, convo=convo, org_member_id=org.member_id):
        return None

    subject = db.scalars(
        select(ConvoSubject.subject)
        .where(ConvoSubject.convo_id == convo.id)
        .order_by(ConvoSubject.created_at.desc(), ConvoSubject.id.desc())
    ).first()
    participants = participant_service.list_participants(db, convo_id=convo.id)
    latest = db.scalars(
        _visible_entries_stmt(convo_id=convo.id, org_member_id=org.member_id)
        .where(ConvoEntry.type != ConvoEntryType.DRAFT)
        .order_by(ConvoEntry.created_at.desc(), ConvoEntry.id.desc())
        .limit(1)
    ).first()

    own = next((p for p in participants if p.org_member_id == org.member_id), None)
    if own is not None:
        own.last_read_at = utc_now()
        db.commit()

    latest_views = _entry_views(db, org, [latest]) if latest else []
    return ConvoSummary(
        convo=convo,
        subject=subject,
        participant_count=len(participants),
        own_participant=own,
        latest_entry=latest_views[0] if latest_views else None,
    )


def mark_convo_seen(
    db: Session, *, org: OrgContext, convo_public_id: str, seen_at: datetime | None = None
) -> None:
    """
    Move the member's seen watermark for the convo to now.

    Raises:
        NotFoundError: unknown convo
        UnauthorizedError: the member has no participant row in the convo
    """
    convo = _get_convo(db, org_id=org.org_id, convo_public_id=convo_public_id)
    participant = participant_service.find_member_participant(
        db, convo_id=convo.id, org_member_id=org.member_id
    )
    if participant is None:
        raise UnauthorizedError("You are not a participant of this conversation")
    seen_at = seen_at or utc_now()
    with _unit_of_work(db, org_id=org.org_id, convo_public_id=convo.public_id):
        entry_service.upsert_seen(
            db,
            org_id=org.org_id,
            convo_id=convo.id,
            participant_id=participant.id,
            org_member_id=org.member_id,
            seen_at=seen_at,
        )
        participant.last_read_at = seen_at


# =============================================================================
# Delete
# =============================================================================

def _can_delete(db: Session, *, convo: Convo, org_member_id: int) -> bool:
    if participant_service.is_participant(db, convo_id=convo.id, org_member_id=org_member_id):
        return True
    spaces = space_service.list_convo_spaces(db, convo_id=convo.id)
    if not spaces:
        return False
    for space in spaces:
        if space.type == SpaceType.OPEN:
            continue
        if not space_service.is_explicit_member(db, space_id=space.id, org_member_id=org_member_id):
            return False
    return True


def _purge_convo_rows(db: Session, *, convo_ids: list[int]) -> list[ConvoAttachment]:
    """Delete every row owned by the convos, children first."""
    entry_ids = select(ConvoEntry.id).where(ConvoEntry.convo_id.in_(convo_ids))
    participant_ids = select(ConvoParticipant.id).where(ConvoParticipant.convo_id.in_(convo_ids))
    attachments = list(
        db.scalars(select(ConvoAttachment).where(ConvoAttachment.convo_id.in_(convo_ids))).all()
    )

    db.execute(delete(ConvoEntrySeenTimestamp).where(ConvoEntrySeenTimestamp.entry_id.in_(entry_ids)))
    db.execute(delete(ConvoSeenTimestamp).where(ConvoSeenTimestamp.convo_id.in_(convo_ids)))
    db.execute(
        delete(ConvoEntryReply).where(
            or_(
                ConvoEntryReply.entry_source_id.in_(entry_ids),
                ConvoEntryReply.entry_reply_id.in_(entry_ids),
            )
        )
    )
    db.execute(
        delete(ConvoEntryPrivateVisibilityParticipant).where(
            ConvoEntryPrivateVisibilityParticipant.entry_id.in_(entry_ids)
        )
    )
    db.execute(delete(ConvoEntryRawHtmlEmail).where(ConvoEntryRawHtmlEmail.entry_id.in_(entry_ids)))
    db.execute(delete(ConvoAttachment).where(ConvoAttachment.convo_id.in_(convo_ids)))
    db.execute(delete(ConvoWorkflow).where(ConvoWorkflow.convo_id.in_(convo_ids)))
    db.execute(delete(ConvoTag).where(ConvoTag.convo_id.in_(convo_ids)))
    # Entries reference each other through reply_to_id.
    db.execute(
        update(ConvoEntry).where(ConvoEntry.convo_id.in_(convo_ids)).values(reply_to_id=None)
    )
    db.execute(delete(ConvoEntry).where(ConvoEntry.convo_id.in_(convo_ids)))
    db.execute(delete(ConvoSubject).where(ConvoSubject.convo_id.in_(convo_ids)))
    db.execute(
        delete(ConvoParticipantTeamMember).where(
            or_(
                ConvoParticipantTeamMember.convo_participant_id.in_(participant_ids),
                ConvoParticipantTeamMember.team_participant_id.in_(participant_ids),
            )
        )
    )
    db.execute(delete(ConvoParticipant).where(ConvoParticipant.convo_id.in_(convo_ids)))
    db.execute(delete(ConvoToSpace).where(ConvoToSpace.convo_id.in_(convo_ids)))
    db.execute(delete(Convo).where(Convo.id.in_(convo_ids)))
    return attachments


def delete_convos(
    db: Session,
    *,
    org: OrgContext,
    convo_public_ids: list[str],
    storage: StorageClient | None = None,
    realtime: RealtimeNotifier | None = None,
) -> None:
    """
    Delete one or many convos and everything they own, all or nothing.

    Every id must resolve and every convo must be deletable by the member
    before anything is removed. Stored blobs are purged after commit on a
    best-effort basis.

    Raises:
        NotFoundError: any id is unknown
        UnauthorizedError: any convo may not be deleted by the member
        InternalError: the database rejected the delete
    """
    wanted = list(dict.fromkeys(convo_public_ids))
    convos = list(
        db.scalars(
            select(Convo).where(Convo.org_id == org.org_id, Convo.public_id.in_(wanted))
        ).all()
    )
    if len(convos) != len(wanted):
        raise NotFoundError("One or more conversations not found")

    for convo in convos:
        if not _can_delete(db, convo=convo, org_member_id=org.member_id):
            raise UnauthorizedError("You are not allowed to delete this conversation")

    spaces_by_public_id: dict[str, list[str]] = defaultdict(list)
    for convo in convos:
        for space in space_service.list_convo_spaces(db, convo_id=convo.id):
            spaces_by_public_id[space.public_id].append(convo.public_id)

    convo_ids = [convo.id for convo in convos]
    with _unit_of_work(db, org_id=org.org_id, org_member_id=org.member_id):
        attachments = _purge_convo_rows(db, convo_ids=convo_ids)
        storage_keys = [
            storage_service.attachment_storage_key(
                org_public_id=org.org_public_id,
                attachment_public_id=attachment.public_id,
                file_name=attachment.file_name,
            )
            for attachment in attachments
        ]

    logger.info(
        "Deleted %d convos",
        len(convo_ids),
        extra=build_log_context(org_id=org.org_id, org_member_id=org.member_id),
    )

    if storage_keys:
        client = storage or storage_service.storage_client
        if not client.delete_attachments(storage_keys):
            logger.warning(
                "Attachment purge incomplete for %d files",
                len(storage_keys),
                extra=build_log_context(org_id=org.org_id),
            )

    _publish(
        [
            realtime_service.space_event(
                space_public_id, realtime_service.EVENT_CONVO_DELETED, {"publicId": public_ids}
            )
            for space_public_id, public_ids in spaces_by_public_id.items()
        ],
        realtime,
    )


# =============================================================================
# Workflows
# =============================================================================

def get_convo_space_workflows(
    db: Session, *, org: OrgContext, convo_public_id: str
) -> list[SpaceWorkflowView]:
    """
    Workflow state of the convo in every filing space the member can see.

    The current stage is the most recent assignment in that space.
    """
    convo = _get_convo(db, org_id=org.org_id, convo_public_id=convo_public_id)
    views = []
    for space, _membership in _authorized_spaces(db, convo_id=convo.id, org_member_id=org.member_id):
        current = db.scalars(
            select(SpaceWorkflow.public_id)
            .join(ConvoWorkflow, ConvoWorkflow.workflow_id == SpaceWorkflow.id)
            .where(ConvoWorkflow.convo_id == convo.id, ConvoWorkflow.space_id == space.id)
            .order_by(ConvoWorkflow.created_at.desc(), ConvoWorkflow.id.desc())
        ).first()
        workflows = db.scalars(
            select(SpaceWorkflow)
            .where(SpaceWorkflow.space_id == space.id, SpaceWorkflow.disabled.is_(False))
            .order_by(SpaceWorkflow.order, SpaceWorkflow.id)
        ).all()
        view = SpaceWorkflowView(space=space, current_workflow_public_id=current)
        for workflow in workflows:
            if workflow.type == SpaceWorkflowType.OPEN:
                view.open.append(workflow)
            elif workflow.type == SpaceWorkflowType.ACTIVE:
                view.active.append(workflow)
            else:
                view.closed.append(workflow)
        views.append(view)
    return views


def set_convo_space_workflow(
    db: Session,
    *,
    org: OrgContext,
    convo_public_id: str,
    space_public_id: str,
    workflow_public_id: str,
    realtime: RealtimeNotifier | None = None,
) -> ConvoWorkflow:
    """
    Record a new workflow stage for the convo in one space.

    Assignments are appended; earlier ones are kept as history.

    Raises:
        NotFoundError: unknown space, convo or workflow, or the convo is not
            filed in the space
        UnauthorizedError: missing workflow permission (closing needs its own)
    """
    space = space_service.get_space(db, org_id=org.org_id, space_public_id=space_public_id)
    membership = space_service.require_membership(
        db, space=space, org_member_id=org.member_id, permission="can_change_workflow"
    )
    convo = _get_convo(db, org_id=org.org_id, convo_public_id=convo_public_id)
    link = db.scalars(
        select(ConvoToSpace).where(
            ConvoToSpace.convo_id == convo.id, ConvoToSpace.space_id == space.id
        )
    ).first()
    if not link:
        raise NotFoundError("Conversation is not in this Space")
    workflow = db.scalars(
        select(SpaceWorkflow).where(
            SpaceWorkflow.space_id == space.id, SpaceWorkflow.public_id == workflow_public_id
        )
    ).first()
    if not workflow:
        raise NotFoundError("Workflow not found")
    if workflow.type == SpaceWorkflowType.CLOSED and not membership.can("can_set_workflow_to_closed"):
        raise UnauthorizedError("You do not have permission to close conversations in this Space")

    with _unit_of_work(db, org_id=org.org_id, convo_public_id=convo.public_id):
        record = ConvoWorkflow(
            org_id=org.org_id,
            convo_id=convo.id,
            convo_to_space_id=link.id,
            space_id=space.id,
            workflow_id=workflow.id,
            by_org_member_id=org.member_id,
        )
        db.add(record)
        db.flush()

    _publish(
        [
            realtime_service.space_event(
                space.public_id,
                realtime_service.EVENT_CONVO_WORKFLOW_UPDATE,
                {
                    "convoPublicId": convo.public_id,
                    "orgShortcode": org.org_shortcode,
                    "workflowPublicId": workflow.public_id,
                },
            )
        ],
        realtime,
    )
    return record


# =============================================================================
# Add / move between spaces
# =============================================================================

def _load_space_transfer(
    db: Session, *, org: OrgContext, convo_public_id: str, space_public_id: str, permission: str
) -> tuple[Space, Convo, list[Space]]:
    target = space_service.get_space(db, org_id=org.org_id, space_public_id=space_public_id)
    convo = _get_convo(db, org_id=org.org_id, convo_public_id=convo_public_id)
    current = space_service.list_convo_spaces(db, convo_id=convo.id)
    if not current:
        raise NotFoundError("Conversation is not in any Spaces")
    if not _authorized_spaces(db, convo_id=convo.id, org_member_id=org.member_id, permission=permission):
        raise UnauthorizedError("You do not have permission to do this in this Space")
    space_service.require_membership(db, space=target, org_member_id=org.member_id)
    return target, convo, current


def add_convo_to_space(
    db: Session,
    *,
    org: OrgContext,
    convo_public_id: str,
    space_public_id: str,
    realtime: RealtimeNotifier | None = None,
) -> None:
    """
    File the convo into another space as well; filing twice is a no-op.

    Raises:
        NotFoundError: unknown space or convo, or the convo has no spaces
        UnauthorizedError: no add permission in any current space, or no
            access to the target space
    """
    target, convo, _current = _load_space_transfer(
        db,
        org=org,
        convo_public_id=convo_public_id,
        space_public_id=space_public_id,
        permission="can_add_to_another_space",
    )
    with _unit_of_work(db, org_id=org.org_id, convo_public_id=convo.public_id):
        space_service.file_convo_into_space(
            db, org_id=org.org_id, convo_id=convo.id, space_id=target.id
        )

    _publish(
        [
            realtime_service.space_event(
                target.public_id, realtime_service.EVENT_CONVO_NEW, {"publicId": convo.public_id}
            )
        ],
        realtime,
    )


def move_convo_to_space(
    db: Session,
    *,
    org: OrgContext,
    convo_public_id: str,
    space_public_id: str,
    realtime: RealtimeNotifier | None = None,
) -> None:
    """
    Re-file the convo so the target is its only space.

    Workflow and tag assignments of the vacated spaces go with them.

    Raises:
        NotFoundError: unknown space or convo, or the convo has no spaces
        UnauthorizedError: no move permission in any current space, or no
            access to the target space
    """
    target, convo, current = _load_space_transfer(
        db,
        org=org,
        convo_public_id=convo_public_id,
        space_public_id=space_public_id,
        permission="can_move_to_another_space",
    )
    vacated = [space for space in current if space.id != target.id]
    vacated_ids = [space.id for space in vacated]

    with _unit_of_work(db, org_id=org.org_id, convo_public_id=convo.public_id):
        if vacated_ids:
            link_ids = select(ConvoToSpace.id).where(
                ConvoToSpace.convo_id == convo.id, ConvoToSpace.space_id.in_(vacated_ids)
            )
            db.execute(delete(ConvoWorkflow).where(ConvoWorkflow.convo_to_space_id.in_(link_ids)))
            db.execute(delete(ConvoTag).where(ConvoTag.convo_to_space_id.in_(link_ids)))
            db.execute(
                delete(ConvoToSpace).where(
                    ConvoToSpace.convo_id == convo.id, ConvoToSpace.space_id.in_(vacated_ids)
                )
            )
        space_service.file_convo_into_space(
            db, org_id=org.org_id, convo_id=convo.id, space_id=target.id
        )

    payload = {"publicId": convo.public_id}
    events = [realtime_service.space_event(target.public_id, realtime_service.EVENT_CONVO_NEW, payload)]
    events.extend(
        realtime_service.space_event(space.public_id, realtime_service.EVENT_CONVO_DELETED, payload)
        for space in vacated
    )
    _publish(events, realtime)


# =============================================================================
# Schema conversion
# =============================================================================

def _space_read(space: Space) -> SpaceRead:
    return SpaceRead(
        public_id=space.public_id,
        shortcode=space.shortcode,
        name=space.name,
        type=space.type,
        color=space.color,
        icon=space.icon,
    )


def _attachment_read(view: AttachmentView) -> AttachmentRead:
    return AttachmentRead(
        public_id=view.attachment.public_id,
        file_name=view.attachment.file_name,
        type=view.attachment.type,
        size=view.attachment.size,
        inline=view.attachment.inline,
        url=view.url,
    )


def _participant_read(view: ParticipantView) -> ParticipantRead:
    participant = view.participant
    return ParticipantRead(
        public_id=participant.public_id,
        role=participant.role,
        notifications=participant.notifications,
        email_identity_public_id=view.email_identity_public_id,
        last_read_at=participant.last_read_at,
        hidden=participant.hidden,
        active=participant.active,
        identity=ParticipantIdentityRead(
            kind=view.kind,
            public_id=view.public_id,
            name=view.name,
            handle=view.handle,
            color=view.color,
            email_address=view.email_address,
            contact_type=view.contact_type,
        ),
    )


def to_entry_read(view: EntryView) -> EntryRead:
    entry = view.entry
    return EntryRead(
        public_id=entry.public_id,
        type=entry.type,
        visibility=entry.visibility,
        body=entry.body,
        body_plain_text=entry.body_plain_text,
        created_at=entry.created_at,
        author_participant_public_id=view.author_participant_public_id,
        reply_to_entry_public_id=view.reply_to_entry_public_id,
        attachments=[_attachment_read(a) for a in view.attachments],
    )


def to_detail_read(detail: ConvoDetail) -> ConvoDetailRead:
    """Convert a ConvoDetail to its response schema."""
    return ConvoDetailRead(
        public_id=detail.convo.public_id,
        last_updated_at=detail.convo.last_updated_at,
        created_at=detail.convo.created_at,
        subjects=[SubjectRead(subject=s.subject, created_at=s.created_at) for s in detail.subjects],
        participants=[_participant_read(p) for p in detail.participants],
        attachments=[_attachment_read(a) for a in detail.attachments],
        spaces=[_space_read(s) for s in detail.spaces],
        own_participant_public_id=detail.own_participant_public_id,
    )


def to_summary_read(summary: ConvoSummary) -> ConvoSummaryRead:
    latest = None
    if summary.latest_entry is not None:
        entry = summary.latest_entry.entry
        latest = EntryPreviewRead(
            public_id=entry.public_id,
            type=entry.type,
            body_plain_text=entry.body_plain_text,
            created_at=entry.created_at,
            author_participant_public_id=summary.latest_entry.author_participant_public_id,
        )
    own = summary.own_participant
    return ConvoSummaryRead(
        public_id=summary.convo.public_id,
        last_updated_at=summary.convo.last_updated_at,
        subject=summary.subject,
        participant_count=summary.participant_count,
        own_participant_public_id=own.public_id if own else None,
        last_read_at=own.last_read_at if own else None,
        latest_entry=latest,
    )


def to_workflows_read(view: SpaceWorkflowView) -> ConvoSpaceWorkflowsRead:
    def _workflow(workflow: SpaceWorkflow) -> WorkflowRead:
        return WorkflowRead(
            public_id=workflow.public_id,
            name=workflow.name,
            type=workflow.type,
            order=workflow.order,
            color=workflow.color,
            icon=workflow.icon,
            description=workflow.description,
        )

    return ConvoSpaceWorkflowsRead(
        space=_space_read(view.space),
        current_workflow_public_id=view.current_workflow_public_id,
        open=[_workflow(w) for w in view.open],
        active=[_workflow(w) for w in view.active],
        closed=[_workflow(w) for w in view.closed],
    )
