"""Tests for conversation lifecycle operations."""

from datetime import timedelta

import pytest
from sqlalchemy import delete, func, select

from app.core.errors import NotFoundError, OutboundDispatchError, UnauthorizedError, ValidationError
from app.core.websocket import space_channel
from app.db.enums import (
    ConvoEntryType,
    ConvoEntryVisibility,
    ConvoParticipantRole,
    SpaceType,
    SpaceWorkflowType,
)
from app.db.models import (
    Contact,
    Convo,
    ConvoAttachment,
    ConvoEntry,
    ConvoEntryPrivateVisibilityParticipant,
    ConvoParticipant,
    ConvoSeenTimestamp,
    ConvoSubject,
    ConvoToSpace,
    ConvoWorkflow,
    TeamMember,
)
from app.schemas.convo import ConvoCreate, ConvoReply
from app.services import convo_service, entry_service, participant_service
from app.utils.public_ids import generate_public_id
from tests.conftest import RecordingMailClient, doc


class RecordingStorage:
    def __init__(self):
        self.deleted = []

    def delete_attachments(self, keys) -> bool:
        self.deleted.extend(keys)
        return True


def _count(db, model) -> int:
    return db.scalar(select(func.count()).select_from(model))


def _new_convo(author_public_id: str, *, space_shortcode: str = "shared", **fields) -> ConvoCreate:
    values = {
        "participants_org_member_public_ids": [author_public_id],
        "to": {"type": "org_member", "value": author_public_id},
        "topic": "  Order #1042  ",
        "message": doc("Hello there"),
        "space_shortcode": space_shortcode,
    }
    values.update(fields)
    return ConvoCreate(**values)


def _create(db, ctx, notifier, mail_client=None, **fields):
    return convo_service.create_convo(
        db,
        org=ctx,
        data=_new_convo(ctx.member_public_id, **fields),
        mail_client=mail_client or RecordingMailClient(),
        realtime=notifier,
    )


def _reply(db, ctx, notifier, entry_public_id, mail_client=None, **fields):
    values = {"reply_to_message_public_id": entry_public_id, "message": doc("Thanks!")}
    values.update(fields)
    return convo_service.reply_to_convo(
        db,
        org=ctx,
        data=ConvoReply(**values),
        mail_client=mail_client or RecordingMailClient(),
        realtime=notifier,
    )


def _cascade_counts(db) -> dict:
    models = (Convo, ConvoSubject, ConvoParticipant, ConvoEntry, ConvoSeenTimestamp, ConvoToSpace)
    return {model.__name__: _count(db, model) for model in models}


def _convo(db, public_id: str) -> Convo:
    return db.scalars(select(Convo).where(Convo.public_id == public_id)).one()


def _space_ids(db, convo: Convo) -> set[int]:
    return set(db.scalars(select(ConvoToSpace.space_id).where(ConvoToSpace.convo_id == convo.id)).all())


# =============================================================================
# Create
# =============================================================================

def test_create_convo_in_open_space(db, factory, test_org, test_member, org_ctx, open_space, notifier, mail_client):
    colleague = factory.member(test_org)

    created = _create(
        db,
        org_ctx,
        notifier,
        mail_client,
        participants_org_member_public_ids=[test_member.public_id, colleague.public_id],
    )

    convo = _convo(db, created.convo_public_id)
    assert _space_ids(db, convo) == {open_space.id}
    entry = db.scalars(select(ConvoEntry).where(ConvoEntry.public_id == created.entry_public_id)).one()
    assert entry.body_plain_text == "Hello there"
    assert entry.type == ConvoEntryType.MESSAGE
    assert convo.last_updated_at == entry.created_at
    participants = participant_service.list_participants(db, convo_id=convo.id)
    assert [p.org_member_id for p in participants] == [test_member.id, colleague.id]
    assert mail_client.requests == []

    events = notifier.named("convo:new")
    assert {e.channel for e in events} == {None, space_channel(open_space.public_id)}
    member_event = next(e for e in events if e.channel is None)
    assert set(member_event.org_member_public_ids) == {test_member.public_id, colleague.public_id}
    assert member_event.data == {"publicId": created.convo_public_id}


def test_topic_is_trimmed(db, org_ctx, open_space, notifier):
    created = _create(db, org_ctx, notifier)

    detail = convo_service.get_convo(db, org=org_ctx, convo_public_id=created.convo_public_id)
    assert [s.subject for s in detail.subjects] == ["Order #1042"]


def test_create_requires_create_permission(db, factory, test_org, test_member, org_ctx, notifier):
    private = factory.space(test_org, type=SpaceType.PRIVATE, shortcode="billing")
    factory.space_member(private, member=test_member, can_create=False)

    with pytest.raises(UnauthorizedError):
        _create(db, org_ctx, notifier, space_shortcode="billing")

    assert _count(db, Convo) == 0
    assert notifier.events == []


def test_create_in_unknown_space(db, org_ctx, notifier):
    with pytest.raises(NotFoundError):
        _create(db, org_ctx, notifier, space_shortcode="nowhere")


def test_recipient_outside_participants_is_rejected(db, factory, test_org, org_ctx, open_space, notifier):
    stranger = factory.member(test_org)

    with pytest.raises(ValidationError):
        _create(db, org_ctx, notifier, to={"type": "org_member", "value": stranger.public_id})


def test_private_space_also_files_into_outsider_personal_space(
    db, factory, test_org, test_member, org_ctx, notifier
):
    private = factory.space(test_org, type=SpaceType.PRIVATE, shortcode="legal")
    factory.space_member(private, member=test_member)
    outsider = factory.member(test_org)

    created = _create(
        db,
        org_ctx,
        notifier,
        space_shortcode="legal",
        participants_org_member_public_ids=[test_member.public_id, outsider.public_id],
    )

    assert _space_ids(db, _convo(db, created.convo_public_id)) == {private.id, outsider.personal_space_id}
    outsider_ctx = factory.context(test_org, outsider)
    assert convo_service.get_org_member_specific_convo(
        db, org=outsider_ctx, convo_public_id=created.convo_public_id
    ) is not None


def test_create_with_contact_dispatches_to_recipient(
    db, factory, test_org, test_member, org_ctx, open_space, notifier, mail_client
):
    identity = factory.identity(test_org, authorize=(test_member,))

    created = _create(
        db,
        org_ctx,
        notifier,
        mail_client,
        participants_emails=["buyer@customer.example"],
        to={"type": "email", "value": "buyer@customer.example"},
        send_as_email_identity_public_id=identity.public_id,
    )

    convo = _convo(db, created.convo_public_id)
    contact_row = db.scalars(
        select(ConvoParticipant).where(
            ConvoParticipant.convo_id == convo.id, ConvoParticipant.contact_id.is_not(None)
        )
    ).one()
    [request] = mail_client.requests
    assert request.entry_public_id == created.entry_public_id
    assert request.send_as_identity_public_id == identity.public_id
    assert request.to_participant_public_id == contact_row.public_id


def test_contacts_without_identity_are_rejected(db, org_ctx, open_space, notifier):
    with pytest.raises(ValidationError):
        _create(
            db,
            org_ctx,
            notifier,
            participants_emails=["buyer@customer.example"],
            to={"type": "email", "value": "buyer@customer.example"},
        )
    assert _count(db, Contact) == 0


def test_comment_to_contacts_is_not_dispatched(db, org_ctx, open_space, notifier, mail_client):
    _create(
        db,
        org_ctx,
        notifier,
        mail_client,
        participants_emails=["buyer@customer.example"],
        to={"type": "email", "value": "buyer@customer.example"},
        first_message_type=ConvoEntryType.COMMENT,
    )
    assert mail_client.requests == []


def test_convo_can_start_with_a_draft(db, factory, test_org, test_member, org_ctx, open_space, notifier, mail_client):
    identity = factory.identity(test_org, authorize=(test_member,))

    created = _create(
        db,
        org_ctx,
        notifier,
        mail_client,
        participants_emails=["buyer@customer.example"],
        to={"type": "email", "value": "buyer@customer.example"},
        send_as_email_identity_public_id=identity.public_id,
        first_message_type=ConvoEntryType.DRAFT,
    )

    entry = db.scalars(select(ConvoEntry).where(ConvoEntry.public_id == created.entry_public_id)).one()
    assert entry.type == ConvoEntryType.DRAFT
    assert mail_client.requests == []


def test_dispatch_failure_keeps_the_convo(db, factory, test_org, org_ctx, open_space, notifier):
    identity = factory.identity(test_org)

    with pytest.raises(OutboundDispatchError) as exc_info:
        _create(
            db,
            org_ctx,
            notifier,
            RecordingMailClient(fail=True),
            participants_emails=["buyer@customer.example"],
            to={"type": "email", "value": "buyer@customer.example"},
            send_as_email_identity_public_id=identity.public_id,
        )

    convo = _convo(db, exc_info.value.convo_public_id)
    assert db.scalars(select(ConvoEntry).where(ConvoEntry.convo_id == convo.id)).one().public_id == (
        exc_info.value.entry_public_id
    )
    assert notifier.named("convo:new")


def test_failure_mid_write_leaves_nothing_behind(
    db, monkeypatch, factory, test_org, org_ctx, open_space, notifier
):
    identity = factory.identity(test_org)

    def failing_write(*args, **kwargs):
        raise ValidationError("One or more attachments is invalid")

    monkeypatch.setattr(entry_service, "write_entry", failing_write)

    with pytest.raises(ValidationError):
        _create(
            db,
            org_ctx,
            notifier,
            participants_emails=["new@customer.example"],
            to={"type": "email", "value": "new@customer.example"},
            send_as_email_identity_public_id=identity.public_id,
        )

    assert _count(db, Convo) == 0
    assert _count(db, ConvoParticipant) == 0
    assert _count(db, Contact) == 0
    assert notifier.events == []


def test_create_claims_pending_attachment(db, factory, test_org, org_ctx, open_space, notifier):
    staged = factory.pending_attachment(test_org)

    created = _create(
        db,
        org_ctx,
        notifier,
        attachments=[
            {"attachment_public_id": staged.public_id, "file_name": "report.pdf", "file_type": "application/pdf", "size": 12}
        ],
    )

    detail = convo_service.get_convo(db, org=org_ctx, convo_public_id=created.convo_public_id)
    [attachment] = detail.attachments
    assert attachment.attachment.public_id == staged.public_id
    assert attachment.url.endswith(f"/{staged.public_id}/report.pdf")


def test_unstaged_attachment_is_rejected(db, org_ctx, open_space, notifier):
    with pytest.raises(ValidationError):
        _create(
            db,
            org_ctx,
            notifier,
            attachments=[
                {
                    "attachment_public_id": generate_public_id("convoAttachments"),
                    "file_name": "x.pdf",
                    "file_type": "application/pdf",
                    "size": 1,
                }
            ],
        )
    assert _count(db, Convo) == 0


# =============================================================================
# Reply
# =============================================================================

def test_space_member_without_row_can_reply(db, factory, test_org, org_ctx, open_space, notifier):
    created = _create(db, org_ctx, notifier)
    other = factory.member(test_org)
    other_ctx = factory.context(test_org, other)

    reply = _reply(db, other_ctx, notifier, created.entry_public_id)

    assert reply.body_plain_text == "Thanks!"
    convo = _convo(db, created.convo_public_id)
    row = participant_service.find_member_participant(db, convo_id=convo.id, org_member_id=other.id)
    assert row.role == ConvoParticipantRole.CONTRIBUTOR
    entry = db.scalars(select(ConvoEntry).where(ConvoEntry.public_id == reply.entry_public_id)).one()
    assert entry.author_id == row.id
    events = notifier.named("convo:entry:new")
    assert {e.channel for e in events} == {None, space_channel(open_space.public_id)}
    assert events[0].data == {
        "convoPublicId": created.convo_public_id,
        "convoEntryPublicId": reply.entry_public_id,
    }


def test_reply_keeps_the_subject_of_the_entry_replied_to(db, org_ctx, open_space, notifier):
    created = _create(db, org_ctx, notifier)
    first_reply = _reply(db, org_ctx, notifier, created.entry_public_id)
    second_reply = _reply(db, org_ctx, notifier, first_reply.entry_public_id)

    def subject_of(public_id):
        return db.scalar(select(ConvoEntry.subject_id).where(ConvoEntry.public_id == public_id))

    first_subject = subject_of(created.entry_public_id)
    assert first_subject is not None
    assert subject_of(first_reply.entry_public_id) == first_subject
    assert subject_of(second_reply.entry_public_id) == first_subject


def test_team_member_without_row_gets_one_on_reply(db, factory, test_org, test_member, notifier):
    private = factory.space(test_org, type=SpaceType.PRIVATE, shortcode="escalations")
    owner = factory.member(test_org)
    factory.space_member(private, member=owner)
    team = factory.team(test_org)
    created = _create(
        db,
        factory.context(test_org, owner),
        notifier,
        space_shortcode="escalations",
        participants_org_member_public_ids=[owner.public_id],
        participants_team_public_ids=[team.public_id],
    )
    db.add(TeamMember(org_id=test_org.id, team_id=team.id, org_member_id=test_member.id))
    db.commit()
    convo = _convo(db, created.convo_public_id)
    assert participant_service.find_member_participant(db, convo_id=convo.id, org_member_id=test_member.id) is None

    reply = _reply(db, factory.context(test_org, test_member), notifier, created.entry_public_id)

    row = participant_service.find_member_participant(db, convo_id=convo.id, org_member_id=test_member.id)
    assert row.role == ConvoParticipantRole.CONTRIBUTOR
    entry = db.scalars(select(ConvoEntry).where(ConvoEntry.public_id == reply.entry_public_id)).one()
    assert entry.author_id == row.id


def test_reply_without_access_is_rejected(db, factory, test_org, test_member, notifier):
    private = factory.space(test_org, type=SpaceType.PRIVATE, shortcode="hr")
    owner = factory.member(test_org)
    factory.space_member(private, member=owner)
    created = _create(db, factory.context(test_org, owner), notifier, space_shortcode="hr")

    with pytest.raises(UnauthorizedError):
        _reply(db, factory.context(test_org, test_member), notifier, created.entry_public_id)


def test_reply_needs_the_matching_flag(db, factory, test_org, test_member, org_ctx, notifier):
    private = factory.space(test_org, type=SpaceType.PRIVATE, shortcode="ops")
    owner = factory.member(test_org)
    factory.space_member(private, member=owner)
    factory.space_member(private, member=test_member, can_reply=False)
    created = _create(db, factory.context(test_org, owner), notifier, space_shortcode="ops")

    with pytest.raises(UnauthorizedError):
        _reply(db, org_ctx, notifier, created.entry_public_id)
    comment = _reply(db, org_ctx, notifier, created.entry_public_id, message_type=ConvoEntryType.COMMENT)
    assert comment.entry_public_id


def test_reply_to_unknown_entry(db, org_ctx, notifier):
    with pytest.raises(NotFoundError):
        _reply(db, org_ctx, notifier, generate_public_id("convoEntries"))


def test_reply_to_contacts_requires_authorized_sender(
    db, factory, test_org, test_member, org_ctx, open_space, notifier, mail_client
):
    authorized = factory.identity(test_org, authorize=(test_member,))
    unauthorized = factory.identity(test_org)
    created = _create(
        db,
        org_ctx,
        notifier,
        mail_client,
        participants_emails=["buyer@customer.example"],
        to={"type": "email", "value": "buyer@customer.example"},
        send_as_email_identity_public_id=authorized.public_id,
    )

    with pytest.raises(UnauthorizedError):
        _reply(
            db, org_ctx, notifier, created.entry_public_id, mail_client,
            send_as_email_identity_public_id=unauthorized.public_id,
        )
    with pytest.raises(ValidationError):
        _reply(db, org_ctx, notifier, created.entry_public_id, mail_client)

    reply = _reply(
        db, org_ctx, notifier, created.entry_public_id, mail_client,
        send_as_email_identity_public_id=authorized.public_id,
    )
    assert [r.entry_public_id for r in mail_client.requests] == [created.entry_public_id, reply.entry_public_id]


def test_space_grant_authorizes_sender(db, factory, test_org, test_member, org_ctx, open_space, notifier, mail_client):
    via_space = factory.identity(test_org, authorize=(open_space,))
    created = _create(
        db,
        org_ctx,
        notifier,
        mail_client,
        participants_emails=["buyer@customer.example"],
        to={"type": "email", "value": "buyer@customer.example"},
        send_as_email_identity_public_id=via_space.public_id,
    )

    _reply(
        db, org_ctx, notifier, created.entry_public_id, mail_client,
        send_as_email_identity_public_id=via_space.public_id,
    )
    assert len(mail_client.requests) == 2


def test_internal_comment_on_contact_convo_needs_no_identity(
    db, factory, test_org, test_member, org_ctx, open_space, notifier, mail_client
):
    identity = factory.identity(test_org, authorize=(test_member,))
    created = _create(
        db,
        org_ctx,
        notifier,
        mail_client,
        participants_emails=["buyer@customer.example"],
        to={"type": "email", "value": "buyer@customer.example"},
        send_as_email_identity_public_id=identity.public_id,
    )

    _reply(db, org_ctx, notifier, created.entry_public_id, mail_client, message_type=ConvoEntryType.COMMENT)

    assert len(mail_client.requests) == 1


def test_reply_switches_author_identity(db, factory, test_org, test_member, org_ctx, open_space, notifier, mail_client):
    first = factory.identity(test_org, authorize=(test_member,))
    second = factory.identity(test_org, authorize=(test_member,))
    created = _create(
        db,
        org_ctx,
        notifier,
        mail_client,
        participants_emails=["buyer@customer.example"],
        to={"type": "email", "value": "buyer@customer.example"},
        send_as_email_identity_public_id=first.public_id,
    )

    _reply(
        db, org_ctx, notifier, created.entry_public_id, mail_client,
        send_as_email_identity_public_id=second.public_id,
    )

    convo = _convo(db, created.convo_public_id)
    own = participant_service.find_member_participant(db, convo_id=convo.id, org_member_id=test_member.id)
    assert own.email_identity_id == second.id


# =============================================================================
# Read
# =============================================================================

def test_get_convo_detail_marks_read(db, factory, test_org, test_member, org_ctx, open_space, notifier):
    created = _create(
        db,
        org_ctx,
        notifier,
        participants_emails=["buyer@customer.example"],
        to={"type": "org_member", "value": test_member.public_id},
        first_message_type=ConvoEntryType.COMMENT,
    )

    detail = convo_service.get_convo(db, org=org_ctx, convo_public_id=created.convo_public_id)
    read = convo_service.to_detail_read(detail)

    assert read.public_id == created.convo_public_id
    assert [p.identity.kind.value for p in read.participants] == ["org_member", "contact"]
    assert read.participants[1].identity.email_address == "buyer@customer.example"
    assert [s.public_id for s in read.spaces] == [open_space.public_id]
    own = next(p for p in read.participants if p.public_id == read.own_participant_public_id)
    assert own.last_read_at is not None


def test_get_convo_errors(db, factory, test_org, test_member, notifier):
    private = factory.space(test_org, type=SpaceType.PRIVATE, shortcode="hr")
    owner = factory.member(test_org)
    factory.space_member(private, member=owner)
    created = _create(db, factory.context(test_org, owner), notifier, space_shortcode="hr")
    ctx = factory.context(test_org, test_member)

    with pytest.raises(UnauthorizedError):
        convo_service.get_convo(db, org=ctx, convo_public_id=created.convo_public_id)
    with pytest.raises(NotFoundError):
        convo_service.get_convo(db, org=ctx, convo_public_id=generate_public_id("convos"))
    assert convo_service.get_org_member_specific_convo(
        db, org=ctx, convo_public_id=created.convo_public_id
    ) is None


def test_convo_is_scoped_to_its_org(db, factory, org_ctx, open_space, notifier):
    created = _create(db, org_ctx, notifier)
    other_org = factory.org()
    other_member = factory.member(other_org)

    with pytest.raises(NotFoundError):
        convo_service.get_convo(
            db, org=factory.context(other_org, other_member), convo_public_id=created.convo_public_id
        )


def test_entries_page_newest_first(db, org_ctx, open_space, notifier):
    created = _create(db, org_ctx, notifier)
    replies = [_reply(db, org_ctx, notifier, created.entry_public_id).entry_public_id for _ in range(3)]
    expected = [*reversed(replies), created.entry_public_id]

    first = convo_service.list_convo_entries(db, org=org_ctx, convo_public_id=created.convo_public_id, limit=2)
    second = convo_service.list_convo_entries(
        db, org=org_ctx, convo_public_id=created.convo_public_id, cursor=first.next_cursor, limit=2
    )

    assert [v.entry.public_id for v in first.items + second.items] == expected
    assert first.next_cursor is not None
    assert second.next_cursor is None
    assert first.items[0].reply_to_entry_public_id == created.entry_public_id


def test_private_entries_are_hidden_from_others(db, factory, test_org, test_member, org_ctx, open_space, notifier):
    created = _create(db, org_ctx, notifier)
    note = _reply(db, org_ctx, notifier, created.entry_public_id, message_type=ConvoEntryType.COMMENT)
    convo = _convo(db, created.convo_public_id)
    own = participant_service.find_member_participant(db, convo_id=convo.id, org_member_id=test_member.id)
    entry = db.scalars(select(ConvoEntry).where(ConvoEntry.public_id == note.entry_public_id)).one()
    entry.visibility = ConvoEntryVisibility.PRIVATE
    db.add(ConvoEntryPrivateVisibilityParticipant(org_id=test_org.id, entry_id=entry.id, convo_member_id=own.id))
    db.commit()
    other_ctx = factory.context(test_org, factory.member(test_org))

    mine = convo_service.list_convo_entries(db, org=org_ctx, convo_public_id=created.convo_public_id)
    theirs = convo_service.list_convo_entries(db, org=other_ctx, convo_public_id=created.convo_public_id)

    assert note.entry_public_id in [v.entry.public_id for v in mine.items]
    assert [v.entry.public_id for v in theirs.items] == [created.entry_public_id]


def test_summary_skips_drafts(db, org_ctx, open_space, notifier):
    created = _create(db, org_ctx, notifier)
    _reply(db, org_ctx, notifier, created.entry_public_id, message_type=ConvoEntryType.DRAFT)

    summary = convo_service.get_org_member_specific_convo(db, org=org_ctx, convo_public_id=created.convo_public_id)
    read = convo_service.to_summary_read(summary)

    assert read.latest_entry.public_id == created.entry_public_id
    assert read.subject == "Order #1042"
    assert read.participant_count == 1
    assert read.last_read_at is not None


def test_mark_seen(db, factory, test_org, test_member, org_ctx, open_space, notifier):
    created = _create(db, org_ctx, notifier)
    convo = _convo(db, created.convo_public_id)
    own = participant_service.find_member_participant(db, convo_id=convo.id, org_member_id=test_member.id)
    later = convo.last_updated_at + timedelta(days=1)

    convo_service.mark_convo_seen(db, org=org_ctx, convo_public_id=created.convo_public_id, seen_at=later)

    assert db.get(ConvoSeenTimestamp, (convo.id, own.id, test_member.id)).seen_at == later
    with pytest.raises(UnauthorizedError):
        convo_service.mark_convo_seen(
            db,
            org=factory.context(test_org, factory.member(test_org)),
            convo_public_id=created.convo_public_id,
        )


# =============================================================================
# Delete
# =============================================================================

def test_delete_removes_everything(db, factory, test_org, org_ctx, open_space, notifier):
    staged = factory.pending_attachment(test_org, filename="invoice.pdf")
    created = _create(
        db,
        org_ctx,
        notifier,
        attachments=[
            {"attachment_public_id": staged.public_id, "file_name": "invoice.pdf", "file_type": "application/pdf", "size": 3}
        ],
    )
    _reply(db, org_ctx, notifier, created.entry_public_id)
    storage = RecordingStorage()

    convo_service.delete_convos(
        db, org=org_ctx, convo_public_ids=[created.convo_public_id], storage=storage, realtime=notifier
    )

    for model in (Convo, ConvoEntry, ConvoParticipant, ConvoAttachment, ConvoToSpace, ConvoSeenTimestamp):
        assert _count(db, model) == 0
    assert storage.deleted == [f"{test_org.public_id}/{staged.public_id}/invoice.pdf"]
    [event] = notifier.named("convo:deleted")
    assert event.channel == space_channel(open_space.public_id)
    assert event.data == {"publicId": [created.convo_public_id]}


def test_delete_batch_is_all_or_nothing(db, factory, test_org, test_member, org_ctx, open_space, notifier):
    mine = _create(db, org_ctx, notifier)
    _reply(db, org_ctx, notifier, mine.entry_public_id)
    private = factory.space(test_org, type=SpaceType.PRIVATE, shortcode="hr")
    owner = factory.member(test_org)
    factory.space_member(private, member=owner)
    theirs = _create(db, factory.context(test_org, owner), notifier, space_shortcode="hr")
    before = _cascade_counts(db)

    with pytest.raises(UnauthorizedError):
        convo_service.delete_convos(
            db,
            org=org_ctx,
            convo_public_ids=[mine.convo_public_id, theirs.convo_public_id],
            storage=RecordingStorage(),
            realtime=notifier,
        )
    assert _cascade_counts(db) == before

    with pytest.raises(NotFoundError):
        convo_service.delete_convos(
            db,
            org=org_ctx,
            convo_public_ids=[mine.convo_public_id, generate_public_id("convos")],
            storage=RecordingStorage(),
            realtime=notifier,
        )
    assert _cascade_counts(db) == before


def test_non_participant_in_open_space_can_delete(db, factory, test_org, org_ctx, open_space, notifier):
    created = _create(db, org_ctx, notifier)
    other_ctx = factory.context(test_org, factory.member(test_org))

    convo_service.delete_convos(
        db, org=other_ctx, convo_public_ids=[created.convo_public_id], storage=RecordingStorage(), realtime=notifier
    )

    assert _count(db, Convo) == 0


def test_unfiled_convo_can_only_be_deleted_by_participants(db, factory, test_org, org_ctx, open_space, notifier):
    created = _create(db, org_ctx, notifier)
    convo = _convo(db, created.convo_public_id)
    db.execute(delete(ConvoToSpace).where(ConvoToSpace.convo_id == convo.id))
    db.commit()
    other_ctx = factory.context(test_org, factory.member(test_org))

    with pytest.raises(UnauthorizedError):
        convo_service.delete_convos(
            db, org=other_ctx, convo_public_ids=[created.convo_public_id], storage=RecordingStorage(), realtime=notifier
        )
    assert _count(db, Convo) == 1

    convo_service.delete_convos(
        db, org=org_ctx, convo_public_ids=[created.convo_public_id], storage=RecordingStorage(), realtime=notifier
    )
    assert _count(db, Convo) == 0


# =============================================================================
# Workflows
# =============================================================================

@pytest.fixture
def stages(factory, open_space):
    return {
        "new": factory.workflow(open_space, type=SpaceWorkflowType.OPEN, name="New", order=1),
        "triage": factory.workflow(open_space, type=SpaceWorkflowType.OPEN, name="Triage", order=0),
        "working": factory.workflow(open_space, type=SpaceWorkflowType.ACTIVE, name="Working"),
        "done": factory.workflow(open_space, type=SpaceWorkflowType.CLOSED, name="Done"),
        "old": factory.workflow(open_space, type=SpaceWorkflowType.ACTIVE, name="Old", disabled=True),
    }


def test_workflow_stages_and_current(db, org_ctx, open_space, notifier, stages):
    created = _create(db, org_ctx, notifier)

    for name in ("new", "working"):
        convo_service.set_convo_space_workflow(
            db,
            org=org_ctx,
            convo_public_id=created.convo_public_id,
            space_public_id=open_space.public_id,
            workflow_public_id=stages[name].public_id,
            realtime=notifier,
        )

    [view] = convo_service.get_convo_space_workflows(db, org=org_ctx, convo_public_id=created.convo_public_id)
    read = convo_service.to_workflows_read(view)
    assert read.current_workflow_public_id == stages["working"].public_id
    assert [w.name for w in read.open] == ["Triage", "New"]
    assert [w.name for w in read.active] == ["Working"]
    assert [w.name for w in read.closed] == ["Done"]
    assert _count(db, ConvoWorkflow) == 2
    event = notifier.named("convo:workflow:update")[-1]
    assert event.data == {
        "convoPublicId": created.convo_public_id,
        "orgShortcode": org_ctx.org_shortcode,
        "workflowPublicId": stages["working"].public_id,
    }


def test_closing_needs_its_own_flag(db, factory, test_member, org_ctx, open_space, notifier, stages):
    created = _create(db, org_ctx, notifier)
    factory.space_member(open_space, member=test_member, can_set_workflow_to_closed=False)

    with pytest.raises(UnauthorizedError):
        convo_service.set_convo_space_workflow(
            db,
            org=org_ctx,
            convo_public_id=created.convo_public_id,
            space_public_id=open_space.public_id,
            workflow_public_id=stages["done"].public_id,
            realtime=notifier,
        )
    assert _count(db, ConvoWorkflow) == 0


def test_workflow_of_unfiled_space(db, factory, test_org, org_ctx, open_space, notifier):
    created = _create(db, org_ctx, notifier)
    elsewhere = factory.space(test_org, type=SpaceType.OPEN)
    stage = factory.workflow(elsewhere)

    with pytest.raises(NotFoundError, match="not in this Space"):
        convo_service.set_convo_space_workflow(
            db,
            org=org_ctx,
            convo_public_id=created.convo_public_id,
            space_public_id=elsewhere.public_id,
            workflow_public_id=stage.public_id,
            realtime=notifier,
        )


# =============================================================================
# Add / move
# =============================================================================

def test_add_to_space_is_idempotent(db, factory, test_org, test_member, org_ctx, open_space, notifier):
    target = factory.space(test_org, type=SpaceType.PRIVATE)
    factory.space_member(target, member=test_member)
    created = _create(db, org_ctx, notifier)

    for _ in range(2):
        convo_service.add_convo_to_space(
            db,
            org=org_ctx,
            convo_public_id=created.convo_public_id,
            space_public_id=target.public_id,
            realtime=notifier,
        )

    assert _space_ids(db, _convo(db, created.convo_public_id)) == {open_space.id, target.id}
    assert notifier.named("convo:new")[-1].channel == space_channel(target.public_id)


def test_add_requires_access_to_target(db, factory, test_org, org_ctx, open_space, notifier):
    target = factory.space(test_org, type=SpaceType.PRIVATE)
    created = _create(db, org_ctx, notifier)

    with pytest.raises(UnauthorizedError):
        convo_service.add_convo_to_space(
            db,
            org=org_ctx,
            convo_public_id=created.convo_public_id,
            space_public_id=target.public_id,
            realtime=notifier,
        )


def test_move_replaces_filing_and_drops_workflow(
    db, factory, test_org, test_member, org_ctx, open_space, notifier, stages
):
    target = factory.space(test_org, type=SpaceType.PRIVATE)
    factory.space_member(target, member=test_member)
    created = _create(db, org_ctx, notifier)
    convo_service.set_convo_space_workflow(
        db,
        org=org_ctx,
        convo_public_id=created.convo_public_id,
        space_public_id=open_space.public_id,
        workflow_public_id=stages["new"].public_id,
        realtime=notifier,
    )

    convo_service.move_convo_to_space(
        db,
        org=org_ctx,
        convo_public_id=created.convo_public_id,
        space_public_id=target.public_id,
        realtime=notifier,
    )

    assert _space_ids(db, _convo(db, created.convo_public_id)) == {target.id}
    assert _count(db, ConvoWorkflow) == 0
    assert notifier.named("convo:new")[-1].channel == space_channel(target.public_id)
    [vacated] = notifier.named("convo:deleted")
    assert vacated.channel == space_channel(open_space.public_id)
    assert vacated.data == {"publicId": created.convo_public_id}


def test_move_needs_move_flag(db, factory, test_org, test_member, org_ctx, open_space, notifier):
    target = factory.space(test_org, type=SpaceType.OPEN)
    factory.space_member(open_space, member=test_member, can_move_to_another_space=False)
    created = _create(db, org_ctx, notifier)

    with pytest.raises(UnauthorizedError):
        convo_service.move_convo_to_space(
            db,
            org=org_ctx,
            convo_public_id=created.convo_public_id,
            space_public_id=target.public_id,
            realtime=notifier,
        )
