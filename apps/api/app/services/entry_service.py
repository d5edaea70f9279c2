"""Conversation entry writer.

Persists one immutable entry: rewrites inline-proxy images to storage URLs,
derives the plain-text projection, records attachments, claims staged
uploads and moves the author's seen watermarks to the write time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.db.enums import ConvoEntryType, ConvoEntryVisibility
from app.db.models import (
    Convo,
    ConvoAttachment,
    ConvoEntry,
    ConvoEntryReply,
    ConvoEntrySeenTimestamp,
    ConvoParticipant,
    ConvoSeenTimestamp,
    PendingAttachment,
)
from app.db.types import utc_now
from app.services import storage_service, tiptap_service
from app.types import JsonObject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttachmentInput:
    """A file pre-uploaded to storage and staged as a pending attachment."""
    attachment_public_id: str
    file_name: str
    file_type: str
    size: int


@dataclass
class PreparedBody:
    body: JsonObject
    plain_text: str
    inline_attachments: list[AttachmentInput] = field(default_factory=list)


def prepare_body(body: object, *, org_shortcode: str) -> PreparedBody:
    """
    Validate a TipTap body and rewrite its inline-proxy images.

    Each proxy image issued for this org becomes an inline attachment and
    its ``src`` is replaced by the storage URL. Other images are untouched.
    """
    doc = tiptap_service.validate_tiptap_doc(body)
    inline: dict[str, AttachmentInput] = {}

    def _rewrite(url: str) -> str:
        proxy = tiptap_service.parse_inline_proxy_url(url)
        if proxy is None or proxy.org_shortcode != org_shortcode:
            return url
        inline.setdefault(
            proxy.attachment_public_id,
            AttachmentInput(
                attachment_public_id=proxy.attachment_public_id,
                file_name=proxy.file_name,
                file_type=proxy.file_type,
                size=proxy.size,
            ),
        )
        return storage_service.build_attachment_url(
            org_shortcode=org_shortcode,
            attachment_public_id=proxy.attachment_public_id,
            file_name=proxy.file_name,
        )

    rewritten = tiptap_service.walk_and_replace_images(doc, _rewrite)
    return PreparedBody(
        body=rewritten,
        plain_text=tiptap_service.tiptap_to_text(rewritten),
        inline_attachments=list(inline.values()),
    )


def validate_pending_attachments(
    db: Session, *, org_id: int, attachments: list[AttachmentInput]
) -> None:
    """
    Every hard attachment must be staged for this org.

    Raises:
        ValidationError: an attachment was never uploaded or was already used
    """
    wanted = {a.attachment_public_id for a in attachments}
    if not wanted:
        return
    found = set(
        db.scalars(
            select(PendingAttachment.public_id).where(
                PendingAttachment.org_id == org_id,
                PendingAttachment.public_id.in_(wanted),
            )
        ).all()
    )
    if found != wanted:
        raise ValidationError("One or more attachments is invalid")


def upsert_seen(
    db: Session,
    *,
    org_id: int,
    convo_id: int,
    participant_id: int,
    org_member_id: int,
    seen_at: datetime,
    entry_id: int | None = None,
) -> None:
    """Move the convo (and optionally entry) seen watermark to ``seen_at``."""
    db.merge(
        ConvoSeenTimestamp(
            convo_id=convo_id,
            participant_id=participant_id,
            org_member_id=org_member_id,
            org_id=org_id,
            seen_at=seen_at,
        )
    )
    if entry_id is not None:
        db.merge(
            ConvoEntrySeenTimestamp(
                entry_id=entry_id,
                participant_id=participant_id,
                org_member_id=org_member_id,
                org_id=org_id,
                seen_at=seen_at,
            )
        )
    db.flush()


def _record_attachments(
    db: Session,
    *,
    entry: ConvoEntry,
    author: ConvoParticipant,
    hard: list[AttachmentInput],
    inline: list[AttachmentInput],
) -> list[ConvoAttachment]:
    rows: list[ConvoAttachment] = []
    candidates = [(a, False) for a in hard] + [(a, True) for a in inline]
    public_ids = [a.attachment_public_id for a, _ in candidates]
    existing = set()
    if public_ids:
        existing = set(
            db.scalars(
                select(ConvoAttachment.public_id).where(ConvoAttachment.public_id.in_(public_ids))
            ).all()
        )
    for attachment, is_inline in candidates:
        if attachment.attachment_public_id in existing:
            continue
        existing.add(attachment.attachment_public_id)
        row = ConvoAttachment(
            public_id=attachment.attachment_public_id,
            org_id=entry.org_id,
            convo_id=entry.convo_id,
            convo_entry_id=entry.id,
            file_name=attachment.file_name,
            type=attachment.file_type,
            size=attachment.size,
            inline=is_inline,
            public=False,
            convo_participant_id=author.id,
        )
        db.add(row)
        rows.append(row)

    hard_ids = [a.attachment_public_id for a in hard]
    if hard_ids:
        db.execute(
            delete(PendingAttachment).where(
                PendingAttachment.org_id == entry.org_id,
                PendingAttachment.public_id.in_(hard_ids),
            )
        )
    db.flush()
    return rows


def write_entry(
    db: Session,
    *,
    convo: Convo,
    author: ConvoParticipant,
    author_org_member_id: int,
    prepared: PreparedBody,
    entry_type: ConvoEntryType,
    subject_id: int | None = None,
    reply_to: ConvoEntry | None = None,
    attachments: list[AttachmentInput] | None = None,
    now: datetime | None = None,
) -> ConvoEntry:
    """
    Persist one entry with its attachments and the author's seen watermarks.

    ``prepared`` comes from ``prepare_body``; hard ``attachments`` must have
    passed ``validate_pending_attachments``. The convo's ``last_updated_at``
    is written after the entry exists.
    """
    now = now or utc_now()
    entry = ConvoEntry(
        org_id=convo.org_id,
        convo_id=convo.id,
        author_id=author.id,
        reply_to_id=reply_to.id if reply_to else None,
        subject_id=subject_id,
        type=entry_type,
        visibility=ConvoEntryVisibility.ALL_PARTICIPANTS,
        body=prepared.body,
        body_plain_text=prepared.plain_text,
        created_at=now,
    )
    db.add(entry)
    db.flush()

    if reply_to is not None:
        db.add(
            ConvoEntryReply(
                org_id=convo.org_id,
                entry_source_id=reply_to.id,
                entry_reply_id=entry.id,
            )
        )

    convo.last_updated_at = now
    db.flush()

    _record_attachments(
        db,
        entry=entry,
        author=author,
        hard=attachments or [],
        inline=prepared.inline_attachments,
    )

    upsert_seen(
        db,
        org_id=convo.org_id,
        convo_id=convo.id,
        participant_id=author.id,
        org_member_id=author_org_member_id,
        seen_at=now,
        entry_id=entry.id,
    )
    return entry
