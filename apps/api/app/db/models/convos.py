"""Conversation ORM models.

A Convo owns subjects, participants, entries, attachments and seen
watermarks; it is shared by every space it is filed into through
ConvoToSpace. Nothing here cascades implicitly: deletion is an explicit,
ordered sequence in the conversation service.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import (
    ConvoEntryType,
    ConvoEntryVisibility,
    ConvoNotificationPreference,
    ConvoParticipantRole,
    ParticipantKind,
)
from app.db.models._columns import created_at_column, pk_column, public_id_column
from app.db.types import enum_type, utc_now


# =============================================================================
# Convo
# =============================================================================

class Convo(Base):
    __tablename__ = "convos"

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("convos")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False, index=True)
    last_updated_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    created_at: Mapped[datetime] = created_at_column()


class ConvoSubject(Base):
    """Append-only topic history of a convo."""

    __tablename__ = "convo_subjects"

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("convoSubjects")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    convo_id: Mapped[int] = mapped_column(ForeignKey("convos.id"), nullable=False, index=True)
    subject: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime] = created_at_column()


class ConvoToSpace(Base):
    __tablename__ = "convo_to_spaces"
    __table_args__ = (
        UniqueConstraint("convo_id", "space_id", name="uq_convo_to_spaces_convo_space"),
    )

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("convoToSpaces")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    convo_id: Mapped[int] = mapped_column(ForeignKey("convos.id"), nullable=False, index=True)
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False, index=True)


# =============================================================================
# Participants
# =============================================================================

@dataclass(frozen=True)
class ParticipantIdentity:
    """
    The single identity a participant row binds.

    Build with ``org_member``/``team``/``contact``; the row's three nullable
    columns are only ever written through this type.
    """

    kind: ParticipantKind
    id: int

    @classmethod
    def org_member(cls, org_member_id: int) -> "ParticipantIdentity":
        return cls(ParticipantKind.ORG_MEMBER, org_member_id)

    @classmethod
    def team(cls, team_id: int) -> "ParticipantIdentity":
        return cls(ParticipantKind.TEAM, team_id)

    @classmethod
    def contact(cls, contact_id: int) -> "ParticipantIdentity":
        return cls(ParticipantKind.CONTACT, contact_id)

    def columns(self) -> dict[str, int | None]:
        return {
            "org_member_id": self.id if self.kind is ParticipantKind.ORG_MEMBER else None,
            "team_id": self.id if self.kind is ParticipantKind.TEAM else None,
            "contact_id": self.id if self.kind is ParticipantKind.CONTACT else None,
        }


class ConvoParticipant(Base):
    """
    Binds exactly one org member, team or contact to a convo.

    An org member holds at most one row per convo, whether added directly or
    materialized from a team (role TEAM_MEMBER).
    """

    __tablename__ = "convo_participants"
    __table_args__ = (
        CheckConstraint(
            "(CASE WHEN org_member_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN team_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN contact_id IS NULL THEN 0 ELSE 1 END) = 1",
            name="single_identity",
        ),
        UniqueConstraint("convo_id", "org_member_id", name="uq_convo_participants_convo_member"),
        UniqueConstraint("convo_id", "team_id", name="uq_convo_participants_convo_team"),
        UniqueConstraint("convo_id", "contact_id", name="uq_convo_participants_convo_contact"),
    )

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("convoParticipants")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    convo_id: Mapped[int] = mapped_column(ForeignKey("convos.id"), nullable=False, index=True)
    org_member_id: Mapped[int | None] = mapped_column(
        ForeignKey("org_members.id"), nullable=True, index=True
    )
    team_id: Mapped[int | None] = mapped_column(ForeignKey("teams.id"), nullable=True)
    contact_id: Mapped[int | None] = mapped_column(ForeignKey("contacts.id"), nullable=True)
    role: Mapped[ConvoParticipantRole] = mapped_column(
        enum_type(ConvoParticipantRole, name="convo_participant_role"),
        default=ConvoParticipantRole.CONTRIBUTOR,
        nullable=False,
    )
    notifications: Mapped[ConvoNotificationPreference] = mapped_column(
        enum_type(ConvoNotificationPreference, name="convo_notification_preference"),
        default=ConvoNotificationPreference.ACTIVE,
        nullable=False,
    )
    email_identity_id: Mapped[int | None] = mapped_column(
        ForeignKey("email_identities.id"), nullable=True
    )
    last_read_at: Mapped[datetime | None] = mapped_column(nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    hidden: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = created_at_column()

    @classmethod
    def for_identity(cls, identity: ParticipantIdentity, **values) -> "ConvoParticipant":
        return cls(**identity.columns(), **values)

    @property
    def identity(self) -> ParticipantIdentity:
        if self.org_member_id is not None:
            return ParticipantIdentity.org_member(self.org_member_id)
        if self.team_id is not None:
            return ParticipantIdentity.team(self.team_id)
        if self.contact_id is not None:
            return ParticipantIdentity.contact(self.contact_id)
        raise ValueError(f"Participant {self.public_id} has no identity")


class ConvoParticipantTeamMember(Base):
    """Links a materialized team-member row to the team participant it came from."""

    __tablename__ = "convo_participant_team_members"
    __table_args__ = (
        UniqueConstraint(
            "convo_participant_id",
            "team_participant_id",
            name="uq_convo_participant_team_members_pair",
        ),
    )

    id: Mapped[int] = pk_column()
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    convo_participant_id: Mapped[int] = mapped_column(
        ForeignKey("convo_participants.id"), nullable=False, index=True
    )
    team_participant_id: Mapped[int] = mapped_column(
        ForeignKey("convo_participants.id"), nullable=False, index=True
    )


# =============================================================================
# Entries
# =============================================================================

class ConvoEntry(Base):
    """
    One message, comment or draft. The body is never rewritten after insert.
    """

    __tablename__ = "convo_entries"
    __table_args__ = (
        Index("idx_convo_entries_convo_created", "convo_id", "created_at"),
    )

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("convoEntries")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    convo_id: Mapped[int] = mapped_column(ForeignKey("convos.id"), nullable=False)
    author_id: Mapped[int] = mapped_column(
        ForeignKey("convo_participants.id"), nullable=False, index=True
    )
    reply_to_id: Mapped[int | None] = mapped_column(ForeignKey("convo_entries.id"), nullable=True)
    subject_id: Mapped[int | None] = mapped_column(ForeignKey("convo_subjects.id"), nullable=True)
    type: Mapped[ConvoEntryType] = mapped_column(
        enum_type(ConvoEntryType, name="convo_entry_type"), nullable=False
    )
    visibility: Mapped[ConvoEntryVisibility] = mapped_column(
        enum_type(ConvoEntryVisibility, name="convo_entry_visibility"),
        default=ConvoEntryVisibility.ALL_PARTICIPANTS,
        nullable=False,
    )
    body: Mapped[dict] = mapped_column(JSON, nullable=False)
    body_plain_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body_cleaned_html: Mapped[str | None] = mapped_column(Text, nullable=True)
    entry_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    email_message_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = created_at_column()


class ConvoEntryReply(Base):
    """Reply-graph edge: ``entry_source_id`` was answered by ``entry_reply_id``."""

    __tablename__ = "convo_entry_replies"

    id: Mapped[int] = pk_column()
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    entry_source_id: Mapped[int] = mapped_column(
        ForeignKey("convo_entries.id"), nullable=False, index=True
    )
    entry_reply_id: Mapped[int] = mapped_column(
        ForeignKey("convo_entries.id"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = created_at_column()


class ConvoEntryPrivateVisibilityParticipant(Base):
    __tablename__ = "convo_entry_private_visibility_participants"

    id: Mapped[int] = pk_column()
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    entry_id: Mapped[int] = mapped_column(ForeignKey("convo_entries.id"), nullable=False, index=True)
    convo_member_id: Mapped[int] = mapped_column(
        ForeignKey("convo_participants.id"), nullable=False
    )
    created_at: Mapped[datetime] = created_at_column()


class ConvoEntryRawHtmlEmail(Base):
    """Raw inbound HTML kept for a limited time next to the parsed entry."""

    __tablename__ = "convo_entry_raw_html_emails"

    id: Mapped[int] = pk_column()
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    entry_id: Mapped[int] = mapped_column(ForeignKey("convo_entries.id"), nullable=False, index=True)
    headers: Mapped[dict] = mapped_column(JSON, nullable=False)
    html: Mapped[str] = mapped_column(Text, nullable=False)
    wipe_date: Mapped[datetime] = mapped_column(nullable=False)
    keep: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    wiped: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class ConvoSeenTimestamp(Base):
    __tablename__ = "convo_seen_timestamps"

    convo_id: Mapped[int] = mapped_column(ForeignKey("convos.id"), primary_key=True)
    participant_id: Mapped[int] = mapped_column(
        ForeignKey("convo_participants.id"), primary_key=True
    )
    org_member_id: Mapped[int] = mapped_column(ForeignKey("org_members.id"), primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    seen_at: Mapped[datetime] = mapped_column(nullable=False)


class ConvoEntrySeenTimestamp(Base):
    __tablename__ = "convo_entry_seen_timestamps"

    entry_id: Mapped[int] = mapped_column(ForeignKey("convo_entries.id"), primary_key=True)
    participant_id: Mapped[int] = mapped_column(
        ForeignKey("convo_participants.id"), primary_key=True
    )
    org_member_id: Mapped[int] = mapped_column(ForeignKey("org_members.id"), primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    seen_at: Mapped[datetime] = mapped_column(nullable=False)


# =============================================================================
# Attachments
# =============================================================================

class ConvoAttachment(Base):
    """
    A stored file attached to a convo entry.

    ``inline`` rows are images referenced from the entry body.
    """

    __tablename__ = "convo_attachments"

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("convoAttachments")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    convo_id: Mapped[int] = mapped_column(ForeignKey("convos.id"), nullable=False, index=True)
    convo_entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("convo_entries.id"), nullable=True, index=True
    )
    file_name: Mapped[str] = mapped_column(String(256), nullable=False)
    type: Mapped[str] = mapped_column(String(256), nullable=False)
    size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    inline: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    convo_participant_id: Mapped[int] = mapped_column(
        ForeignKey("convo_participants.id"), nullable=False
    )
    created_at: Mapped[datetime] = created_at_column()


class PendingAttachment(Base):
    """Uploaded file staged until an entry claims it."""

    __tablename__ = "pending_attachments"

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("pendingAttachments")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False, index=True)
    org_public_id: Mapped[str] = mapped_column(String(40), nullable=False)
    filename: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime] = created_at_column()


# =============================================================================
# Workflows and tags
# =============================================================================

class ConvoWorkflow(Base):
    """Append-only log of workflow stage assignments per (convo, space)."""

    __tablename__ = "convo_workflows"
    __table_args__ = (
        Index("idx_convo_workflows_convo_space", "convo_id", "space_id"),
    )

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("convoWorkflows")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    convo_id: Mapped[int] = mapped_column(ForeignKey("convos.id"), nullable=False)
    convo_to_space_id: Mapped[int] = mapped_column(
        ForeignKey("convo_to_spaces.id"), nullable=False
    )
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False)
    workflow_id: Mapped[int | None] = mapped_column(
        ForeignKey("space_workflows.id"), nullable=True
    )
    by_org_member_id: Mapped[int | None] = mapped_column(
        ForeignKey("org_members.id"), nullable=True
    )
    created_at: Mapped[datetime] = created_at_column()


class ConvoTag(Base):
    __tablename__ = "convo_tags"

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("convoTags")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    convo_id: Mapped[int] = mapped_column(ForeignKey("convos.id"), nullable=False, index=True)
    convo_to_space_id: Mapped[int] = mapped_column(
        ForeignKey("convo_to_spaces.id"), nullable=False
    )
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False)
    tag_id: Mapped[int] = mapped_column(ForeignKey("space_tags.id"), nullable=False)
    added_by_org_member_id: Mapped[int | None] = mapped_column(
        ForeignKey("org_members.id"), nullable=True
    )
    created_at: Mapped[datetime] = created_at_column()
