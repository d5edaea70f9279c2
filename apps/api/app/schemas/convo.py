"""Pydantic schemas for conversations."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from app.db.enums import (
    ContactType,
    ConvoEntryType,
    ConvoEntryVisibility,
    ConvoNotificationPreference,
    ConvoParticipantRole,
    ParticipantKind,
    SpaceType,
    SpaceWorkflowType,
)
from app.types import JsonObject
from app.utils.public_ids import (
    ContactPublicId,
    ConvoAttachmentPublicId,
    ConvoEntryPublicId,
    ConvoPublicId,
    EmailIdentityPublicId,
    OrgMemberPublicId,
    SpacePublicId,
    SpaceWorkflowPublicId,
    TeamPublicId,
)


# =============================================================================
# Requests
# =============================================================================

class AttachmentIn(BaseModel):
    """An uploaded file to attach to the entry."""

    attachment_public_id: ConvoAttachmentPublicId
    file_name: str = Field(..., min_length=1, max_length=256)
    file_type: str = Field(..., min_length=1, max_length=256)
    size: int = Field(..., ge=0)


class ConvoRecipientIn(BaseModel):
    """Who a new convo is addressed to; ``value`` is a public id or an address."""

    type: Literal["org_member", "team", "contact", "email"]
    value: str = Field(..., min_length=1, max_length=256)


class ConvoCreate(BaseModel):
    """Request to start a conversation."""

    participants_org_member_public_ids: list[OrgMemberPublicId] = Field(default_factory=list)
    participants_team_public_ids: list[TeamPublicId] = Field(default_factory=list)
    participants_contact_public_ids: list[ContactPublicId] = Field(default_factory=list)
    participants_emails: list[str] = Field(default_factory=list)
    send_as_email_identity_public_id: EmailIdentityPublicId | None = None
    to: ConvoRecipientIn
    topic: str = Field(..., min_length=1, max_length=256)
    message: JsonObject
    first_message_type: ConvoEntryType = ConvoEntryType.MESSAGE
    space_shortcode: str = Field(..., min_length=1, max_length=64)
    attachments: list[AttachmentIn] = Field(default_factory=list)

    def recipient_candidates(self) -> dict[str, list[str]]:
        return {
            ParticipantKind.ORG_MEMBER.value: list(self.participants_org_member_public_ids),
            ParticipantKind.TEAM.value: list(self.participants_team_public_ids),
            ParticipantKind.CONTACT.value: list(self.participants_contact_public_ids),
            "email": list(self.participants_emails),
        }


class ConvoReply(BaseModel):
    """Request to reply to an entry."""

    reply_to_message_public_id: ConvoEntryPublicId
    message: JsonObject
    send_as_email_identity_public_id: EmailIdentityPublicId | None = None
    message_type: ConvoEntryType = ConvoEntryType.MESSAGE
    attachments: list[AttachmentIn] = Field(default_factory=list)


class ConvoDelete(BaseModel):
    """Delete one or many conversations; a single id is accepted as a string."""

    convo_public_ids: list[ConvoPublicId] = Field(..., min_length=1, max_length=100)

    @model_validator(mode="before")
    @classmethod
    def _single_id(cls, data):
        if isinstance(data, dict) and isinstance(data.get("convo_public_ids"), str):
            return {**data, "convo_public_ids": [data["convo_public_ids"]]}
        return data


class ConvoWorkflowSet(BaseModel):
    space_public_id: SpacePublicId
    workflow_public_id: SpaceWorkflowPublicId


class ConvoSpaceTarget(BaseModel):
    space_public_id: SpacePublicId


# =============================================================================
# Responses
# =============================================================================

class ConvoCreateResponse(BaseModel):
    status: Literal["success"] = "success"
    public_id: str
    entry_public_id: str


class ConvoReplyResponse(BaseModel):
    status: Literal["success"] = "success"
    public_id: str


class OkResponse(BaseModel):
    status: Literal["success"] = "success"


class ConvoWorkflowSetResponse(BaseModel):
    status: Literal["success"] = "success"
    public_id: str


class SubjectRead(BaseModel):
    subject: str
    created_at: datetime


class ParticipantIdentityRead(BaseModel):
    """Display payload for whichever identity the participant binds."""

    kind: ParticipantKind
    public_id: str
    name: str | None = None
    handle: str | None = None
    color: str | None = None
    email_address: str | None = None
    contact_type: ContactType | None = None


class ParticipantRead(BaseModel):
    public_id: str
    role: ConvoParticipantRole
    notifications: ConvoNotificationPreference
    email_identity_public_id: str | None = None
    last_read_at: datetime | None = None
    hidden: bool
    active: bool
    identity: ParticipantIdentityRead


class AttachmentRead(BaseModel):
    public_id: str
    file_name: str
    type: str
    size: int | None = None
    inline: bool
    url: str


class SpaceRead(BaseModel):
    public_id: str
    shortcode: str
    name: str
    type: SpaceType
    color: str | None = None
    icon: str | None = None


class ConvoDetailRead(BaseModel):
    public_id: str
    last_updated_at: datetime
    created_at: datetime
    subjects: list[SubjectRead]
    participants: list[ParticipantRead]
    attachments: list[AttachmentRead]
    spaces: list[SpaceRead]
    own_participant_public_id: str | None = None


class EntryPreviewRead(BaseModel):
    public_id: str
    type: ConvoEntryType
    body_plain_text: str
    created_at: datetime
    author_participant_public_id: str


class ConvoSummaryRead(BaseModel):
    """Lightweight per-member view used by list/data-store clients."""

    public_id: str
    last_updated_at: datetime
    subject: str | None = None
    participant_count: int
    own_participant_public_id: str | None = None
    last_read_at: datetime | None = None
    latest_entry: EntryPreviewRead | None = None


class EntryRead(BaseModel):
    public_id: str
    type: ConvoEntryType
    visibility: ConvoEntryVisibility
    body: JsonObject
    body_plain_text: str
    created_at: datetime
    author_participant_public_id: str
    reply_to_entry_public_id: str | None = None
    attachments: list[AttachmentRead] = Field(default_factory=list)


class EntryPage(BaseModel):
    items: list[EntryRead]
    next_cursor: str | None = None


class WorkflowRead(BaseModel):
    public_id: str
    name: str
    type: SpaceWorkflowType
    order: int
    color: str | None = None
    icon: str | None = None
    description: str | None = None


class ConvoSpaceWorkflowsRead(BaseModel):
    space: SpaceRead
    current_workflow_public_id: str | None = None
    open: list[WorkflowRead] = Field(default_factory=list)
    active: list[WorkflowRead] = Field(default_factory=list)
    closed: list[WorkflowRead] = Field(default_factory=list)
