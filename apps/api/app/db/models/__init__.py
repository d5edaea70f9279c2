"""ORM models, re-exported so ``import app.db.models`` registers every table."""

from app.db.models.contacts import Contact, ContactGlobalReputation
from app.db.models.convos import (
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
    ParticipantIdentity,
    PendingAttachment,
)
from app.db.models.identities import Domain, EmailIdentity, EmailIdentityAuthorizedSender
from app.db.models.orgs import Organization, OrgMember, OrgMemberProfile, Team, TeamMember
from app.db.models.spaces import Space, SpaceMember, SpaceTag, SpaceWorkflow

__all__ = [
    "Contact",
    "ContactGlobalReputation",
    "Convo",
    "ConvoAttachment",
    "ConvoEntry",
    "ConvoEntryPrivateVisibilityParticipant",
    "ConvoEntryRawHtmlEmail",
    "ConvoEntryReply",
    "ConvoEntrySeenTimestamp",
    "ConvoParticipant",
    "ConvoParticipantTeamMember",
    "ConvoSeenTimestamp",
    "ConvoSubject",
    "ConvoTag",
    "ConvoToSpace",
    "ConvoWorkflow",
    "Domain",
    "EmailIdentity",
    "EmailIdentityAuthorizedSender",
    "Organization",
    "OrgMember",
    "OrgMemberProfile",
    "ParticipantIdentity",
    "PendingAttachment",
    "Space",
    "SpaceMember",
    "SpaceTag",
    "SpaceWorkflow",
    "Team",
    "TeamMember",
]
