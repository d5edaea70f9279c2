"""Enum definitions for application constants."""

from app.db.enums.contacts import ContactScreenerStatus, ContactType
from app.db.enums.convos import (
    ConvoEntryType,
    ConvoEntryVisibility,
    ConvoNotificationPreference,
    ConvoParticipantRole,
    ParticipantKind,
)
from app.db.enums.identities import DomainSendingMode, DomainStatus
from app.db.enums.orgs import OrgMemberRole, OrgMemberStatus
from app.db.enums.spaces import (
    SPACE_PERMISSION_FLAGS,
    SpaceMemberNotification,
    SpaceMemberRole,
    SpaceType,
    SpaceWorkflowType,
)

__all__ = [
    "ContactScreenerStatus",
    "ContactType",
    "ConvoEntryType",
    "ConvoEntryVisibility",
    "ConvoNotificationPreference",
    "ConvoParticipantRole",
    "DomainSendingMode",
    "DomainStatus",
    "OrgMemberRole",
    "OrgMemberStatus",
    "ParticipantKind",
    "SPACE_PERMISSION_FLAGS",
    "SpaceMemberNotification",
    "SpaceMemberRole",
    "SpaceType",
    "SpaceWorkflowType",
]
