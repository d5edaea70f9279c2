"""Conversation enums."""

from enum import Enum


class ConvoParticipantRole(str, Enum):
    """
    Role of a participant inside a conversation.

    TEAM_MEMBER rows are materialized for each member of a team participant.
    """

    ASSIGNED = "assigned"
    CONTRIBUTOR = "contributor"
    COMMENTER = "commenter"
    WATCHER = "watcher"
    TEAM_MEMBER = "teamMember"
    GUEST = "guest"


class ConvoNotificationPreference(str, Enum):
    ACTIVE = "active"
    MUTED = "muted"
    OFF = "off"


class ConvoEntryType(str, Enum):
    """Only MESSAGE entries are ever mirrored to external recipients."""

    MESSAGE = "message"
    COMMENT = "comment"
    DRAFT = "draft"


class ConvoEntryVisibility(str, Enum):
    PRIVATE = "private"
    INTERNAL_PARTICIPANTS = "internal_participants"
    ORG = "org"
    ALL_PARTICIPANTS = "all_participants"


class ParticipantKind(str, Enum):
    """Which identity a participant row binds."""

    ORG_MEMBER = "org_member"
    TEAM = "team"
    CONTACT = "contact"
