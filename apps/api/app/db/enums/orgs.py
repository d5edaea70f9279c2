"""Organization, member and team enums."""

from enum import Enum


class OrgMemberStatus(str, Enum):
    """Lifecycle of an org member; removed members stay for history."""

    INVITED = "invited"
    ACTIVE = "active"
    REMOVED = "removed"


class OrgMemberRole(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"
