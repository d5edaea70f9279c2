"""Space enums."""

from enum import Enum


class SpaceType(str, Enum):
    """
    Space visibility.

    - OPEN: every org member may read and act in the space
    - PRIVATE: explicit SpaceMember row required
    """

    OPEN = "open"
    PRIVATE = "private"


class SpaceMemberRole(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"


class SpaceMemberNotification(str, Enum):
    ACTIVE = "active"
    MUTED = "muted"
    OFF = "off"


class SpaceWorkflowType(str, Enum):
    """Workflow stage category; stages are ordered inside each category."""

    OPEN = "open"
    ACTIVE = "active"
    CLOSED = "closed"


# Permission flags held by a SpaceMember row, in display order.
SPACE_PERMISSION_FLAGS = (
    "can_create",
    "can_read",
    "can_comment",
    "can_reply",
    "can_delete",
    "can_change_workflow",
    "can_set_workflow_to_closed",
    "can_add_tags",
    "can_move_to_another_space",
    "can_add_to_another_space",
    "can_merge_convos",
    "can_add_participants",
)
