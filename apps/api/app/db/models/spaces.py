"""Space, space membership, workflow and tag ORM models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import (
    SpaceMemberNotification,
    SpaceMemberRole,
    SpaceType,
    SpaceWorkflowType,
)
from app.db.models._columns import created_at_column, pk_column, public_id_column
from app.db.types import enum_type


def _permission_column():
    return mapped_column(Boolean, default=True, nullable=False)


class Space(Base):
    """
    A container conversations are filed into.

    OPEN spaces grant every org member full default permissions; PRIVATE
    spaces require an explicit SpaceMember row.
    """

    __tablename__ = "spaces"
    __table_args__ = (
        UniqueConstraint("org_id", "shortcode", name="uq_spaces_org_shortcode"),
    )

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("spaces")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False, index=True)
    parent_space_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    shortcode: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[SpaceType] = mapped_column(
        enum_type(SpaceType, name="space_type"), default=SpaceType.PRIVATE, nullable=False
    )
    personal_space: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    color: Mapped[str | None] = mapped_column(String(32))
    icon: Mapped[str | None] = mapped_column(String(32))
    description: Mapped[str | None] = mapped_column(String(512))
    avatar_timestamp: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = created_at_column()


class SpaceMember(Base):
    """
    Explicit membership of an org member or a team in a space.

    Exactly one of ``org_member_id`` / ``team_id`` is set. Every permission
    flag defaults to granted.
    """

    __tablename__ = "space_members"
    __table_args__ = (
        CheckConstraint(
            "(org_member_id IS NULL) <> (team_id IS NULL)",
            name="member_or_team",
        ),
        UniqueConstraint("space_id", "org_member_id", name="uq_space_members_space_member"),
        UniqueConstraint("space_id", "team_id", name="uq_space_members_space_team"),
    )

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("spaceMembers")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False, index=True)
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False, index=True)
    org_member_id: Mapped[int | None] = mapped_column(ForeignKey("org_members.id"), nullable=True)
    team_id: Mapped[int | None] = mapped_column(ForeignKey("teams.id"), nullable=True)
    role: Mapped[SpaceMemberRole] = mapped_column(
        enum_type(SpaceMemberRole, name="space_member_role"),
        default=SpaceMemberRole.MEMBER,
        nullable=False,
    )
    notifications: Mapped[SpaceMemberNotification] = mapped_column(
        enum_type(SpaceMemberNotification, name="space_member_notification"),
        default=SpaceMemberNotification.ACTIVE,
        nullable=False,
    )
    can_create: Mapped[bool] = _permission_column()
    can_read: Mapped[bool] = _permission_column()
    can_comment: Mapped[bool] = _permission_column()
    can_reply: Mapped[bool] = _permission_column()
    can_delete: Mapped[bool] = _permission_column()
    can_change_workflow: Mapped[bool] = _permission_column()
    can_set_workflow_to_closed: Mapped[bool] = _permission_column()
    can_add_tags: Mapped[bool] = _permission_column()
    can_move_to_another_space: Mapped[bool] = _permission_column()
    can_add_to_another_space: Mapped[bool] = _permission_column()
    can_merge_convos: Mapped[bool] = _permission_column()
    can_add_participants: Mapped[bool] = _permission_column()
    added_by_org_member_id: Mapped[int | None] = mapped_column(
        ForeignKey("org_members.id"), nullable=True
    )
    added_at: Mapped[datetime] = created_at_column()


class SpaceWorkflow(Base):
    """A workflow stage; stages are ordered by ``order`` within each type."""

    __tablename__ = "space_workflows"

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("spaceWorkflows")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False, index=True)
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False, index=True)
    type: Mapped[SpaceWorkflowType] = mapped_column(
        enum_type(SpaceWorkflowType, name="space_workflow_type"), nullable=False
    )
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    name: Mapped[str] = mapped_column(String(32), nullable=False)
    color: Mapped[str | None] = mapped_column(String(32))
    icon: Mapped[str | None] = mapped_column(String(32))
    description: Mapped[str | None] = mapped_column(String(512))
    disabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = created_at_column()


class SpaceTag(Base):
    __tablename__ = "space_tags"

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("spaceTags")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False, index=True)
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False, index=True)
    label: Mapped[str] = mapped_column(String(32), nullable=False)
    color: Mapped[str | None] = mapped_column(String(32))
    created_at: Mapped[datetime] = created_at_column()
