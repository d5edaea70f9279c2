"""Organization, member and team ORM models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import OrgMemberRole, OrgMemberStatus
from app.db.models._columns import created_at_column, pk_column, public_id_column
from app.db.types import enum_type


class Organization(Base):
    """
    A tenant.

    Every other row is scoped by ``org_id``; cross-tenant references are
    never created.
    """

    __tablename__ = "orgs"

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("org")
    shortcode: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = created_at_column()


class OrgMemberProfile(Base):
    """Display details for an org member."""

    __tablename__ = "org_member_profiles"

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("orgMemberProfile")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False, index=True)
    account_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(64))
    last_name: Mapped[str | None] = mapped_column(String(64))
    handle: Mapped[str | None] = mapped_column(String(64))
    title: Mapped[str | None] = mapped_column(String(64))
    avatar_timestamp: Mapped[datetime | None] = mapped_column(nullable=True)


class OrgMember(Base):
    """
    A person inside an organization.

    Removal flips ``status`` to REMOVED and unlinks the account; the row
    stays because conversation history references it.
    """

    __tablename__ = "org_members"
    __table_args__ = (
        Index("idx_org_members_org_account", "org_id", "account_id"),
    )

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("orgMembers")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False, index=True)
    account_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[OrgMemberStatus] = mapped_column(
        enum_type(OrgMemberStatus, name="org_member_status"),
        default=OrgMemberStatus.ACTIVE,
        nullable=False,
    )
    role: Mapped[OrgMemberRole] = mapped_column(
        enum_type(OrgMemberRole, name="org_member_role"),
        default=OrgMemberRole.MEMBER,
        nullable=False,
    )
    personal_space_id: Mapped[int | None] = mapped_column(ForeignKey("spaces.id"), nullable=True)
    default_email_identity_id: Mapped[int | None] = mapped_column(
        ForeignKey("email_identities.id"), nullable=True
    )
    org_member_profile_id: Mapped[int | None] = mapped_column(
        ForeignKey("org_member_profiles.id"), nullable=True
    )
    added_at: Mapped[datetime] = created_at_column()
    removed_at: Mapped[datetime | None] = mapped_column(nullable=True)


class Team(Base):
    """Named group of org members with its own outbound identity and default space."""

    __tablename__ = "teams"

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("teams")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    color: Mapped[str | None] = mapped_column(String(32))
    description: Mapped[str | None] = mapped_column(String(512))
    default_email_identity_id: Mapped[int | None] = mapped_column(
        ForeignKey("email_identities.id"), nullable=True
    )
    default_space_id: Mapped[int | None] = mapped_column(ForeignKey("spaces.id"), nullable=True)
    created_at: Mapped[datetime] = created_at_column()


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (
        UniqueConstraint("team_id", "org_member_id", name="uq_team_members_team_member"),
    )

    id: Mapped[int] = pk_column()
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False, index=True)
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id"), nullable=False)
    org_member_id: Mapped[int] = mapped_column(
        ForeignKey("org_members.id"), nullable=False, index=True
    )
    added_at: Mapped[datetime] = created_at_column()
