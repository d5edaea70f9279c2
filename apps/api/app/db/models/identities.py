"""Sending domains, email identities and sender authorization ORM models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import DomainSendingMode, DomainStatus
from app.db.models._columns import created_at_column, pk_column, public_id_column
from app.db.types import enum_type


class Domain(Base):
    """An org-owned mail domain; verification itself happens elsewhere."""

    __tablename__ = "domains"

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("domains")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False, index=True)
    domain: Mapped[str] = mapped_column(String(256), nullable=False)
    domain_status: Mapped[DomainStatus] = mapped_column(
        enum_type(DomainStatus, name="domain_status"),
        default=DomainStatus.UNVERIFIED,
        nullable=False,
    )
    sending_mode: Mapped[DomainSendingMode] = mapped_column(
        enum_type(DomainSendingMode, name="domain_sending_mode"),
        default=DomainSendingMode.DISABLED,
        nullable=False,
    )
    created_at: Mapped[datetime] = created_at_column()


class EmailIdentity(Base):
    """An org-owned sending address used as the From of outbound messages."""

    __tablename__ = "email_identities"
    __table_args__ = (
        UniqueConstraint("username", "domain_name", name="uq_email_identities_address"),
    )

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("emailIdentities")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(32), nullable=False)
    domain_name: Mapped[str] = mapped_column(String(128), nullable=False)
    domain_id: Mapped[int | None] = mapped_column(ForeignKey("domains.id"), nullable=True)
    send_name: Mapped[str | None] = mapped_column(String(128))
    is_catch_all: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = created_at_column()

    @property
    def address(self) -> str:
        return f"{self.username}@{self.domain_name}"


class EmailIdentityAuthorizedSender(Base):
    """
    Grants one org member, team or space the right to send as an identity.

    Exactly one grantee column is set.
    """

    __tablename__ = "email_identity_authorized_senders"
    __table_args__ = (
        CheckConstraint(
            "(CASE WHEN org_member_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN team_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN space_id IS NULL THEN 0 ELSE 1 END) = 1",
            name="single_grantee",
        ),
        Index("idx_authorized_senders_identity", "identity_id"),
    )

    id: Mapped[int] = pk_column()
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False)
    identity_id: Mapped[int] = mapped_column(ForeignKey("email_identities.id"), nullable=False)
    org_member_id: Mapped[int | None] = mapped_column(ForeignKey("org_members.id"), nullable=True)
    team_id: Mapped[int | None] = mapped_column(ForeignKey("teams.id"), nullable=True)
    space_id: Mapped[int | None] = mapped_column(ForeignKey("spaces.id"), nullable=True)
    default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    added_by_org_member_id: Mapped[int | None] = mapped_column(
        ForeignKey("org_members.id"), nullable=True
    )
    created_at: Mapped[datetime] = created_at_column()
