"""External contacts and the cross-tenant reputation record."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import ContactScreenerStatus, ContactType
from app.db.models._columns import created_at_column, pk_column, public_id_column
from app.db.types import enum_type


class ContactGlobalReputation(Base):
    """
    Trust and history for one external address.

    Not org scoped: the same address shares a single row across every
    organization.
    """

    __tablename__ = "contact_global_reputations"

    id: Mapped[int] = pk_column()
    email_address: Mapped[str] = mapped_column(String(256), unique=True, nullable=False)
    spam: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cold: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    new_sender: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_updated: Mapped[datetime] = created_at_column()


class Contact(Base):
    """An external party, unique per org by (email username, email domain)."""

    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint(
            "org_id", "email_username", "email_domain", name="uq_contacts_org_address"
        ),
    )

    id: Mapped[int] = pk_column()
    public_id: Mapped[str] = public_id_column("contacts")
    org_id: Mapped[int] = mapped_column(ForeignKey("orgs.id"), nullable=False, index=True)
    reputation_id: Mapped[int] = mapped_column(
        ForeignKey("contact_global_reputations.id"), nullable=False, index=True
    )
    name: Mapped[str | None] = mapped_column(String(128))
    set_name: Mapped[str | None] = mapped_column(String(128))
    email_username: Mapped[str] = mapped_column(String(128), nullable=False)
    email_domain: Mapped[str] = mapped_column(String(128), nullable=False)
    avatar_timestamp: Mapped[datetime | None] = mapped_column(nullable=True)
    signature_plain_text: Mapped[str | None] = mapped_column(Text)
    signature_html: Mapped[str | None] = mapped_column(Text)
    type: Mapped[ContactType] = mapped_column(
        enum_type(ContactType, name="contact_type"), default=ContactType.UNKNOWN, nullable=False
    )
    screener_status: Mapped[ContactScreenerStatus | None] = mapped_column(
        enum_type(ContactScreenerStatus, name="contact_screener_status"), nullable=True
    )
    created_at: Mapped[datetime] = created_at_column()

    @property
    def email_address(self) -> str:
        return f"{self.email_username}@{self.email_domain}"
