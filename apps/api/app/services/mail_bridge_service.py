"""Outbound bridge gate.

Decides whether a committed entry must be mirrored to external recipients
and asks the mail bridge to send it. The bridge call happens after the
database commit, so a failed send never undoes the entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import NotFoundError, OutboundDispatchError, UnauthorizedError, ValidationError
from app.db.enums import ConvoEntryType, DomainSendingMode, DomainStatus
from app.db.models import Domain, EmailIdentity, EmailIdentityAuthorizedSender, TeamMember

logger = logging.getLogger(__name__)

IDENTITY_CONFIG_MESSAGE = (
    "You cant send from that email address due to a configuration issue. "
    "Please contact your administrator or select a different email identity."
)


# =============================================================================
# Identity checks
# =============================================================================

def load_send_as_identity(db: Session, *, org_id: int, identity_public_id: str) -> EmailIdentity:
    """
    Load an identity that is allowed to send at all.

    Raises:
        NotFoundError: no such identity in the org
        ValidationError: its domain is not active or has sending disabled
    """
    identity = db.scalars(
        select(EmailIdentity).where(
            EmailIdentity.org_id == org_id, EmailIdentity.public_id == identity_public_id
        )
    ).first()
    if not identity:
        raise NotFoundError("Send as email identity not found")

    if identity.domain_id is not None:
        domain = db.get(Domain, identity.domain_id)
        if (
            domain is None
            or domain.domain_status != DomainStatus.ACTIVE
            or domain.sending_mode == DomainSendingMode.DISABLED
        ):
            raise ValidationError(IDENTITY_CONFIG_MESSAGE)
    return identity


def is_authorized_sender(
    db: Session, *, identity_id: int, org_member_id: int, convo_space_ids: list[int]
) -> bool:
    """
    True when the member may send as the identity.

    Granted directly, through membership of an authorized team, or by an
    authorized space the convo is currently filed in.
    """
    member_team_ids = select(TeamMember.team_id).where(TeamMember.org_member_id == org_member_id)
    conditions = [
        EmailIdentityAuthorizedSender.org_member_id == org_member_id,
        EmailIdentityAuthorizedSender.team_id.in_(member_team_ids),
    ]
    if convo_space_ids:
        conditions.append(EmailIdentityAuthorizedSender.space_id.in_(convo_space_ids))
    row = db.scalars(
        select(EmailIdentityAuthorizedSender.id).where(
            EmailIdentityAuthorizedSender.identity_id == identity_id, or_(*conditions)
        )
    ).first()
    return row is not None


def require_authorized_sender(
    db: Session, *, identity_id: int, org_member_id: int, convo_space_ids: list[int]
) -> None:
    if not is_authorized_sender(
        db, identity_id=identity_id, org_member_id=org_member_id, convo_space_ids=convo_space_ids
    ):
        raise UnauthorizedError("User is not authorized to send as this email identity")


# =============================================================================
# Gate
# =============================================================================

def requires_dispatch(*, entry_type: ConvoEntryType, has_contacts: bool) -> bool:
    """Only real messages in convos with external contacts leave the org."""
    return entry_type == ConvoEntryType.MESSAGE and has_contacts


def require_identity_for_dispatch(
    *, entry_type: ConvoEntryType, has_contacts: bool, identity_public_id: str | None
) -> None:
    """
    Raises:
        ValidationError: a dispatch would be needed but no identity was chosen
    """
    if requires_dispatch(entry_type=entry_type, has_contacts=has_contacts) and not identity_public_id:
        raise ValidationError("A send as email identity is required to message external contacts")


@dataclass(frozen=True)
class DispatchRequest:
    org_id: int
    convo_id: int
    entry_id: int
    convo_public_id: str
    entry_public_id: str
    send_as_identity_public_id: str
    to_participant_public_id: str | None = None


class MailBridgeClient:
    """Sync client for the mail bridge send endpoint."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.MAILBRIDGE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.MAILBRIDGE_KEY
        self.timeout = timeout if timeout is not None else settings.EXTERNAL_HTTP_TIMEOUT_SECONDS
        self.transport = transport

    def send_convo_entry_email(self, request: DispatchRequest) -> bool:
        """
        Ask the bridge to deliver one entry.

        Raises:
            httpx.HTTPError: transport failure or non-2xx response
        """
        payload = {
            "convoId": request.convo_id,
            "entryId": request.entry_id,
            "sendAsEmailIdentityPublicId": request.send_as_identity_public_id,
            "newConvoToParticipantPublicId": request.to_participant_public_id,
            "orgId": request.org_id,
        }
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.post(
                f"{self.base_url}/api/send-convo-entry-email",
                headers={"Authorization": self.api_key},
                json=payload,
            )
            response.raise_for_status()
            return True


mail_bridge_client = MailBridgeClient()


def dispatch(request: DispatchRequest, *, client: MailBridgeClient | None = None) -> None:
    """
    Send a committed entry through the mail bridge.

    No retry happens here; a failure is logged and surfaced to the caller.

    Raises:
        OutboundDispatchError: the bridge could not be reached or refused
    """
    client = client or mail_bridge_client
    try:
        client.send_convo_entry_email(request)
    except httpx.HTTPError as exc:
        logger.warning(
            "Mail bridge dispatch failed for entry %s: %s",
            request.entry_public_id,
            exc,
            extra={"org_id": request.org_id, "convo_public_id": request.convo_public_id},
        )
        raise OutboundDispatchError(
            "The message was saved but could not be sent by email",
            convo_public_id=request.convo_public_id,
            entry_public_id=request.entry_public_id,
        ) from exc
