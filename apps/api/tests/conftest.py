"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database with savepoint isolation (rollback after each test)
- Factory helpers for orgs, members, teams, spaces, identities and contacts
- JWT cookie minting for authenticated tests
- HTTPX AsyncClient with proper headers
- Recording stand-ins for the realtime notifier and the mail bridge
"""
import itertools
import os
from dataclasses import dataclass
from typing import AsyncGenerator, Generator

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TESTING"] = "1"
os.environ["ENV"] = "test"
os.environ["WEBAPP_URL"] = "https://app.uninbox.test"
os.environ["STORAGE_URL"] = "https://storage.uninbox.test"
os.environ["MAILBRIDGE_URL"] = "https://mailbridge.uninbox.test"

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

from app.main import app
from app.core.deps import COOKIE_NAME, get_db
from app.core.org_cache import OrgContext
from app.core.security import create_session_token
from app.db.base import Base
from app.db.enums import (
    ContactScreenerStatus,
    ContactType,
    DomainSendingMode,
    DomainStatus,
    OrgMemberStatus,
    SpaceMemberRole,
    SpaceType,
    SpaceWorkflowType,
)
from app.db.models import (
    Contact,
    ContactGlobalReputation,
    Domain,
    EmailIdentity,
    EmailIdentityAuthorizedSender,
    Organization,
    OrgMember,
    OrgMemberProfile,
    PendingAttachment,
    Space,
    SpaceMember,
    SpaceWorkflow,
    Team,
    TeamMember,
)
from app.db.session import SessionLocal, engine


Base.metadata.create_all(engine)

_counter = itertools.count(1)


def doc(*paragraphs: str) -> dict:
    """A TipTap document with one paragraph per argument."""
    return {
        "type": "doc",
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": text}]}
            for text in paragraphs
        ],
    }


# =============================================================================
# Database Fixtures (Savepoint pattern)
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Creates a database session with savepoint for test isolation.

    App code may call commit() and rollback(); both only touch a savepoint
    inside the outer transaction, which is rolled back at the end.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = SessionLocal(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


# =============================================================================
# Factories
# =============================================================================

class Factory:
    """Builds persisted rows with sensible defaults."""

    def __init__(self, db: Session):
        self.db = db

    def _save(self, row):
        # Committed so a unit of work rolled back under test keeps its fixtures.
        self.db.add(row)
        self.db.commit()
        return row

    def org(self, shortcode: str | None = None) -> Organization:
        n = next(_counter)
        return self._save(Organization(shortcode=shortcode or f"org{n}", name=f"Org {n}"))

    def space(
        self,
        org: Organization,
        *,
        type: SpaceType = SpaceType.OPEN,
        shortcode: str | None = None,
        personal: bool = False,
    ) -> Space:
        n = next(_counter)
        return self._save(
            Space(
                org_id=org.id,
                name=f"Space {n}",
                shortcode=shortcode or f"space-{n}",
                type=type,
                personal_space=personal,
            )
        )

    def member(
        self,
        org: Organization,
        *,
        account_id: int | None = None,
        status: OrgMemberStatus = OrgMemberStatus.ACTIVE,
        personal_space: bool = True,
        default_identity: EmailIdentity | None = None,
        first_name: str = "Test",
    ) -> OrgMember:
        n = next(_counter)
        profile = self._save(
            OrgMemberProfile(org_id=org.id, first_name=first_name, last_name=f"User{n}", handle=f"user{n}")
        )
        space = None
        if personal_space:
            space = self.space(org, type=SpaceType.PRIVATE, shortcode=f"personal-{n}", personal=True)
        member = self._save(
            OrgMember(
                org_id=org.id,
                account_id=account_id if account_id is not None else 1000 + n,
                status=status,
                personal_space_id=space.id if space else None,
                default_email_identity_id=default_identity.id if default_identity else None,
                org_member_profile_id=profile.id,
            )
        )
        if space is not None:
            self.space_member(space, member=member, role=SpaceMemberRole.ADMIN)
        return member

    def space_member(
        self,
        space: Space,
        *,
        member: OrgMember | None = None,
        team: Team | None = None,
        role: SpaceMemberRole = SpaceMemberRole.MEMBER,
        **flags: bool,
    ) -> SpaceMember:
        return self._save(
            SpaceMember(
                org_id=space.org_id,
                space_id=space.id,
                org_member_id=member.id if member else None,
                team_id=team.id if team else None,
                role=role,
                **flags,
            )
        )

    def team(
        self,
        org: Organization,
        *,
        members: tuple[OrgMember, ...] = (),
        default_space: Space | None = None,
        default_identity: EmailIdentity | None = None,
    ) -> Team:
        n = next(_counter)
        team = self._save(
            Team(
                org_id=org.id,
                name=f"Team {n}",
                default_space_id=default_space.id if default_space else None,
                default_email_identity_id=default_identity.id if default_identity else None,
            )
        )
        for member in members:
            self._save(TeamMember(org_id=org.id, team_id=team.id, org_member_id=member.id))
        return team

    def identity(
        self,
        org: Organization,
        *,
        username: str | None = None,
        domain_status: DomainStatus = DomainStatus.ACTIVE,
        sending_mode: DomainSendingMode = DomainSendingMode.NATIVE,
        authorize: tuple[OrgMember | Team | Space, ...] = (),
    ) -> EmailIdentity:
        n = next(_counter)
        domain_name = f"mail{n}.example.com"
        domain = self._save(
            Domain(org_id=org.id, domain=domain_name, domain_status=domain_status, sending_mode=sending_mode)
        )
        identity = self._save(
            EmailIdentity(
                org_id=org.id,
                username=username or f"support{n}",
                domain_name=domain_name,
                domain_id=domain.id,
                send_name="Support",
            )
        )
        for grantee in authorize:
            self._save(
                EmailIdentityAuthorizedSender(
                    org_id=org.id,
                    identity_id=identity.id,
                    org_member_id=grantee.id if isinstance(grantee, OrgMember) else None,
                    team_id=grantee.id if isinstance(grantee, Team) else None,
                    space_id=grantee.id if isinstance(grantee, Space) else None,
                )
            )
        return identity

    def contact(self, org: Organization, email: str) -> Contact:
        username, domain = email.lower().split("@")
        reputation = self.db.query(ContactGlobalReputation).filter_by(email_address=email.lower()).first()
        if reputation is None:
            reputation = self._save(ContactGlobalReputation(email_address=email.lower()))
        return self._save(
            Contact(
                org_id=org.id,
                reputation_id=reputation.id,
                email_username=username,
                email_domain=domain,
                type=ContactType.PERSON,
                screener_status=ContactScreenerStatus.APPROVE,
            )
        )

    def workflow(
        self,
        space: Space,
        *,
        type: SpaceWorkflowType = SpaceWorkflowType.OPEN,
        name: str | None = None,
        order: int = 0,
        disabled: bool = False,
    ) -> SpaceWorkflow:
        return self._save(
            SpaceWorkflow(
                org_id=space.org_id,
                space_id=space.id,
                type=type,
                name=name or type.value.title(),
                order=order,
                disabled=disabled,
            )
        )

    def pending_attachment(self, org: Organization, filename: str = "report.pdf") -> PendingAttachment:
        return self._save(PendingAttachment(org_id=org.id, org_public_id=org.public_id, filename=filename))

    def context(self, org: Organization, member: OrgMember) -> OrgContext:
        return OrgContext(
            org_id=org.id,
            org_public_id=org.public_id,
            org_shortcode=org.shortcode,
            member_id=member.id,
            member_public_id=member.public_id,
        )


@pytest.fixture(scope="function")
def factory(db: Session) -> Factory:
    return Factory(db)


@pytest.fixture(scope="function")
def test_org(factory: Factory) -> Organization:
    """Create a test organization."""
    return factory.org()


@pytest.fixture(scope="function")
def test_member(factory: Factory, test_org: Organization) -> OrgMember:
    """Create the acting org member, with a personal space."""
    return factory.member(test_org, account_id=1)


@pytest.fixture(scope="function")
def open_space(factory: Factory, test_org: Organization) -> Space:
    return factory.space(test_org, type=SpaceType.OPEN, shortcode="shared")


@pytest.fixture(scope="function")
def org_ctx(factory: Factory, test_org: Organization, test_member: OrgMember) -> OrgContext:
    return factory.context(test_org, test_member)


# =============================================================================
# Collaborator stand-ins
# =============================================================================

class RecordingNotifier:
    """Collects realtime events instead of delivering them."""

    def __init__(self):
        self.events = []

    def publish(self, events) -> None:
        self.events.extend(events)

    def named(self, event: str) -> list:
        return [e for e in self.events if e.event == event]


class RecordingMailClient:
    """Mail bridge client that records requests and can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.requests = []

    def send_convo_entry_email(self, request) -> bool:
        self.requests.append(request)
        if self.fail:
            raise httpx.ConnectError("mail bridge unreachable")
        return True


@pytest.fixture(scope="function")
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture(scope="function")
def mail_client() -> RecordingMailClient:
    return RecordingMailClient()


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    member: OrgMember
    org: Organization
    token: str
    cookie_name: str = COOKIE_NAME


@pytest.fixture(scope="function")
def test_auth(test_member: OrgMember, test_org: Organization) -> TestAuth:
    """Create JWT token for the test member's account."""
    return TestAuth(
        member=test_member,
        org=test_org,
        token=create_session_token(test_member.account_id),
    )


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create unauthenticated AsyncClient for testing public endpoints.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.state.org_cache.invalidate()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(
    db: Session,
    test_auth: TestAuth,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create authenticated AsyncClient with JWT cookie and CSRF header.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.state.org_cache.invalidate()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={test_auth.cookie_name: test_auth.token},
        headers={"X-Requested-With": "XMLHttpRequest"},  # CSRF header
    ) as c:
        yield c

    app.dependency_overrides.clear()
