"""FastAPI dependencies for authentication, org context, and database access."""

from typing import Generator

import jwt
from fastapi import Depends, HTTPException, Path, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import UnauthorizedError
from app.core.org_cache import OrgContext, OrgShortcodeCache
from app.core.security import account_id_from_token
from app.db.enums import OrgMemberStatus
from app.db.models import OrgMember
from app.db.session import SessionLocal


# Cookie and header names
COOKIE_NAME = "unsession"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_org_cache(request: Request) -> OrgShortcodeCache:
    """The app-wide org shortcode cache."""
    return request.app.state.org_cache


def get_current_account_id(request: Request) -> int:
    """
    Read the account id from the session cookie.

    Raises:
        HTTPException 401: Missing or invalid session
    """
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return account_id_from_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid session")


def resolve_org_context(
    db: Session, *, cache: OrgShortcodeCache, org_shortcode: str, account_id: int
) -> OrgContext:
    """
    Resolve the org and the account's active membership in it.

    Raises:
        NotFoundError: unknown shortcode
        UnauthorizedError: the account is not an active member
    """
    org = cache.get(db, org_shortcode)
    member = db.execute(
        select(OrgMember.id, OrgMember.public_id).where(
            OrgMember.org_id == org.id,
            OrgMember.account_id == account_id,
            OrgMember.status != OrgMemberStatus.REMOVED,
        )
    ).first()
    if member is None:
        raise UnauthorizedError("You are not a member of this organization")
    return OrgContext(
        org_id=org.id,
        org_public_id=org.public_id,
        org_shortcode=org.shortcode,
        member_id=member.id,
        member_public_id=member.public_id,
    )


def get_org_context(
    org_shortcode: str = Path(..., min_length=1, max_length=64),
    account_id: int = Depends(get_current_account_id),
    db: Session = Depends(get_db),
    cache: OrgShortcodeCache = Depends(get_org_cache),
) -> OrgContext:
    """
    PRIMARY dependency for org-scoped endpoints.

    Every query in the handler MUST be scoped by the returned org id.
    """
    return resolve_org_context(db, cache=cache, org_shortcode=org_shortcode, account_id=account_id)


def require_csrf_header(request: Request) -> None:
    """
    Verify CSRF header on mutations.

    Apply to state-changing endpoints (POST, PATCH, DELETE).

    Raises:
        HTTPException 403: Missing or invalid CSRF header
    """
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise HTTPException(
            status_code=403,
            detail=f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'"
        )
