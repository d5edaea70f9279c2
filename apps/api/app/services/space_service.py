"""Space membership authority.

Every mutation touching a space-scoped resource asks this module first.
Membership is either a direct SpaceMember row for the org member or a row
for one of the member's teams; OPEN spaces admit everyone.
"""

from __future__ import annotations

from dataclasses import dataclass, fields

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, UnauthorizedError
from app.db.enums import SPACE_PERMISSION_FLAGS, SpaceMemberRole, SpaceType
from app.db.models import ConvoToSpace, Space, SpaceMember, TeamMember


@dataclass(frozen=True)
class SpacePermissions:
    can_create: bool = True
    can_read: bool = True
    can_comment: bool = True
    can_reply: bool = True
    can_delete: bool = True
    can_change_workflow: bool = True
    can_set_workflow_to_closed: bool = True
    can_add_tags: bool = True
    can_move_to_another_space: bool = True
    can_add_to_another_space: bool = True
    can_merge_convos: bool = True
    can_add_participants: bool = True

    @classmethod
    def merged(cls, rows: list[SpaceMember]) -> "SpacePermissions":
        """A flag is granted when any of the member's rows grants it."""
        return cls(**{flag: any(getattr(row, flag) for row in rows) for flag in SPACE_PERMISSION_FLAGS})

    def as_dict(self) -> dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class SpaceMembership:
    """Outcome of a membership lookup for one (space, org member) pair."""
    space_id: int
    space_public_id: str
    space_type: SpaceType
    role: SpaceMemberRole | None
    permissions: SpacePermissions | None

    @property
    def authorized(self) -> bool:
        # Open spaces override the missing-role denial.
        return self.space_type == SpaceType.OPEN or self.role is not None

    def can(self, flag: str) -> bool:
        if not self.authorized or self.permissions is None:
            return False
        return bool(getattr(self.permissions, flag))


def get_space(
    db: Session,
    *,
    org_id: int,
    space_public_id: str | None = None,
    space_shortcode: str | None = None,
) -> Space:
    """
    Load a space by public id or shortcode.

    Raises:
        NotFoundError: no such space in the org
    """
    stmt = select(Space).where(Space.org_id == org_id)
    if space_public_id is not None:
        stmt = stmt.where(Space.public_id == space_public_id)
    elif space_shortcode is not None:
        stmt = stmt.where(Space.shortcode == space_shortcode)
    else:
        raise NotFoundError("Space not found")
    space = db.scalars(stmt).first()
    if not space:
        raise NotFoundError("Space not found")
    return space


def _membership_rows(db: Session, *, space_id: int, org_member_id: int) -> list[SpaceMember]:
    team_ids = select(TeamMember.team_id).where(TeamMember.org_member_id == org_member_id)
    return list(
        db.scalars(
            select(SpaceMember)
            .where(
                SpaceMember.space_id == space_id,
                or_(
                    SpaceMember.org_member_id == org_member_id,
                    SpaceMember.team_id.in_(team_ids),
                ),
            )
            .order_by(SpaceMember.id)
        ).all()
    )


def resolve_membership(db: Session, *, space: Space, org_member_id: int) -> SpaceMembership:
    """
    Classify an org member's standing in a space.

    Returns the space type, the member's role (None when no row exists) and
    the effective permissions. An OPEN space with no row yields full default
    permissions; a PRIVATE space with no row yields no permissions.
    """
    rows = _membership_rows(db, space_id=space.id, org_member_id=org_member_id)
    if rows:
        direct = [row for row in rows if row.org_member_id == org_member_id]
        role_row = direct[0] if direct else rows[0]
        return SpaceMembership(
            space_id=space.id,
            space_public_id=space.public_id,
            space_type=space.type,
            role=role_row.role,
            permissions=SpacePermissions.merged(rows),
        )
    return SpaceMembership(
        space_id=space.id,
        space_public_id=space.public_id,
        space_type=space.type,
        role=None,
        permissions=SpacePermissions() if space.type == SpaceType.OPEN else None,
    )


def require_membership(
    db: Session, *, space: Space, org_member_id: int, permission: str | None = None
) -> SpaceMembership:
    """
    Resolve membership and enforce it.

    Raises:
        UnauthorizedError: not a member, or ``permission`` is not granted
    """
    membership = resolve_membership(db, space=space, org_member_id=org_member_id)
    if not membership.authorized:
        raise UnauthorizedError("You are not a member of this Space")
    if permission is not None and not membership.can(permission):
        raise UnauthorizedError("You do not have permission to do this in this Space")
    return membership


def is_explicit_member(db: Session, *, space_id: int, org_member_id: int) -> bool:
    """True when a SpaceMember row names the org member directly."""
    row = db.scalars(
        select(SpaceMember.id).where(
            SpaceMember.space_id == space_id, SpaceMember.org_member_id == org_member_id
        )
    ).first()
    return row is not None


def member_can_access(db: Session, *, space: Space, org_member_id: int) -> bool:
    return resolve_membership(db, space=space, org_member_id=org_member_id).authorized


def team_has_access(db: Session, *, space: Space, team_id: int) -> bool:
    """
    True when the space is open, names the team, or names any team member.
    """
    if space.type == SpaceType.OPEN:
        return True
    member_ids = select(TeamMember.org_member_id).where(TeamMember.team_id == team_id)
    row = db.scalars(
        select(SpaceMember.id).where(
            SpaceMember.space_id == space.id,
            or_(SpaceMember.team_id == team_id, SpaceMember.org_member_id.in_(member_ids)),
        )
    ).first()
    return row is not None


# =============================================================================
# Convo filing
# =============================================================================

def file_convo_into_space(db: Session, *, org_id: int, convo_id: int, space_id: int) -> ConvoToSpace:
    """File a convo into a space; filing twice returns the existing row."""
    existing = db.scalars(
        select(ConvoToSpace).where(
            ConvoToSpace.convo_id == convo_id, ConvoToSpace.space_id == space_id
        )
    ).first()
    if existing:
        return existing
    link = ConvoToSpace(org_id=org_id, convo_id=convo_id, space_id=space_id)
    db.add(link)
    db.flush()
    return link


def list_convo_spaces(db: Session, *, convo_id: int) -> list[Space]:
    return list(
        db.scalars(
            select(Space)
            .join(ConvoToSpace, ConvoToSpace.space_id == Space.id)
            .where(ConvoToSpace.convo_id == convo_id)
            .order_by(ConvoToSpace.id)
        ).all()
    )


def list_accessible_spaces(db: Session, *, org_id: int, org_member_id: int) -> list[Space]:
    """Open spaces of the org plus every space the member or their teams belong to."""
    team_ids = select(TeamMember.team_id).where(TeamMember.org_member_id == org_member_id)
    member_space_ids = select(SpaceMember.space_id).where(
        or_(SpaceMember.org_member_id == org_member_id, SpaceMember.team_id.in_(team_ids))
    )
    return list(
        db.scalars(
            select(Space)
            .where(
                Space.org_id == org_id,
                or_(Space.type == SpaceType.OPEN, Space.id.in_(member_space_ids)),
            )
            .order_by(Space.id)
        ).all()
    )
