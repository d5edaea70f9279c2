"""Tests for space membership and convo filing."""

import pytest

from app.core.errors import NotFoundError, UnauthorizedError
from app.db.enums import SpaceMemberRole, SpaceType
from app.db.models import Convo
from app.services import space_service


def test_get_space_by_shortcode_or_public_id(db, test_org, open_space):
    assert space_service.get_space(db, org_id=test_org.id, space_shortcode="shared").id == open_space.id
    assert (
        space_service.get_space(db, org_id=test_org.id, space_public_id=open_space.public_id).id
        == open_space.id
    )


def test_get_space_is_scoped_to_the_org(db, factory, open_space):
    other_org = factory.org()

    with pytest.raises(NotFoundError):
        space_service.get_space(db, org_id=other_org.id, space_shortcode="shared")


def test_open_space_grants_defaults_without_a_row(db, open_space, test_member):
    membership = space_service.resolve_membership(db, space=open_space, org_member_id=test_member.id)

    assert membership.authorized
    assert membership.role is None
    assert membership.can("can_set_workflow_to_closed")


def test_private_space_without_a_row_denies(db, factory, test_org, test_member):
    private = factory.space(test_org, type=SpaceType.PRIVATE)

    membership = space_service.resolve_membership(db, space=private, org_member_id=test_member.id)

    assert not membership.authorized
    assert not membership.can("can_read")
    with pytest.raises(UnauthorizedError):
        space_service.require_membership(db, space=private, org_member_id=test_member.id)


def test_missing_flag_is_enforced(db, factory, test_org, test_member):
    private = factory.space(test_org, type=SpaceType.PRIVATE)
    factory.space_member(private, member=test_member, can_create=False)

    space_service.require_membership(db, space=private, org_member_id=test_member.id)
    with pytest.raises(UnauthorizedError):
        space_service.require_membership(
            db, space=private, org_member_id=test_member.id, permission="can_create"
        )


def test_team_row_grants_membership(db, factory, test_org, test_member):
    private = factory.space(test_org, type=SpaceType.PRIVATE)
    team = factory.team(test_org, members=(test_member,))
    factory.space_member(private, team=team, role=SpaceMemberRole.ADMIN, can_delete=False)

    membership = space_service.resolve_membership(db, space=private, org_member_id=test_member.id)

    assert membership.role == SpaceMemberRole.ADMIN
    assert not membership.can("can_delete")
    assert membership.can("can_reply")


def test_flags_merge_across_direct_and_team_rows(db, factory, test_org, test_member):
    private = factory.space(test_org, type=SpaceType.PRIVATE)
    team = factory.team(test_org, members=(test_member,))
    factory.space_member(private, member=test_member, can_delete=False)
    factory.space_member(private, team=team, can_delete=True)

    membership = space_service.resolve_membership(db, space=private, org_member_id=test_member.id)

    assert membership.role == SpaceMemberRole.MEMBER
    assert membership.can("can_delete")


def test_team_access_through_a_member_row(db, factory, test_org, test_member):
    private = factory.space(test_org, type=SpaceType.PRIVATE)
    team = factory.team(test_org, members=(test_member,))
    other_team = factory.team(test_org)
    factory.space_member(private, member=test_member)

    assert space_service.team_has_access(db, space=private, team_id=team.id)
    assert not space_service.team_has_access(db, space=private, team_id=other_team.id)


def test_filing_twice_returns_the_same_link(db, test_org, open_space):
    convo = Convo(org_id=test_org.id)
    db.add(convo)
    db.flush()

    first = space_service.file_convo_into_space(db, org_id=test_org.id, convo_id=convo.id, space_id=open_space.id)
    second = space_service.file_convo_into_space(db, org_id=test_org.id, convo_id=convo.id, space_id=open_space.id)

    assert first.id == second.id
    assert [s.id for s in space_service.list_convo_spaces(db, convo_id=convo.id)] == [open_space.id]


def test_accessible_spaces(db, factory, test_org, test_member, open_space):
    hidden = factory.space(test_org, type=SpaceType.PRIVATE)
    via_team = factory.space(test_org, type=SpaceType.PRIVATE)
    team = factory.team(test_org, members=(test_member,))
    factory.space_member(via_team, team=team)

    ids = {s.id for s in space_service.list_accessible_spaces(db, org_id=test_org.id, org_member_id=test_member.id)}

    assert {open_space.id, via_team.id, test_member.personal_space_id} <= ids
    assert hidden.id not in ids
