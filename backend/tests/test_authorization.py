import pytest
from sqlalchemy import func, select

from kidcare.errors import (
    ConflictError, InvalidArgumentError, InvalidRoleError, NotFoundError, PermissionDeniedError,
)
from kidcare.models import (
    ALL_PERMISSIONS, Child, ChildAuthorization, ChildPermission, User, UserRole,
)
from kidcare.services import authorization_service as authz
from kidcare.services import child_service

pytestmark = pytest.mark.asyncio


async def active_primary_count(db, child_id):
    return await db.scalar(
        select(func.count(ChildAuthorization.id)).where(
            ChildAuthorization.child_id == child_id,
            ChildAuthorization.is_primary.is_(True),
            ChildAuthorization.is_active.is_(True),
        )
    )


async def test_primary_passes_every_permission_even_with_empty_stored_set(db, family):
    auth = (await db.execute(
        select(ChildAuthorization).where(
            ChildAuthorization.child_id == family.child_id,
            ChildAuthorization.user_id == family.parent_id,
        )
    )).scalar_one()
    auth.permissions = []
    await db.commit()

    for permission in ChildPermission:
        assert await authz.evaluate(db, family.child_id, family.parent_id, permission)


async def test_non_primary_is_limited_to_stored_set(db, family):
    assert await authz.evaluate(db, family.child_id, family.therapist_id, ChildPermission.VIEW_REPORT)
    assert await authz.evaluate(db, family.child_id, family.therapist_id, ChildPermission.WRITE_NOTE)
    assert not await authz.evaluate(db, family.child_id, family.therapist_id, ChildPermission.MANAGE)
    assert not await authz.evaluate(db, family.child_id, family.therapist_id, ChildPermission.PLAY_GAME)


async def test_user_without_grant_is_denied(db, family):
    assert not await authz.evaluate(db, family.child_id, family.stranger_id, ChildPermission.VIEW_REPORT)
    assert not await authz.has_access(db, family.child_id, family.stranger_id)
    with pytest.raises(NotFoundError):
        await authz.require_view(db, family.child_id, family.stranger_id)


async def test_grant_by_non_primary_is_rejected(db, family, make_user):
    teacher = await make_user(UserRole.TEACHER, "teacher")
    teacher_id = teacher.id
    with pytest.raises(PermissionDeniedError):
        await authz.grant(db, family.child_id, family.therapist_id, teacher_id, [ChildPermission.VIEW_REPORT])


async def test_duplicate_grant_conflicts(db, family):
    with pytest.raises(ConflictError):
        await authz.grant(db, family.child_id, family.parent_id, family.therapist_id, [ChildPermission.PLAY_GAME])


async def test_second_primary_conflicts_before_role_check(db, family, make_user):
    therapist2 = await make_user(UserRole.THERAPIST, "therapist2")
    therapist2_id = therapist2.id

    with pytest.raises(ConflictError):
        await authz.grant(db, family.child_id, family.parent_id, therapist2_id, [], is_primary=True)

    assert await active_primary_count(db, family.child_id) == 1


async def test_non_parent_cannot_hold_primary():
    therapist = User(role=UserRole.THERAPIST)
    child = Child.create(name="이바다")
    with pytest.raises(InvalidRoleError):
        child.add_authorization(ChildAuthorization.issue(therapist, [], is_primary=True))


async def test_revise_replaces_whole_set(db, family):
    auth = await authz.revise(
        db, family.child_id, family.parent_id, family.therapist_id, [ChildPermission.ASSIGN_MISSION]
    )
    assert auth.permission_set == {ChildPermission.ASSIGN_MISSION}
    assert not await authz.evaluate(db, family.child_id, family.therapist_id, ChildPermission.VIEW_REPORT)


async def test_primary_grant_cannot_be_revised_or_revoked(db, family):
    with pytest.raises(PermissionDeniedError):
        await authz.revise(db, family.child_id, family.parent_id, family.parent_id, [])
    with pytest.raises(PermissionDeniedError):
        await authz.revoke(db, family.child_id, family.parent_id, family.parent_id)


async def test_primary_record_rejects_capability_mutation():
    parent = User(role=UserRole.PARENT)
    auth = ChildAuthorization.issue(parent, ALL_PERMISSIONS, is_primary=True)
    with pytest.raises(ConflictError):
        auth.remove_permission(ChildPermission.MANAGE)
    with pytest.raises(ConflictError):
        auth.clear_permissions()


async def test_revoke_then_fresh_grant(db, family):
    await authz.revoke(db, family.child_id, family.parent_id, family.therapist_id)
    assert not await authz.has_access(db, family.child_id, family.therapist_id)

    auth = await authz.grant(
        db, family.child_id, family.parent_id, family.therapist_id, [ChildPermission.PLAY_GAME]
    )
    assert auth.is_active
    rows = (await db.execute(
        select(ChildAuthorization.is_active).where(
            ChildAuthorization.child_id == family.child_id,
            ChildAuthorization.user_id == family.therapist_id,
        )
    )).scalars().all()
    assert sorted(rows) == [False, True]


async def test_transfer_primary_keeps_single_primary(db, family, make_user):
    parent2 = await make_user(UserRole.PARENT, "parent2")
    parent2_id = parent2.id
    await authz.grant(db, family.child_id, family.parent_id, parent2_id, [ChildPermission.VIEW_REPORT])

    new_auth = await authz.transfer_primary(db, family.child_id, family.parent_id, parent2_id)

    assert new_auth.is_primary
    assert new_auth.permission_set == {ChildPermission.VIEW_REPORT}
    assert await active_primary_count(db, family.child_id) == 1
    child = await authz.load_child(db, family.child_id)
    assert child.primary_user_id == parent2_id
    # 이전 주보호자는 저장된 권한 집합을 그대로 유지
    assert child.authorization_for(family.parent_id).permission_set == ALL_PERMISSIONS
    assert not child.is_primary(family.parent_id)


async def test_transfer_requires_existing_grant_with_view(db, family, make_user):
    parent2 = await make_user(UserRole.PARENT, "parent2")
    parent2_id = parent2.id

    with pytest.raises(InvalidArgumentError):
        await authz.transfer_primary(db, family.child_id, family.parent_id, parent2_id)

    await authz.grant(db, family.child_id, family.parent_id, parent2_id, [ChildPermission.PLAY_GAME])
    with pytest.raises(InvalidArgumentError):
        await authz.transfer_primary(db, family.child_id, family.parent_id, parent2_id)

    assert await active_primary_count(db, family.child_id) == 1


async def test_transfer_to_therapist_is_invalid_role(db, family):
    with pytest.raises(InvalidRoleError):
        await authz.transfer_primary(db, family.child_id, family.parent_id, family.therapist_id)


async def test_transfer_requires_pin_when_enabled(db, family, make_user):
    parent2 = await make_user(UserRole.PARENT, "parent2")
    parent2_id = parent2.id
    await authz.grant(db, family.child_id, family.parent_id, parent2_id, [ChildPermission.VIEW_REPORT])
    await child_service.set_pin(db, family.child_id, family.parent_id, "1234")

    with pytest.raises(PermissionDeniedError):
        await authz.transfer_primary(db, family.child_id, family.parent_id, parent2_id, pin="0000")

    await authz.transfer_primary(db, family.child_id, family.parent_id, parent2_id, pin="1234")
    assert await active_primary_count(db, family.child_id) == 1


async def test_list_authorizations(db, family):
    auths = await authz.list_authorizations(db, family.child_id, family.therapist_id)
    assert {a.user_id for a in auths} == {family.parent_id, family.therapist_id}

    with pytest.raises(NotFoundError):
        await authz.list_authorizations(db, family.child_id, family.stranger_id)
