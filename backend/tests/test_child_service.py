from datetime import date, timedelta

import pytest
from sqlalchemy import select

from kidcare.errors import (
    InvalidArgumentError, InvalidRoleError, LimitExceededError, NotFoundError, PermissionDeniedError,
)
from kidcare.models import ALL_PERMISSIONS, Child, ChildAuthorization, ChildPermission, UserRole
from kidcare.services import authorization_service as authz
from kidcare.services import child_service

pytestmark = pytest.mark.asyncio


async def test_create_child_makes_creator_primary(db, make_user):
    parent = await make_user(UserRole.PARENT, "parent")
    child = await child_service.create_child(db, parent, "김하늘", birth_date=date(2019, 3, 2), gender="FEMALE")

    primary = child.primary_authorization()
    assert primary.user_id == parent.id
    assert primary.permission_set == ALL_PERMISSIONS
    assert child.pin_enabled is False


async def test_only_parents_register_children(db, make_user):
    therapist = await make_user(UserRole.THERAPIST, "therapist")
    with pytest.raises(InvalidRoleError):
        await child_service.create_child(db, therapist, "김하늘")


async def test_child_limit_per_parent(db, make_user):
    parent = await make_user(UserRole.PARENT, "parent")
    for i in range(5):
        await child_service.create_child(db, parent, f"아이{i}")

    with pytest.raises(LimitExceededError):
        await child_service.create_child(db, parent, "여섯째")


@pytest.mark.parametrize("kwargs", [
    {"name": "김"},
    {"name": "가" * 51},
    {"name": "김하늘", "gender": "UNKNOWN"},
    {"name": "김하늘", "birth_date": date.today() + timedelta(days=1)},
])
async def test_create_child_validation(db, make_user, kwargs):
    parent = await make_user(UserRole.PARENT, "parent")
    with pytest.raises(InvalidArgumentError):
        await child_service.create_child(db, parent, **kwargs)


async def test_update_requires_manage(db, family):
    with pytest.raises(PermissionDeniedError):
        await child_service.update_child(db, family.child_id, family.therapist_id, {"name": "김바다"})

    await authz.revise(
        db, family.child_id, family.parent_id, family.therapist_id,
        [ChildPermission.VIEW_REPORT, ChildPermission.MANAGE],
    )
    child = await child_service.update_child(db, family.child_id, family.therapist_id, {"name": "김바다"})
    assert child.name == "김바다"


async def test_manage_does_not_imply_write_note(db, family):
    await authz.revise(db, family.child_id, family.parent_id, family.therapist_id, [ChildPermission.MANAGE])
    assert not await authz.evaluate(db, family.child_id, family.therapist_id, ChildPermission.WRITE_NOTE)
    assert not await authz.evaluate(db, family.child_id, family.therapist_id, ChildPermission.ASSIGN_MISSION)


async def test_list_children_views(db, family):
    accessible = await child_service.list_accessible_children(db, family.therapist_id)
    assert [c.id for c in accessible] == [family.child_id]
    assert await child_service.list_primary_children(db, family.therapist_id) == []
    assert await child_service.list_playable_children(db, family.therapist_id) == []
    playable = await child_service.list_playable_children(db, family.parent_id)
    assert [c.id for c in playable] == [family.child_id]


async def test_delete_child_deactivates_authorizations(db, family):
    with pytest.raises(PermissionDeniedError):
        await child_service.delete_child(db, family.child_id, family.therapist_id)

    await child_service.delete_child(db, family.child_id, family.parent_id)

    with pytest.raises(NotFoundError):
        await child_service.get_child(db, family.child_id, family.parent_id)
    active = (await db.execute(
        select(ChildAuthorization.id).where(
            ChildAuthorization.child_id == family.child_id, ChildAuthorization.is_active.is_(True)
        )
    )).all()
    assert active == []
    deleted = await db.scalar(select(Child.is_deleted).where(Child.id == family.child_id))
    assert deleted is True


async def test_pin_lifecycle(db, family):
    assert await child_service.verify_pin(db, family.child_id, family.therapist_id, "9999")

    await child_service.set_pin(db, family.child_id, family.parent_id, "1234")
    assert await child_service.verify_pin(db, family.child_id, family.therapist_id, "1234")
    assert not await child_service.verify_pin(db, family.child_id, family.therapist_id, "4321")

    with pytest.raises(PermissionDeniedError):
        await child_service.set_pin(db, family.child_id, family.parent_id, "5555", current_pin="0000")
    with pytest.raises(InvalidArgumentError):
        await child_service.set_pin(db, family.child_id, family.parent_id, "12ab", current_pin="1234")

    await child_service.remove_pin(db, family.child_id, family.parent_id, "1234")
    child = await authz.load_child(db, family.child_id)
    assert child.pin_enabled is False
    assert child.pin_hash is None
