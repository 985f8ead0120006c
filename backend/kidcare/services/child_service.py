import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.config import MAX_CHILDREN_PER_PARENT
from kidcare.db import transaction
from kidcare.errors import InvalidRoleError, LimitExceededError, PermissionDeniedError
from kidcare.models import (
    ALL_PERMISSIONS, Child, ChildAuthorization, ChildPermission, User, UserRole,
)
from kidcare.services import authorization_service as authz
from kidcare.services.auth_service import hash_pin, verify_pin_hash
from kidcare.services.cascade import new_context, soft_delete

logger = logging.getLogger(__name__)

_UPDATABLE = {
    "name": Child.change_name,
    "birth_date": Child.change_birth_date,
    "gender": Child.change_gender,
    "diagnosis_date": Child.change_diagnosis_date,
}


async def count_primary_children(db: AsyncSession, user_id: uuid.UUID) -> int:
    return await db.scalar(
        select(func.count(ChildAuthorization.id))
        .join(Child, Child.id == ChildAuthorization.child_id)
        .where(
            ChildAuthorization.user_id == user_id,
            ChildAuthorization.is_primary.is_(True),
            ChildAuthorization.is_active.is_(True),
            Child.is_deleted.is_(False),
        )
    )


async def create_child(db: AsyncSession, parent: User, name: str, birth_date: Optional[date] = None,
                       gender: Optional[str] = None, diagnosis_date: Optional[date] = None,
                       pin: Optional[str] = None) -> Child:
    """
    아동 등록. 등록한 부모는 전체 권한을 가진 주보호자가 됩니다.
    """
    if not parent.has_role(UserRole.PARENT):
        raise InvalidRoleError("부모 회원만 아동을 등록할 수 있습니다")

    async with transaction(db):
        # 1. 주보호자로 등록된 아동 수 제한
        if await count_primary_children(db, parent.id) >= MAX_CHILDREN_PER_PARENT:
            raise LimitExceededError(f"아동은 최대 {MAX_CHILDREN_PER_PARENT}명까지 등록할 수 있습니다")

        # 2. 아동 생성 + 검증
        child = Child.create(name=name, birth_date=birth_date, gender=gender, diagnosis_date=diagnosis_date)
        if pin:
            child.set_pin_hash(hash_pin(pin))
        db.add(child)

        # 3. 주보호자 grant
        child.add_authorization(
            ChildAuthorization.issue(parent, ALL_PERMISSIONS, is_primary=True, granted_by_id=parent.id)
        )
        await db.flush()
        await authz.assert_single_primary(db, child.id)

    logger.info("child created id=%s parent=%s", child.id, parent.id)
    return child


async def get_child(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID) -> Child:
    return await authz.require_access(db, child_id, user_id)


def _accessible_query(user_id: uuid.UUID):
    return (
        select(Child)
        .join(ChildAuthorization, ChildAuthorization.child_id == Child.id)
        .where(
            ChildAuthorization.user_id == user_id,
            ChildAuthorization.is_active.is_(True),
            Child.is_deleted.is_(False),
        )
        .order_by(Child.created_at)
    )


async def list_accessible_children(db: AsyncSession, user_id: uuid.UUID) -> list[Child]:
    res = await db.execute(_accessible_query(user_id))
    return list(res.scalars().all())


async def list_primary_children(db: AsyncSession, user_id: uuid.UUID) -> list[Child]:
    res = await db.execute(_accessible_query(user_id).where(ChildAuthorization.is_primary.is_(True)))
    return list(res.scalars().all())


async def list_playable_children(db: AsyncSession, user_id: uuid.UUID) -> list[Child]:
    children = await list_accessible_children(db, user_id)
    return [c for c in children if c.has_permission(user_id, ChildPermission.PLAY_GAME)]


async def update_child(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID, changes: dict) -> Child:
    """
    아동 정보 수정 (주보호자 또는 MANAGE).
    changes 에 들어 있는 필드만 바꿉니다.
    """
    async with transaction(db):
        child = await authz.require_permission(db, child_id, user_id, ChildPermission.MANAGE)
        for field, value in changes.items():
            if field in _UPDATABLE:
                _UPDATABLE[field](child, value)

    logger.info("child updated id=%s fields=%s", child_id, sorted(changes))
    return child


async def delete_child(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID) -> None:
    async with transaction(db):
        child = await authz.require_primary(db, child_id, user_id)
        await soft_delete(child, new_context(db))


# ============= PIN =============

async def set_pin(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID, new_pin: str,
                  current_pin: Optional[str] = None) -> None:
    async with transaction(db):
        child = await authz.require_primary(db, child_id, user_id)
        if child.pin_enabled and not verify_pin_hash(current_pin, child.pin_hash):
            raise PermissionDeniedError("현재 PIN이 일치하지 않습니다")
        child.set_pin_hash(hash_pin(new_pin))
    logger.info("pin set child=%s", child_id)


async def verify_pin(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID, pin: str) -> bool:
    child = await authz.require_access(db, child_id, user_id)
    if not child.pin_enabled:
        return True
    return verify_pin_hash(pin, child.pin_hash)


async def remove_pin(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID, current_pin: str) -> None:
    async with transaction(db):
        child = await authz.require_primary(db, child_id, user_id)
        if child.pin_enabled and not verify_pin_hash(current_pin, child.pin_hash):
            raise PermissionDeniedError("현재 PIN이 일치하지 않습니다")
        child.remove_pin()
    logger.info("pin removed child=%s", child_id)
