"""
아동 권한 원장(Authorization Ledger).

노트/댓글/미션/사진의 모든 진입점은 여기의 require_* 함수로 먼저 아동을 불러옵니다.
단일 권한 판정은 ChildAuthorization.allows() 한 곳에만 있습니다.
"""
import logging
import uuid
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.db import transaction
from kidcare.errors import (
    ConflictError, InvalidArgumentError, InvalidRoleError, NotFoundError, PermissionDeniedError,
)
from kidcare.models import Child, ChildAuthorization, ChildPermission, User, UserRole
from kidcare.services.auth_service import verify_pin_hash

logger = logging.getLogger(__name__)

CHILD_NOT_FOUND = "아동을 찾을 수 없습니다"


async def load_child(db: AsyncSession, child_id: uuid.UUID) -> Optional[Child]:
    res = await db.execute(
        select(Child)
        .where(Child.id == child_id, Child.is_deleted.is_(False))
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def evaluate(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID,
                   permission: ChildPermission) -> bool:
    """활성 grant 가 있고 (주보호자 이거나 permission 을 보유) 하면 True"""
    child = await load_child(db, child_id)
    if child is None:
        return False
    return child.has_permission(user_id, permission)


async def has_access(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    """권한 종류와 무관하게 활성 grant 가 있는지"""
    child = await load_child(db, child_id)
    return child is not None and child.can_access(user_id)


async def require_access(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID) -> Child:
    child = await load_child(db, child_id)
    if child is None or not child.can_access(user_id):
        logger.warning("access denied child=%s user=%s", child_id, user_id)
        raise NotFoundError(CHILD_NOT_FOUND)
    return child


async def require_view(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID) -> Child:
    """
    레코드 조회용. 볼 수 없는 사용자에게는 존재 여부를 드러내지 않도록
    없는 레코드와 같은 NotFoundError 를 던집니다.
    """
    child = await load_child(db, child_id)
    if child is None or not child.has_permission(user_id, ChildPermission.VIEW_REPORT):
        logger.warning("view denied child=%s user=%s", child_id, user_id)
        raise NotFoundError(CHILD_NOT_FOUND)
    return child


async def require_permission(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID,
                             permission: ChildPermission) -> Child:
    child = await require_access(db, child_id, user_id)
    if not child.has_permission(user_id, permission):
        logger.warning("permission %s denied child=%s user=%s", permission.value, child_id, user_id)
        raise PermissionDeniedError(f"{permission.value} 권한이 없습니다")
    return child


async def require_primary(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID) -> Child:
    child = await require_access(db, child_id, user_id)
    if not child.is_primary(user_id):
        logger.warning("primary required child=%s user=%s", child_id, user_id)
        raise PermissionDeniedError("주보호자만 가능합니다")
    return child


async def assert_single_primary(db: AsyncSession, child_id: uuid.UUID) -> None:
    """커밋 직전 주보호자 1명 불변식을 DB 기준으로 다시 확인 (compare-and-set)"""
    count = await db.scalar(
        select(func.count(ChildAuthorization.id)).where(
            ChildAuthorization.child_id == child_id,
            ChildAuthorization.is_primary.is_(True),
            ChildAuthorization.is_active.is_(True),
        )
    )
    if count > 1:
        raise ConflictError("주보호자는 1명만 가능합니다")


async def _load_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("사용자를 찾을 수 없습니다")
    return user


def _target_authorization(child: Child, target_user_id: uuid.UUID) -> ChildAuthorization:
    auth = child.authorization_for(target_user_id)
    if auth is None:
        raise NotFoundError("권한 정보를 찾을 수 없습니다")
    if auth.is_primary:
        raise PermissionDeniedError("주보호자의 권한은 변경할 수 없습니다")
    return auth


# ============= 원장 변경 =============

async def grant(db: AsyncSession, child_id: uuid.UUID, grantor_id: uuid.UUID, target_user_id: uuid.UUID,
                permissions: Iterable[ChildPermission], is_primary: bool = False) -> ChildAuthorization:
    """
    주보호자가 다른 사용자에게 권한을 부여합니다.
    중복 grant / 두 번째 주보호자는 Conflict, PARENT 가 아닌 주보호자는 InvalidRole.
    """
    logger.info("grant child=%s grantor=%s target=%s primary=%s", child_id, grantor_id, target_user_id, is_primary)
    async with transaction(db):
        child = await require_primary(db, child_id, grantor_id)
        target = await _load_user(db, target_user_id)

        auth = ChildAuthorization.issue(target, permissions, is_primary=is_primary, granted_by_id=grantor_id)
        child.add_authorization(auth)
        await db.flush()
        await assert_single_primary(db, child.id)

    logger.info("granted authorization=%s child=%s", auth.id, child_id)
    return auth


async def revise(db: AsyncSession, child_id: uuid.UUID, grantor_id: uuid.UUID, target_user_id: uuid.UUID,
                 permissions: Iterable[ChildPermission]) -> ChildAuthorization:
    """비주보호자 grant 의 권한 집합 전체 교체"""
    async with transaction(db):
        child = await require_primary(db, child_id, grantor_id)
        auth = _target_authorization(child, target_user_id)
        auth.replace_permissions(permissions)

    logger.info("revised authorization=%s permissions=%s", auth.id, auth.permissions)
    return auth


async def revoke(db: AsyncSession, child_id: uuid.UUID, grantor_id: uuid.UUID,
                 target_user_id: uuid.UUID) -> None:
    async with transaction(db):
        child = await require_primary(db, child_id, grantor_id)
        auth = _target_authorization(child, target_user_id)
        auth.deactivate()

    logger.info("revoked authorization=%s child=%s", auth.id, child_id)


async def transfer_primary(db: AsyncSession, child_id: uuid.UUID, current_primary_id: uuid.UUID,
                           new_primary_id: uuid.UUID, pin: Optional[str] = None) -> ChildAuthorization:
    """
    주보호자 이전. 새 주보호자는 VIEW_REPORT 를 가진 기존 grant 가 있어야 하며
    이전 과정에서 새 grant 를 만들지 않습니다. 두 레코드의 저장된 권한 집합은 그대로 둡니다.
    """
    logger.info("transfer primary child=%s from=%s to=%s", child_id, current_primary_id, new_primary_id)
    async with transaction(db):
        child = await require_primary(db, child_id, current_primary_id)
        if child.pin_enabled and not verify_pin_hash(pin, child.pin_hash):
            raise PermissionDeniedError("PIN이 일치하지 않습니다")

        new_auth = child.authorization_for(new_primary_id)
        if new_auth is None:
            raise InvalidArgumentError("새 주보호자는 먼저 권한을 부여받아야 합니다")
        if new_auth.is_primary:
            raise InvalidArgumentError("이미 주보호자입니다")
        if ChildPermission.VIEW_REPORT not in new_auth.permission_set:
            raise InvalidArgumentError("새 주보호자는 VIEW_REPORT 권한이 있어야 합니다")
        if not new_auth.user.has_role(UserRole.PARENT):
            raise InvalidRoleError("주보호자는 PARENT 역할만 가능합니다")

        # 부분 유니크 인덱스 때문에 강등을 먼저 반영한 뒤 승격
        child.primary_authorization().demote()
        await db.flush()
        new_auth.promote()
        await db.flush()
        await assert_single_primary(db, child.id)

    logger.info("primary transferred child=%s to=%s", child_id, new_primary_id)
    return new_auth


async def list_authorizations(db: AsyncSession, child_id: uuid.UUID,
                              user_id: uuid.UUID) -> list[ChildAuthorization]:
    child = await require_access(db, child_id, user_id)
    return child.active_authorizations()
