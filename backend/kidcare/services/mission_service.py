"""
미션 생애주기.

각 전이(할당/시작/완료/검증/취소)는 상태 변경, 시각 기록, 시스템 노트 생성을
하나의 트랜잭션에서 처리합니다. 시스템 노트 생성이 실패하면 전이도 롤백됩니다.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.db import transaction
from kidcare.errors import InvalidArgumentError, NotFoundError, PermissionDeniedError
from kidcare.models import AssignedMission, ChildPermission, MissionStatus, utcnow
from kidcare.services import authorization_service as authz
from kidcare.services import note_service
from kidcare.services.cascade import new_context, soft_delete
from kidcare.services.notification_service import MissionCompleted, publish_events
from kidcare.services.storage import LocalStorage
from kidcare.services.template_service import load_template

logger = logging.getLogger(__name__)

MISSION_NOT_FOUND = "미션을 찾을 수 없습니다"


async def load_mission(db: AsyncSession, mission_id: uuid.UUID) -> AssignedMission:
    mission = (await db.execute(
        select(AssignedMission)
        .where(AssignedMission.id == mission_id, AssignedMission.is_deleted.is_(False))
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if mission is None:
        raise NotFoundError(MISSION_NOT_FOUND)
    return mission


async def _checked(db: AsyncSession, mission_id: uuid.UUID, user_id: uuid.UUID, check, *args):
    """미션을 불러오고 아동 단위 권한 검사를 통과시킵니다. 아동을 볼 수 없으면 미션도 없는 것처럼 보입니다."""
    mission = await load_mission(db, mission_id)
    try:
        child = await check(db, mission.child_id, user_id, *args)
    except NotFoundError:
        raise NotFoundError(MISSION_NOT_FOUND)
    return mission, child


async def _record(db: AsyncSession, mission: AssignedMission, actor_id: uuid.UUID, label: str) -> None:
    note = await note_service.create_system_note(
        db, mission.child_id, actor_id, f"{label}: {mission.template.display_title}"
    )
    mission.link_system_note(note.id)
    await db.flush()


def _require_therapist(mission: AssignedMission, actor_id: uuid.UUID) -> None:
    if not mission.is_therapist(actor_id):
        logger.warning("therapist required mission=%s actor=%s", mission.id, actor_id)
        raise PermissionDeniedError("미션을 할당한 치료사만 가능합니다")


# ============= 전이 =============

async def assign(db: AsyncSession, child_id: uuid.UUID, therapist_id: uuid.UUID, template_id: uuid.UUID,
                 due_date: Optional[datetime] = None) -> AssignedMission:
    """치료사가 템플릿으로 미션을 할당합니다. 치료사는 아동에 대한 활성 grant 만 있으면 됩니다."""
    logger.info("assign mission child=%s therapist=%s template=%s", child_id, therapist_id, template_id)
    async with transaction(db):
        await authz.require_access(db, child_id, therapist_id)
        template = await load_template(db, template_id)
        if not template.active:
            raise InvalidArgumentError("비활성화된 템플릿은 할당할 수 없습니다")

        mission = AssignedMission.create(
            child_id=child_id, therapist_id=therapist_id, template=template, due_date=due_date, now=utcnow()
        )
        db.add(mission)
        await db.flush()
        await _record(db, mission, therapist_id, "미션 할당")

    logger.info("mission assigned id=%s", mission.id)
    return mission


async def start(db: AsyncSession, mission_id: uuid.UUID, actor_id: uuid.UUID) -> AssignedMission:
    async with transaction(db):
        mission, _ = await _checked(db, mission_id, actor_id, authz.require_permission, ChildPermission.WRITE_NOTE)
        mission.start(utcnow())
        await _record(db, mission, actor_id, "미션 시작")

    logger.info("mission started id=%s actor=%s", mission_id, actor_id)
    return mission


async def complete(db: AsyncSession, mission_id: uuid.UUID, actor_id: uuid.UUID,
                   parent_note: Optional[str] = None) -> AssignedMission:
    async with transaction(db):
        mission, _ = await _checked(db, mission_id, actor_id, authz.require_permission, ChildPermission.WRITE_NOTE)
        mission.complete(parent_note, utcnow())
        await _record(db, mission, actor_id, "미션 완료")
        event = MissionCompleted(mission_id=mission.id, therapist_id=mission.therapist_id, actor_id=actor_id)

    logger.info("mission completed id=%s actor=%s", mission_id, actor_id)
    await publish_events([event])
    return mission


async def verify(db: AsyncSession, mission_id: uuid.UUID, actor_id: uuid.UUID,
                 feedback: Optional[str] = None) -> AssignedMission:
    async with transaction(db):
        mission, _ = await _checked(db, mission_id, actor_id, authz.require_access)
        _require_therapist(mission, actor_id)
        mission.verify(feedback, utcnow())
        await _record(db, mission, actor_id, "미션 검증 완료")

    logger.info("mission verified id=%s", mission_id)
    return mission


async def cancel(db: AsyncSession, mission_id: uuid.UUID, actor_id: uuid.UUID) -> AssignedMission:
    async with transaction(db):
        mission, _ = await _checked(db, mission_id, actor_id, authz.require_access)
        _require_therapist(mission, actor_id)
        mission.cancel(utcnow())
        await _record(db, mission, actor_id, "미션 취소")

    logger.info("mission cancelled id=%s", mission_id)
    return mission


async def delete_mission(db: AsyncSession, storage: LocalStorage, mission_id: uuid.UUID,
                         actor_id: uuid.UUID) -> None:
    """할당한 치료사만 삭제 가능. 사진은 행과 파일 모두 제거됩니다."""
    ctx = new_context(db)
    async with transaction(db):
        mission, _ = await _checked(db, mission_id, actor_id, authz.require_access)
        _require_therapist(mission, actor_id)
        await soft_delete(mission, ctx)

    logger.info("mission deleted id=%s photos=%d", mission_id, len(ctx.removed_files))
    await storage.discard(ctx.removed_files)


# ============= 조회 =============

async def get_mission(db: AsyncSession, mission_id: uuid.UUID, user_id: uuid.UUID) -> AssignedMission:
    mission, _ = await _checked(db, mission_id, user_id, authz.require_view)
    return mission


def _filters(child_id, status=None, therapist_id=None, start=None, end=None):
    conds = [AssignedMission.child_id == child_id, AssignedMission.is_deleted.is_(False)]
    if status is not None:
        conds.append(AssignedMission.status == status)
    if therapist_id is not None:
        conds.append(AssignedMission.therapist_id == therapist_id)
    if start is not None:
        conds.append(AssignedMission.assigned_at >= start)
    if end is not None:
        conds.append(AssignedMission.assigned_at <= end)
    return conds


async def list_missions(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID, *,
                        status: Optional[MissionStatus] = None, therapist_id: Optional[uuid.UUID] = None,
                        start: Optional[datetime] = None, end: Optional[datetime] = None,
                        skip: int = 0, limit: int = 20) -> list[AssignedMission]:
    await authz.require_view(db, child_id, user_id)
    q = (
        select(AssignedMission)
        .where(*_filters(child_id, status, therapist_id, start, end))
        .order_by(AssignedMission.assigned_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return list((await db.execute(q)).scalars().all())


async def list_overdue_missions(db: AsyncSession, child_id: uuid.UUID,
                                user_id: uuid.UUID) -> list[AssignedMission]:
    await authz.require_view(db, child_id, user_id)
    candidates = (await db.execute(
        select(AssignedMission)
        .where(
            *_filters(child_id),
            AssignedMission.due_date.is_not(None),
            AssignedMission.status.not_in([MissionStatus.COMPLETED, MissionStatus.VERIFIED]),
        )
        .order_by(AssignedMission.due_date)
    )).scalars().all()
    now = utcnow()
    return [m for m in candidates if m.is_overdue(now)]


async def list_pending_verification(db: AsyncSession, child_id: uuid.UUID,
                                    user_id: uuid.UUID) -> list[AssignedMission]:
    return await list_missions(db, child_id, user_id, status=MissionStatus.COMPLETED, limit=100)


async def count_missions(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID,
                         status: Optional[MissionStatus] = None) -> int:
    await authz.require_view(db, child_id, user_id)
    return await db.scalar(
        select(func.count(AssignedMission.id)).where(*_filters(child_id, status))
    )
