import logging
import uuid
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.db import transaction
from kidcare.errors import NotFoundError
from kidcare.models import MissionCategory, MissionDifficulty, MissionTemplate, utcnow

logger = logging.getLogger(__name__)

TEMPLATE_NOT_FOUND = "미션 템플릿을 찾을 수 없습니다"

_UPDATABLE = {
    "title": MissionTemplate.change_title,
    "description": MissionTemplate.change_description,
    "category": MissionTemplate.change_category,
    "difficulty": MissionTemplate.change_difficulty,
    "instructions": MissionTemplate.change_instructions,
    "expected_duration": MissionTemplate.change_expected_duration,
}


async def load_template(db: AsyncSession, template_id: uuid.UUID, active_only: bool = False) -> MissionTemplate:
    q = select(MissionTemplate).where(MissionTemplate.id == template_id, MissionTemplate.is_deleted.is_(False))
    if active_only:
        q = q.where(MissionTemplate.active.is_(True))
    template = (await db.execute(q)).scalar_one_or_none()
    if template is None:
        raise NotFoundError(TEMPLATE_NOT_FOUND)
    return template


async def create_template(db: AsyncSession, *, title: Optional[str], description: str,
                          category: MissionCategory, difficulty: MissionDifficulty, instructions: str,
                          expected_duration: Optional[int] = None, llm_generated: bool = False) -> MissionTemplate:
    async with transaction(db):
        template = MissionTemplate.create(
            title=title,
            description=description,
            category=category,
            difficulty=difficulty,
            instructions=instructions,
            expected_duration=expected_duration,
            llm_generated=llm_generated,
        )
        db.add(template)
        await db.flush()

    logger.info("template created id=%s category=%s", template.id, template.category.value)
    return template


async def get_template(db: AsyncSession, template_id: uuid.UUID) -> MissionTemplate:
    return await load_template(db, template_id, active_only=True)


async def search_templates(db: AsyncSession, *, keyword: Optional[str] = None,
                           category: Optional[MissionCategory] = None,
                           difficulty: Optional[MissionDifficulty] = None,
                           llm_generated: Optional[bool] = None, include_inactive: bool = False,
                           skip: int = 0, limit: int = 20) -> list[MissionTemplate]:
    q = select(MissionTemplate).where(MissionTemplate.is_deleted.is_(False))
    if not include_inactive:
        q = q.where(MissionTemplate.active.is_(True))
    if keyword:
        like = f"%{keyword}%"
        q = q.where(or_(MissionTemplate.title.ilike(like), MissionTemplate.description.ilike(like)))
    if category is not None:
        q = q.where(MissionTemplate.category == category)
    if difficulty is not None:
        q = q.where(MissionTemplate.difficulty == difficulty)
    if llm_generated is not None:
        q = q.where(MissionTemplate.llm_generated.is_(llm_generated))
    q = q.order_by(MissionTemplate.created_at.desc()).offset(skip).limit(limit)
    return list((await db.execute(q)).scalars().all())


async def update_template(db: AsyncSession, template_id: uuid.UUID, changes: dict) -> MissionTemplate:
    """바뀐 필드마다 다시 검증합니다."""
    async with transaction(db):
        template = await load_template(db, template_id)
        for field, value in changes.items():
            if field in _UPDATABLE:
                _UPDATABLE[field](template, value)

    logger.info("template updated id=%s fields=%s", template_id, sorted(changes))
    return template


async def set_active(db: AsyncSession, template_id: uuid.UUID, active: bool) -> MissionTemplate:
    async with transaction(db):
        template = await load_template(db, template_id)
        if active:
            template.activate()
        else:
            template.deactivate()

    logger.info("template %s id=%s", "activated" if active else "deactivated", template_id)
    return template


async def delete_template(db: AsyncSession, template_id: uuid.UUID) -> None:
    async with transaction(db):
        template = await load_template(db, template_id)
        template.mark_deleted(utcnow())
    logger.info("template deleted id=%s", template_id)


async def count_templates(db: AsyncSession) -> dict:
    """활성 템플릿 통계"""
    base = [MissionTemplate.is_deleted.is_(False), MissionTemplate.active.is_(True)]
    total = await db.scalar(select(func.count(MissionTemplate.id)).where(*base))
    llm = await db.scalar(
        select(func.count(MissionTemplate.id)).where(*base, MissionTemplate.llm_generated.is_(True))
    )
    rows = (await db.execute(
        select(MissionTemplate.category, func.count(MissionTemplate.id))
        .where(*base)
        .group_by(MissionTemplate.category)
    )).all()
    by_category = {c.value: 0 for c in MissionCategory}
    for category, count in rows:
        by_category[MissionCategory(category).value] = count
    return {"active": total, "llm_generated": llm, "by_category": by_category}
