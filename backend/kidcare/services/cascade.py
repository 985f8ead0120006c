"""
연쇄 soft-delete.

ORM cascade 에 맡기지 않고 타입별 함수로 명시적으로 내려갑니다.
이미 삭제된 항목은 다시 건드리지 않으므로 여러 번 호출해도 결과가 같습니다.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import singledispatch

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.models import (
    AssignedMission, Child, ChildNote, GameSession, NoteAsset, NoteComment, utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class DeleteContext:
    db: AsyncSession
    now: datetime
    # 커밋 이후에 지울 저장소 파일 경로
    removed_files: list[str] = field(default_factory=list)


def new_context(db: AsyncSession) -> DeleteContext:
    return DeleteContext(db=db, now=utcnow())


@singledispatch
async def soft_delete(entity, ctx: DeleteContext) -> None:
    raise TypeError(f"soft delete 대상이 아닙니다: {type(entity).__name__}")


@soft_delete.register(Child)
async def _(child: Child, ctx: DeleteContext) -> None:
    child.mark_deleted(ctx.now)
    # 아동이 삭제되면 모든 grant 를 비활성화
    for auth in child.active_authorizations():
        auth.deactivate()
    sessions = (await ctx.db.execute(
        select(GameSession).where(GameSession.child_id == child.id, GameSession.is_active.is_(True))
    )).scalars().all()
    for session in sessions:
        session.terminate()
    logger.info("child soft-deleted id=%s", child.id)


@soft_delete.register(ChildNote)
async def _(note: ChildNote, ctx: DeleteContext) -> None:
    note.mark_deleted(ctx.now)

    comments = (await ctx.db.execute(
        select(NoteComment).where(
            NoteComment.note_id == note.id,
            NoteComment.parent_id.is_(None),
            NoteComment.is_deleted.is_(False),
        )
    )).scalars().all()
    for comment in comments:
        await soft_delete(comment, ctx)

    assets = (await ctx.db.execute(
        select(NoteAsset).where(NoteAsset.note_id == note.id, NoteAsset.is_deleted.is_(False))
    )).scalars().all()
    for asset in assets:
        asset.mark_deleted(ctx.now)

    logger.info("note soft-deleted id=%s comments=%d assets=%d", note.id, len(comments), len(assets))


@soft_delete.register(NoteComment)
async def _(comment: NoteComment, ctx: DeleteContext) -> None:
    comment.mark_deleted(ctx.now)
    replies = (await ctx.db.execute(
        select(NoteComment).where(
            NoteComment.parent_id == comment.id,
            NoteComment.is_deleted.is_(False),
        )
    )).scalars().all()
    for reply in replies:
        reply.mark_deleted(ctx.now)


@soft_delete.register(AssignedMission)
async def _(mission: AssignedMission, ctx: DeleteContext) -> None:
    mission.mark_deleted(ctx.now)
    # 사진 행은 바로 제거하고 파일은 커밋 후 호출한 쪽에서 지움
    for photo in list(mission.photos):
        ctx.removed_files.append(photo.file_path)
        mission.remove_photo(photo)
    logger.info("mission soft-deleted id=%s", mission.id)
