import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.db import transaction
from kidcare.errors import NotFoundError, PermissionDeniedError
from kidcare.models import NoteComment
from kidcare.services import authorization_service as authz
from kidcare.services.cascade import new_context, soft_delete
from kidcare.services.note_service import note_for_view

logger = logging.getLogger(__name__)

COMMENT_NOT_FOUND = "댓글을 찾을 수 없습니다"


async def _load_comment(db: AsyncSession, comment_id: uuid.UUID,
                        note_id: Optional[uuid.UUID] = None) -> NoteComment:
    q = select(NoteComment).where(NoteComment.id == comment_id, NoteComment.is_deleted.is_(False))
    if note_id is not None:
        q = q.where(NoteComment.note_id == note_id)
    comment = (await db.execute(q)).scalar_one_or_none()
    if comment is None:
        raise NotFoundError(COMMENT_NOT_FOUND)
    return comment


async def _comment_for_view(db: AsyncSession, comment_id: uuid.UUID, user_id: uuid.UUID):
    comment = await _load_comment(db, comment_id)
    try:
        note = await note_for_view(db, comment.note_id, user_id)
    except NotFoundError:
        raise NotFoundError(COMMENT_NOT_FOUND)
    return comment, note


async def create_comment(db: AsyncSession, note_id: uuid.UUID, author_id: uuid.UUID, content: str,
                         parent_id: Optional[uuid.UUID] = None) -> NoteComment:
    """댓글 작성. 대댓글의 부모는 최상위 댓글이어야 합니다."""
    async with transaction(db):
        note = await note_for_view(db, note_id, author_id)
        parent = None
        if parent_id is not None:
            parent = await _load_comment(db, parent_id, note_id=note.id)

        comment = NoteComment.create(note_id=note.id, author_id=author_id, content=content, parent=parent)
        db.add(comment)
        await db.flush()

    logger.info("comment created id=%s note=%s parent=%s", comment.id, note_id, parent_id)
    return comment


async def _replies(db: AsyncSession, comment_ids: list[uuid.UUID]) -> list[NoteComment]:
    if not comment_ids:
        return []
    res = await db.execute(
        select(NoteComment)
        .where(NoteComment.parent_id.in_(comment_ids), NoteComment.is_deleted.is_(False))
        .order_by(NoteComment.created_at)
    )
    return list(res.scalars().all())


async def list_comments(db: AsyncSession, note_id: uuid.UUID,
                        user_id: uuid.UUID) -> list[tuple[NoteComment, list[NoteComment]]]:
    """최상위 댓글과 그 대댓글 목록 (삭제된 댓글 제외)"""
    await note_for_view(db, note_id, user_id)
    top = list((await db.execute(
        select(NoteComment)
        .where(
            NoteComment.note_id == note_id,
            NoteComment.parent_id.is_(None),
            NoteComment.is_deleted.is_(False),
        )
        .order_by(NoteComment.created_at)
    )).scalars().all())

    by_parent: dict[uuid.UUID, list[NoteComment]] = {c.id: [] for c in top}
    for reply in await _replies(db, list(by_parent)):
        by_parent[reply.parent_id].append(reply)
    return [(c, by_parent[c.id]) for c in top]


async def get_replies(db: AsyncSession, comment_id: uuid.UUID, user_id: uuid.UUID) -> list[NoteComment]:
    comment, _ = await _comment_for_view(db, comment_id, user_id)
    return await _replies(db, [comment.id])


async def update_comment(db: AsyncSession, comment_id: uuid.UUID, user_id: uuid.UUID,
                         content: str) -> NoteComment:
    async with transaction(db):
        comment, _ = await _comment_for_view(db, comment_id, user_id)
        if not comment.is_author(user_id):
            raise PermissionDeniedError("작성자만 수정할 수 있습니다")
        comment.change_content(content)

    logger.info("comment updated id=%s", comment_id)
    return comment


async def delete_comment(db: AsyncSession, comment_id: uuid.UUID, user_id: uuid.UUID) -> None:
    """작성자 또는 주보호자만 삭제. 최상위 댓글이면 대댓글도 함께 삭제됩니다."""
    async with transaction(db):
        comment, note = await _comment_for_view(db, comment_id, user_id)
        child = await authz.require_view(db, note.child_id, user_id)
        if not (comment.is_author(user_id) or child.is_primary(user_id)):
            raise PermissionDeniedError("작성자 또는 주보호자만 삭제할 수 있습니다")
        await soft_delete(comment, new_context(db))

    logger.info("comment deleted id=%s", comment_id)
