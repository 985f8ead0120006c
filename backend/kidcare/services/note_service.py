import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.db import transaction
from kidcare.errors import InvalidArgumentError, NotFoundError, PermissionDeniedError
from kidcare.models import ChildNote, ChildPermission, NoteType
from kidcare.services import authorization_service as authz
from kidcare.services.cascade import new_context, soft_delete

logger = logging.getLogger(__name__)

NOTE_NOT_FOUND = "노트를 찾을 수 없습니다"
SYSTEM_NOTE_TITLE = "시스템 기록"


async def load_note(db: AsyncSession, note_id: uuid.UUID) -> ChildNote:
    note = (await db.execute(
        select(ChildNote).where(ChildNote.id == note_id, ChildNote.is_deleted.is_(False))
    )).scalar_one_or_none()
    if note is None:
        raise NotFoundError(NOTE_NOT_FOUND)
    return note


async def note_for_view(db: AsyncSession, note_id: uuid.UUID, user_id: uuid.UUID) -> ChildNote:
    note = await load_note(db, note_id)
    try:
        await authz.require_view(db, note.child_id, user_id)
    except NotFoundError:
        raise NotFoundError(NOTE_NOT_FOUND)
    return note


async def create_note(db: AsyncSession, child_id: uuid.UUID, author_id: uuid.UUID, note_type: NoteType,
                      title: Optional[str], content: str) -> ChildNote:
    if note_type == NoteType.SYSTEM:
        raise InvalidArgumentError("시스템 노트는 직접 작성할 수 없습니다")

    async with transaction(db):
        await authz.require_permission(db, child_id, author_id, ChildPermission.WRITE_NOTE)
        note = ChildNote.create(
            child_id=child_id, author_id=author_id, note_type=note_type, title=title, content=content
        )
        db.add(note)
        await db.flush()

    logger.info("note created id=%s child=%s type=%s", note.id, child_id, note.note_type.value)
    return note


async def create_system_note(db: AsyncSession, child_id: uuid.UUID, author_id: uuid.UUID,
                             content: str) -> ChildNote:
    """미션 전이 기록용. 호출한 쪽의 트랜잭션 안에서만 사용합니다."""
    note = ChildNote.create(
        child_id=child_id, author_id=author_id, note_type=NoteType.SYSTEM,
        title=SYSTEM_NOTE_TITLE, content=content,
    )
    db.add(note)
    await db.flush()
    return note


async def get_note(db: AsyncSession, note_id: uuid.UUID, user_id: uuid.UUID) -> ChildNote:
    return await note_for_view(db, note_id, user_id)


def _filters(child_id, keyword=None, note_type=None, author_id=None, start=None, end=None):
    conds = [ChildNote.child_id == child_id, ChildNote.is_deleted.is_(False)]
    if keyword:
        like = f"%{keyword}%"
        conds.append(or_(ChildNote.title.ilike(like), ChildNote.content.ilike(like)))
    if note_type is not None:
        conds.append(ChildNote.note_type == note_type)
    if author_id is not None:
        conds.append(ChildNote.author_id == author_id)
    if start is not None:
        conds.append(ChildNote.created_at >= start)
    if end is not None:
        conds.append(ChildNote.created_at <= end)
    return conds


async def search_notes(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID, *,
                       keyword: Optional[str] = None, note_type: Optional[NoteType] = None,
                       author_id: Optional[uuid.UUID] = None, start: Optional[datetime] = None,
                       end: Optional[datetime] = None, skip: int = 0, limit: int = 20) -> list[ChildNote]:
    await authz.require_view(db, child_id, user_id)
    q = (
        select(ChildNote)
        .where(*_filters(child_id, keyword, note_type, author_id, start, end))
        .order_by(ChildNote.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return list((await db.execute(q)).scalars().all())


async def count_notes(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID,
                      note_type: Optional[NoteType] = None) -> int:
    await authz.require_view(db, child_id, user_id)
    return await db.scalar(
        select(func.count(ChildNote.id)).where(*_filters(child_id, note_type=note_type))
    )


async def update_note(db: AsyncSession, note_id: uuid.UUID, user_id: uuid.UUID, changes: dict) -> ChildNote:
    """작성자만 수정 가능. 시스템 노트는 수정 불가."""
    async with transaction(db):
        note = await load_note(db, note_id)
        try:
            await authz.require_access(db, note.child_id, user_id)
        except NotFoundError:
            raise NotFoundError(NOTE_NOT_FOUND)
        if note.is_system:
            raise InvalidArgumentError("시스템 노트는 수정할 수 없습니다")
        if not note.is_author(user_id):
            raise PermissionDeniedError("작성자만 수정할 수 있습니다")

        if "title" in changes:
            note.change_title(changes["title"])
        if "content" in changes:
            note.change_content(changes["content"])

    logger.info("note updated id=%s", note_id)
    return note


async def delete_note(db: AsyncSession, note_id: uuid.UUID, user_id: uuid.UUID) -> None:
    """작성자 또는 주보호자만 삭제 가능. 댓글과 첨부파일까지 함께 soft-delete."""
    async with transaction(db):
        note = await load_note(db, note_id)
        try:
            child = await authz.require_access(db, note.child_id, user_id)
        except NotFoundError:
            raise NotFoundError(NOTE_NOT_FOUND)
        if note.is_system:
            raise InvalidArgumentError("시스템 노트는 삭제할 수 없습니다")
        if not (note.is_author(user_id) or child.is_primary(user_id)):
            raise PermissionDeniedError("작성자 또는 주보호자만 삭제할 수 있습니다")

        await soft_delete(note, new_context(db))

    logger.info("note deleted id=%s", note_id)
