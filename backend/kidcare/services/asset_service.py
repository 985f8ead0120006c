import logging
import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.config import MAX_NOTE_ASSETS
from kidcare.db import transaction
from kidcare.errors import (
    InvalidArgumentError, LimitExceededError, NotFoundError, PermissionDeniedError,
)
from kidcare.models import AssetType, NoteAsset, utcnow
from kidcare.services import authorization_service as authz
from kidcare.services.note_service import note_for_view
from kidcare.services.storage import LocalStorage, file_extension

logger = logging.getLogger(__name__)

ASSET_NOT_FOUND = "첨부파일을 찾을 수 없습니다"


async def upload_asset(db: AsyncSession, storage: LocalStorage, note_id: uuid.UUID, user_id: uuid.UUID,
                       file_name: str, content_type: Optional[str], data: bytes) -> NoteAsset:
    """노트 작성자만 첨부 가능. 파일 형식은 확장자로 판별합니다."""
    asset_type = AssetType.from_file_name(file_name)
    if not data:
        raise InvalidArgumentError("업로드 파일이 비어 있습니다")
    if len(data) > asset_type.max_size_bytes:
        raise InvalidArgumentError(
            f"{asset_type.value} 파일은 {asset_type.max_size_bytes // (1024 * 1024)}MB를 초과할 수 없습니다"
        )

    path = None
    try:
        async with transaction(db):
            note = await note_for_view(db, note_id, user_id)
            if not note.is_author(user_id):
                raise PermissionDeniedError("노트 작성자만 파일을 첨부할 수 있습니다")

            count = await db.scalar(
                select(func.count(NoteAsset.id)).where(NoteAsset.note_id == note.id, NoteAsset.is_deleted.is_(False))
            )
            if count >= MAX_NOTE_ASSETS:
                raise LimitExceededError(f"노트당 최대 {MAX_NOTE_ASSETS}개까지 첨부할 수 있습니다")

            path = storage.build_path("notes", note.child_id, note.id, file_extension(file_name))
            await storage.save(path, data)
            asset = NoteAsset(
                note_id=note.id,
                asset_type=asset_type,
                file_path=path,
                original_file_name=file_name,
                stored_file_name=path.rsplit("/", 1)[1],
                file_size=len(data),
                content_type=content_type,
                is_deleted=False,
            )
            db.add(asset)
            await db.flush()
    except Exception:
        if path is not None:
            await storage.discard([path])
        raise

    logger.info("asset uploaded id=%s note=%s type=%s", asset.id, note_id, asset_type.value)
    return asset


async def list_assets(db: AsyncSession, note_id: uuid.UUID, user_id: uuid.UUID) -> list[NoteAsset]:
    note = await note_for_view(db, note_id, user_id)
    res = await db.execute(
        select(NoteAsset)
        .where(NoteAsset.note_id == note.id, NoteAsset.is_deleted.is_(False))
        .order_by(NoteAsset.created_at)
    )
    return list(res.scalars().all())


async def _asset_for_view(db: AsyncSession, asset_id: uuid.UUID, user_id: uuid.UUID):
    asset = (await db.execute(
        select(NoteAsset).where(NoteAsset.id == asset_id, NoteAsset.is_deleted.is_(False))
    )).scalar_one_or_none()
    if asset is None:
        raise NotFoundError(ASSET_NOT_FOUND)
    try:
        note = await note_for_view(db, asset.note_id, user_id)
    except NotFoundError:
        raise NotFoundError(ASSET_NOT_FOUND)
    return asset, note


async def read_asset(db: AsyncSession, storage: LocalStorage, asset_id: uuid.UUID,
                     user_id: uuid.UUID) -> tuple[NoteAsset, bytes]:
    asset, _ = await _asset_for_view(db, asset_id, user_id)
    return asset, await storage.read(asset.file_path)


async def delete_asset(db: AsyncSession, storage: LocalStorage, asset_id: uuid.UUID, user_id: uuid.UUID) -> None:
    async with transaction(db):
        asset, note = await _asset_for_view(db, asset_id, user_id)
        child = await authz.require_view(db, note.child_id, user_id)
        if not (note.is_author(user_id) or child.is_primary(user_id)):
            raise PermissionDeniedError("작성자 또는 주보호자만 삭제할 수 있습니다")
        asset.mark_deleted(utcnow())

    logger.info("asset deleted id=%s", asset_id)
    await storage.discard([asset.file_path])
