import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.config import MAX_MISSION_PHOTOS
from kidcare.db import transaction
from kidcare.errors import InvalidArgumentError, LimitExceededError, NotFoundError
from kidcare.models import AssignedMission, ChildPermission, MissionPhoto, MissionStatus
from kidcare.services import authorization_service as authz
from kidcare.services.mission_service import MISSION_NOT_FOUND, load_mission
from kidcare.services.notification_service import MissionPhotoUploaded, publish_events
from kidcare.services.storage import LocalStorage, file_extension

logger = logging.getLogger(__name__)

PHOTO_NOT_FOUND = "사진을 찾을 수 없습니다"
_PHOTO_STATES = (MissionStatus.IN_PROGRESS, MissionStatus.COMPLETED)


async def _writable_mission(db: AsyncSession, mission_id: uuid.UUID, user_id: uuid.UUID) -> AssignedMission:
    mission = await load_mission(db, mission_id)
    try:
        await authz.require_permission(db, mission.child_id, user_id, ChildPermission.WRITE_NOTE)
    except NotFoundError:
        raise NotFoundError(MISSION_NOT_FOUND)
    if mission.status not in _PHOTO_STATES:
        raise InvalidArgumentError("진행중 또는 완료 상태의 미션에만 사진을 올리거나 지울 수 있습니다")
    return mission


async def upload_photo(db: AsyncSession, storage: LocalStorage, mission_id: uuid.UUID, user_id: uuid.UUID,
                       file_name: str, content_type: Optional[str], data: bytes) -> MissionPhoto:
    """미션 증빙 사진 업로드 (최대 10장, 장당 10MB, image/* 만)"""
    MissionPhoto.validate_upload(len(data) if data else 0, content_type)

    path = None
    try:
        async with transaction(db):
            mission = await _writable_mission(db, mission_id, user_id)
            if len(mission.photos) >= MAX_MISSION_PHOTOS:
                raise LimitExceededError(f"미션당 최대 {MAX_MISSION_PHOTOS}개까지 사진을 첨부할 수 있습니다")

            path = storage.build_path("missions", mission.child_id, mission.id, file_extension(file_name, "jpg"))
            await storage.save(path, data)
            photo = MissionPhoto(
                file_path=path,
                original_file_name=file_name,
                stored_file_name=path.rsplit("/", 1)[1],
                file_size=len(data),
                content_type=content_type,
            )
            mission.add_photo(photo)
            await db.flush()
            event = MissionPhotoUploaded(
                mission_id=mission.id, photo_id=photo.id, therapist_id=mission.therapist_id, uploader_id=user_id
            )
    except Exception:
        # 커밋까지 끝나지 않았으면 저장한 파일도 남기지 않음
        if path is not None:
            await storage.discard([path])
        raise

    logger.info("photo uploaded id=%s mission=%s count=%d", photo.id, mission_id, len(mission.photos))
    await publish_events([event])
    return photo


async def list_photos(db: AsyncSession, mission_id: uuid.UUID, user_id: uuid.UUID) -> list[MissionPhoto]:
    mission = await load_mission(db, mission_id)
    try:
        await authz.require_view(db, mission.child_id, user_id)
    except NotFoundError:
        raise NotFoundError(MISSION_NOT_FOUND)
    return list(mission.photos)


async def _load_photo(db: AsyncSession, photo_id: uuid.UUID) -> MissionPhoto:
    photo = (await db.execute(select(MissionPhoto).where(MissionPhoto.id == photo_id))).scalar_one_or_none()
    if photo is None:
        raise NotFoundError(PHOTO_NOT_FOUND)
    return photo


async def read_photo(db: AsyncSession, storage: LocalStorage, photo_id: uuid.UUID,
                     user_id: uuid.UUID) -> tuple[MissionPhoto, bytes]:
    photo = await _load_photo(db, photo_id)
    try:
        await list_photos(db, photo.mission_id, user_id)
    except NotFoundError:
        raise NotFoundError(PHOTO_NOT_FOUND)
    return photo, await storage.read(photo.file_path)


async def delete_photo(db: AsyncSession, storage: LocalStorage, photo_id: uuid.UUID, user_id: uuid.UUID) -> None:
    async with transaction(db):
        photo = await _load_photo(db, photo_id)
        try:
            mission = await _writable_mission(db, photo.mission_id, user_id)
        except NotFoundError:
            raise NotFoundError(PHOTO_NOT_FOUND)
        mission.remove_photo(photo)
        await db.flush()

    logger.info("photo deleted id=%s mission=%s", photo_id, photo.mission_id)
    await storage.discard([photo.file_path])
