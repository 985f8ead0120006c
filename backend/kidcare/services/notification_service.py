"""
알림 팬아웃.

서비스는 트랜잭션 안에서 이벤트를 모으고, 커밋이 끝난 뒤 publish_events 로 Kafka 에 보냅니다.
발행 실패는 로그만 남기고 원래 작업에는 영향을 주지 않습니다.
실제 Notification 저장은 workers/notification_worker.py 가 record_notification 으로 처리합니다.
"""
import logging
import uuid
from dataclasses import asdict, dataclass
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare import kafka
from kidcare.db import transaction
from kidcare.errors import NotFoundError
from kidcare.models import AssignedMission, Notification, NotificationType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MissionCompleted:
    mission_id: uuid.UUID
    therapist_id: uuid.UUID
    actor_id: uuid.UUID

    type = NotificationType.MISSION_COMPLETED

    @property
    def recipient_id(self) -> uuid.UUID:
        return self.therapist_id


@dataclass(frozen=True)
class MissionPhotoUploaded:
    mission_id: uuid.UUID
    photo_id: uuid.UUID
    therapist_id: uuid.UUID
    uploader_id: uuid.UUID

    type = NotificationType.MISSION_PHOTO_UPLOADED

    @property
    def recipient_id(self) -> uuid.UUID:
        return self.therapist_id


def to_payload(event) -> dict:
    payload = {k: str(v) for k, v in asdict(event).items()}
    payload["type"] = event.type.value
    return payload


async def publish_events(events: Iterable) -> int:
    """커밋 이후에만 호출. 성공적으로 보낸 건수를 돌려줍니다."""
    sent = 0
    for event in events:
        try:
            if await kafka.publish(to_payload(event), key=event.recipient_id):
                sent += 1
        except Exception:
            logger.exception("알림 이벤트 발행 실패: %s", event)
    return sent


# ============= worker 쪽 =============

_MESSAGES = {
    NotificationType.MISSION_COMPLETED: ("미션 완료", "'{title}' 미션이 완료되었습니다. 확인 후 검증해 주세요."),
    NotificationType.MISSION_PHOTO_UPLOADED: ("미션 사진 업로드", "'{title}' 미션에 새 사진이 업로드되었습니다."),
}


async def record_notification(db: AsyncSession, payload: dict) -> Optional[Notification]:
    """Kafka payload 한 건을 Notification 으로 저장. 받는 사람이 행위자 본인이면 건너뜁니다."""
    notification_type = NotificationType(payload["type"])
    recipient_id = uuid.UUID(payload["therapist_id"])
    actor_key = "actor_id" if notification_type == NotificationType.MISSION_COMPLETED else "uploader_id"
    actor_id = uuid.UUID(payload[actor_key])
    if recipient_id == actor_id:
        logger.info("self notification skipped type=%s user=%s", notification_type.value, actor_id)
        return None

    mission_id = uuid.UUID(payload["mission_id"])
    async with transaction(db):
        mission = await db.get(AssignedMission, mission_id)
        if mission is None:
            logger.warning("미션 없음 - 알림 건너뜀 mission=%s", mission_id)
            return None

        title, message = _MESSAGES[notification_type]
        notification = Notification(
            recipient_id=recipient_id,
            notification_type=notification_type,
            title=title,
            message=message.format(title=mission.template.display_title),
            reference_id=mission_id,
            is_read=False,
        )
        db.add(notification)
        await db.flush()

    logger.info("notification stored id=%s recipient=%s", notification.id, recipient_id)
    return notification


# ============= 조회 =============

async def list_notifications(db: AsyncSession, user_id: uuid.UUID, unread_only: bool = False,
                             skip: int = 0, limit: int = 50) -> list[Notification]:
    q = select(Notification).where(Notification.recipient_id == user_id)
    if unread_only:
        q = q.where(Notification.is_read.is_(False))
    q = q.order_by(Notification.created_at.desc()).offset(skip).limit(limit)
    return list((await db.execute(q)).scalars().all())


async def count_unread(db: AsyncSession, user_id: uuid.UUID) -> int:
    return await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.recipient_id == user_id, Notification.is_read.is_(False)
        )
    )


async def mark_notification_read(db: AsyncSession, notification_id: uuid.UUID, user_id: uuid.UUID) -> Notification:
    async with transaction(db):
        notification = await db.get(Notification, notification_id)
        if notification is None or notification.recipient_id != user_id:
            raise NotFoundError("알림을 찾을 수 없습니다")
        notification.mark_as_read()
    return notification
