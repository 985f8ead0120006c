# kidcare/workers/notification_worker.py
import json
import asyncio
import logging

from aiokafka import AIOKafkaConsumer

from kidcare.config import (
    KAFKA_BOOTSTRAP, KAFKA_GROUP_NOTIFICATION_WORKERS, KAFKA_TOPIC_NOTIFICATIONS, LOG_LEVEL,
)
from kidcare.db import SessionLocal
from kidcare.services.notification_service import record_notification

logger = logging.getLogger("kidcare.notification_worker")


async def handle_message(payload: dict):
    """Kafka에서 들어온 알림 이벤트 한 건을 처리"""
    if not isinstance(payload, dict) or "type" not in payload:
        logger.warning("payload에 type이 없습니다: %s", payload)
        return None

    async with SessionLocal() as db:
        try:
            return await record_notification(db, payload)
        except (KeyError, ValueError):
            # 형식이 잘못된 메시지는 다시 읽어도 실패하므로 건너뜀
            logger.exception("잘못된 알림 payload: %s", payload)
            return None


async def main():
    logger.info(
        "🚀 시작 - bootstrap=%s, topic=%s, group_id=%s",
        KAFKA_BOOTSTRAP, KAFKA_TOPIC_NOTIFICATIONS, KAFKA_GROUP_NOTIFICATION_WORKERS,
    )
    consumer = AIOKafkaConsumer(
        KAFKA_TOPIC_NOTIFICATIONS,
        bootstrap_servers=KAFKA_BOOTSTRAP,
        group_id=KAFKA_GROUP_NOTIFICATION_WORKERS,
        value_deserializer=lambda v: json.loads(v),
        key_deserializer=lambda v: v.decode() if v is not None else None,
        enable_auto_commit=False,
        auto_offset_reset="earliest",
    )
    await consumer.start()
    try:
        while True:
            batch = await consumer.getmany(timeout_ms=1000)
            for tp, messages in batch.items():
                for msg in messages:
                    logger.info("📩 새 메시지 수신 - offset=%s, key=%s", msg.offset, msg.key)
                    await handle_message(msg.value)
                    await consumer.commit()
    finally:
        await consumer.stop()


if __name__ == "__main__":
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    asyncio.run(main())
