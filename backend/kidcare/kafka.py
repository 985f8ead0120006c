# kidcare/kafka.py
import json
import logging

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from kidcare.config import KAFKA_BOOTSTRAP, KAFKA_TOPIC_NOTIFICATIONS

logger = logging.getLogger(__name__)

producer: AIOKafkaProducer | None = None


async def start_kafka():
    global producer
    producer = AIOKafkaProducer(
        bootstrap_servers=KAFKA_BOOTSTRAP,
        value_serializer=lambda v: json.dumps(v).encode(),
        key_serializer=lambda v: str(v).encode(),
        linger_ms=5,
        acks="all",
        enable_idempotence=True,
    )
    try:
        await producer.start()
    except KafkaError:
        # 알림은 best-effort. 브로커가 없어도 API 는 뜬다
        logger.exception("kafka producer 시작 실패 - 알림 발행 비활성화 (bootstrap=%s)", KAFKA_BOOTSTRAP)
        producer = None


async def stop_kafka():
    global producer
    if producer:
        await producer.stop()
        producer = None


async def publish(value: dict, key=None, topic: str = KAFKA_TOPIC_NOTIFICATIONS) -> bool:
    if producer is None:
        logger.warning("kafka producer 없음 - 이벤트 발행 건너뜀: %s", value.get("type"))
        return False
    await producer.send_and_wait(topic, value=value, key=key)
    return True
