# backend/kidcare/config.py
import os
from dotenv import load_dotenv

load_dotenv()

# DB / 인증
ASYNC_DATABASE_URL = os.getenv("ASYNC_DATABASE_URL", "sqlite+aiosqlite:///./kidcare.db")
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# 파일 저장소 (사진/첨부파일)
STORAGE_BASE_PATH = os.getenv("STORAGE_BASE_PATH", "uploads")

# Kafka (알림 팬아웃)
KAFKA_BOOTSTRAP = os.getenv("KAFKA_BOOTSTRAP", "redpanda:9092")
KAFKA_TOPIC_NOTIFICATIONS = os.getenv("KAFKA_TOPIC_NOTIFICATIONS", "kidcare.notifications")
KAFKA_GROUP_NOTIFICATION_WORKERS = os.getenv("KAFKA_GROUP_NOTIFICATION_WORKERS", "notification-workers")

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if o.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ---- 도메인 제한값 ----
MAX_CHILDREN_PER_PARENT = 5
CHILD_NAME_MIN = 2
CHILD_NAME_MAX = 50
PIN_PATTERN = r"^\d{4}$"

TITLE_MAX = 200
BODY_MAX = 50_000          # 노트 본문, 템플릿 설명/수행 방법
SHORT_TEXT_MAX = 5_000     # 댓글, 부모 코멘트, 치료사 피드백

MAX_MISSION_PHOTOS = 10
MAX_PHOTO_BYTES = 10 * 1024 * 1024
MAX_NOTE_ASSETS = 10

# 게임 세션 (PIN 인증 후 발급되는 임시 토큰)
GAME_SESSION_HOURS = int(os.getenv("GAME_SESSION_HOURS", "24"))
GAME_SESSION_RETENTION_DAYS = 7
GAME_SESSION_CLEANUP_INTERVAL = int(os.getenv("GAME_SESSION_CLEANUP_INTERVAL", "3600"))
