"""
게임 세션.

PIN 인증을 통과한 보호자가 아동 명의로 게임을 시작하면 임시 토큰을 발급합니다.
게임 클라이언트는 부모 JWT 대신 이 토큰만 들고 다닙니다.
"""
import logging
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.config import GAME_SESSION_RETENTION_DAYS
from kidcare.db import transaction
from kidcare.errors import NotFoundError, PermissionDeniedError
from kidcare.models import Child, ChildPermission, GameSession, utcnow
from kidcare.services import authorization_service as authz
from kidcare.services import child_service

logger = logging.getLogger(__name__)

INVALID_SESSION = "유효하지 않은 세션입니다"


async def _active_sessions(db: AsyncSession, child_id: uuid.UUID) -> list[GameSession]:
    res = await db.execute(
        select(GameSession)
        .where(GameSession.child_id == child_id, GameSession.is_active.is_(True))
        .order_by(GameSession.created_at.desc())
    )
    return list(res.scalars().all())


async def _terminate_all(db: AsyncSession, child_id: uuid.UUID) -> int:
    sessions = await _active_sessions(db, child_id)
    for session in sessions:
        session.terminate()
    return len(sessions)


# ============= 생성 =============

async def create_session(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID) -> GameSession:
    """PLAY_GAME 권한이 있으면 세션 발급. 아동의 기존 활성 세션은 모두 종료됩니다."""
    logger.info("game session create child=%s user=%s", child_id, user_id)
    async with transaction(db):
        await authz.require_permission(db, child_id, user_id, ChildPermission.PLAY_GAME)
        terminated = await _terminate_all(db, child_id)

        session = GameSession.create(child_id, user_id, utcnow())
        db.add(session)
        await db.flush()

    logger.info("game session created id=%s child=%s terminated=%d", session.id, child_id, terminated)
    return session


async def start_game(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID,
                     pin: Optional[str]) -> GameSession:
    """PIN 검증 후 세션 발급. PIN 이 설정되지 않은 아동은 바로 발급합니다."""
    if not await child_service.verify_pin(db, child_id, user_id, pin):
        logger.warning("game start pin mismatch child=%s user=%s", child_id, user_id)
        raise PermissionDeniedError("PIN이 일치하지 않습니다")
    return await create_session(db, child_id, user_id)


# ============= 검증 =============

async def _valid_session(db: AsyncSession, token: str) -> GameSession:
    session = (await db.execute(
        select(GameSession)
        .join(Child, Child.id == GameSession.child_id)
        .where(GameSession.session_token == token, Child.is_deleted.is_(False))
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if session is None or not session.is_valid():
        logger.warning("invalid game session token")
        raise PermissionDeniedError(INVALID_SESSION)
    return session


async def validate_session(db: AsyncSession, token: str) -> GameSession:
    return await _valid_session(db, token)


async def refresh_session(db: AsyncSession, token: str) -> GameSession:
    """마지막 사용 시간 갱신"""
    async with transaction(db):
        session = await _valid_session(db, token)
        session.refresh(utcnow())
    return session


# ============= 조회 / 종료 =============

async def list_active_sessions(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID) -> list[GameSession]:
    await authz.require_access(db, child_id, user_id)
    now = utcnow()
    return [s for s in await _active_sessions(db, child_id) if not s.is_expired(now)]


async def terminate_session(db: AsyncSession, token: str) -> None:
    async with transaction(db):
        session = (await db.execute(
            select(GameSession).where(GameSession.session_token == token)
        )).scalar_one_or_none()
        if session is None:
            raise NotFoundError("세션을 찾을 수 없습니다")
        session.terminate()

    logger.info("game session terminated id=%s", session.id)


async def terminate_all_sessions(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID) -> int:
    """주보호자만 아동의 모든 세션을 종료할 수 있습니다."""
    async with transaction(db):
        await authz.require_primary(db, child_id, user_id)
        terminated = await _terminate_all(db, child_id)

    logger.info("game sessions terminated child=%s count=%d", child_id, terminated)
    return terminated


async def cleanup_expired_sessions(db: AsyncSession) -> int:
    """만료 후 보관 기간이 지난 세션 삭제 (배치용)"""
    cutoff = utcnow() - timedelta(days=GAME_SESSION_RETENTION_DAYS)
    async with transaction(db):
        res = await db.execute(
            delete(GameSession).where(GameSession.expires_at < cutoff).execution_options(synchronize_session=False)
        )

    logger.info("expired game sessions removed count=%d", res.rowcount)
    return res.rowcount
