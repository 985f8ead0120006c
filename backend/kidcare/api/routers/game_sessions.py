from uuid import UUID
from typing import List

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.db import get_db
from kidcare.models import User
from kidcare.schemas import CountResponse, GameSessionResponse, GameStartReq
from kidcare.services import game_session_service
from kidcare.services.auth_service import get_current_user

router = APIRouter(tags=["game-sessions"])


# ============= 보호자용 (JWT) =============

@router.post("/children/{child_id}/game-sessions", response_model=GameSessionResponse,
             status_code=status.HTTP_201_CREATED)
async def start_game(
    child_id: UUID,
    req: GameStartReq,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """PIN 확인 후 게임 세션 발급. 아동의 기존 세션은 종료됩니다."""
    return await game_session_service.start_game(db, child_id, current_user.id, req.pin)


@router.get("/children/{child_id}/game-sessions", response_model=List[GameSessionResponse])
async def list_active_sessions(
    child_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await game_session_service.list_active_sessions(db, child_id, current_user.id)


@router.delete("/children/{child_id}/game-sessions", response_model=CountResponse)
async def terminate_all_sessions(
    child_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """주보호자 전용"""
    count = await game_session_service.terminate_all_sessions(db, child_id, current_user.id)
    return CountResponse(count=count)


# ============= 게임 클라이언트용 (세션 토큰) =============

@router.get("/game-sessions/current", response_model=GameSessionResponse)
async def current_session(
    session_token: str = Header(..., alias="X-Game-Session"),
    db: AsyncSession = Depends(get_db),
):
    return await game_session_service.validate_session(db, session_token)


@router.post("/game-sessions/current/refresh", response_model=GameSessionResponse)
async def refresh_session(
    session_token: str = Header(..., alias="X-Game-Session"),
    db: AsyncSession = Depends(get_db),
):
    return await game_session_service.refresh_session(db, session_token)


@router.delete("/game-sessions/current", status_code=status.HTTP_204_NO_CONTENT)
async def end_session(
    session_token: str = Header(..., alias="X-Game-Session"),
    db: AsyncSession = Depends(get_db),
):
    await game_session_service.terminate_session(db, session_token)
