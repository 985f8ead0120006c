from uuid import UUID
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.db import get_db
from kidcare.models import User
from kidcare.schemas import (
    AuthorizationGrantReq, AuthorizationResponse, AuthorizationReviseReq, TransferPrimaryReq,
)
from kidcare.services import authorization_service
from kidcare.services.auth_service import get_current_user

router = APIRouter(prefix="/children/{child_id}/authorizations", tags=["authorizations"])


@router.get("", response_model=List[AuthorizationResponse])
async def list_authorizations(
    child_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await authorization_service.list_authorizations(db, child_id, current_user.id)


@router.post("", response_model=AuthorizationResponse, status_code=status.HTTP_201_CREATED)
async def grant(
    child_id: UUID,
    req: AuthorizationGrantReq,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """주보호자만 다른 사용자에게 권한을 부여할 수 있습니다."""
    return await authorization_service.grant(
        db, child_id, current_user.id, req.user_id, req.permissions, req.is_primary
    )


@router.put("/{user_id}", response_model=AuthorizationResponse)
async def revise(
    child_id: UUID,
    user_id: UUID,
    req: AuthorizationReviseReq,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await authorization_service.revise(db, child_id, current_user.id, user_id, req.permissions)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke(
    child_id: UUID,
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await authorization_service.revoke(db, child_id, current_user.id, user_id)


@router.post("/transfer-primary", response_model=AuthorizationResponse)
async def transfer_primary(
    child_id: UUID,
    req: TransferPrimaryReq,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await authorization_service.transfer_primary(
        db, child_id, current_user.id, req.new_primary_user_id, req.pin
    )
