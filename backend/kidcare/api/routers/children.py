from uuid import UUID
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.db import get_db
from kidcare.models import User
from kidcare.schemas import ChildCreate, ChildResponse, ChildUpdate, PinReq, PinSetReq, PinVerifyResp
from kidcare.services import child_service
from kidcare.services.auth_service import get_current_user

router = APIRouter(prefix="/children", tags=["children"])


@router.post("", response_model=ChildResponse, status_code=status.HTTP_201_CREATED)
async def create_child(
    req: ChildCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """아동 등록 (부모 회원만). 등록한 부모가 주보호자가 됩니다."""
    return await child_service.create_child(
        db, current_user, req.name, req.birth_date, req.gender, req.diagnosis_date, req.pin
    )


@router.get("", response_model=List[ChildResponse])
async def list_children(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await child_service.list_accessible_children(db, current_user.id)


@router.get("/primary", response_model=List[ChildResponse])
async def list_primary_children(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await child_service.list_primary_children(db, current_user.id)


@router.get("/playable", response_model=List[ChildResponse])
async def list_playable_children(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await child_service.list_playable_children(db, current_user.id)


@router.get("/{child_id}", response_model=ChildResponse)
async def get_child(
    child_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await child_service.get_child(db, child_id, current_user.id)


@router.patch("/{child_id}", response_model=ChildResponse)
async def update_child(
    child_id: UUID,
    req: ChildUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await child_service.update_child(db, child_id, current_user.id, req.model_dump(exclude_unset=True))


@router.delete("/{child_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_child(
    child_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await child_service.delete_child(db, child_id, current_user.id)


# 💡 Parental Gate PIN
@router.put("/{child_id}/pin", status_code=status.HTTP_204_NO_CONTENT)
async def set_pin(
    child_id: UUID,
    req: PinSetReq,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await child_service.set_pin(db, child_id, current_user.id, req.new_pin, req.current_pin)


@router.post("/{child_id}/pin/verify", response_model=PinVerifyResp)
async def verify_pin(
    child_id: UUID,
    req: PinReq,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    valid = await child_service.verify_pin(db, child_id, current_user.id, req.pin)
    return PinVerifyResp(valid=valid)


@router.post("/{child_id}/pin/remove", status_code=status.HTTP_204_NO_CONTENT)
async def remove_pin(
    child_id: UUID,
    req: PinReq,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await child_service.remove_pin(db, child_id, current_user.id, req.pin)
