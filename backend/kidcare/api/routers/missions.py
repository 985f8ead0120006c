from uuid import UUID
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.db import get_db
from kidcare.models import MissionStatus, User, UserRole
from kidcare.schemas import (
    CountResponse, MissionAssignReq, MissionCompleteReq, MissionPhotoResponse, MissionResponse,
    MissionVerifyReq,
)
from kidcare.services import mission_service, photo_service
from kidcare.services.auth_service import get_current_user, require_roles
from kidcare.services.storage import LocalStorage, get_storage

router = APIRouter(tags=["missions"])

therapists = require_roles(UserRole.THERAPIST)


# ============= 생애주기 =============

@router.post("/missions", response_model=MissionResponse, status_code=status.HTTP_201_CREATED)
async def assign_mission(
    req: MissionAssignReq,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(therapists),
):
    return await mission_service.assign(db, req.child_id, current_user.id, req.template_id, req.due_date)


@router.post("/missions/{mission_id}/start", response_model=MissionResponse)
async def start_mission(
    mission_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await mission_service.start(db, mission_id, current_user.id)


@router.post("/missions/{mission_id}/complete", response_model=MissionResponse)
async def complete_mission(
    mission_id: UUID,
    req: MissionCompleteReq,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await mission_service.complete(db, mission_id, current_user.id, req.parent_note)


@router.post("/missions/{mission_id}/verify", response_model=MissionResponse)
async def verify_mission(
    mission_id: UUID,
    req: MissionVerifyReq,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(therapists),
):
    return await mission_service.verify(db, mission_id, current_user.id, req.therapist_feedback)


@router.post("/missions/{mission_id}/cancel", response_model=MissionResponse)
async def cancel_mission(
    mission_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(therapists),
):
    return await mission_service.cancel(db, mission_id, current_user.id)


@router.delete("/missions/{mission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_mission(
    mission_id: UUID,
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    current_user: User = Depends(therapists),
):
    await mission_service.delete_mission(db, storage, mission_id, current_user.id)


# ============= 조회 =============

@router.get("/missions/{mission_id}", response_model=MissionResponse)
async def get_mission(
    mission_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await mission_service.get_mission(db, mission_id, current_user.id)


@router.get("/children/{child_id}/missions", response_model=List[MissionResponse])
async def list_missions(
    child_id: UUID,
    status: Optional[MissionStatus] = None,
    therapist_id: Optional[UUID] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 20,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await mission_service.list_missions(
        db, child_id, current_user.id, status=status, therapist_id=therapist_id,
        start=start, end=end, skip=skip, limit=limit,
    )


@router.get("/children/{child_id}/missions/overdue", response_model=List[MissionResponse])
async def list_overdue_missions(
    child_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await mission_service.list_overdue_missions(db, child_id, current_user.id)


@router.get("/children/{child_id}/missions/pending-verification", response_model=List[MissionResponse])
async def list_pending_verification(
    child_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await mission_service.list_pending_verification(db, child_id, current_user.id)


@router.get("/children/{child_id}/missions/count", response_model=CountResponse)
async def count_missions(
    child_id: UUID,
    status: Optional[MissionStatus] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return CountResponse(count=await mission_service.count_missions(db, child_id, current_user.id, status))


# ============= 사진 =============

@router.post("/missions/{mission_id}/photos", response_model=MissionPhotoResponse,
             status_code=status.HTTP_201_CREATED)
async def upload_photo(
    mission_id: UUID,
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    data = await file.read()
    return await photo_service.upload_photo(
        db, storage, mission_id, current_user.id, file.filename, file.content_type, data
    )


@router.get("/missions/{mission_id}/photos", response_model=List[MissionPhotoResponse])
async def list_photos(
    mission_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await photo_service.list_photos(db, mission_id, current_user.id)


@router.get("/mission-photos/{photo_id}")
async def read_photo(
    photo_id: UUID,
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    photo, data = await photo_service.read_photo(db, storage, photo_id, current_user.id)
    return Response(content=data, media_type=photo.content_type or "application/octet-stream")


@router.delete("/mission-photos/{photo_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_photo(
    photo_id: UUID,
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    await photo_service.delete_photo(db, storage, photo_id, current_user.id)
