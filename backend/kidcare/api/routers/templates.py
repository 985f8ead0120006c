from uuid import UUID
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.db import get_db
from kidcare.models import MissionCategory, MissionDifficulty, User, UserRole
from kidcare.schemas import TemplateCreate, TemplateResponse, TemplateStats, TemplateUpdate
from kidcare.services import template_service
from kidcare.services.auth_service import get_current_user, require_roles

router = APIRouter(prefix="/mission-templates", tags=["mission-templates"])

# 템플릿 관리는 치료사/관리자만
managers = require_roles(UserRole.THERAPIST, UserRole.ADMIN)


@router.post("", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    req: TemplateCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(managers),
):
    return await template_service.create_template(db, **req.model_dump())


@router.get("", response_model=List[TemplateResponse])
async def search_templates(
    keyword: Optional[str] = None,
    category: Optional[MissionCategory] = None,
    difficulty: Optional[MissionDifficulty] = None,
    llm_generated: Optional[bool] = None,
    skip: int = 0,
    limit: int = 20,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await template_service.search_templates(
        db, keyword=keyword, category=category, difficulty=difficulty,
        llm_generated=llm_generated, skip=skip, limit=limit,
    )


@router.get("/stats", response_model=TemplateStats)
async def template_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await template_service.count_templates(db)


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await template_service.get_template(db, template_id)


@router.patch("/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: UUID,
    req: TemplateUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(managers),
):
    return await template_service.update_template(db, template_id, req.model_dump(exclude_unset=True))


@router.post("/{template_id}/activate", response_model=TemplateResponse)
async def activate_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(managers),
):
    return await template_service.set_active(db, template_id, True)


@router.post("/{template_id}/deactivate", response_model=TemplateResponse)
async def deactivate_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(managers),
):
    return await template_service.set_active(db, template_id, False)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(managers),
):
    await template_service.delete_template(db, template_id)
