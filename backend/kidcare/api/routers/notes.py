from uuid import UUID
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.db import get_db
from kidcare.models import NoteType, User
from kidcare.schemas import (
    AssetResponse, CommentCreate, CommentResponse, CommentUpdate, CountResponse, NoteCreate,
    NoteResponse, NoteUpdate,
)
from kidcare.services import asset_service, comment_service, note_service
from kidcare.services.auth_service import get_current_user
from kidcare.services.storage import LocalStorage, get_storage

router = APIRouter(tags=["notes"])


# ============= 노트 =============

@router.post("/children/{child_id}/notes", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
async def create_note(
    child_id: UUID,
    req: NoteCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await note_service.create_note(db, child_id, current_user.id, req.note_type, req.title, req.content)


@router.get("/children/{child_id}/notes", response_model=List[NoteResponse])
async def search_notes(
    child_id: UUID,
    keyword: Optional[str] = None,
    note_type: Optional[NoteType] = None,
    author_id: Optional[UUID] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 20,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await note_service.search_notes(
        db, child_id, current_user.id, keyword=keyword, note_type=note_type,
        author_id=author_id, start=start, end=end, skip=skip, limit=limit,
    )


@router.get("/children/{child_id}/notes/count", response_model=CountResponse)
async def count_notes(
    child_id: UUID,
    note_type: Optional[NoteType] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return CountResponse(count=await note_service.count_notes(db, child_id, current_user.id, note_type))


@router.get("/notes/{note_id}", response_model=NoteResponse)
async def get_note(
    note_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await note_service.get_note(db, note_id, current_user.id)


@router.patch("/notes/{note_id}", response_model=NoteResponse)
async def update_note(
    note_id: UUID,
    req: NoteUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await note_service.update_note(db, note_id, current_user.id, req.model_dump(exclude_unset=True))


@router.delete("/notes/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note(
    note_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await note_service.delete_note(db, note_id, current_user.id)


# ============= 댓글 =============

@router.post("/notes/{note_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def create_comment(
    note_id: UUID,
    req: CommentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await comment_service.create_comment(db, note_id, current_user.id, req.content, req.parent_id)


@router.get("/notes/{note_id}/comments", response_model=List[CommentResponse])
async def list_comments(
    note_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    threads = await comment_service.list_comments(db, note_id, current_user.id)
    response_list = []
    for comment, replies in threads:
        item = CommentResponse.model_validate(comment)
        item.replies = [CommentResponse.model_validate(r) for r in replies]
        response_list.append(item)
    return response_list


@router.get("/comments/{comment_id}/replies", response_model=List[CommentResponse])
async def get_replies(
    comment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await comment_service.get_replies(db, comment_id, current_user.id)


@router.patch("/comments/{comment_id}", response_model=CommentResponse)
async def update_comment(
    comment_id: UUID,
    req: CommentUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await comment_service.update_comment(db, comment_id, current_user.id, req.content)


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
    comment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await comment_service.delete_comment(db, comment_id, current_user.id)


# ============= 첨부파일 =============

@router.post("/notes/{note_id}/assets", response_model=AssetResponse, status_code=status.HTTP_201_CREATED)
async def upload_asset(
    note_id: UUID,
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    data = await file.read()
    return await asset_service.upload_asset(
        db, storage, note_id, current_user.id, file.filename, file.content_type, data
    )


@router.get("/notes/{note_id}/assets", response_model=List[AssetResponse])
async def list_assets(
    note_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await asset_service.list_assets(db, note_id, current_user.id)


@router.get("/note-assets/{asset_id}")
async def read_asset(
    asset_id: UUID,
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    asset, data = await asset_service.read_asset(db, storage, asset_id, current_user.id)
    return Response(content=data, media_type=asset.content_type or "application/octet-stream")


@router.delete("/note-assets/{asset_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_asset(
    asset_id: UUID,
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    await asset_service.delete_asset(db, storage, asset_id, current_user.id)
