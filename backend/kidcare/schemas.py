from __future__ import annotations
from typing import Optional, List
from uuid import UUID
from datetime import date, datetime
from pydantic import BaseModel, Field

from kidcare.models import (
    AssetType, ChildPermission, MissionCategory, MissionDifficulty, MissionStatus,
    NoteType, NotificationType,
)


class ORMModel(BaseModel):
    class Config:
        from_attributes = True


# ============= 아동 =============

class ChildCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    birth_date: Optional[date] = None
    gender: Optional[str] = Field(None, pattern="^(MALE|FEMALE|OTHER)$")
    diagnosis_date: Optional[date] = None
    pin: Optional[str] = Field(None, pattern=r"^\d{4}$")


class ChildUpdate(BaseModel):
    """보낸 필드만 수정합니다 (exclude_unset)"""
    name: Optional[str] = None
    birth_date: Optional[date] = None
    gender: Optional[str] = None
    diagnosis_date: Optional[date] = None


class ChildResponse(ORMModel):
    id: UUID
    name: str
    birth_date: Optional[date] = None
    gender: Optional[str] = None
    diagnosis_date: Optional[date] = None
    pin_enabled: bool
    primary_user_id: Optional[UUID] = None
    created_at: datetime


class PinSetReq(BaseModel):
    new_pin: str = Field(..., pattern=r"^\d{4}$")
    current_pin: Optional[str] = None


class PinReq(BaseModel):
    pin: str


class PinVerifyResp(BaseModel):
    valid: bool


# ============= 권한 =============

class AuthorizationGrantReq(BaseModel):
    user_id: UUID
    permissions: List[ChildPermission] = []
    is_primary: bool = False


class AuthorizationReviseReq(BaseModel):
    permissions: List[ChildPermission]


class TransferPrimaryReq(BaseModel):
    new_primary_user_id: UUID
    pin: Optional[str] = None


class AuthorizationResponse(ORMModel):
    id: UUID
    child_id: UUID
    user_id: UUID
    permissions: List[ChildPermission]
    is_primary: bool
    is_active: bool
    granted_by_id: Optional[UUID] = None
    granted_at: datetime


# ============= 미션 템플릿 =============

class TemplateCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: str
    category: MissionCategory
    difficulty: MissionDifficulty
    instructions: str
    expected_duration: Optional[int] = Field(None, gt=0)
    llm_generated: bool = False


class TemplateUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[MissionCategory] = None
    difficulty: Optional[MissionDifficulty] = None
    instructions: Optional[str] = None
    expected_duration: Optional[int] = None


class TemplateResponse(ORMModel):
    id: UUID
    title: Optional[str] = None
    description: str
    category: MissionCategory
    difficulty: MissionDifficulty
    instructions: str
    expected_duration: Optional[int] = None
    llm_generated: bool
    active: bool
    created_at: datetime


class TemplateStats(BaseModel):
    active: int
    llm_generated: int
    by_category: dict[str, int]


# ============= 미션 =============

class MissionAssignReq(BaseModel):
    child_id: UUID
    template_id: UUID
    due_date: Optional[datetime] = None


class MissionCompleteReq(BaseModel):
    parent_note: Optional[str] = Field(None, max_length=5000)


class MissionVerifyReq(BaseModel):
    therapist_feedback: Optional[str] = Field(None, max_length=5000)


class MissionPhotoResponse(ORMModel):
    id: UUID
    mission_id: UUID
    file_path: str
    original_file_name: str
    file_size: int
    content_type: Optional[str] = None
    thumbnail_path: Optional[str] = None
    created_at: datetime


class MissionResponse(ORMModel):
    id: UUID
    child_id: UUID
    therapist_id: UUID
    template: TemplateResponse
    status: MissionStatus
    assigned_at: datetime
    due_date: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    parent_note: Optional[str] = None
    therapist_feedback: Optional[str] = None
    system_note_id: Optional[UUID] = None
    overdue: bool
    photos: List[MissionPhotoResponse] = []


class CountResponse(BaseModel):
    count: int


# ============= 노트 / 댓글 / 첨부파일 =============

class NoteCreate(BaseModel):
    note_type: NoteType
    title: Optional[str] = Field(None, max_length=200)
    content: str


class NoteUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None


class NoteResponse(ORMModel):
    id: UUID
    child_id: UUID
    author_id: UUID
    note_type: NoteType
    title: Optional[str] = None
    content: str
    created_at: datetime
    updated_at: datetime


class CommentCreate(BaseModel):
    content: str
    parent_id: Optional[UUID] = None


class CommentUpdate(BaseModel):
    content: str


class CommentResponse(ORMModel):
    id: UUID
    note_id: UUID
    author_id: UUID
    parent_id: Optional[UUID] = None
    content: str
    created_at: datetime
    replies: List["CommentResponse"] = []


class AssetResponse(ORMModel):
    id: UUID
    note_id: UUID
    asset_type: AssetType
    original_file_name: str
    file_size: int
    content_type: Optional[str] = None
    created_at: datetime


# ============= 알림 =============

class NotificationResponse(ORMModel):
    id: UUID
    notification_type: NotificationType
    title: str
    message: str
    reference_id: Optional[UUID] = None
    is_read: bool
    created_at: datetime


# ============= 게임 세션 =============

class GameStartReq(BaseModel):
    pin: Optional[str] = None


class GameSessionResponse(ORMModel):
    id: UUID
    session_token: str
    child_id: UUID
    authenticated_by: UUID
    expires_at: datetime
    is_active: bool
    last_used_at: Optional[datetime] = None
    created_at: datetime
