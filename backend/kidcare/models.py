from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger, Boolean, Date, DateTime, Enum as SAEnum, ForeignKey, Index,
    Integer, JSON, String, Text, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql.expression import text

from kidcare.config import (
    BODY_MAX, CHILD_NAME_MAX, CHILD_NAME_MIN, GAME_SESSION_HOURS, MAX_MISSION_PHOTOS,
    MAX_PHOTO_BYTES, SHORT_TEXT_MAX, TITLE_MAX,
)
from kidcare.db import Base
from kidcare.errors import (
    ConflictError, InvalidArgumentError, InvalidRoleError,
    InvalidTransitionError, LimitExceededError,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite 는 tz 정보를 버리므로 naive 값은 UTC 로 간주"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _enum(cls, name: str, length: int = 30):
    return SAEnum(cls, name=name, native_enum=False, create_constraint=True, length=length)


def _require_text(value: Optional[str], label: str, max_len: int) -> str:
    if value is None or not value.strip():
        raise InvalidArgumentError(f"{label}은(는) 필수입니다")
    if len(value) > max_len:
        raise InvalidArgumentError(f"{label}은(는) {max_len:,}자를 초과할 수 없습니다")
    return value.strip()


def _optional_text(value: Optional[str], label: str, max_len: int) -> Optional[str]:
    if value is not None and len(value) > max_len:
        raise InvalidArgumentError(f"{label}은(는) {max_len:,}자를 초과할 수 없습니다")
    return value


# ============= Enum =============

class ChildPermission(str, enum.Enum):
    """아동별 권한 (고정 집합)"""
    PLAY_GAME = "PLAY_GAME"
    VIEW_REPORT = "VIEW_REPORT"
    WRITE_NOTE = "WRITE_NOTE"
    ASSIGN_MISSION = "ASSIGN_MISSION"
    MANAGE = "MANAGE"


ALL_PERMISSIONS = frozenset(ChildPermission)


class UserRole(str, enum.Enum):
    PENDING = "PENDING"
    PARENT = "PARENT"
    THERAPIST = "THERAPIST"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"


class MissionStatus(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    VERIFIED = "VERIFIED"
    CANCELLED = "CANCELLED"

    @property
    def display_name(self) -> str:
        return _STATUS_DISPLAY[self]

    @property
    def is_terminal(self) -> bool:
        return not MISSION_TRANSITIONS[self]

    def can_transition_to(self, target: "MissionStatus") -> bool:
        return target in MISSION_TRANSITIONS[self]


MISSION_TRANSITIONS = {
    MissionStatus.ASSIGNED: frozenset({MissionStatus.IN_PROGRESS, MissionStatus.CANCELLED}),
    MissionStatus.IN_PROGRESS: frozenset({MissionStatus.COMPLETED, MissionStatus.CANCELLED}),
    MissionStatus.COMPLETED: frozenset({MissionStatus.VERIFIED, MissionStatus.CANCELLED}),
    MissionStatus.VERIFIED: frozenset(),
    MissionStatus.CANCELLED: frozenset(),
}

_STATUS_DISPLAY = {
    MissionStatus.ASSIGNED: "할당됨",
    MissionStatus.IN_PROGRESS: "진행중",
    MissionStatus.COMPLETED: "완료",
    MissionStatus.VERIFIED: "검증완료",
    MissionStatus.CANCELLED: "취소됨",
}


class MissionCategory(str, enum.Enum):
    EXPRESSION = "EXPRESSION"                    # 표정 짓기
    EMOTION_RECOGNITION = "EMOTION_RECOGNITION"  # 타인의 표정에서 감정 읽기
    COMMUNICATION = "COMMUNICATION"              # 맥락에 맞는 소통


class MissionDifficulty(str, enum.Enum):
    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"


class NoteType(str, enum.Enum):
    THERAPIST_NOTE = "THERAPIST_NOTE"
    PARENT_NOTE = "PARENT_NOTE"
    SYSTEM = "SYSTEM"


class AssetType(str, enum.Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    DOCUMENT = "DOCUMENT"

    @classmethod
    def from_file_name(cls, file_name: str) -> "AssetType":
        if not file_name or "." not in file_name:
            raise InvalidArgumentError("올바른 파일명이 아닙니다")
        ext = file_name.rsplit(".", 1)[1].lower()
        for asset_type, (extensions, _) in _ASSET_RULES.items():
            if ext in extensions:
                return asset_type
        raise InvalidArgumentError(f"지원하지 않는 파일 형식입니다: {ext}")

    @property
    def max_size_bytes(self) -> int:
        return _ASSET_RULES[self][1]


_ASSET_RULES = {
    AssetType.IMAGE: ({"jpg", "jpeg", "png", "gif", "webp"}, 5 * 1024 * 1024),
    AssetType.VIDEO: ({"mp4", "mov", "avi"}, 10 * 1024 * 1024),
    AssetType.DOCUMENT: ({"pdf"}, 10 * 1024 * 1024),
}


class NotificationType(str, enum.Enum):
    MISSION_COMPLETED = "MISSION_COMPLETED"
    MISSION_PHOTO_UPLOADED = "MISSION_PHOTO_UPLOADED"


# ============= 사용자 =============

class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, index=True, nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole, "user_role", 20), default=UserRole.PENDING, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def has_role(self, role: UserRole) -> bool:
        return self.role == role


# ============= 아동 (Aggregate Root) =============

class Child(Base):
    """
    아동 엔티티.
    주보호자는 별도 컬럼 없이 authorizations 중 is_primary=True 인 활성 레코드로 관리합니다.
    """
    __tablename__ = "children"
    __table_args__ = (
        Index("idx_children_deleted", "is_deleted"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(CHILD_NAME_MAX), nullable=False)
    birth_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    diagnosis_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Parental Gate PIN (해시 저장)
    pin_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    pin_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    authorizations: Mapped[list["ChildAuthorization"]] = relationship(
        back_populates="child",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ChildAuthorization.granted_at",
    )

    @classmethod
    def create(cls, *, name: str, birth_date=None, gender=None, diagnosis_date=None) -> "Child":
        child = cls(is_deleted=False, pin_enabled=False, authorizations=[])
        child.change_name(name)
        child.change_birth_date(birth_date)
        child.change_gender(gender)
        child.change_diagnosis_date(diagnosis_date)
        return child

    # ---- 조회 ----

    def active_authorizations(self) -> list["ChildAuthorization"]:
        return [a for a in self.authorizations if a.is_active]

    def authorization_for(self, user_id: uuid.UUID) -> Optional["ChildAuthorization"]:
        """사용자의 활성 권한 레코드 (없으면 None)"""
        for auth in self.active_authorizations():
            if auth.user_id == user_id:
                return auth
        return None

    def primary_authorization(self) -> Optional["ChildAuthorization"]:
        for auth in self.active_authorizations():
            if auth.is_primary:
                return auth
        return None

    @property
    def primary_user_id(self) -> Optional[uuid.UUID]:
        primary = self.primary_authorization()
        return primary.user_id if primary else None

    def is_primary(self, user_id: uuid.UUID) -> bool:
        auth = self.authorization_for(user_id)
        return auth is not None and auth.is_primary

    def has_permission(self, user_id: uuid.UUID, permission: ChildPermission) -> bool:
        auth = self.authorization_for(user_id)
        return auth is not None and auth.allows(permission)

    def can_access(self, user_id: uuid.UUID) -> bool:
        """권한 종류와 무관하게 활성 grant 가 있는지"""
        return self.authorization_for(user_id) is not None

    # ---- 권한 관리 ----

    def add_authorization(self, auth: "ChildAuthorization") -> None:
        """
        권한 레코드 추가. 양방향 연관관계를 한 번에 맞춥니다.
        주보호자는 1명만, PARENT 역할만 가능합니다.
        """
        if self.authorization_for(auth.user_id) is not None:
            raise ConflictError("이미 권한이 부여된 사용자입니다")
        if auth.is_primary:
            if self.primary_authorization() is not None:
                raise ConflictError("주보호자는 1명만 가능합니다")
            if auth.user is None or not auth.user.has_role(UserRole.PARENT):
                raise InvalidRoleError("주보호자는 PARENT 역할만 가능합니다")
        self.authorizations.append(auth)

    # ---- 정보 변경 ----

    def change_name(self, name: str) -> None:
        if name is None or not name.strip():
            raise InvalidArgumentError("이름은 필수입니다")
        name = name.strip()
        if not CHILD_NAME_MIN <= len(name) <= CHILD_NAME_MAX:
            raise InvalidArgumentError(f"이름은 {CHILD_NAME_MIN}-{CHILD_NAME_MAX}자 사이여야 합니다")
        self.name = name

    def change_birth_date(self, birth_date: Optional[date]) -> None:
        if birth_date is not None and birth_date > date.today():
            raise InvalidArgumentError("생년월일은 미래일 수 없습니다")
        self.birth_date = birth_date

    def change_gender(self, gender: Optional[str]) -> None:
        if gender is not None and gender not in ("MALE", "FEMALE", "OTHER"):
            raise InvalidArgumentError("성별은 MALE, FEMALE, OTHER 중 하나여야 합니다")
        self.gender = gender

    def change_diagnosis_date(self, diagnosis_date: Optional[date]) -> None:
        if diagnosis_date is not None and diagnosis_date > date.today():
            raise InvalidArgumentError("진단일은 미래일 수 없습니다")
        self.diagnosis_date = diagnosis_date

    def set_pin_hash(self, pin_hash: str) -> None:
        if not pin_hash:
            raise InvalidArgumentError("암호화된 PIN은 필수입니다")
        self.pin_hash = pin_hash
        self.pin_enabled = True

    def remove_pin(self) -> None:
        self.pin_hash = None
        self.pin_enabled = False

    def mark_deleted(self, now: datetime) -> bool:
        if self.is_deleted:
            return False
        self.is_deleted = True
        self.deleted_at = now
        return True


class ChildAuthorization(Base):
    """
    (아동, 사용자) 권한 레코드.
    비활성화(soft revoke)된 레코드는 되살리지 않고 새로 부여합니다.
    """
    __tablename__ = "child_authorizations"
    __table_args__ = (
        Index("idx_authorized_child", "child_id"),
        Index("idx_authorized_user", "user_id"),
        # 활성 grant 는 (아동, 사용자)당 1건
        Index(
            "uq_authorized_active_user", "child_id", "user_id", unique=True,
            postgresql_where=text("is_active"), sqlite_where=text("is_active = 1"),
        ),
        # 활성 주보호자는 아동당 1명
        Index(
            "uq_authorized_active_primary", "child_id", unique=True,
            postgresql_where=text("is_primary AND is_active"),
            sqlite_where=text("is_primary = 1 AND is_active = 1"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    child_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("children.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    permissions: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    granted_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    child: Mapped["Child"] = relationship(back_populates="authorizations")
    user: Mapped["User"] = relationship(foreign_keys=[user_id], lazy="joined")

    @classmethod
    def issue(cls, user: User, permissions, *, is_primary: bool = False,
              granted_by_id: Optional[uuid.UUID] = None) -> "ChildAuthorization":
        return cls(
            user=user,
            user_id=user.id,
            permissions=sorted({ChildPermission(p).value for p in permissions}),
            is_primary=is_primary,
            is_active=True,
            granted_by_id=granted_by_id,
            granted_at=utcnow(),
        )

    @property
    def permission_set(self) -> frozenset[ChildPermission]:
        return frozenset(ChildPermission(p) for p in (self.permissions or []))

    @property
    def effective_permissions(self) -> frozenset[ChildPermission]:
        return ALL_PERMISSIONS if self.is_primary else self.permission_set

    def allows(self, permission: ChildPermission) -> bool:
        """단일 권한 판정: 활성 + (주보호자 또는 저장된 권한에 포함)"""
        if not self.is_active:
            return False
        return bool(self.is_primary) or permission in self.permission_set

    def _guard_primary(self) -> None:
        if self.is_primary:
            raise ConflictError("주보호자의 권한은 변경할 수 없습니다")

    def replace_permissions(self, permissions) -> None:
        self._guard_primary()
        # JSON 컬럼은 변경 추적이 안 되므로 새 리스트로 교체
        self.permissions = sorted({ChildPermission(p).value for p in permissions})

    def add_permission(self, permission: ChildPermission) -> None:
        self._guard_primary()
        self.replace_permissions(self.permission_set | {ChildPermission(permission)})

    def remove_permission(self, permission: ChildPermission) -> None:
        self._guard_primary()
        self.replace_permissions(self.permission_set - {ChildPermission(permission)})

    def clear_permissions(self) -> None:
        self.replace_permissions([])

    def deactivate(self) -> None:
        self.is_active = False

    def demote(self) -> None:
        self.is_primary = False

    def promote(self) -> None:
        if not self.is_active:
            raise ConflictError("비활성화된 권한은 주보호자가 될 수 없습니다")
        if self.user is None or not self.user.has_role(UserRole.PARENT):
            raise InvalidRoleError("주보호자는 PARENT 역할만 가능합니다")
        self.is_primary = True


# ============= 미션 =============

class MissionTemplate(Base):
    __tablename__ = "mission_templates"
    __table_args__ = (
        Index("idx_templates_category", "category"),
        Index("idx_templates_difficulty", "difficulty"),
        Index("idx_templates_active", "active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[Optional[str]] = mapped_column(String(TITLE_MAX), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[MissionCategory] = mapped_column(_enum(MissionCategory, "mission_category", 50), nullable=False)
    difficulty: Mapped[MissionDifficulty] = mapped_column(_enum(MissionDifficulty, "mission_difficulty", 20), nullable=False)
    instructions: Mapped[str] = mapped_column(Text, nullable=False)
    expected_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 분
    llm_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @classmethod
    def create(cls, *, title, description, category, difficulty, instructions,
               expected_duration=None, llm_generated=False) -> "MissionTemplate":
        template = cls(llm_generated=bool(llm_generated), active=True, is_deleted=False)
        template.change_title(title)
        template.change_description(description)
        template.change_category(category)
        template.change_difficulty(difficulty)
        template.change_instructions(instructions)
        template.change_expected_duration(expected_duration)
        return template

    def change_title(self, title: Optional[str]) -> None:
        self.title = _optional_text(title, "제목", TITLE_MAX)

    def change_description(self, description: str) -> None:
        self.description = _require_text(description, "설명", BODY_MAX)

    def change_instructions(self, instructions: str) -> None:
        self.instructions = _require_text(instructions, "수행 방법", BODY_MAX)

    def change_category(self, category: MissionCategory) -> None:
        if category is None:
            raise InvalidArgumentError("카테고리는 필수입니다")
        self.category = MissionCategory(category)

    def change_difficulty(self, difficulty: MissionDifficulty) -> None:
        if difficulty is None:
            raise InvalidArgumentError("난이도는 필수입니다")
        self.difficulty = MissionDifficulty(difficulty)

    def change_expected_duration(self, minutes: Optional[int]) -> None:
        if minutes is not None and minutes <= 0:
            raise InvalidArgumentError("예상 소요 시간은 양수여야 합니다")
        self.expected_duration = minutes

    @property
    def display_title(self) -> str:
        if self.title:
            return self.title
        return self.description[:50]

    def activate(self) -> None:
        self.active = True

    def deactivate(self) -> None:
        self.active = False

    def mark_deleted(self, now: datetime) -> bool:
        if self.is_deleted:
            return False
        self.is_deleted = True
        self.deleted_at = now
        return True


class AssignedMission(Base):
    """
    치료사가 아동에게 할당한 미션.

    상태 전이:
        ASSIGNED → IN_PROGRESS → COMPLETED → VERIFIED
        (VERIFIED/CANCELLED 이전 어느 단계에서든 CANCELLED 가능)
    """
    __tablename__ = "assigned_missions"
    __table_args__ = (
        Index("idx_missions_child", "child_id"),
        Index("idx_missions_therapist", "therapist_id"),
        Index("idx_missions_status", "status"),
        Index("idx_missions_assigned", "assigned_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    child_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("children.id", ondelete="CASCADE"), nullable=False)
    therapist_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    template_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("mission_templates.id"), nullable=False)
    status: Mapped[MissionStatus] = mapped_column(
        _enum(MissionStatus, "mission_status", 20), default=MissionStatus.ASSIGNED, nullable=False
    )

    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    parent_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    therapist_feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # 가장 최근 전이 때 생성된 시스템 노트
    system_note_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("child_notes.id", ondelete="SET NULL"), nullable=True
    )

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    template: Mapped["MissionTemplate"] = relationship(lazy="joined")
    photos: Mapped[list["MissionPhoto"]] = relationship(
        back_populates="mission",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MissionPhoto.created_at",
    )

    @classmethod
    def create(cls, *, child_id: uuid.UUID, therapist_id: uuid.UUID, template: MissionTemplate,
               due_date: Optional[datetime], now: datetime) -> "AssignedMission":
        mission = cls(
            child_id=child_id,
            therapist_id=therapist_id,
            template=template,
            template_id=template.id,
            status=MissionStatus.ASSIGNED,
            assigned_at=now,
            is_deleted=False,
            photos=[],
        )
        mission.set_due_date(due_date, now)
        return mission

    # ---- 상태 전이 ----

    def _transition(self, target: MissionStatus) -> None:
        current = MissionStatus(self.status)
        if not current.can_transition_to(target):
            raise InvalidTransitionError(
                f"'{current.display_name}' 상태에서는 '{target.display_name}'(으)로 변경할 수 없습니다"
            )
        self.status = target

    def start(self, now: datetime) -> None:
        self._transition(MissionStatus.IN_PROGRESS)
        self.started_at = now

    def complete(self, parent_note: Optional[str], now: datetime) -> None:
        note = _optional_text(parent_note, "부모 코멘트", SHORT_TEXT_MAX)
        self._transition(MissionStatus.COMPLETED)
        self.completed_at = now
        self.parent_note = note

    def verify(self, feedback: Optional[str], now: datetime) -> None:
        feedback = _optional_text(feedback, "치료사 피드백", SHORT_TEXT_MAX)
        self._transition(MissionStatus.VERIFIED)
        self.verified_at = now
        self.therapist_feedback = feedback

    def cancel(self, now: datetime) -> None:
        self._transition(MissionStatus.CANCELLED)
        self.cancelled_at = now

    # ---- 기타 ----

    def is_therapist(self, user_id: uuid.UUID) -> bool:
        return self.therapist_id == user_id

    def set_due_date(self, due_date: Optional[datetime], now: datetime) -> None:
        due_date = as_utc(due_date)
        if due_date is not None and due_date <= now:
            raise InvalidArgumentError("목표 완료일은 현재 시간 이후여야 합니다")
        self.due_date = due_date

    def change_parent_note(self, parent_note: Optional[str]) -> None:
        self.parent_note = _optional_text(parent_note, "부모 코멘트", SHORT_TEXT_MAX)

    def change_therapist_feedback(self, feedback: Optional[str]) -> None:
        self.therapist_feedback = _optional_text(feedback, "치료사 피드백", SHORT_TEXT_MAX)

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """마감일이 지났고 아직 완료/검증되지 않았는지 (저장하지 않고 매번 계산)"""
        if self.due_date is None:
            return False
        now = now or utcnow()
        return (
            as_utc(self.due_date) < now
            and self.status not in (MissionStatus.COMPLETED, MissionStatus.VERIFIED)
        )

    @property
    def overdue(self) -> bool:
        return self.is_overdue()

    def link_system_note(self, note_id: uuid.UUID) -> None:
        self.system_note_id = note_id

    def add_photo(self, photo: "MissionPhoto") -> None:
        if len(self.photos) >= MAX_MISSION_PHOTOS:
            raise LimitExceededError(f"미션당 최대 {MAX_MISSION_PHOTOS}개까지 사진을 첨부할 수 있습니다")
        self.photos.append(photo)

    def remove_photo(self, photo: "MissionPhoto") -> None:
        if photo in self.photos:
            self.photos.remove(photo)

    def mark_deleted(self, now: datetime) -> bool:
        if self.is_deleted:
            return False
        self.is_deleted = True
        self.deleted_at = now
        return True


class MissionPhoto(Base):
    """
    미션 완료 증빙 사진.
    file_path 는 저장소 루트 기준 상대 경로: missions/{child_id}/{mission_id}/{uuid}.{ext}
    """
    __tablename__ = "mission_photos"
    __table_args__ = (
        Index("idx_mission_photos_mission", "mission_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    mission_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assigned_missions.id", ondelete="CASCADE"), nullable=False
    )
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    original_file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    stored_file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    thumbnail_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    mission: Mapped["AssignedMission"] = relationship(back_populates="photos")

    @staticmethod
    def validate_upload(file_size: int, content_type: Optional[str]) -> None:
        if file_size is None or file_size <= 0:
            raise InvalidArgumentError("업로드 파일이 비어 있습니다")
        if file_size > MAX_PHOTO_BYTES:
            raise InvalidArgumentError("파일 크기는 10MB를 초과할 수 없습니다")
        if not content_type or not content_type.startswith("image/"):
            raise InvalidArgumentError("이미지 파일만 업로드 가능합니다")

    @property
    def file_size_mb(self) -> float:
        return self.file_size / (1024.0 * 1024.0)


# ============= 노트 / 댓글 / 첨부파일 =============

class ChildNote(Base):
    """
    치료 노트 (치료사 소견 / 부모 관찰 일지 / 시스템 자동 기록).
    SYSTEM 노트는 미션 전이 때만 생성되며 수정/삭제할 수 없습니다.
    """
    __tablename__ = "child_notes"
    __table_args__ = (
        Index("idx_notes_child", "child_id"),
        Index("idx_notes_author", "author_id"),
        Index("idx_notes_type", "note_type"),
        Index("idx_notes_created", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    child_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("children.id", ondelete="CASCADE"), nullable=False)
    author_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    note_type: Mapped[NoteType] = mapped_column(_enum(NoteType, "note_type", 20), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(TITLE_MAX), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @classmethod
    def create(cls, *, child_id: uuid.UUID, author_id: uuid.UUID, note_type: NoteType,
               title: Optional[str], content: str) -> "ChildNote":
        if note_type is None:
            raise InvalidArgumentError("노트 타입은 필수입니다")
        note = cls(child_id=child_id, author_id=author_id, note_type=NoteType(note_type), is_deleted=False)
        note.change_title(title)
        note.change_content(content)
        return note

    def change_title(self, title: Optional[str]) -> None:
        self.title = _optional_text(title, "제목", TITLE_MAX)

    def change_content(self, content: str) -> None:
        self.content = _require_text(content, "본문", BODY_MAX)

    def is_author(self, user_id: uuid.UUID) -> bool:
        return self.author_id == user_id

    @property
    def is_system(self) -> bool:
        return self.note_type == NoteType.SYSTEM

    def mark_deleted(self, now: datetime) -> bool:
        if self.is_deleted:
            return False
        self.is_deleted = True
        self.deleted_at = now
        return True


class NoteComment(Base):
    """노트 댓글. 대댓글은 1단계까지만 허용합니다."""
    __tablename__ = "note_comments"
    __table_args__ = (
        Index("idx_comments_note", "note_id"),
        Index("idx_comments_parent", "parent_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    note_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("child_notes.id", ondelete="CASCADE"), nullable=False)
    author_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("note_comments.id", ondelete="CASCADE"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @classmethod
    def create(cls, *, note_id: uuid.UUID, author_id: uuid.UUID, content: str,
               parent: Optional["NoteComment"] = None) -> "NoteComment":
        if parent is not None and not parent.is_top_level:
            raise InvalidArgumentError("대댓글에는 답글을 달 수 없습니다")
        comment = cls(
            note_id=note_id,
            author_id=author_id,
            parent_id=parent.id if parent is not None else None,
            is_deleted=False,
        )
        comment.change_content(content)
        return comment

    def change_content(self, content: str) -> None:
        self.content = _require_text(content, "댓글 내용", SHORT_TEXT_MAX)

    def is_author(self, user_id: uuid.UUID) -> bool:
        return self.author_id == user_id

    @property
    def is_top_level(self) -> bool:
        return self.parent_id is None

    def mark_deleted(self, now: datetime) -> bool:
        if self.is_deleted:
            return False
        self.is_deleted = True
        self.deleted_at = now
        return True


class NoteAsset(Base):
    __tablename__ = "note_assets"
    __table_args__ = (
        Index("idx_note_assets_note", "note_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    note_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("child_notes.id", ondelete="CASCADE"), nullable=False)
    asset_type: Mapped[AssetType] = mapped_column(_enum(AssetType, "asset_type", 20), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    original_file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    stored_file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def mark_deleted(self, now: datetime) -> bool:
        if self.is_deleted:
            return False
        self.is_deleted = True
        self.deleted_at = now
        return True


# ============= 알림 =============

class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_recipient", "recipient_id"),
        Index("idx_notifications_created", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(
        _enum(NotificationType, "notification_type", 50), nullable=False
    )
    title: Mapped[str] = mapped_column(String(TITLE_MAX), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def mark_as_read(self) -> None:
        self.is_read = True


# ============= 게임 세션 =============

class GameSession(Base):
    """PIN 인증 후 발급되는 임시 게임 토큰. 부모 JWT 대신 게임 클라이언트가 사용합니다."""
    __tablename__ = "game_sessions"
    __table_args__ = (
        Index("idx_game_session_token", "session_token", unique=True),
        Index("idx_game_session_child", "child_id"),
        Index("idx_game_session_expires", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_token: Mapped[str] = mapped_column(String(36), nullable=False)
    child_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("children.id", ondelete="CASCADE"), nullable=False)
    authenticated_by: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @classmethod
    def create(cls, child_id: uuid.UUID, user_id: uuid.UUID, now: datetime) -> "GameSession":
        return cls(
            session_token=str(uuid.uuid4()),
            child_id=child_id,
            authenticated_by=user_id,
            expires_at=now + timedelta(hours=GAME_SESSION_HOURS),
            is_active=True,
            created_at=now,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > as_utc(self.expires_at)

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return self.is_active and not self.is_expired(now)

    def refresh(self, now: datetime) -> None:
        if not self.is_valid(now):
            raise InvalidArgumentError("만료되거나 비활성화된 세션입니다")
        self.last_used_at = now

    def terminate(self) -> None:
        self.is_active = False
