"""Initial schema: children, authorizations, missions, notes, notifications

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-19 10:12:31.204113
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f7b9d2'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(name, *values, length=30):
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=length)


def _soft_delete_columns():
    return [
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    # 1. 사용자
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('name', sa.String(100), nullable=True),
        sa.Column('role', _enum('user_role', 'PENDING', 'PARENT', 'THERAPIST', 'TEACHER', 'ADMIN', length=20),
                  nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # 2. 아동 + 권한 원장
    op.create_table(
        'children',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('birth_date', sa.Date(), nullable=True),
        sa.Column('gender', sa.String(10), nullable=True),
        sa.Column('diagnosis_date', sa.Date(), nullable=True),
        sa.Column('pin_hash', sa.String(255), nullable=True),
        sa.Column('pin_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_soft_delete_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_children_deleted', 'children', ['is_deleted'])

    op.create_table(
        'child_authorizations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('child_id', sa.Uuid(), sa.ForeignKey('children.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('permissions', sa.JSON(), nullable=False),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('granted_by_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('granted_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_authorized_child', 'child_authorizations', ['child_id'])
    op.create_index('idx_authorized_user', 'child_authorizations', ['user_id'])
    op.create_index(
        'uq_authorized_active_user', 'child_authorizations', ['child_id', 'user_id'], unique=True,
        postgresql_where=sa.text('is_active'), sqlite_where=sa.text('is_active = 1'),
    )
    op.create_index(
        'uq_authorized_active_primary', 'child_authorizations', ['child_id'], unique=True,
        postgresql_where=sa.text('is_primary AND is_active'),
        sqlite_where=sa.text('is_primary = 1 AND is_active = 1'),
    )

    # 3. 미션 템플릿
    op.create_table(
        'mission_templates',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('title', sa.String(200), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('category', _enum('mission_category', 'EXPRESSION', 'EMOTION_RECOGNITION', 'COMMUNICATION',
                                    length=50), nullable=False),
        sa.Column('difficulty', _enum('mission_difficulty', 'BEGINNER', 'INTERMEDIATE', 'ADVANCED', length=20),
                  nullable=False),
        sa.Column('instructions', sa.Text(), nullable=False),
        sa.Column('expected_duration', sa.Integer(), nullable=True),
        sa.Column('llm_generated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_soft_delete_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_templates_category', 'mission_templates', ['category'])
    op.create_index('idx_templates_difficulty', 'mission_templates', ['difficulty'])
    op.create_index('idx_templates_active', 'mission_templates', ['active'])

    # 4. 노트 (미션이 시스템 노트를 참조하므로 먼저 생성)
    op.create_table(
        'child_notes',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('child_id', sa.Uuid(), sa.ForeignKey('children.id', ondelete='CASCADE'), nullable=False),
        sa.Column('author_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('note_type', _enum('note_type', 'THERAPIST_NOTE', 'PARENT_NOTE', 'SYSTEM', length=20),
                  nullable=False),
        sa.Column('title', sa.String(200), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        *_soft_delete_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_notes_child', 'child_notes', ['child_id'])
    op.create_index('idx_notes_author', 'child_notes', ['author_id'])
    op.create_index('idx_notes_type', 'child_notes', ['note_type'])
    op.create_index('idx_notes_created', 'child_notes', ['created_at'])

    op.create_table(
        'note_comments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('note_id', sa.Uuid(), sa.ForeignKey('child_notes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('author_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('parent_id', sa.Uuid(), sa.ForeignKey('note_comments.id', ondelete='CASCADE'), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        *_soft_delete_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_comments_note', 'note_comments', ['note_id'])
    op.create_index('idx_comments_parent', 'note_comments', ['parent_id'])

    op.create_table(
        'note_assets',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('note_id', sa.Uuid(), sa.ForeignKey('child_notes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('asset_type', _enum('asset_type', 'IMAGE', 'VIDEO', 'DOCUMENT', length=20), nullable=False),
        sa.Column('file_path', sa.String(500), nullable=False),
        sa.Column('original_file_name', sa.String(255), nullable=False),
        sa.Column('stored_file_name', sa.String(255), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('content_type', sa.String(100), nullable=True),
        *_soft_delete_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_note_assets_note', 'note_assets', ['note_id'])

    # 5. 할당된 미션 + 사진
    op.create_table(
        'assigned_missions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('child_id', sa.Uuid(), sa.ForeignKey('children.id', ondelete='CASCADE'), nullable=False),
        sa.Column('therapist_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('template_id', sa.Uuid(), sa.ForeignKey('mission_templates.id'), nullable=False),
        sa.Column('status', _enum('mission_status', 'ASSIGNED', 'IN_PROGRESS', 'COMPLETED', 'VERIFIED',
                                  'CANCELLED', length=20), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('parent_note', sa.Text(), nullable=True),
        sa.Column('therapist_feedback', sa.Text(), nullable=True),
        sa.Column('system_note_id', sa.Uuid(), sa.ForeignKey('child_notes.id', ondelete='SET NULL'),
                  nullable=True),
        *_soft_delete_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_missions_child', 'assigned_missions', ['child_id'])
    op.create_index('idx_missions_therapist', 'assigned_missions', ['therapist_id'])
    op.create_index('idx_missions_status', 'assigned_missions', ['status'])
    op.create_index('idx_missions_assigned', 'assigned_missions', ['assigned_at'])

    op.create_table(
        'mission_photos',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('mission_id', sa.Uuid(), sa.ForeignKey('assigned_missions.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('file_path', sa.String(500), nullable=False),
        sa.Column('original_file_name', sa.String(255), nullable=False),
        sa.Column('stored_file_name', sa.String(255), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('content_type', sa.String(100), nullable=True),
        sa.Column('thumbnail_path', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_mission_photos_mission', 'mission_photos', ['mission_id'])

    # 6. 알림
    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('recipient_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('notification_type', _enum('notification_type', 'MISSION_COMPLETED', 'MISSION_PHOTO_UPLOADED',
                                             length=50), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('reference_id', sa.Uuid(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_notifications_recipient', 'notifications', ['recipient_id'])
    op.create_index('idx_notifications_created', 'notifications', ['created_at'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('mission_photos')
    op.drop_table('assigned_missions')
    op.drop_table('note_assets')
    op.drop_table('note_comments')
    op.drop_table('child_notes')
    op.drop_table('mission_templates')
    op.drop_table('child_authorizations')
    op.drop_table('children')
    op.drop_table('users')
