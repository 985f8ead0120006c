"""Add game sessions

Revision ID: c4e6a8b0d2f1
Revises: a1c3e5f7b9d2
Create Date: 2026-10-19 15:40:07.518392
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c4e6a8b0d2f1'
down_revision: Union[str, Sequence[str], None] = 'a1c3e5f7b9d2'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'game_sessions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('session_token', sa.String(36), nullable=False),
        sa.Column('child_id', sa.Uuid(), sa.ForeignKey('children.id', ondelete='CASCADE'), nullable=False),
        sa.Column('authenticated_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_game_session_token', 'game_sessions', ['session_token'], unique=True)
    op.create_index('idx_game_session_child', 'game_sessions', ['child_id'])
    op.create_index('idx_game_session_expires', 'game_sessions', ['expires_at'])


def downgrade() -> None:
    op.drop_table('game_sessions')
