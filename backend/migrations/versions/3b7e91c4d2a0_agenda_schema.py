"""agenda_schema

Revision ID: 3b7e91c4d2a0
Revises:
Create Date: 2026-10-19 09:12:40.215377

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3b7e91c4d2a0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- Enums ---
    # Let SQLAlchemy create enum types when referenced by tables.
    reminder_status_enum = postgresql.ENUM('pending', 'sent', 'cancelled', name='reminderstatus')
    workspace_role_enum = postgresql.ENUM('owner', 'member', name='workspacerole')

    # --- Tables ---

    # users
    op.create_table(
        'users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('image', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('email', name='uq_users_email')
    )

    # user_settings
    op.create_table(
        'user_settings',
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('reminder_minutes', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('ai_suggested_reminders', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('weekly_review', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('timezone', sa.String(), nullable=False, server_default='UTC'),
        sa.Column('show_input_at_bottom', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('reminder_minutes BETWEEN 1 AND 10080', name='ck_user_settings_reminder_minutes')
    )

    # subscriptions
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('plan', sa.String(), nullable=False),
        sa.Column('reference_id', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False)
    )
    op.create_index('idx_subscriptions_reference_status', 'subscriptions', ['reference_id', 'status'])

    # workspaces
    op.create_table(
        'workspaces',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('owner_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False)
    )
    op.create_index('idx_workspaces_owner', 'workspaces', ['owner_id'])

    # workspace_members
    op.create_table(
        'workspace_members',
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', workspace_role_enum, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('workspace_id', 'user_id')
    )
    op.create_index('idx_workspace_members_user', 'workspace_members', ['user_id'])

    # todos
    op.create_table(
        'todos',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('completed', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=True),
        sa.Column('due_date', sa.Text(), nullable=True),
        sa.Column('urgency', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('urgency BETWEEN 1 AND 5', name='ck_todos_urgency')
    )
    op.create_index('idx_todos_user_workspace', 'todos', ['user_id', 'workspace_id'])

    # comments
    op.create_table(
        'comments',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('text', sa.String(length=1000), nullable=False),
        sa.Column('todo_id', sa.String(), sa.ForeignKey('todos.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False)
    )
    op.create_index('idx_comments_todo_created', 'comments', ['todo_id', 'created_at'])

    # reminders
    op.create_table(
        'reminders',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('todo_id', sa.String(), sa.ForeignKey('todos.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('reminder_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('summary', sa.Text(), nullable=False),
        sa.Column('status', reminder_status_enum, nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False)
    )
    op.create_index('idx_reminders_status_time', 'reminders', ['status', 'reminder_time'])
    op.create_index('idx_reminders_user_status', 'reminders', ['user_id', 'status'])


def downgrade() -> None:
    op.drop_index('idx_reminders_user_status', table_name='reminders')
    op.drop_index('idx_reminders_status_time', table_name='reminders')
    op.drop_table('reminders')
    op.drop_index('idx_comments_todo_created', table_name='comments')
    op.drop_table('comments')
    op.drop_index('idx_todos_user_workspace', table_name='todos')
    op.drop_table('todos')
    op.drop_index('idx_workspace_members_user', table_name='workspace_members')
    op.drop_table('workspace_members')
    op.drop_index('idx_workspaces_owner', table_name='workspaces')
    op.drop_table('workspaces')
    op.drop_index('idx_subscriptions_reference_status', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_table('user_settings')
    op.drop_table('users')

    op.execute("DROP TYPE reminderstatus")
    op.execute("DROP TYPE workspacerole")
