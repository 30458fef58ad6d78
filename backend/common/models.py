from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, ForeignKey,
    Index, CheckConstraint, Enum, PrimaryKeyConstraint
)
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship

Base = declarative_base()

PERSONAL_WORKSPACE_NAME = "Personal"

# --- Enums ---

class ReminderStatus(PyEnum):
    pending = "pending"
    sent = "sent"
    cancelled = "cancelled"

class WorkspaceRole(PyEnum):
    owner = "owner"
    member = "member"

# --- Models ---

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=True, unique=True)
    image = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

class UserSettings(Base):
    __tablename__ = "user_settings"

    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    reminder_minutes = Column(Integer, CheckConstraint("reminder_minutes BETWEEN 1 AND 10080"), nullable=False, default=30)
    ai_suggested_reminders = Column(Boolean, nullable=False, default=False)
    weekly_review = Column(Boolean, nullable=False, default=False)
    timezone = Column(String, nullable=False, default="UTC")
    show_input_at_bottom = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True)
    plan = Column(String, nullable=False)
    reference_id = Column(String, nullable=False)  # user id
    status = Column(String, nullable=False)  # active, trialing, canceled...
    period_start = Column(DateTime(timezone=True), nullable=True)
    period_end = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_subscriptions_reference_status", "reference_id", "status"),
    )

class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(String, primary_key=True)
    name = Column(String(50), nullable=False)
    owner_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    members = relationship("WorkspaceMember", back_populates="workspace", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_workspaces_owner", "owner_id"),
    )

class WorkspaceMember(Base):
    __tablename__ = "workspace_members"

    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(Enum(WorkspaceRole), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    workspace = relationship("Workspace", back_populates="members")

    __table_args__ = (
        PrimaryKeyConstraint("workspace_id", "user_id"),
        Index("idx_workspace_members_user", "user_id"),
    )

class Todo(Base):
    __tablename__ = "todos"

    id = Column(String, primary_key=True)
    title = Column(String(500), nullable=False)
    completed = Column(Boolean, nullable=False, default=False)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True)
    due_date = Column(Text, nullable=True)  # ISO-8601 string as sent by clients
    urgency = Column(Integer, CheckConstraint("urgency BETWEEN 1 AND 5"), nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    comments = relationship("Comment", back_populates="todo", cascade="all, delete-orphan", order_by="Comment.created_at")

    __table_args__ = (
        Index("idx_todos_user_workspace", "user_id", "workspace_id"),
    )

class Comment(Base):
    __tablename__ = "comments"

    id = Column(String, primary_key=True)
    text = Column(String(1000), nullable=False)
    todo_id = Column(String, ForeignKey("todos.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    todo = relationship("Todo", back_populates="comments")
    user = relationship("User")

    __table_args__ = (
        Index("idx_comments_todo_created", "todo_id", "created_at"),
    )

class Reminder(Base):
    __tablename__ = "reminders"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    todo_id = Column(String, ForeignKey("todos.id", ondelete="CASCADE"), nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    reminder_time = Column(DateTime(timezone=True), nullable=False)
    message = Column(Text, nullable=False)
    summary = Column(Text, nullable=False)
    status = Column(Enum(ReminderStatus), nullable=False, default=ReminderStatus.pending)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_reminders_status_time", "status", "reminder_time"),
        Index("idx_reminders_user_status", "user_id", "status"),
    )
