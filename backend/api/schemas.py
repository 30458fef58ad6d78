from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, List
from common.models import ReminderStatus


class WireModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

# --- Extraction ---

class ParseTodoRequest(WireModel):
    message: str
    conversation_id: str = Field(..., alias="conversationId", min_length=1)
    collected_values: Dict[str, str] = Field(default_factory=dict, alias="collectedValues")
    pending_fields: List[str] = Field(default_factory=list, alias="pendingFields")
    current_field: Optional[str] = Field(None, alias="currentField")
    field_attempts: Dict[str, int] = Field(default_factory=dict, alias="fieldAttempts")
    workspace_id: Optional[str] = Field(None, alias="workspaceId")

class ConvertDateRequest(WireModel):
    text: str = Field(..., min_length=1)
    timezone: Optional[str] = None

# --- Todos ---

class TodoCreate(WireModel):
    title: str = Field(..., min_length=1, max_length=500)
    due_date: Optional[str] = Field(None, alias="dueDate")
    urgency: float = Field(1, ge=1, le=5)
    workspace_id: Optional[str] = Field(None, alias="workspaceId")

class TodoUpdate(WireModel):
    id: str = Field(..., min_length=1)
    completed: Optional[bool] = None
    due_date: Optional[str] = Field(None, alias="dueDate")
    workspace_id: Optional[str] = Field(None, alias="workspaceId")

class TodoDelete(WireModel):
    id: str = Field(..., min_length=1)

class CommentCreate(WireModel):
    todo_id: str = Field(..., alias="todoId", min_length=1)
    text: str = Field(..., min_length=1, max_length=1000)

class CommentDelete(WireModel):
    todo_id: str = Field(..., alias="todoId", min_length=1)
    comment_id: str = Field(..., alias="commentId", min_length=1)

# --- Workspaces ---

class WorkspaceCreate(WireModel):
    name: str = Field(..., min_length=1, max_length=50)

class WorkspaceDelete(WireModel):
    id: str = Field(..., min_length=1)

# --- Reminders ---

class ReminderCreate(WireModel):
    todo_id: str = Field(..., alias="todoId", min_length=1)
    todo_title: str = Field(..., alias="todoTitle", min_length=1)
    comments: List[str] = Field(default_factory=list)
    message: str = Field(..., min_length=1)

class ReminderStatusUpdate(WireModel):
    id: str = Field(..., min_length=1)
    status: ReminderStatus

class ReminderDelete(WireModel):
    id: str = Field(..., min_length=1)

# --- User settings ---

class UserSettingsPayload(WireModel):
    reminder_minutes: int = Field(..., alias="reminderMinutes", ge=1, le=10080)
    ai_suggested_reminders: bool = Field(..., alias="aiSuggestedReminders")
    weekly_review: bool = Field(..., alias="weeklyReview")
    timezone: str = Field(..., min_length=1)
    show_input_at_bottom: bool = Field(..., alias="showInputAtBottom")
