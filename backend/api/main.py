import uuid
import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from fastapi import FastAPI, Depends, HTTPException, Query, status, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, selectinload
from sqlalchemy import text, select, delete

import redis.asyncio as redis

from common.config import settings
from common.models import (
    Todo, Comment, User, Workspace, WorkspaceMember, Reminder, ReminderStatus, UserSettings,
)
from common.adapter import adapter
from common.conversation import ConversationStore
from common.dates import DateFormatError, to_utc_iso
from common.extraction import ExtractionEngine
from common.reminders import InvalidReminderTransition, ReminderFormatError, transition_status
from common.workspaces import (
    WorkspaceError, create_workspace as create_owned_workspace, delete_workspace as delete_owned_workspace,
    ensure_personal_workspace, ensure_user, get_user_plan, list_workspaces,
)
from api.auth import user_for_authorization
from api.mcp_server import mount_mcp
from api.schemas import (
    ParseTodoRequest, ConvertDateRequest, TodoCreate, TodoUpdate, TodoDelete, CommentCreate, CommentDelete,
    WorkspaceCreate, WorkspaceDelete, ReminderCreate, ReminderStatusUpdate, ReminderDelete, UserSettingsPayload,
)

logger = logging.getLogger(__name__)
app = FastAPI(title="Agenda API")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

# DB Setup
engine = create_async_engine(settings.DATABASE_URL, echo=settings.APP_ENV == "dev")
AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Redis Setup (conversation cache only; optional)
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True) if settings.REDIS_URL else None

async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

mcp_server = mount_mcp(app, AsyncSessionLocal)

# --- Middleware, Errors & Dependencies ---

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details: Dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query")]
        details[".".join(loc) or "body"] = err.get("msg", "Invalid value")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid request", "details": details})

async def get_authenticated_user(request: Request):
    user_id = user_for_authorization(request.headers.get("Authorization"))
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user_id

def _raise_workspace_error(exc: WorkspaceError):
    raise HTTPException(status_code=exc.status_code, detail=str(exc))

# --- Serialization ---

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None

def _author(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"name": user.name, "image": user.image}

def _comment_to_dict(comment: Comment, author: Optional[User] = None) -> Dict[str, Any]:
    return {
        "id": comment.id,
        "text": comment.text,
        "todoId": comment.todo_id,
        "userId": comment.user_id,
        "createdAt": _iso(comment.created_at),
        "user": _author(author),
    }

def _todo_to_dict(todo: Todo, with_comments: bool = True) -> Dict[str, Any]:
    return {
        "id": todo.id,
        "title": todo.title,
        "completed": bool(todo.completed),
        "userId": todo.user_id,
        "workspaceId": todo.workspace_id,
        "dueDate": todo.due_date,
        "urgency": todo.urgency,
        "createdAt": _iso(todo.created_at),
        "updatedAt": _iso(todo.updated_at),
        "comments": [_comment_to_dict(c, c.user) for c in todo.comments] if with_comments else [],
    }

def _workspace_to_dict(workspace: Workspace) -> Dict[str, Any]:
    return {
        "id": workspace.id,
        "name": workspace.name,
        "ownerId": workspace.owner_id,
        "createdAt": _iso(workspace.created_at),
        "updatedAt": _iso(workspace.updated_at),
    }

def _reminder_to_dict(reminder: Reminder) -> Dict[str, Any]:
    return {
        "id": reminder.id,
        "userId": reminder.user_id,
        "todoId": reminder.todo_id,
        "title": reminder.title,
        "description": reminder.description,
        "reminderTime": to_utc_iso(reminder.reminder_time),
        "message": reminder.message,
        "summary": reminder.summary,
        "status": reminder.status.value,
        "createdAt": _iso(reminder.created_at),
        "updatedAt": _iso(reminder.updated_at),
    }

def _settings_to_dict(row: UserSettings) -> Dict[str, Any]:
    return {
        "reminderMinutes": row.reminder_minutes,
        "aiSuggestedReminders": row.ai_suggested_reminders,
        "weeklyReview": row.weekly_review,
        "timezone": row.timezone,
        "showInputAtBottom": row.show_input_at_bottom,
    }

def _stored_urgency(value: float) -> int:
    # Half-up rounding into the integer column.
    return min(5, max(1, int(value + 0.5)))

# --- Shared lookups ---

async def _is_member(db: AsyncSession, user_id: str, workspace_id: str) -> bool:
    row = (await db.execute(
        select(WorkspaceMember).where(WorkspaceMember.workspace_id == workspace_id, WorkspaceMember.user_id == user_id)
    )).scalar_one_or_none()
    return row is not None

async def _load_todo(db: AsyncSession, user_id: str, todo_id: str, with_comments: bool = False) -> Optional[Todo]:
    stmt = select(Todo).where(Todo.id == todo_id, Todo.user_id == user_id)
    if with_comments:
        stmt = stmt.options(selectinload(Todo.comments).selectinload(Comment.user)).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()

async def _user_timezone(db: AsyncSession, user_id: str, fallback: str = "UTC") -> str:
    row = (await db.execute(select(UserSettings).where(UserSettings.user_id == user_id))).scalar_one_or_none()
    return row.timezone if row is not None and row.timezone else fallback

async def _workspace_context(db: AsyncSession, user_id: str, workspace_id: Optional[str]) -> List[Dict[str, Any]]:
    if not workspace_id:
        return []
    try:
        rows = (await db.execute(
            select(Todo)
            .where(Todo.workspace_id == workspace_id, Todo.user_id == user_id)
            .order_by(Todo.created_at.desc())
            .limit(settings.EXTRACT_WORKSPACE_CONTEXT_LIMIT)
        )).scalars().all()
    except SQLAlchemyError as exc:
        logger.warning("workspace context unavailable: %s", type(exc).__name__)
        return []
    return [{"title": t.title, "urgency": t.urgency, "due_date": t.due_date} for t in rows]

async def _is_pro(db: AsyncSession, user_id: str) -> bool:
    try:
        return await get_user_plan(db, user_id) == "pro"
    except SQLAlchemyError as exc:
        logger.warning("plan lookup failed, using standard model: %s", type(exc).__name__)
        return False

def _extraction_engine() -> ExtractionEngine:
    async def _complete(system: str, message: str, pro: bool) -> str:
        return await adapter.extract_turn(system, message, pro=pro)

    return ExtractionEngine(
        complete=_complete,
        resolve_date=adapter.resolve_date_text,
        store=ConversationStore(redis_client),
        loop_threshold=settings.EXTRACT_LOOP_THRESHOLD,
    )

# --- Health Endpoints ---

@app.get("/health/live")
async def health_live():
    return {"status": "ok"}

@app.get("/health/ready")
async def health_ready(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
        if redis_client is not None:
            await redis_client.ping()
    except Exception:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Infrastructure unreachable")
    return {"status": "ready"}

# --- Extraction & Dates ---

@app.post("/v1/parse-todo")
async def parse_todo(payload: ParseTodoRequest, user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    workspace_todos = await _workspace_context(db, user_id, payload.workspace_id)
    pro = await _is_pro(db, user_id)
    try:
        return await _extraction_engine().process_turn(
            message=payload.message,
            conversation_id=payload.conversation_id,
            collected_values=payload.collected_values,
            pending_fields=payload.pending_fields,
            current_field=payload.current_field,
            field_attempts=payload.field_attempts,
            workspace_todos=workspace_todos,
            pro=pro,
        )
    except Exception:
        logger.exception("parse-todo failed for conversation %s", payload.conversation_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to process todo")

@app.post("/v1/convert-date")
async def convert_date(request: Request, payload: ConvertDateRequest, user_id: str = Depends(get_authenticated_user)):
    tz_name = payload.timezone or request.headers.get("X-Timezone") or "UTC"
    try:
        conversion = await adapter.convert_date(payload.text, tz_name)
    except DateFormatError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid response format")
    except Exception:
        logger.exception("convert-date failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to convert date/time")
    return conversion.to_dict()

# --- Todos ---

@app.get("/v1/todos")
async def list_todos(workspace_id: Optional[str] = Query(None, alias="workspaceId"), user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    stmt = (
        select(Todo)
        .where(Todo.user_id == user_id)
        .options(selectinload(Todo.comments).selectinload(Comment.user))
        .order_by(Todo.created_at.asc())
    )
    if workspace_id:
        stmt = stmt.where(Todo.workspace_id == workspace_id)
    todos = (await db.execute(stmt)).scalars().all()
    return [_todo_to_dict(t) for t in todos]

@app.post("/v1/todos")
async def create_todo(payload: TodoCreate, user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    workspace_id = payload.workspace_id
    if workspace_id:
        if not await _is_member(db, user_id, workspace_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")
    else:
        personal, _ = await ensure_personal_workspace(db, user_id)
        workspace_id = personal.id
    now = utc_now()
    todo = Todo(
        id=str(uuid.uuid4()), title=payload.title, user_id=user_id, workspace_id=workspace_id, completed=False,
        due_date=payload.due_date or None, urgency=_stored_urgency(payload.urgency), created_at=now, updated_at=now,
    )
    db.add(todo)
    await db.commit()
    return _todo_to_dict(todo, with_comments=False)

@app.put("/v1/todos")
async def update_todo(payload: TodoUpdate, user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    todo = await _load_todo(db, user_id, payload.id)
    if todo is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    fields = payload.model_fields_set
    if "completed" in fields and payload.completed is not None:
        todo.completed = payload.completed
    if "due_date" in fields:
        todo.due_date = payload.due_date
    if "workspace_id" in fields:
        if payload.workspace_id and not await _is_member(db, user_id, payload.workspace_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")
        todo.workspace_id = payload.workspace_id
    todo.updated_at = utc_now()
    await db.commit()
    refreshed = await _load_todo(db, user_id, payload.id, with_comments=True)
    return _todo_to_dict(refreshed)

@app.delete("/v1/todos")
async def delete_todo(payload: TodoDelete, user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    await db.execute(delete(Todo).where(Todo.id == payload.id, Todo.user_id == user_id))
    await db.commit()
    return {"success": True}

@app.post("/v1/todos/comments")
async def create_comment(payload: CommentCreate, user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    if await _load_todo(db, user_id, payload.todo_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    comment = Comment(id=str(uuid.uuid4()), text=payload.text, todo_id=payload.todo_id, user_id=user_id, created_at=utc_now())
    db.add(comment)
    await db.commit()
    author = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    return _comment_to_dict(comment, author)

@app.delete("/v1/todos/comments")
async def delete_comment(payload: CommentDelete, user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    await db.execute(
        delete(Comment).where(Comment.id == payload.comment_id, Comment.todo_id == payload.todo_id, Comment.user_id == user_id)
    )
    await db.commit()
    return {"success": True}

# --- Workspaces ---

@app.get("/v1/workspaces")
async def get_workspaces(user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    return [_workspace_to_dict(w) for w in await list_workspaces(db, user_id)]

@app.post("/v1/workspaces")
async def post_workspace(payload: WorkspaceCreate, user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    try:
        workspace = await create_owned_workspace(db, user_id, payload.name)
    except WorkspaceError as exc:
        _raise_workspace_error(exc)
    return _workspace_to_dict(workspace)

@app.delete("/v1/workspaces")
async def remove_workspace(payload: WorkspaceDelete, user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    try:
        await delete_owned_workspace(db, user_id, payload.id)
    except WorkspaceError as exc:
        _raise_workspace_error(exc)
    return {"success": True}

@app.post("/v1/workspaces/personal")
async def personal_workspace(user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    workspace, _ = await ensure_personal_workspace(db, user_id)
    return _workspace_to_dict(workspace)

# --- Reminders ---

@app.get("/v1/reminders")
async def list_reminders(
    status_filter: Optional[ReminderStatus] = Query(None, alias="status"),
    user_id: str = Depends(get_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Reminder).where(Reminder.user_id == user_id).order_by(Reminder.reminder_time.asc())
    if status_filter is not None:
        stmt = stmt.where(Reminder.status == status_filter)
    return [_reminder_to_dict(r) for r in (await db.execute(stmt)).scalars().all()]

@app.post("/v1/reminders")
async def create_reminder(payload: ReminderCreate, user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    if await _load_todo(db, user_id, payload.todo_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    tz_name = await _user_timezone(db, user_id)
    try:
        details = await adapter.generate_reminder_details(payload.todo_title, payload.comments, payload.message, tz_name)
        reminder_time = await adapter.resolve_reminder_time(details.time_text, tz_name)
    except (ReminderFormatError, DateFormatError, ValueError) as exc:
        logger.warning("reminder generation rejected: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    except Exception:
        logger.exception("reminder generation failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create reminder")
    now = utc_now()
    reminder = Reminder(
        id=str(uuid.uuid4()), user_id=user_id, todo_id=payload.todo_id, title=details.title,
        description=details.description, reminder_time=reminder_time, message=payload.message,
        summary=details.summary, status=ReminderStatus.pending, created_at=now, updated_at=now,
    )
    db.add(reminder)
    await db.commit()
    logger.info("Reminder %s scheduled for %s", reminder.id, to_utc_iso(reminder_time))
    return _reminder_to_dict(reminder)

@app.patch("/v1/reminders")
async def update_reminder(payload: ReminderStatusUpdate, user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    reminder = (await db.execute(
        select(Reminder).where(Reminder.id == payload.id, Reminder.user_id == user_id)
    )).scalar_one_or_none()
    if reminder is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reminder not found")
    try:
        reminder.status = transition_status(reminder.status, payload.status)
    except InvalidReminderTransition as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    reminder.updated_at = utc_now()
    await db.commit()
    return _reminder_to_dict(reminder)

@app.delete("/v1/reminders")
async def delete_reminder(payload: ReminderDelete, user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    reminder = (await db.execute(
        select(Reminder).where(Reminder.id == payload.id, Reminder.user_id == user_id)
    )).scalar_one_or_none()
    if reminder is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reminder not found")
    await db.delete(reminder)
    await db.commit()
    return _reminder_to_dict(reminder)

# --- User Settings ---

@app.get("/v1/user/settings")
async def get_user_settings(request: Request, user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    row = (await db.execute(select(UserSettings).where(UserSettings.user_id == user_id))).scalar_one_or_none()
    if row is None:
        return {
            "reminderMinutes": 30,
            "aiSuggestedReminders": False,
            "weeklyReview": False,
            "timezone": request.headers.get("X-Timezone") or "UTC",
            "showInputAtBottom": False,
        }
    return _settings_to_dict(row)

@app.post("/v1/user/settings")
async def save_user_settings(payload: UserSettingsPayload, user_id: str = Depends(get_authenticated_user), db: AsyncSession = Depends(get_db)):
    row = (await db.execute(select(UserSettings).where(UserSettings.user_id == user_id))).scalar_one_or_none()
    now = utc_now()
    if row is None:
        await ensure_user(db, user_id)
        row = UserSettings(user_id=user_id, created_at=now)
        db.add(row)
    row.reminder_minutes = payload.reminder_minutes
    row.ai_suggested_reminders = payload.ai_suggested_reminders
    row.weekly_review = payload.weekly_review
    row.timezone = payload.timezone
    row.show_input_at_bottom = payload.show_input_at_bottom
    row.updated_at = now
    await db.commit()
    return _settings_to_dict(row)
