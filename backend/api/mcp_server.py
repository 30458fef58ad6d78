"""MCP tools for agents: add a todo, complete a todo, comment on a todo.

Mounted under ``/mcp`` on the API app and guarded by the same bearer tokens.
"""
import contextlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Annotated, Callable

from fastapi import FastAPI
from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field, ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import Headers
from starlette.responses import JSONResponse

from api.auth import user_for_authorization
from api.schemas import CommentCreate, TodoCreate
from common.dates import to_utc_iso
from common.models import Comment, Todo
from common.workspaces import ensure_personal_workspace

logger = logging.getLogger(__name__)

TodoId = Annotated[str, Field(description="Todo id (UUID)")]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _check_todo_id(todo_id: str) -> str:
    try:
        return str(uuid.UUID(todo_id))
    except (TypeError, ValueError):
        raise ToolError("Invalid todo id")


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())


async def add_todo_for_user(db: AsyncSession, user_id: str, name: str, date: str, time: str, urgency: int) -> str:
    try:
        due = datetime.fromisoformat(f"{date.strip()}T{time.strip()}")
    except ValueError:
        raise ToolError(f"Invalid date or time: {date!r} {time!r}")
    try:
        payload = TodoCreate(title=name, dueDate=to_utc_iso(due), urgency=urgency)
    except ValidationError as e:
        raise ToolError(_validation_message(e))

    try:
        workspace, _ = await ensure_personal_workspace(db, user_id)
        now = _utc_now()
        db.add(Todo(
            id=str(uuid.uuid4()), title=payload.title, user_id=user_id, workspace_id=workspace.id, completed=False,
            due_date=payload.due_date, urgency=int(payload.urgency), created_at=now, updated_at=now,
        ))
        await db.commit()
    except SQLAlchemyError:
        logger.exception(f"Error adding todo for {user_id}")
        raise ToolError("Failed to add todo")
    return f'Todo "{payload.title}" added with due date {payload.due_date} and urgency {urgency}'


async def complete_todo_for_user(db: AsyncSession, user_id: str, todo_id: str) -> str:
    todo_id = _check_todo_id(todo_id)
    try:
        result = await db.execute(
            update(Todo)
            .where(Todo.id == todo_id, Todo.user_id == user_id)
            .values(completed=True, updated_at=_utc_now())
        )
        await db.commit()
    except SQLAlchemyError:
        logger.exception(f"Error completing todo {todo_id}")
        raise ToolError("Failed to complete todo")
    if not result.rowcount:
        raise ToolError("Todo not found or unauthorized")
    return "Todo marked as complete"


async def add_comment_for_user(db: AsyncSession, user_id: str, todo_id: str, text: str) -> str:
    todo_id = _check_todo_id(todo_id)
    try:
        payload = CommentCreate(todoId=todo_id, text=text)
    except ValidationError as e:
        raise ToolError(_validation_message(e))
    try:
        todo = (await db.execute(
            select(Todo).where(Todo.id == todo_id, Todo.user_id == user_id)
        )).scalar_one_or_none()
        if todo is None:
            raise ToolError("Todo not found or unauthorized")
        db.add(Comment(id=str(uuid.uuid4()), text=payload.text, todo_id=todo_id, user_id=user_id, created_at=_utc_now()))
        await db.commit()
    except SQLAlchemyError:
        logger.exception(f"Error adding comment to {todo_id}")
        raise ToolError("Failed to add comment")
    return "Comment added"


def _request_user(ctx: Context) -> str:
    request = ctx.request_context.request
    user_id = user_for_authorization(request.headers.get("Authorization") if request is not None else None)
    if user_id is None:
        raise ToolError("Unauthorized")
    return user_id


def build_mcp_server(session_factory: Callable[[], AsyncSession]) -> FastMCP:
    server = FastMCP("agenda", stateless_http=True, streamable_http_path="/")

    @server.tool(description="Add a new todo with name, date, time, and urgency")
    async def add_todo(
        name: Annotated[str, Field(min_length=1, max_length=500)],
        date: Annotated[str, Field(description="YYYY-MM-DD")],
        time: Annotated[str, Field(description="HH:MM")],
        urgency: Annotated[int, Field(ge=1, le=5)],
        ctx: Context,
    ) -> str:
        async with session_factory() as db:
            return await add_todo_for_user(db, _request_user(ctx), name, date, time, urgency)

    @server.tool(description="Mark a todo as complete")
    async def complete_todo(todoId: TodoId, ctx: Context) -> str:
        async with session_factory() as db:
            return await complete_todo_for_user(db, _request_user(ctx), todoId)

    @server.tool(description="Add a comment to a todo")
    async def add_comment(
        todoId: TodoId,
        text: Annotated[str, Field(min_length=1, max_length=1000)],
        ctx: Context,
    ) -> str:
        async with session_factory() as db:
            return await add_comment_for_user(db, _request_user(ctx), todoId, text)

    return server


class BearerAuthApp:
    """Rejects HTTP requests without an accepted bearer token before they reach the MCP transport."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            headers = Headers(scope=scope)
            if user_for_authorization(headers.get("authorization")) is None:
                response = JSONResponse({"error": "Unauthorized"}, status_code=401)
                await response(scope, receive, send)
                return
        await self.app(scope, receive, send)


def mount_mcp(app: FastAPI, session_factory: Callable[[], AsyncSession], path: str = "/mcp") -> FastMCP:
    server = build_mcp_server(session_factory)
    # streamable_http_app() creates the session manager the lifespan runs.
    app.mount(path, BearerAuthApp(server.streamable_http_app()))

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI):
        async with server.session_manager.run():
            yield

    app.router.lifespan_context = lifespan
    return server
