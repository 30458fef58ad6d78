import asyncio
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from mcp.server.fastmcp.exceptions import ToolError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.main import app
from api.mcp_server import (
    _request_user,
    add_comment_for_user,
    add_todo_for_user,
    build_mcp_server,
    complete_todo_for_user,
)
from common.models import Base, Comment, Todo, User, Workspace


async def _session():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def _seed_todo(db, user_id="usr_a", title="Write tests"):
    now = datetime.now(timezone.utc)
    if (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none() is None:
        db.add(User(id=user_id, name="Ann"))
    todo = Todo(
        id=str(uuid.uuid4()), title=title, user_id=user_id, completed=False, urgency=1,
        created_at=now, updated_at=now,
    )
    db.add(todo)
    await db.commit()
    return todo.id


def test_add_todo_tool_uses_personal_workspace():
    async def _run():
        engine, Session = await _session()
        try:
            async with Session() as db:
                message = await add_todo_for_user(db, "usr_a", "Call the bank", "2025-04-22", "09:30", 4)
                assert message == 'Todo "Call the bank" added with due date 2025-04-22T09:30:00.000Z and urgency 4'

                todo = (await db.execute(select(Todo))).scalar_one()
                workspace = (await db.execute(select(Workspace))).scalar_one()
                assert workspace.name == "Personal"
                assert todo.workspace_id == workspace.id
                assert todo.urgency == 4
                assert todo.completed is False

                await add_todo_for_user(db, "usr_a", "Second", "2025-04-23", "10:00", 1)
                assert len((await db.execute(select(Workspace))).scalars().all()) == 1
        finally:
            await engine.dispose()

    asyncio.run(_run())


def test_add_todo_tool_rejects_bad_input():
    async def _run():
        engine, Session = await _session()
        try:
            async with Session() as db:
                with pytest.raises(ToolError):
                    await add_todo_for_user(db, "usr_a", "Call", "next week", "09:30", 3)
                with pytest.raises(ToolError):
                    await add_todo_for_user(db, "usr_a", "   ", "2025-04-22", "09:30", 3)
                with pytest.raises(ToolError):
                    await add_todo_for_user(db, "usr_a", "Call", "2025-04-22", "09:30", 9)
                assert (await db.execute(select(Todo))).scalars().all() == []
        finally:
            await engine.dispose()

    asyncio.run(_run())


def test_complete_todo_tool_only_touches_own_todos():
    async def _run():
        engine, Session = await _session()
        try:
            async with Session() as db:
                todo_id = await _seed_todo(db)
                with pytest.raises(ToolError, match="not found"):
                    await complete_todo_for_user(db, "usr_b", todo_id)
                with pytest.raises(ToolError, match="Invalid todo id"):
                    await complete_todo_for_user(db, "usr_a", "not-a-uuid")

                assert await complete_todo_for_user(db, "usr_a", todo_id) == "Todo marked as complete"
                todo = (await db.execute(
                    select(Todo).where(Todo.id == todo_id).execution_options(populate_existing=True)
                )).scalar_one()
                assert todo.completed is True
        finally:
            await engine.dispose()

    asyncio.run(_run())


def test_add_comment_tool():
    async def _run():
        engine, Session = await _session()
        try:
            async with Session() as db:
                todo_id = await _seed_todo(db)
                assert await add_comment_for_user(db, "usr_a", todo_id, " Done soon ") == "Comment added"
                comment = (await db.execute(select(Comment))).scalar_one()
                assert comment.text == "Done soon"
                assert comment.user_id == "usr_a"

                with pytest.raises(ToolError, match="not found"):
                    await add_comment_for_user(db, "usr_b", todo_id, "Not mine")
                with pytest.raises(ToolError):
                    await add_comment_for_user(db, "usr_a", todo_id, "x" * 1001)
                assert len((await db.execute(select(Comment))).scalars().all()) == 1
        finally:
            await engine.dispose()

    asyncio.run(_run())


def test_server_registers_three_tools():
    async def _run():
        server = build_mcp_server(lambda: None)
        tools = await server.list_tools()
        assert sorted(t.name for t in tools) == ["add_comment", "add_todo", "complete_todo"]

    asyncio.run(_run())


def test_request_user_reads_bearer_token():
    def _ctx(headers):
        return SimpleNamespace(request_context=SimpleNamespace(request=SimpleNamespace(headers=headers)))

    assert _request_user(_ctx({"Authorization": "Bearer alice_token"})) == "usr_alice"
    with pytest.raises(ToolError, match="Unauthorized"):
        _request_user(_ctx({"Authorization": "Bearer wrong"}))


def test_mcp_endpoint_requires_bearer_token():
    async def _run():
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.post("/mcp/", json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    asyncio.run(_run())
