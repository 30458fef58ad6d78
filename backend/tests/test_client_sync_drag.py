import asyncio
from datetime import date
from unittest.mock import AsyncMock

from client.drag import (
    DragRescheduler,
    DropLocation,
    compute_new_due_date,
    format_drag_due_date,
    parse_droppable_id,
)
from client.models import Session, TodoItem
from client.remote import RemoteError
from client.store import TodoStore
from client.sync import PeriodicSync, content_fingerprint, dedupe_by_fingerprint, sync_with_server


def _wire(todo_id, title="Buy milk", completed=False, due=None, workspace="ws_1", urgency=1):
    return {
        "id": todo_id, "title": title, "completed": completed, "userId": "usr_1", "workspaceId": workspace,
        "dueDate": due, "urgency": urgency, "comments": [],
    }


def _store(remote, session=Session(user_id="usr_1", name="Ann")):
    return TodoStore(remote=remote, session=session)


def test_fingerprint_dedup_keeps_later_entry_in_first_position():
    first = TodoItem.from_wire(_wire("a", title="Buy Milk "))
    other = TodoItem.from_wire(_wire("b", title="Walk dog"))
    later = TodoItem.from_wire(_wire("c", title="buy milk"))
    assert content_fingerprint(first) == "buy milk__1"
    deduped = dedupe_by_fingerprint([first, other, later])
    assert [t.id for t in deduped] == ["c", "b"]


def test_sync_pushes_diffs_creates_missing_and_adopts_server_state():
    async def _run():
        remote = AsyncMock()
        remote.list_todos = AsyncMock(side_effect=[
            [_wire("a", completed=False), _wire("b", title="Walk dog")],
            [_wire("a", completed=True), _wire("b", title="Walk dog"), _wire("n", title="New one"), _wire("dup", title="walk dog")],
        ])
        store = _store(remote)
        store.todos = [
            TodoItem.from_wire(_wire("a", completed=True)),
            TodoItem.from_wire(_wire("b", title="Walk dog")),
            TodoItem.from_wire(_wire("temp-1", title="New one")),
        ]
        assert await sync_with_server(store) is True
        remote.update_todo.assert_awaited_once_with("a", completed=True)
        remote.create_todo.assert_awaited_once()
        assert remote.create_todo.await_args.args[0]["title"] == "New one"
        assert [t.id for t in store.todos] == ["a", "dup", "n"]

    asyncio.run(_run())


def test_sync_failure_leaves_local_state():
    async def _run():
        remote = AsyncMock()
        remote.list_todos = AsyncMock(side_effect=RemoteError("down"))
        store = _store(remote)
        store.todos = [TodoItem.from_wire(_wire("a"))]
        assert await sync_with_server(store) is False
        assert [t.id for t in store.todos] == ["a"]

        assert await sync_with_server(_store(remote, session=None)) is False

    asyncio.run(_run())


def test_periodic_sync_start_and_stop():
    async def _run():
        remote = AsyncMock()
        remote.list_todos = AsyncMock(return_value=[])
        periodic = PeriodicSync(_store(remote), interval_seconds=3600)
        periodic.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert periodic.running
        await periodic.stop()
        assert not periodic.running
        assert remote.list_todos.await_count >= 1

    asyncio.run(_run())


def test_drop_mapping():
    today = date(2024, 6, 1)
    assert parse_droppable_id("desktop-1") == ("desktop", 1)
    assert parse_droppable_id("tablet-x") == ("tablet", None)
    assert format_drag_due_date(compute_new_due_date(1, 3, today)) == "2024-06-04T00:00:00.000Z"
    assert format_drag_due_date(compute_new_due_date(2, 3, today)) == "2024-06-15T00:00:00.000Z"
    assert format_drag_due_date(compute_new_due_date(0, 2, today)) == "2024-06-01T00:00:00.000Z"
    assert format_drag_due_date(compute_new_due_date(1, 2, today)) == "2024-06-08T00:00:00.000Z"
    assert compute_new_due_date(0, 1, today) == today
    assert compute_new_due_date(5, 3, today) == date(2024, 6, 15)
    assert compute_new_due_date(-1, 3, today) == date(2024, 6, 15)
    assert compute_new_due_date(3, 2, today) == date(2024, 6, 8)
    assert compute_new_due_date(4, 1, today) == today


def test_drag_moves_locally_and_debounces_remote_write():
    async def _run():
        remote = AsyncMock()
        remote.update_todo = AsyncMock(return_value=_wire("a", due="2024-06-01T00:00:00.000Z", title="From server"))
        store = _store(remote)
        store.todos = [TodoItem.from_wire(_wire("a")), TodoItem.from_wire(_wire("b", title="Other"))]
        drag = DragRescheduler(store, debounce_seconds=0.01, today=lambda: date(2024, 6, 1))

        moved = drag.handle_drag_end("a", DropLocation("desktop-0", 0), DropLocation("desktop-1", 1))
        assert moved.due_date == "2024-06-04T00:00:00.000Z"
        assert [t.id for t in store.todos] == ["b", "a"]

        drag.handle_drag_end("a", DropLocation("desktop-1", 1), DropLocation("tablet-0", 0))
        assert store.todos[0].due_date == "2024-06-01T00:00:00.000Z"
        await drag.flush()
        remote.update_todo.assert_awaited_once_with("a", dueDate="2024-06-01T00:00:00.000Z")
        assert store.todos[0].title == "From server"
        await drag.close()

    asyncio.run(_run())


def test_drag_ignored_cases():
    async def _run():
        remote = AsyncMock()
        store = _store(remote)
        store.todos = [TodoItem.from_wire(_wire("a"))]
        drag = DragRescheduler(store, debounce_seconds=0, today=lambda: date(2024, 6, 1))
        source = DropLocation("desktop-0", 0)
        assert drag.handle_drag_end("a", source, None) is None
        assert drag.handle_drag_end("a", source, DropLocation("desktop-0", 0)) is None
        assert drag.handle_drag_end("a", source, DropLocation("desktop-1", 0), is_mobile=True) is None
        assert drag.handle_drag_end("zzz", source, DropLocation("desktop-1", 0)) is None
        assert drag.handle_drag_end("a", source, DropLocation("desktop-two", 0)) is None
        assert store.todos[0].due_date is None
        await drag.close()
        remote.update_todo.assert_not_called()

    asyncio.run(_run())


def test_drag_remote_failure_is_logged_only_and_close_cancels():
    async def _run():
        remote = AsyncMock()
        remote.update_todo = AsyncMock(side_effect=RemoteError("down"))
        store = _store(remote)
        store.todos = [TodoItem.from_wire(_wire("a"))]
        drag = DragRescheduler(store, debounce_seconds=0, today=lambda: date(2024, 6, 1))
        drag.handle_drag_end("a", DropLocation("desktop-0", 0), DropLocation("desktop-2", 0))
        await drag.flush()
        assert store.todos[0].due_date == "2024-06-15T00:00:00.000Z"

        slow = DragRescheduler(store, debounce_seconds=60, today=lambda: date(2024, 6, 1))
        slow.handle_drag_end("a", DropLocation("desktop-2", 0), DropLocation("desktop-0", 0))
        await slow.close()
        assert remote.update_todo.await_count == 1

    asyncio.run(_run())


def test_drags_of_different_todos_each_reach_the_server():
    async def _run():
        remote = AsyncMock()
        remote.update_todo = AsyncMock(side_effect=lambda todo_id, dueDate: _wire(todo_id, due=dueDate))
        store = _store(remote)
        store.todos = [TodoItem.from_wire(_wire("a")), TodoItem.from_wire(_wire("b", title="Other"))]
        drag = DragRescheduler(store, debounce_seconds=0.05, today=lambda: date(2024, 6, 1))

        drag.handle_drag_end("a", DropLocation("desktop-0", 0), DropLocation("desktop-2", 0))
        drag.handle_drag_end("b", DropLocation("desktop-0", 1), DropLocation("desktop-1", 0))
        await asyncio.sleep(0.2)
        await drag.flush()

        calls = sorted((c.args[0], c.kwargs["dueDate"]) for c in remote.update_todo.await_args_list)
        assert calls == [("a", "2024-06-15T00:00:00.000Z"), ("b", "2024-06-04T00:00:00.000Z")]
        assert store.get("a").due_date == "2024-06-15T00:00:00.000Z"
        await drag.close()

    asyncio.run(_run())


def test_close_cancels_pending_writes_for_every_todo():
    async def _run():
        remote = AsyncMock()
        store = _store(remote)
        store.todos = [TodoItem.from_wire(_wire("a")), TodoItem.from_wire(_wire("b", title="Other"))]
        drag = DragRescheduler(store, debounce_seconds=60, today=lambda: date(2024, 6, 1))
        drag.handle_drag_end("a", DropLocation("desktop-0", 0), DropLocation("desktop-2", 0))
        drag.handle_drag_end("b", DropLocation("desktop-0", 1), DropLocation("desktop-1", 0))
        await drag.close()
        remote.update_todo.assert_not_called()

    asyncio.run(_run())
