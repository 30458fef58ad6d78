import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from client.config import client_settings
from client.models import TodoItem
from client.store import TodoStore

logger = logging.getLogger(__name__)


def content_fingerprint(todo: TodoItem) -> str:
    urgency = todo.urgency or 1
    return f"{todo.title.strip().lower()}_{todo.due_date or ''}_{urgency:g}"


def dedupe_by_fingerprint(todos: Iterable[TodoItem]) -> List[TodoItem]:
    """Collapse todos with the same fingerprint.

    A later duplicate replaces the earlier one but keeps its position, so two
    genuinely distinct todos with identical title/date/urgency also collapse.
    """
    unique: Dict[str, TodoItem] = {}
    for todo in todos:
        unique[content_fingerprint(todo)] = todo
    return list(unique.values())


def _changed_fields(local: TodoItem, remote: TodoItem) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    if local.completed != remote.completed:
        changes["completed"] = local.completed
    if local.due_date != remote.due_date:
        changes["dueDate"] = local.due_date
    if local.workspace_id != remote.workspace_id:
        changes["workspaceId"] = local.workspace_id
    return changes


async def sync_with_server(store: TodoStore) -> bool:
    """Push local differences to the server, then adopt the server's list."""
    if not store.authenticated:
        return False
    remote = store.remote
    try:
        server_todos = {t.id: t for t in (TodoItem.from_wire(row) for row in await remote.list_todos())}

        writes = []
        for todo in store.todos:
            existing = server_todos.get(todo.id)
            if existing is None:
                writes.append(remote.create_todo({
                    "title": todo.title,
                    "dueDate": todo.due_date,
                    "urgency": todo.urgency,
                    "workspaceId": todo.workspace_id,
                }))
                continue
            changes = _changed_fields(todo, existing)
            if changes:
                writes.append(remote.update_todo(todo.id, **changes))
        if writes:
            await asyncio.gather(*writes)

        refreshed = [TodoItem.from_wire(row) for row in await remote.list_todos()]
    except Exception as e:
        logger.error(f"Sync with server failed: {e}")
        return False

    store.todos = dedupe_by_fingerprint(refreshed)
    logger.info(f"Synced {len(store.todos)} todos")
    return True


class PeriodicSync:
    """Runs ``sync_with_server`` once on start and then on a fixed interval."""

    def __init__(self, store: TodoStore, interval_seconds: Optional[float] = None):
        self.store = store
        self.interval = interval_seconds or client_settings.CLIENT_SYNC_INTERVAL_SECONDS
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            await sync_with_server(self.store)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
