import asyncio
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Dict, Optional, Tuple

from client.config import client_settings
from client.models import TodoItem, now_utc
from client.store import TodoStore

logger = logging.getLogger(__name__)

COLUMN_COUNTS = {"desktop": 3, "tablet": 2}

# Days added to today, by column, for each layout width.
_COLUMN_OFFSETS = {
    3: (0, 3, 14),
    2: (0, 7),
    1: (0,),
}


@dataclass
class DropLocation:
    droppable_id: str
    index: int


def parse_droppable_id(droppable_id: str) -> Tuple[str, Optional[int]]:
    """Split ``desktop-2`` into ("desktop", 2); the index is None if not an integer."""
    prefix, _, raw = droppable_id.rpartition("-")
    if not prefix:
        return droppable_id, None
    try:
        return prefix, int(raw)
    except ValueError:
        return prefix, None


def column_count(prefix: str) -> int:
    return COLUMN_COUNTS.get(prefix, 1)


def compute_new_due_date(column_index: int, columns: int, today: date) -> date:
    offsets = _COLUMN_OFFSETS.get(columns, (0,))
    # Anything past the known columns lands in the last one.
    if not 0 <= column_index < len(offsets):
        column_index = len(offsets) - 1
    return today + timedelta(days=offsets[column_index])


def format_drag_due_date(day: date) -> str:
    # Local calendar date rendered as UTC midnight.
    return f"{day.isoformat()}T00:00:00.000Z"


class DragRescheduler:
    """Moves todos between date columns and writes the new due date lazily.

    The local list changes on every drop. Each todo's remote write waits for
    the debounce delay and is dropped if another drop of the same todo
    arrives first. Writes for different todos never cancel each other.
    """

    def __init__(
        self,
        store: TodoStore,
        debounce_seconds: Optional[float] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.store = store
        self.debounce = client_settings.CLIENT_DRAG_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self._today = today or date.today
        self._generations: Dict[str, int] = {}
        self._pending: Dict[str, asyncio.Task] = {}

    def handle_drag_end(
        self,
        todo_id: str,
        source: DropLocation,
        destination: Optional[DropLocation],
        is_mobile: bool = False,
    ) -> Optional[TodoItem]:
        if is_mobile or destination is None:
            return None
        if destination.droppable_id == source.droppable_id and destination.index == source.index:
            return None
        todo = self.store.get(todo_id)
        if todo is None:
            return None
        prefix, column_index = parse_droppable_id(destination.droppable_id)
        if column_index is None:
            logger.warning(f"Invalid column index in droppable id {destination.droppable_id!r}")
            return None

        new_day = compute_new_due_date(column_index, column_count(prefix), self._today())
        updated = todo.copy()
        updated.due_date = format_drag_due_date(new_day)
        updated.updated_at = now_utc()

        self.store.remove_todo(todo_id)
        position = max(0, min(destination.index, len(self.store.todos)))
        self.store.todos.insert(position, updated)

        if self.store.authenticated:
            self._schedule(todo_id, updated.due_date)
        return updated

    def _schedule(self, todo_id: str, due_date: str) -> None:
        generation = self._generations.get(todo_id, 0) + 1
        self._generations[todo_id] = generation
        previous = self._pending.get(todo_id)
        if previous is not None and not previous.done():
            previous.cancel()
        self._pending[todo_id] = asyncio.create_task(self._write(generation, todo_id, due_date))

    async def _write(self, generation: int, todo_id: str, due_date: str) -> None:
        await asyncio.sleep(self.debounce)
        if generation != self._generations.get(todo_id):
            return
        try:
            data: Dict = await self.store.remote.update_todo(todo_id, dueDate=due_date)
        except Exception as e:
            logger.error(f"Failed to save drag reschedule for {todo_id}: {e}")
            return
        finally:
            if self._pending.get(todo_id) is asyncio.current_task():
                del self._pending[todo_id]
        self.store.replace_todo(todo_id, TodoItem.from_wire(data))

    async def flush(self) -> None:
        """Wait for every pending write."""
        for task in list(self._pending.values()):
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def close(self) -> None:
        tasks, self._pending = list(self._pending.values()), {}
        self._generations.clear()
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
