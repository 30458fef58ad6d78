import logging
import random
import string
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from client.commands import OptimisticCommand, Notify, run_command
from client.models import (
    LOCAL_USER_ID,
    PERSONAL_PLACEHOLDER,
    CommentItem,
    Session,
    TodoItem,
    WorkspaceItem,
    now_utc,
    parse_timestamp,
)
from client.remote import AgendaRemote, WorkspaceLimitError
from common.extraction import finalize_todo_values
from common.reminders import encode_reminder_comment, is_reminder_command
from common.models import PERSONAL_WORKSPACE_NAME

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def _base36(length: int) -> str:
    return "".join(random.choice(_BASE36) for _ in range(length))


def temp_id(uuid_factory: Callable[[], Any] = uuid.uuid4) -> str:
    try:
        return f"temp-{uuid_factory()}"
    except Exception:
        # No usable uuid source; a timestamp plus random suffix is unique enough locally.
        return f"temp-{int(time.time() * 1000)}-{_base36(9)}"


class TodoStore:
    """Client-side todo state with optimistic writes against the Agenda API.

    Every mutation is applied locally first. When a session exists the remote
    call follows, and on failure exactly that local change is undone. Only the
    workspace plan limit escapes as an exception.
    """

    def __init__(
        self,
        remote: Optional[AgendaRemote] = None,
        session: Optional[Session] = None,
        notify: Optional[Notify] = None,
    ):
        self.remote = remote or AgendaRemote()
        self.session = session
        self.notify = notify
        self.todos: List[TodoItem] = []
        self.workspaces: List[WorkspaceItem] = []
        self.current_workspace_id: str = PERSONAL_PLACEHOLDER

    @property
    def authenticated(self) -> bool:
        return self.session is not None

    def _notify(self, level: str, message: str) -> None:
        if self.notify:
            self.notify(level, message)

    def _run(self, cmd: OptimisticCommand):
        if not self.authenticated:
            cmd.remote = None
        return run_command(cmd, self._notify)

    def _index_of(self, todo_id: str) -> int:
        for i, todo in enumerate(self.todos):
            if todo.id == todo_id:
                return i
        return -1

    def get(self, todo_id: str) -> Optional[TodoItem]:
        idx = self._index_of(todo_id)
        return self.todos[idx] if idx >= 0 else None

    def replace_todo(self, todo_id: str, record: TodoItem) -> None:
        idx = self._index_of(todo_id)
        if idx >= 0:
            self.todos[idx] = record

    def remove_todo(self, todo_id: str) -> Optional[TodoItem]:
        idx = self._index_of(todo_id)
        if idx < 0:
            return None
        return self.todos.pop(idx)

    def _current_workspace_for_write(self) -> Optional[str]:
        if self.current_workspace_id == PERSONAL_PLACEHOLDER:
            return None
        return self.current_workspace_id

    # --- Todos ---

    async def add_todo(self, title: str, due_date: Optional[str] = None, urgency: float = 1.0) -> TodoItem:
        now = now_utc()
        local = TodoItem(
            id=temp_id(),
            title=title,
            user_id=self.session.user_id if self.session else LOCAL_USER_ID,
            completed=False,
            workspace_id=self._current_workspace_for_write(),
            due_date=due_date,
            urgency=urgency,
            created_at=now,
            updated_at=now,
            comments=[],
        )

        saved: List[TodoItem] = []

        def on_success(data: Dict[str, Any]) -> None:
            record = TodoItem.from_wire(data)
            record.comments = []
            self.replace_todo(local.id, record)
            saved.append(record)

        await self._run(OptimisticCommand(
            name="add_todo",
            apply=lambda: self.todos.append(local),
            revert=lambda: self.remove_todo(local.id),
            remote=lambda: self.remote.create_todo({
                "title": local.title,
                "dueDate": local.due_date,
                "urgency": local.urgency,
                "workspaceId": local.workspace_id,
            }),
            on_success=on_success,
            failure_message="Failed to add todo",
        ))
        return saved[0] if saved else local

    async def add_parsed_todo(self, values: Dict[str, str]) -> TodoItem:
        """Create a todo from completed extraction values."""
        fields = finalize_todo_values(values)
        return await self.add_todo(fields["title"], fields["due_date"], fields["urgency"])

    async def toggle_todo(self, todo_id: str) -> bool:
        todo = self.get(todo_id)
        if todo is None:
            logger.warning(f"toggle_todo: unknown todo {todo_id}")
            return False
        previous = todo.completed
        previous_updated_at = todo.updated_at

        def apply() -> None:
            todo.completed = not previous
            todo.updated_at = now_utc()

        def revert() -> None:
            current = self.get(todo_id)
            if current is not None:
                current.completed = previous
                current.updated_at = previous_updated_at

        return await self._run(OptimisticCommand(
            name="toggle_todo",
            apply=apply,
            revert=revert,
            remote=lambda: self.remote.update_todo(todo_id, completed=not previous),
            on_success=lambda data: self.replace_todo(todo_id, TodoItem.from_wire(data)),
            failure_message="Failed to update todo",
        ))

    async def reschedule_todo(self, todo_id: str, new_date: str) -> bool:
        todo = self.get(todo_id)
        if todo is None:
            logger.warning(f"reschedule_todo: unknown todo {todo_id}")
            return False
        previous = todo.due_date
        previous_updated_at = todo.updated_at

        def apply() -> None:
            todo.due_date = new_date
            todo.updated_at = now_utc()

        def revert() -> None:
            current = self.get(todo_id)
            if current is not None:
                current.due_date = previous
                current.updated_at = previous_updated_at

        def on_success(data: Dict[str, Any]) -> None:
            record = TodoItem.from_wire(data)
            if record.due_date != new_date:
                logger.warning(f"Server returned due date {record.due_date!r} for {todo_id}, expected {new_date!r}")
                return
            self.replace_todo(todo_id, record)

        return await self._run(OptimisticCommand(
            name="reschedule_todo",
            apply=apply,
            revert=revert,
            remote=lambda: self.remote.update_todo(todo_id, dueDate=new_date),
            on_success=on_success,
            failure_message="Failed to reschedule todo",
        ))

    async def delete_todo(self, todo_id: str) -> bool:
        todo = self.get(todo_id)
        if todo is None:
            return False

        return await self._run(OptimisticCommand(
            name="delete_todo",
            apply=lambda: self.remove_todo(todo_id),
            revert=lambda: self.todos.append(todo),
            remote=lambda: self.remote.delete_todo(todo_id),
            failure_message="Failed to delete todo",
        ))

    def visible_todos(self, show_completed: bool = True) -> List[TodoItem]:
        current = self.current_workspace_id
        personal_ids = {w.id for w in self.workspaces if w.name == PERSONAL_WORKSPACE_NAME}
        is_personal = current == PERSONAL_PLACEHOLDER or current in personal_ids

        def in_current(todo: TodoItem) -> bool:
            if todo.workspace_id is None:
                return is_personal
            return todo.workspace_id == current

        return [t for t in self.todos if in_current(t) and (show_completed or not t.completed)]

    # --- Comments ---

    def _comment_author(self) -> Dict[str, Any]:
        if self.session is None:
            return {"id": LOCAL_USER_ID, "name": "Local User", "image": None}
        return {"id": self.session.user_id, "name": self.session.name or "User", "image": self.session.image}

    async def add_comment(self, todo_id: str, text: str) -> Optional[CommentItem]:
        todo = self.get(todo_id)
        if todo is None:
            logger.warning(f"add_comment: unknown todo {todo_id}")
            return None
        if self.authenticated and is_reminder_command(text.strip()):
            # The reminder flow records its own comment.
            if await self.add_reminder(todo_id, text.strip()) is None:
                return None
            current = self.get(todo_id)
            return current.comments[-1] if current and current.comments else None
        author = self._comment_author()
        local = CommentItem(
            id=temp_id(),
            text=text,
            todo_id=todo_id,
            user_id=author["id"],
            created_at=now_utc(),
            user=author,
        )

        def revert() -> None:
            current = self.get(todo_id)
            if current is not None:
                current.comments = [c for c in current.comments if c.id != local.id]

        def on_success(data: Dict[str, Any]) -> None:
            saved = CommentItem.from_wire(data)
            saved.created_at = parse_timestamp(data.get("createdAt")) or local.created_at
            current = self.get(todo_id)
            if current is None:
                return
            current.comments = [saved if c.id == local.id else c for c in current.comments]

        await self._run(OptimisticCommand(
            name="add_comment",
            apply=lambda: todo.comments.append(local),
            revert=revert,
            remote=lambda: self.remote.add_comment(todo_id, text),
            on_success=on_success,
            failure_message="Failed to add comment",
        ))
        return local

    async def delete_comment(self, todo_id: str, comment_id: str) -> bool:
        todo = self.get(todo_id)
        if todo is None:
            return False
        comment = next((c for c in todo.comments if c.id == comment_id), None)
        if comment is None:
            return False

        def apply() -> None:
            todo.comments = [c for c in todo.comments if c.id != comment_id]

        def revert() -> None:
            current = self.get(todo_id)
            if current is not None:
                current.comments.append(comment)

        return await self._run(OptimisticCommand(
            name="delete_comment",
            apply=apply,
            revert=revert,
            remote=lambda: self.remote.delete_comment(todo_id, comment_id),
            failure_message="Failed to delete comment",
        ))

    # --- Reminders ---

    async def add_reminder(self, todo_id: str, message: str) -> Optional[Dict[str, Any]]:
        """Schedule a reminder for a todo and record it as a comment."""
        todo = self.get(todo_id)
        if todo is None or not self.authenticated:
            self._notify("error", "Sign in to set reminders")
            return None
        try:
            reminder = await self.remote.create_reminder(
                todo_id, todo.title, [c.text for c in todo.comments], message,
            )
        except Exception as e:
            logger.error(f"Failed to create reminder for {todo_id}: {e}")
            self._notify("error", "Failed to create reminder")
            return None
        text = encode_reminder_comment(reminder.get("summary", ""), reminder["id"], reminder.get("reminderTime", ""))
        await self.add_comment(todo_id, text)
        return reminder

    # --- Workspaces ---

    async def load_workspaces(self) -> List[WorkspaceItem]:
        if not self.authenticated:
            return self.workspaces
        try:
            await self.remote.ensure_personal_workspace()
            rows = await self.remote.list_workspaces()
        except Exception as e:
            logger.error(f"Failed to load workspaces: {e}")
            return self.workspaces
        self.workspaces = [WorkspaceItem.from_wire(row) for row in rows]
        known = {w.id for w in self.workspaces}
        if self.workspaces and (self.current_workspace_id == PERSONAL_PLACEHOLDER or self.current_workspace_id not in known):
            personal = next((w for w in self.workspaces if w.name == PERSONAL_WORKSPACE_NAME), self.workspaces[0])
            self.current_workspace_id = personal.id
        return self.workspaces

    async def create_workspace(self, name: str) -> Optional[WorkspaceItem]:
        if not self.authenticated:
            return None
        try:
            data = await self.remote.create_workspace(name)
        except WorkspaceLimitError:
            raise
        except Exception as e:
            logger.error(f"Failed to create workspace {name!r}: {e}")
            self._notify("error", f"Failed to create {name}")
            return None
        workspace = WorkspaceItem.from_wire(data)
        self.workspaces.append(workspace)
        self.current_workspace_id = workspace.id
        return workspace

    async def delete_workspace(self, workspace_id: str) -> bool:
        idx = next((i for i, w in enumerate(self.workspaces) if w.id == workspace_id), -1)
        if idx < 0:
            return False
        workspace = self.workspaces[idx]
        if any(t.workspace_id == workspace_id and not t.completed for t in self.todos):
            self._notify("error", "Cannot delete workspace with incomplete todos")
            return False
        previous_current = self.current_workspace_id

        def apply() -> None:
            self.workspaces.pop(idx)
            if self.current_workspace_id == workspace_id:
                self.current_workspace_id = self.workspaces[0].id if self.workspaces else PERSONAL_PLACEHOLDER

        def revert() -> None:
            self.workspaces.insert(min(idx, len(self.workspaces)), workspace)
            self.current_workspace_id = previous_current

        return await self._run(OptimisticCommand(
            name="delete_workspace",
            apply=apply,
            revert=revert,
            remote=lambda: self.remote.delete_workspace(workspace_id),
            failure_message=f"Failed to delete {workspace.name}",
            success_message=f"{workspace.name} deleted",
        ))
