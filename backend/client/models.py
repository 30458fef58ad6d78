from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

PERSONAL_PLACEHOLDER = "personal"
LOCAL_USER_ID = "local"


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    user_id: str
    name: Optional[str] = None
    image: Optional[str] = None


@dataclass
class CommentItem:
    id: str
    text: str
    todo_id: str
    user_id: str
    created_at: Optional[datetime] = None
    user: Optional[Dict[str, Any]] = None

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "CommentItem":
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            todo_id=data.get("todoId", ""),
            user_id=data.get("userId", ""),
            created_at=parse_timestamp(data.get("createdAt")),
            user=data.get("user"),
        )


@dataclass
class TodoItem:
    id: str
    title: str
    user_id: str
    completed: bool = False
    workspace_id: Optional[str] = None
    due_date: Optional[str] = None
    urgency: float = 1.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    comments: List[CommentItem] = field(default_factory=list)

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "TodoItem":
        urgency = data.get("urgency")
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            user_id=data.get("userId", ""),
            completed=bool(data.get("completed", False)),
            workspace_id=data.get("workspaceId"),
            due_date=data.get("dueDate"),
            urgency=float(urgency) if urgency is not None else 1.0,
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
            comments=[CommentItem.from_wire(c) for c in data.get("comments") or []],
        )

    def copy(self) -> "TodoItem":
        return replace(self, comments=list(self.comments))


@dataclass
class WorkspaceItem:
    id: str
    name: str
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "WorkspaceItem":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            owner_id=data.get("ownerId"),
            created_at=parse_timestamp(data.get("createdAt")),
        )
