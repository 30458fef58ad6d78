import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from common.config import settings
from common.models import (
    PERSONAL_WORKSPACE_NAME, Subscription, Todo, User, Workspace, WorkspaceMember, WorkspaceRole,
)

logger = logging.getLogger(__name__)

ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")
FREE_PLAN = "free"


class WorkspaceError(Exception):
    status_code = 400


class WorkspaceLimitError(WorkspaceError):
    status_code = 403

    def __init__(self, plan: Optional[str] = None):
        suffix = f" ({plan})" if plan else ""
        super().__init__(f"Workspace limit reached for plan{suffix}.")
        self.plan = plan


class WorkspaceNotFound(WorkspaceError):
    status_code = 404

    def __init__(self):
        super().__init__("Workspace not found")


class WorkspaceNotDeletable(WorkspaceError):
    status_code = 409


def plan_limits() -> dict:
    return {"pro": settings.WORKSPACE_LIMIT_PRO}


def workspace_limit(plan: Optional[str]) -> int:
    return plan_limits().get(plan or FREE_PLAN, settings.WORKSPACE_LIMIT_FREE)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def get_active_subscription(db: AsyncSession, user_id: str) -> Optional[Subscription]:
    rows = (await db.execute(
        select(Subscription).where(Subscription.reference_id == user_id)
    )).scalars().all()
    for sub in rows:
        if sub.status in ACTIVE_SUBSCRIPTION_STATUSES:
            return sub
    return None


async def get_user_plan(db: AsyncSession, user_id: str) -> str:
    sub = await get_active_subscription(db, user_id)
    if sub is not None and sub.plan in plan_limits():
        return sub.plan
    return FREE_PLAN


async def ensure_user(db: AsyncSession, user_id: str) -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None:
        user = User(id=user_id, name=settings.user_name_map.get(user_id, "User"))
        db.add(user)
        await db.flush()
    return user


async def list_workspaces(db: AsyncSession, user_id: str) -> List[Workspace]:
    stmt = (
        select(Workspace)
        .join(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
        .where(WorkspaceMember.user_id == user_id)
        .order_by(Workspace.created_at.asc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def find_personal_workspace(db: AsyncSession, user_id: str) -> Optional[Workspace]:
    stmt = (
        select(Workspace)
        .join(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
        .where(WorkspaceMember.user_id == user_id, Workspace.name == PERSONAL_WORKSPACE_NAME)
        .limit(1)
    )
    return (await db.execute(stmt)).scalars().first()


async def ensure_personal_workspace(
    db: AsyncSession, user_id: str, adopt_unassigned: bool = True
) -> Tuple[Workspace, bool]:
    """Find or create the user's Personal workspace.

    Creation inserts the workspace, the owner membership and (optionally) moves
    the user's unassigned todos into it, all in one commit.
    """
    existing = await find_personal_workspace(db, user_id)
    if existing is not None:
        return existing, False

    await ensure_user(db, user_id)
    now = _utc_now()
    workspace = Workspace(
        id=str(uuid.uuid4()), name=PERSONAL_WORKSPACE_NAME, owner_id=user_id, created_at=now, updated_at=now,
    )
    db.add(workspace)
    db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user_id, role=WorkspaceRole.owner, created_at=now))
    if adopt_unassigned:
        await db.execute(
            update(Todo)
            .where(Todo.user_id == user_id, Todo.workspace_id.is_(None))
            .values(workspace_id=workspace.id)
        )
    await db.commit()
    logger.info("Created personal workspace %s for %s", workspace.id, user_id)
    return workspace, True


async def create_workspace(db: AsyncSession, user_id: str, name: str) -> Workspace:
    sub = await get_active_subscription(db, user_id)
    plan = sub.plan if sub is not None else None
    owned = (await db.execute(
        select(func.count()).select_from(Workspace).where(Workspace.owner_id == user_id)
    )).scalar_one()
    if owned >= workspace_limit(plan):
        raise WorkspaceLimitError(plan)

    await ensure_user(db, user_id)
    now = _utc_now()
    workspace = Workspace(id=str(uuid.uuid4()), name=name, owner_id=user_id, created_at=now, updated_at=now)
    db.add(workspace)
    db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user_id, role=WorkspaceRole.owner, created_at=now))
    await db.commit()
    return workspace


async def delete_workspace(db: AsyncSession, user_id: str, workspace_id: str) -> Workspace:
    workspace = (await db.execute(
        select(Workspace).where(Workspace.id == workspace_id, Workspace.owner_id == user_id)
    )).scalar_one_or_none()
    if workspace is None:
        raise WorkspaceNotFound()
    if workspace.name == PERSONAL_WORKSPACE_NAME:
        raise WorkspaceNotDeletable("Cannot delete the personal workspace")
    open_count = (await db.execute(
        select(func.count()).select_from(Todo).where(Todo.workspace_id == workspace_id, Todo.completed.is_(False))
    )).scalar_one()
    if open_count:
        raise WorkspaceNotDeletable("Cannot delete workspace with incomplete todos")

    await db.execute(delete(WorkspaceMember).where(WorkspaceMember.workspace_id == workspace_id))
    await db.execute(delete(Todo).where(Todo.workspace_id == workspace_id))
    await db.execute(delete(Workspace).where(Workspace.id == workspace_id))
    await db.commit()
    return workspace
