import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Notify = Callable[[str, str], None]


@dataclass
class OptimisticCommand:
    """One local mutation paired with the remote call that confirms it.

    ``apply`` runs synchronously before anything is awaited, ``revert`` undoes
    exactly what ``apply`` did. ``remote`` is skipped in local-only mode.
    """
    name: str
    apply: Callable[[], None]
    revert: Callable[[], None]
    remote: Optional[Callable[[], Awaitable[Any]]] = None
    on_success: Optional[Callable[[Any], None]] = None
    failure_message: Optional[str] = None
    success_message: Optional[str] = None


async def run_command(cmd: OptimisticCommand, notify: Optional[Notify] = None) -> bool:
    cmd.apply()
    if cmd.remote is None:
        return True
    try:
        result = await cmd.remote()
    except Exception as e:
        logger.error(f"{cmd.name} failed, reverting: {e}")
        cmd.revert()
        if notify and cmd.failure_message:
            notify("error", cmd.failure_message)
        return False
    if cmd.on_success is not None:
        cmd.on_success(result)
    if notify and cmd.success_message:
        notify("success", cmd.success_message)
    return True
