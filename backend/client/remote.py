import logging
import httpx
from typing import Dict, Any, Optional, List, Iterable
from client.config import client_settings

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class WorkspaceLimitError(RemoteError):
    """The plan's workspace limit was reached (HTTP 403)."""


class AgendaRemote:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or client_settings.AGENDA_API_BASE).rstrip("/")
        self.token = token if token is not None else client_settings.AGENDA_API_TOKEN
        self.timeout = timeout or client_settings.AGENDA_CLIENT_TIMEOUT_SECONDS
        self.transport = transport

    def _get_headers(self) -> Dict[str, str]:
        if not self.token:
            raise RuntimeError("AGENDA_API_TOKEN not configured")
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json"
        }

    async def _request(self, method: str, path: str, json: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
            resp = await client.request(method, path, headers=self._get_headers(), json=json, params=params)
            if resp.status_code >= 400:
                raise RemoteError(self._error_message(resp), resp.status_code)
            if resp.status_code == 204 or not resp.content:
                return None
            return resp.json()

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return f"HTTP {resp.status_code}"
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            return body["error"]
        return f"HTTP {resp.status_code}"

    # --- Todos ---

    async def list_todos(self, workspace_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"workspaceId": workspace_id} if workspace_id else None
        payload = await self._request("GET", "/v1/todos", params=params)
        return payload if isinstance(payload, list) else []

    async def create_todo(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/v1/todos", json=payload)

    async def update_todo(self, todo_id: str, **fields: Any) -> Dict[str, Any]:
        """Partial update; only the passed fields are sent (camelCase keys)."""
        return await self._request("PUT", "/v1/todos", json={"id": todo_id, **fields})

    async def delete_todo(self, todo_id: str) -> None:
        await self._request("DELETE", "/v1/todos", json={"id": todo_id})

    async def add_comment(self, todo_id: str, text: str) -> Dict[str, Any]:
        return await self._request("POST", "/v1/todos/comments", json={"todoId": todo_id, "text": text})

    async def delete_comment(self, todo_id: str, comment_id: str) -> None:
        await self._request("DELETE", "/v1/todos/comments", json={"todoId": todo_id, "commentId": comment_id})

    # --- Workspaces ---

    async def ensure_personal_workspace(self) -> Dict[str, Any]:
        return await self._request("POST", "/v1/workspaces/personal")

    async def list_workspaces(self) -> List[Dict[str, Any]]:
        payload = await self._request("GET", "/v1/workspaces")
        return payload if isinstance(payload, list) else []

    async def create_workspace(self, name: str) -> Dict[str, Any]:
        try:
            return await self._request("POST", "/v1/workspaces", json={"name": name})
        except RemoteError as exc:
            if exc.status_code == 403:
                raise WorkspaceLimitError(str(exc), 403) from exc
            raise

    async def delete_workspace(self, workspace_id: str) -> None:
        await self._request("DELETE", "/v1/workspaces", json={"id": workspace_id})

    # --- Reminders ---

    async def create_reminder(self, todo_id: str, todo_title: str, comments: Iterable[str], message: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/v1/reminders",
            json={"todoId": todo_id, "todoTitle": todo_title, "comments": list(comments), "message": message},
        )
