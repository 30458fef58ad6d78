import asyncio
import json

import httpx
import pytest

from client.remote import AgendaRemote, RemoteError, WorkspaceLimitError


def _remote(handler, token="test_token"):
    return AgendaRemote(base_url="http://agenda.test/", token=token, timeout=5, transport=httpx.MockTransport(handler))


def test_requests_carry_bearer_token_and_camel_case_bodies():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        if request.method == "GET":
            return httpx.Response(200, json=[{"id": "t1"}])
        return httpx.Response(200, json={"id": "t1", "completed": True})

    async def _run():
        remote = _remote(handler)
        assert await remote.list_todos("ws_1") == [{"id": "t1"}]
        assert (await remote.update_todo("t1", completed=True))["completed"] is True

    asyncio.run(_run())
    get, put = seen
    assert get.headers["Authorization"] == "Bearer test_token"
    assert get.url.params["workspaceId"] == "ws_1"
    assert str(put.url) == "http://agenda.test/v1/todos"
    assert json.loads(put.content) == {"id": "t1", "completed": True}


def test_error_status_raises_remote_error_with_server_message():
    def handler(request):
        return httpx.Response(404, json={"error": "Todo not found"})

    async def _run():
        with pytest.raises(RemoteError) as exc:
            await _remote(handler).delete_todo("missing")
        assert exc.value.status_code == 404
        assert str(exc.value) == "Todo not found"

    asyncio.run(_run())


def test_workspace_limit_maps_to_dedicated_error():
    def handler(request):
        return httpx.Response(403, json={"error": "Workspace limit reached for plan."})

    async def _run():
        with pytest.raises(WorkspaceLimitError):
            await _remote(handler).create_workspace("Side")

    asyncio.run(_run())


def test_transport_errors_propagate_and_missing_token_is_rejected():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async def _run():
        with pytest.raises(httpx.ConnectError):
            await _remote(handler).list_workspaces()
        with pytest.raises(RuntimeError):
            await _remote(handler, token="").list_workspaces()

    asyncio.run(_run())


def test_reminder_payload():
    captured = {}

    def handler(request):
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "rem_1"})

    async def _run():
        await _remote(handler).create_reminder("t1", "Bank", iter(["fees"]), "!rmd tomorrow")

    asyncio.run(_run())
    assert captured["body"] == {"todoId": "t1", "todoTitle": "Bank", "comments": ["fees"], "message": "!rmd tomorrow"}
