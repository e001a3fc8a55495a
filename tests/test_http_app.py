from __future__ import annotations

import json
import sys
import time
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from coderagent.agent import ToolSpec
from coderagent.commands import Command
from coderagent.config import AppConfig
from coderagent.server.app import create_app, update_agent_card_url


def _sse_events(body: str) -> list[dict[str, Any]]:
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


def _send(client: TestClient, method: str, params: dict[str, Any]) -> dict[str, Any]:
    resp = client.post("/", json={"jsonrpc": "2.0", "id": 7, "method": method, "params": params})
    assert resp.status_code == 200
    return resp.json()


def _tool_message(task_id: str, name: str, args: dict[str, Any], call_id: str) -> dict[str, Any]:
    return {
        "message": {
            "kind": "message",
            "role": "user",
            "messageId": "m1",
            "taskId": task_id,
            "contextId": "ctx",
            "parts": [{"kind": "data", "data": {"toolCall": {"name": name, "args": args, "callId": call_id}}}],
        }
    }


@pytest.fixture()
def app_result(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("CODER_AGENT_WORKSPACE_PATH", raising=False)
    result = create_app(AppConfig(browser_enabled=False, workspace_path=str(tmp_path)))
    calls: list[dict[str, Any]] = []

    async def echo(args: dict[str, Any]) -> str:
        calls.append(args)
        return f"echo {args.get('text', '')}"

    result.app.state.tool_registry.register(ToolSpec("echo", "Echo text back.", echo))
    result.app.state.echo_calls = calls
    return result


@pytest.fixture()
def client(app_result):
    with TestClient(app_result.app, raise_server_exceptions=False) as c:
        yield c


def test_agent_card(app_result, client: TestClient) -> None:
    update_agent_card_url(app_result.app, 41242)
    card = client.get("/.well-known/agent-card.json").json()
    assert card["url"] == "http://localhost:41242/"
    assert card["capabilities"]["streaming"] is True


def test_health(client: TestClient) -> None:
    body = client.get("/health").json()
    assert body == {"status": "ok", "tasks": 0, "browser": "disabled"}


def test_create_task_returns_id(client: TestClient) -> None:
    resp = client.post("/tasks", json={"contextId": "ctx", "agentSettings": {"approvalMode": "yolo"}})
    assert resp.status_code == 201
    task_id = resp.json()
    meta = client.get(f"/tasks/{task_id}/metadata").json()["metadata"]
    assert meta["contextId"] == "ctx"
    assert meta["approvalMode"] == "yolo"
    assert "echo" in meta["availableTools"]


def test_task_metadata_listing(client: TestClient) -> None:
    assert client.get("/tasks/metadata").status_code == 204
    client.post("/tasks", json={})
    resp = client.get("/tasks/metadata")
    assert resp.status_code == 200
    assert len(resp.json()) == 1


def test_task_metadata_requires_in_memory_store(tmp_path: Path) -> None:
    class RemoteStore:
        async def save(self, task: dict[str, Any]) -> None:
            return None

        async def load(self, task_id: str) -> dict[str, Any] | None:
            return None

    result = create_app(AppConfig(browser_enabled=False), task_store=RemoteStore())
    with TestClient(result.app) as c:
        assert c.get("/tasks/metadata").status_code == 501


def test_unknown_task_metadata(client: TestClient) -> None:
    resp = client.get("/tasks/nope/metadata")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Task not found"}


def test_message_send_then_confirm(app_result, client: TestClient) -> None:
    reply = _send(client, "message/send", _tool_message("t1", "echo", {"text": "hi"}, "echo-1"))
    assert reply["result"]["status"]["state"] == "input-required"
    assert reply["result"]["metadata"]["pendingToolCalls"][0]["callId"] == "echo-1"

    resp = client.post("/tasks/t1/confirmation", json={"callId": "echo-1", "outcome": "proceed_once"})
    assert resp.status_code == 202

    for _ in range(50):
        meta = client.get("/tasks/t1/metadata").json()["metadata"]
        if not meta["pendingToolCalls"]:
            break
        time.sleep(0.05)
    assert meta["pendingToolCalls"] == []
    assert app_result.app.state.echo_calls == [{"text": "hi"}]


def test_confirmation_validation(client: TestClient) -> None:
    assert client.post("/tasks/t1/confirmation", json={"callId": "x"}).status_code == 400
    assert client.post("/tasks/missing/confirmation", json={"callId": "x", "outcome": "cancel"}).status_code == 404


def test_message_stream(client: TestClient) -> None:
    resp = client.post(
        "/",
        json={
            "jsonrpc": "2.0",
            "id": 3,
            "method": "message/stream",
            "params": {"message": {"kind": "message", "role": "user", "messageId": "m", "parts": [{"kind": "text", "text": "hi"}]}},
        },
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    frames = _sse_events(resp.text)
    assert frames[0]["id"] == 3
    assert frames[0]["result"]["kind"] == "task"
    assert frames[-1]["result"]["final"] is True


def test_tasks_get_and_cancel(client: TestClient) -> None:
    _send(client, "message/send", _tool_message("t2", "echo", {}, "c1"))
    got = _send(client, "tasks/get", {"id": "t2"})
    assert got["result"]["id"] == "t2"
    cancelled = _send(client, "tasks/cancel", {"id": "t2"})
    assert cancelled["result"]["status"]["state"] == "canceled"
    missing = _send(client, "tasks/get", {"id": "nope"})
    assert missing["error"]["code"] == -32001


def test_jsonrpc_errors(client: TestClient) -> None:
    assert _send(client, "tasks/resubscribe", {})["error"]["code"] == -32601
    assert _send(client, "message/send", {})["error"]["code"] == -32602
    resp = client.post("/", content=b"{not json", headers={"content-type": "application/json"})
    assert resp.json()["error"]["code"] == -32700


def test_jsonrpc_params_must_be_an_object(client: TestClient) -> None:
    for method in ("message/send", "tasks/get"):
        resp = client.post("/", json={"jsonrpc": "2.0", "id": 9, "method": method, "params": ["t1"]})
        assert resp.status_code == 200
        assert resp.json()["error"]["code"] == -32602
        assert resp.json()["id"] == 9


def test_list_commands(client: TestClient) -> None:
    commands = client.get("/listCommands").json()["commands"]
    names = {c["name"]: c for c in commands}
    assert set(names) == {"tools", "hooks", "init"}
    assert [s["name"] for s in names["tools"]["subCommands"]] == ["list"]


def test_list_commands_skips_cycles(app_result, client: TestClient) -> None:
    loop = Command(name="loop", description="self referencing", top_level=True)
    loop.sub_commands.append(loop)
    app_result.app.state.commands.register(loop)
    commands = client.get("/listCommands").json()["commands"]
    entry = next(c for c in commands if c["name"] == "loop")
    assert entry["subCommands"] == []


def test_execute_command(client: TestClient) -> None:
    resp = client.post("/executeCommand", json={"command": "tools list", "args": []})
    assert resp.status_code == 200
    assert [t["name"] for t in resp.json()["data"]] == ["echo"]

    resp = client.post("/executeCommand", json={"command": "tools", "args": ["list"]})
    assert resp.json()["name"] == "tools list"


def test_execute_command_validation(client: TestClient) -> None:
    assert client.post("/executeCommand", json={"command": 5}).status_code == 400
    assert client.post("/executeCommand", json={"command": "tools", "args": "list"}).status_code == 400
    assert client.post("/executeCommand", json={"command": "nope"}).status_code == 404


def test_execute_streaming_command(tmp_path: Path, client: TestClient) -> None:
    (tmp_path / "src").mkdir()
    resp = client.post("/executeCommand", json={"command": "init", "args": []})
    assert resp.status_code == 200
    frames = _sse_events(resp.text)
    assert frames[-1]["result"]["final"] is True
    assert (tmp_path / "CODERAGENT.md").read_text(encoding="utf-8").count("`src/`") == 1


def test_workspace_required(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CODER_AGENT_WORKSPACE_PATH", raising=False)
    result = create_app(AppConfig(browser_enabled=False, workspace_path=""))
    with TestClient(result.app) as c:
        resp = c.post("/executeCommand", json={"command": "init"})
    assert resp.status_code == 400
    assert "requires a workspace" in resp.json()["error"]


def test_unhandled_error_returns_500(app_result, client: TestClient) -> None:
    class Broken(Command):
        async def execute(self, context, args):
            raise RuntimeError("kaboom")

    app_result.app.state.commands.register(Broken(name="broken", description="always fails"))
    resp = client.post("/executeCommand", json={"command": "broken"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "kaboom"}


def test_interceptor_installed_by_default(app_result) -> None:
    assert app_result.interceptor is not None
    assert app_result.interceptor.store.max_entries == 1024
