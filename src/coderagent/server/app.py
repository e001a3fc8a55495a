"""coderagent HTTP front door.

Exposes the task-execution agent over JSON-RPC (request/response and SSE
streaming) plus a handful of REST helpers.

Endpoints:
  GET    /.well-known/agent-card.json    agent card
  POST   /                               JSON-RPC: message/send, message/stream, tasks/get, tasks/cancel
  POST   /tasks                          create task (201, task id)
  GET    /tasks/metadata                 metadata of every live task
  GET    /tasks/{id}/metadata            metadata of one task
  POST   /tasks/{id}/confirmation        answer a tool confirmation (202, processed in background)
  POST   /executeCommand                 run a registered command (JSON or SSE)
  GET    /listCommands                   top-level commands with sub commands
  GET    /health
"""
from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import time
import uuid
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel

from ..agent.executor import CoderAgentExecutor
from ..agent.store import ExecutionEventBus, InMemoryTaskStore, TaskStore
from ..agent.task import RequestContext
from ..agent.tools import ToolExecutor, ToolRegistry, register_browser_tools
from ..browser.manager import BrowserManager, BrowserSettings
from ..browser.mcp_client import McpClientManager
from ..browser.tools import BrowserTools
from ..commands import Command, CommandContext, CommandRegistry, register_builtin_commands
from ..config import AppConfig, load_config
from ..hooks.interceptor import (
    CorrelationStore,
    ToolCallInterceptor,
    ToolLifecycleCallbacks,
    install_tool_call_interceptor,
)
from ..hooks.system import HookSystem
from ..logger import setup_logging
from ..net import get_free_port

log = logging.getLogger(__name__)

_AGENT_CARD: dict[str, Any] = {
    "name": "Coder Agent",
    "description": (
        "An agent that executes coding and browser tasks from natural language "
        "instructions and streams progress events."
    ),
    "url": "http://localhost:41242/",
    "provider": {"organization": "coderagent", "url": "https://github.com/coderagent"},
    "protocolVersion": "0.3.0",
    "version": "0.3.0",
    "capabilities": {
        "streaming": True,
        "pushNotifications": False,
        "stateTransitionHistory": True,
    },
    "defaultInputModes": ["text"],
    "defaultOutputModes": ["text"],
    "skills": [
        {
            "id": "code_generation",
            "name": "Code Generation",
            "description": "Generates code snippets or complete files, streaming the results.",
            "tags": ["code", "development", "programming"],
            "examples": ["Write a python function to calculate fibonacci numbers."],
            "inputModes": ["text"],
            "outputModes": ["text"],
        },
        {
            "id": "browser_automation",
            "name": "Browser Automation",
            "description": "Drives a shared Chromium instance with coordinate-based input and page snapshots.",
            "tags": ["browser", "automation"],
            "examples": ["Open example.com and take a snapshot."],
            "inputModes": ["text"],
            "outputModes": ["text"],
        },
    ],
    "supportsAuthenticatedExtendedCard": False,
}


def update_agent_card_url(app: FastAPI, port: int) -> None:
    app.state.agent_card["url"] = f"http://localhost:{port}/"


class CreateTaskRequest(BaseModel):
    contextId: Optional[str] = None
    agentSettings: Optional[dict[str, Any]] = None


class ConfirmationRequest(BaseModel):
    callId: Optional[str] = None
    outcome: Optional[str] = None


class ExecuteCommandRequest(BaseModel):
    command: Any = None
    args: Any = None


@dataclass
class CreateAppResult:
    app: FastAPI
    config: AppConfig
    agent_executor: CoderAgentExecutor
    hook_system: HookSystem
    interceptor: ToolCallInterceptor | None
    browser_manager: BrowserManager | None


# ---------------------------------------------------------------------------
# Tool lifecycle observers
# ---------------------------------------------------------------------------

def logging_callbacks() -> ToolLifecycleCallbacks:
    def _before(tool_name: str, tool_input: Any, call_id: str) -> None:
        log.info("[ToolCall] started %s (%s)", call_id, tool_name)

    def _after(tool_name: str, tool_input: Any, tool_response: Any, call_id: str, success: bool) -> None:
        log.info("[ToolCall] finished %s (%s) success=%s", call_id, tool_name, success)

    return ToolLifecycleCallbacks(on_before_tool=_before, on_after_tool=_after)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _rpc_ok(request_id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _rpc_err(request_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _sse(frame: dict) -> str:
    return f"data: {json.dumps(frame, default=str)}\n\n"


def _frame_id(event: dict) -> Any:
    return event.get("taskId") or event.get("id") or event.get("messageId")


def _request_context(params: dict) -> RequestContext | None:
    message = params.get("message")
    if not isinstance(message, dict) or not isinstance(message.get("parts"), list):
        return None
    task_id = message.get("taskId") or str(uuid.uuid4())
    context_id = message.get("contextId") or str(uuid.uuid4())
    return RequestContext(task_id=task_id, context_id=context_id, user_message={**message, "taskId": task_id})


def _command_response(command: Command, visited: list[str]) -> dict | None:
    if command.name in visited:
        log.warning("Command %s already inserted in the response, skipping", command.name)
        return None
    subs = [_command_response(sub, visited + [command.name]) for sub in command.sub_commands]
    return {
        "name": command.name,
        "description": command.description,
        "arguments": [arg.as_dict() for arg in command.arguments],
        "subCommands": [sub for sub in subs if sub is not None],
    }


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    config: AppConfig | None = None,
    *,
    callbacks: ToolLifecycleCallbacks | None = None,
    task_store: TaskStore | None = None,
    browser_manager: BrowserManager | None = None,
) -> CreateAppResult:
    cfg = config or load_config()
    hook_system = HookSystem()
    registry = ToolRegistry()
    mcp_manager: McpClientManager | None = None
    if browser_manager is None and cfg.browser_enabled:
        mcp_manager = McpClientManager()
        browser_manager = BrowserManager(mcp_manager, BrowserSettings.from_config(cfg))
    if browser_manager is not None:
        register_browser_tools(registry, BrowserTools(browser_manager))

    store = task_store if task_store is not None else InMemoryTaskStore()
    log.info("Using %s", type(store).__name__)
    agent_executor = CoderAgentExecutor(store, ToolExecutor(registry, hook_system))
    interceptor = install_tool_call_interceptor(
        hook_system,
        callbacks or logging_callbacks(),
        store=CorrelationStore(
            max_entries=cfg.correlation_max_entries,
            ttl_seconds=cfg.correlation_ttl_seconds,
        ),
    )
    commands = CommandRegistry()
    register_builtin_commands(commands)
    background: set[asyncio.Task[Any]] = set()

    def _spawn(coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        background.add(task)
        task.add_done_callback(background.discard)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if browser_manager is not None:
            await browser_manager.close()
        if mcp_manager is not None:
            await mcp_manager.stop()

    app = FastAPI(lifespan=lifespan)
    app.state.agent_card = copy.deepcopy(_AGENT_CARD)
    app.state.commands = commands
    app.state.tool_registry = registry

    @app.exception_handler(Exception)
    async def _global_exc(request: Request, exc: Exception) -> JSONResponse:
        log.error("Unhandled [%s %s]: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(exc) or "Unknown error"})

    @app.get("/health")
    def health() -> dict:
        state = browser_manager.state.value if browser_manager is not None else "disabled"
        return {"status": "ok", "tasks": len(agent_executor.get_all_tasks()), "browser": state}

    @app.get("/.well-known/agent-card.json")
    def agent_card() -> dict:
        return app.state.agent_card

    # -- JSON-RPC ------------------------------------------------------------

    @app.post("/")
    async def jsonrpc(request: Request) -> Response:
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return JSONResponse(_rpc_err(None, -32700, "Parse error"))
        if not isinstance(body, dict):
            return JSONResponse(_rpc_err(None, -32600, "Invalid Request"))
        req_id = body.get("id")
        method = body.get("method", "")
        params = body.get("params") or {}
        if not isinstance(params, dict):
            return JSONResponse(_rpc_err(req_id, -32602, "params must be an object"))

        if method in ("message/send", "message/stream"):
            ctx = _request_context(params)
            if ctx is None:
                return JSONResponse(_rpc_err(req_id, -32602, "params.message with parts is required"))
            bus = ExecutionEventBus()
            if method == "message/send":
                task = await agent_executor.execute(ctx, bus)
                return JSONResponse(_rpc_ok(req_id, task.to_sdk_task()))
            queue = bus.subscribe()
            _spawn(agent_executor.execute(ctx, bus))

            async def _events() -> AsyncIterator[str]:
                async for event in bus.drain(queue):
                    yield _sse(_rpc_ok(req_id, event))

            return StreamingResponse(_events(), media_type="text/event-stream")

        if method in ("tasks/get", "tasks/cancel"):
            task_id = params.get("id")
            if not task_id:
                return JSONResponse(_rpc_err(req_id, -32602, "params.id is required"))
            if method == "tasks/get":
                task = await agent_executor.load_task(task_id)
            else:
                task = await agent_executor.cancel_task(task_id)
            if task is None:
                return JSONResponse(_rpc_err(req_id, -32001, "Task not found"))
            return JSONResponse(_rpc_ok(req_id, task.to_sdk_task()))

        return JSONResponse(_rpc_err(req_id, -32601, f"Method not found: {method}"))

    # -- Tasks ---------------------------------------------------------------

    @app.post("/tasks")
    async def create_task(req: CreateTaskRequest) -> JSONResponse:
        task_id = str(uuid.uuid4())
        task = await agent_executor.create_task(task_id, req.contextId or str(uuid.uuid4()), req.agentSettings)
        await store.save(task.to_sdk_task())
        return JSONResponse(status_code=201, content=task.id)

    @app.get("/tasks/metadata")
    async def all_task_metadata() -> Response:
        # Only meaningful when every task lives in this process.
        if not isinstance(store, InMemoryTaskStore):
            return JSONResponse(
                status_code=501,
                content={"error": "Listing all task metadata is only supported when using InMemoryTaskStore."},
            )
        tasks = agent_executor.get_all_tasks()
        if not tasks:
            return Response(status_code=204)
        return JSONResponse([await task.get_metadata() for task in tasks])

    @app.get("/tasks/{task_id}/metadata")
    async def task_metadata(task_id: str) -> JSONResponse:
        task = await agent_executor.load_task(task_id)
        if task is None:
            return JSONResponse(status_code=404, content={"error": "Task not found"})
        return JSONResponse({"metadata": await task.get_metadata()})

    @app.post("/tasks/{task_id}/confirmation")
    async def confirm_tool_call(task_id: str, req: ConfirmationRequest) -> JSONResponse:
        call_id = req.callId
        outcome = req.outcome
        if not call_id or not outcome:
            return JSONResponse(status_code=400, content={"error": "Missing callId or outcome in request body"})
        log.info("[ToolConfirmation] Received confirmation for task %s: %s -> %s", task_id, call_id, outcome)
        task = await agent_executor.load_task(task_id)
        if task is None:
            log.error("[ToolConfirmation] Task not found: %s", task_id)
            return JSONResponse(status_code=404, content={"error": "Task not found"})

        ctx = RequestContext(
            task_id=task_id,
            context_id=task.context_id,
            user_message={
                "kind": "message",
                "role": "user",
                "messageId": f"confirm-{call_id}-{int(time.time() * 1000)}",
                "taskId": task_id,
                "parts": [{"kind": "data", "data": {"callId": call_id, "outcome": outcome}}],
            },
        )

        async def _process() -> None:
            try:
                async for _ in task.accept_user_message(ctx, asyncio.Event()):
                    pass
                await store.save(task.to_sdk_task())
                log.info("[ToolConfirmation] Confirmation processed for task %s (%s)", task_id, call_id)
            except Exception as exc:  # noqa: BLE001
                log.error("[ToolConfirmation] Error processing confirmation for task %s: %s", task_id, exc)

        _spawn(_process())
        return JSONResponse(status_code=202, content={"accepted": True, "callId": call_id, "outcome": outcome})

    # -- Commands ------------------------------------------------------------

    @app.post("/executeCommand")
    async def execute_command(req: ExecuteCommandRequest) -> Response:
        log.info("[CoreAgent] Received /executeCommand request: %s", req)
        command_name = req.command
        args = req.args
        if not isinstance(command_name, str):
            return JSONResponse(status_code=400, content={"error": 'Invalid "command" field.'})
        if args is not None and not isinstance(args, list):
            return JSONResponse(status_code=400, content={"error": '"args" field must be an array.'})
        command = commands.get(command_name)
        if command is None:
            return JSONResponse(status_code=404, content={"error": f"Command not found: {command_name}"})
        if command.requires_workspace and not (os.environ.get("CODER_AGENT_WORKSPACE_PATH") or cfg.workspace_path):
            return JSONResponse(
                status_code=400,
                content={
                    "error": (
                        f'Command "{command_name}" requires a workspace, '
                        "but CODER_AGENT_WORKSPACE_PATH is not set."
                    )
                },
            )
        context = CommandContext(
            config=cfg,
            agent_executor=agent_executor,
            tool_registry=registry,
            hook_system=hook_system,
        )
        str_args = [str(arg) for arg in args or []]

        if not command.streaming:
            result = await command.execute(context, str_args)
            log.info("[CoreAgent] Sending /executeCommand response: %s", result)
            return JSONResponse(result)

        bus = ExecutionEventBus()
        context.event_bus = bus
        queue = bus.subscribe()

        async def _run() -> None:
            try:
                await command.execute(context, str_args)
            except Exception as exc:  # noqa: BLE001
                log.error("Error executing /executeCommand: %s with args: %s: %s", command_name, str_args, exc)
                bus.publish({"kind": "error", "error": str(exc)})
            finally:
                bus.finished()

        _spawn(_run())

        async def _frames() -> AsyncIterator[str]:
            async for event in bus.drain(queue):
                yield _sse(_rpc_ok(_frame_id(event), event))

        return StreamingResponse(_frames(), media_type="text/event-stream")

    @app.get("/listCommands")
    def list_commands() -> dict:
        top: list[Command] = []
        for command in commands.get_all_commands():
            if command.top_level and all(command is not seen for seen in top):
                top.append(command)
        listed = [_command_response(c, []) for c in top]
        return {"commands": [c for c in listed if c is not None]}

    return CreateAppResult(
        app=app,
        config=cfg,
        agent_executor=agent_executor,
        hook_system=hook_system,
        interceptor=interceptor,
        browser_manager=browser_manager,
    )


def main(port: int | None = None) -> None:
    cfg = load_config()
    setup_logging(cfg.log_level, native_host_mode=cfg.native_host_mode)
    result = create_app(cfg)
    bound = port or cfg.port or get_free_port()
    update_agent_card_url(result.app, bound)
    log.info("[CoreAgent] Agent Server started on http://%s:%d", cfg.host, bound)
    log.info("[CoreAgent] Agent Card: http://%s:%d/.well-known/agent-card.json", cfg.host, bound)
    log.info("[CoreAgent] Press Ctrl+C to stop the server")
    uvicorn.run(result.app, host=cfg.host, port=bound, log_level="warning")
