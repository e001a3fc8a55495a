"""
Minimal MCP (Model Context Protocol) client.

Speaks JSON-RPC 2.0 over the stdio of a spawned server process, one JSON
object per line.  Only what the browser agent needs is implemented:
initialize, tools/list and tools/call.
"""
from __future__ import annotations

import asyncio
import itertools
import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import McpClientError, McpDisconnectedError

log = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
_CLIENT_INFO = {"name": "coderagent", "version": "0.3.0"}


class McpServerStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class McpServerConfig:
    command: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    timeout: float = 60.0

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "McpServerConfig":
        return cls(
            command=str(raw["command"]),
            args=[str(arg) for arg in raw.get("args", [])],
            env={str(k): str(v) for k, v in (raw.get("env") or {}).items()},
            cwd=raw.get("cwd"),
            timeout=float(raw.get("timeout", 60.0)),
        )


class McpClient:
    def __init__(self, name: str, config: McpServerConfig) -> None:
        self.name = name
        self.config = config
        self.tools: list[dict[str, Any]] = []
        self._status = McpServerStatus.DISCONNECTED
        self._process: asyncio.subprocess.Process | None = None
        self._reader: asyncio.Task[None] | None = None
        self._stderr: asyncio.Task[None] | None = None
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._ids = itertools.count(1)

    def get_status(self) -> str:
        return self._status.value

    async def connect(self) -> None:
        if self._status is McpServerStatus.CONNECTED:
            return
        self._status = McpServerStatus.CONNECTING
        log.info("Starting MCP server %s: %s %s", self.name, self.config.command, " ".join(self.config.args))
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.config.command,
                *self.config.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.config.env},
                cwd=self.config.cwd,
            )
        except OSError as exc:
            self._status = McpServerStatus.DISCONNECTED
            raise McpClientError(f"Could not start MCP server {self.name}: {exc}") from exc
        self._reader = asyncio.create_task(self._read_loop())
        self._stderr = asyncio.create_task(self._drain_stderr())
        try:
            await self._request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": _CLIENT_INFO,
                },
                require_connected=False,
            )
            await self._notify("notifications/initialized")
        except Exception:
            await self.disconnect()
            raise
        self._status = McpServerStatus.CONNECTED
        log.info("MCP server %s connected", self.name)

    async def list_tools(self) -> list[dict[str, Any]]:
        result = await self._request("tools/list", {})
        self.tools = list(result.get("tools", []))
        return self.tools

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self._request("tools/call", {"name": name, "arguments": arguments or {}})

    async def disconnect(self) -> None:
        self._status = McpServerStatus.DISCONNECTED
        process, self._process = self._process, None
        if process is not None and process.returncode is None:
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=5)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                process.kill()
        for task in (self._reader, self._stderr):
            if task is not None and not task.done():
                task.cancel()
        self._fail_pending(McpDisconnectedError(f"MCP server {self.name} disconnected"))

    async def _request(self, method: str, params: dict[str, Any], *, require_connected: bool = True) -> Any:
        if require_connected and self._status is not McpServerStatus.CONNECTED:
            raise McpDisconnectedError(f"MCP server {self.name} is not connected")
        if self._process is None or self._process.stdin is None:
            raise McpDisconnectedError(f"MCP server {self.name} is not running")
        request_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._write({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
            return await asyncio.wait_for(future, timeout=self.config.timeout)
        except asyncio.TimeoutError as exc:
            raise McpClientError(f"MCP request {method} to {self.name} timed out") from exc
        finally:
            self._pending.pop(request_id, None)

    async def _notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._write(message)

    async def _write(self, message: dict[str, Any]) -> None:
        assert self._process is not None and self._process.stdin is not None
        try:
            self._process.stdin.write((json.dumps(message) + "\n").encode())
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            self._status = McpServerStatus.DISCONNECTED
            raise McpDisconnectedError(f"MCP server {self.name} closed its input: {exc}") from exc

    async def _read_loop(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout
        try:
            while True:
                line = await stdout.readline()
                if not line:
                    break
                self._dispatch(line.decode(errors="replace").strip())
        finally:
            self._status = McpServerStatus.DISCONNECTED
            self._fail_pending(McpDisconnectedError(f"MCP server {self.name} exited"))
            log.info("MCP server %s stream closed", self.name)

    def _dispatch(self, line: str) -> None:
        if not line:
            return
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            log.debug("MCP %s: ignoring non-JSON line %r", self.name, line[:200])
            return
        if not isinstance(message, dict):
            log.debug("MCP %s: ignoring non-object message %r", self.name, line[:200])
            return
        # Server-initiated requests carry ids from the server's own counter.
        if "method" in message or ("result" not in message and "error" not in message):
            log.debug("MCP %s: unsolicited message %s", self.name, message.get("method", message.get("id")))
            return
        request_id = message.get("id")
        future = self._pending.get(request_id) if isinstance(request_id, int) else None
        if future is None or future.done():
            log.debug("MCP %s: response to unknown request %r", self.name, request_id)
            return
        error = message.get("error")
        if isinstance(error, dict):
            future.set_exception(McpClientError(str(error.get("message", error)), code=error.get("code")))
        elif error:
            future.set_exception(McpClientError(str(error)))
        else:
            future.set_result(message.get("result") or {})

    async def _drain_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        while True:
            line = await self._process.stderr.readline()
            if not line:
                return
            log.debug("MCP %s stderr: %s", self.name, line.decode(errors="replace").rstrip())

    def _fail_pending(self, exc: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)
        self._pending.clear()


class McpClientManager:
    """Registry of named MCP servers and their clients."""

    def __init__(self) -> None:
        self._clients: dict[str, McpClient] = {}

    def get_client(self, name: str) -> McpClient | None:
        return self._clients.get(name)

    async def maybe_discover_mcp_server(self, name: str, config: McpServerConfig | dict[str, Any]) -> McpClient:
        """Register ``name`` unless a connected client already exists, then connect and list its tools."""
        existing = self._clients.get(name)
        if existing is not None and existing.get_status() == McpServerStatus.CONNECTED.value:
            return existing
        if existing is not None:
            await existing.disconnect()
        if not isinstance(config, McpServerConfig):
            config = McpServerConfig.from_dict(config)
        client = McpClient(name, config)
        self._clients[name] = client
        await client.connect()
        tools = await client.list_tools()
        log.info("Discovered %d tools on MCP server %s", len(tools), name)
        return client

    async def stop(self) -> None:
        for client in list(self._clients.values()):
            await client.disconnect()
        self._clients.clear()
