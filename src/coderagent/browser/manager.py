"""
BrowserManager owns the one browser the agent works against.

Two control surfaces share that browser:

* Playwright drives it directly (pixel-precise pointer and keyboard input).
* The chrome-devtools MCP server attaches to the same Chromium through its
  remote-debugging port and serves structured inspection (snapshots).

Connection state
----------------
NO_CONNECTION -> CONNECTING -> CONNECTED -> CLOSED.  Only one connect sequence
runs at a time; concurrent callers await the same in-flight task.  A live,
connected MCP client is always reused instead of launching another browser.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
from playwright.async_api import async_playwright

from ..config import AppConfig
from ..errors import BrowserConnectionError, McpDisconnectedError
from ..net import get_free_port
from .mcp_client import McpClient, McpClientManager, McpServerStatus

log = logging.getLogger(__name__)

DEBUGGER_READY_TIMEOUT = 10.0


class ConnectionState(str, Enum):
    NO_CONNECTION = "no_connection"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass(frozen=True)
class BrowserSettings:
    execution_mode: str = "launch"
    headless: bool = True
    browser_url: str = ""
    mcp_server: str = "chrome-devtools"
    mcp_command: str = "npx"
    mcp_package: str = "chrome-devtools-mcp@latest"

    @classmethod
    def from_config(cls, cfg: AppConfig) -> "BrowserSettings":
        return cls(
            execution_mode=cfg.browser_execution_mode,
            headless=cfg.browser_headless,
            browser_url=cfg.browser_url,
            mcp_server=cfg.browser_mcp_server,
            mcp_command=cfg.browser_mcp_command,
            mcp_package=cfg.browser_mcp_package,
        )


class BrowserManager:
    def __init__(
        self,
        mcp_manager: McpClientManager,
        settings: BrowserSettings | None = None,
        *,
        port_allocator: Callable[[], int] | None = None,
    ) -> None:
        self.mcp_manager = mcp_manager
        self.settings = settings or BrowserSettings()
        self._port_allocator = port_allocator
        self._state = ConnectionState.NO_CONNECTION
        self._connecting: asyncio.Future[McpClient] | None = None
        self._page_lock = asyncio.Lock()
        self._mcp_client: McpClient | None = None
        self._port: int | None = None
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._page: Any = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def browser_url(self) -> str:
        if self.settings.execution_mode == "connect" and self.settings.browser_url:
            return self.settings.browser_url.rstrip("/")
        if self._port is None:
            allocate = self._port_allocator or get_free_port
            self._port = allocate()
        return f"http://127.0.0.1:{self._port}"

    # ------------------------------------------------------------------
    # Protocol (MCP) side
    # ------------------------------------------------------------------

    async def get_mcp_client(self) -> McpClient:
        if _is_connected(self._mcp_client):
            return self._mcp_client  # type: ignore[return-value]
        return await self.ensure_connection()

    async def ensure_connection(self) -> McpClient:
        if _is_connected(self._mcp_client):
            return self._mcp_client  # type: ignore[return-value]
        if self._connecting is None or self._connecting.done():
            self._connecting = asyncio.ensure_future(self._connect())
        return await asyncio.shield(self._connecting)

    async def _connect(self) -> McpClient:
        self._state = ConnectionState.CONNECTING
        try:
            existing = self.mcp_manager.get_client(self.settings.mcp_server)
            if _is_connected(existing):
                log.info("Reusing connected MCP client %s", self.settings.mcp_server)
                client = existing
            else:
                client = await self._connect_mcp()
        except Exception:
            self._state = ConnectionState.NO_CONNECTION
            raise
        self._mcp_client = client
        self._state = ConnectionState.CONNECTED
        return client

    async def _connect_mcp(self) -> McpClient:
        name = self.settings.mcp_server
        client = self.mcp_manager.get_client(name)
        if client is None:
            # No inspection server yet: bring up the browser first so the
            # server can attach to it on the same debugging port.
            await self._ensure_browser()
            log.info("Registering MCP server %s against %s", name, self.browser_url)
            await self.mcp_manager.maybe_discover_mcp_server(name, self.server_command())
            client = self.mcp_manager.get_client(name)
        if client is None:
            raise BrowserConnectionError(f"MCP server {name} could not be registered")
        if client.get_status() != McpServerStatus.CONNECTED.value:
            await client.connect()
        return client

    def server_command(self) -> dict[str, Any]:
        return {
            "command": self.settings.mcp_command,
            "args": ["-y", self.settings.mcp_package, "--browser-url", self.browser_url],
        }

    # ------------------------------------------------------------------
    # Playwright side
    # ------------------------------------------------------------------

    async def get_page(self) -> Any:
        if self._page_is_live():
            return self._page
        async with self._page_lock:
            if self._page_is_live():
                return self._page
            await self.ensure_connection()
            await self._ensure_browser()
            if self._context is None:
                contexts = list(getattr(self._browser, "contexts", None) or [])
                if self.settings.execution_mode == "connect" and contexts:
                    self._context = contexts[0]
                else:
                    self._context = await self._browser.new_context()
            self._page = await self._context.new_page()
            log.info("Opened browser page")
            return self._page

    def _page_is_live(self) -> bool:
        return (
            self._page is not None
            and not self._page.is_closed()
            and self._browser is not None
            and self._browser.is_connected()
        )

    async def _ensure_browser(self) -> None:
        if self._browser is not None and self._browser.is_connected():
            return
        self._context = None
        self._page = None
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        chromium = self._playwright.chromium
        if self.settings.execution_mode == "connect":
            await self._wait_for_debugger(self.browser_url)
            log.info("Connecting Playwright to %s", self.browser_url)
            self._browser = await chromium.connect_over_cdp(self.browser_url)
            return
        url = self.browser_url
        log.info("Launching Chromium (headless=%s) on %s", self.settings.headless, url)
        self._browser = await chromium.launch(
            headless=self.settings.headless,
            args=[f"--remote-debugging-port={self._port}"],
        )
        await self._wait_for_debugger(url)

    async def _wait_for_debugger(self, url: str, timeout: float = DEBUGGER_READY_TIMEOUT) -> dict[str, Any]:
        """Poll the DevTools `/json/version` endpoint until Chromium answers."""
        deadline = time.monotonic() + timeout
        last_error = "no response"
        while True:
            try:
                async with httpx.AsyncClient(timeout=2.0) as c:
                    r = await c.get(f"{url}/json/version")
                if r.status_code == 200:
                    return r.json()
                last_error = f"HTTP {r.status_code}"
            except httpx.HTTPError as exc:
                last_error = str(exc) or type(exc).__name__
            if time.monotonic() >= deadline:
                raise BrowserConnectionError(
                    f"Remote debugging endpoint {url} not reachable: {last_error}", disconnected=True
                )
            await asyncio.sleep(0.25)

    # ------------------------------------------------------------------
    # Failure handling / teardown
    # ------------------------------------------------------------------

    def handle_failure(self, exc: BaseException) -> bool:
        """Classify an action failure; a detected disconnect closes the connection.

        Returns True when the shared connection was marked closed.
        """
        disconnected = isinstance(exc, McpDisconnectedError) or (
            isinstance(exc, BrowserConnectionError) and exc.disconnected
        )
        if self._browser is not None and not self._browser.is_connected():
            disconnected = True
        if self._mcp_client is not None and not _is_connected(self._mcp_client):
            disconnected = True
        if disconnected:
            self.mark_disconnected()
        elif self._page is not None and self._page.is_closed():
            self._page = None
        return disconnected

    def mark_disconnected(self) -> None:
        log.warning("Browser connection lost; the next action reconnects")
        self._state = ConnectionState.CLOSED
        self._mcp_client = None
        self._connecting = None
        if self._browser is not None and not self._browser.is_connected():
            self._browser = None
        self._context = None
        self._page = None

    async def close(self) -> None:
        page, context, browser = self._page, self._context, self._browser
        self._page = self._context = self._browser = None
        for resource in (page, context, browser):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as exc:  # noqa: BLE001
                log.debug("Ignoring error while closing %r: %s", resource, exc)
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        client, self._mcp_client = self._mcp_client, None
        if client is not None:
            await client.disconnect()
        self._connecting = None
        self._port = None
        self._state = ConnectionState.CLOSED


def _is_connected(client: McpClient | None) -> bool:
    return client is not None and client.get_status() == McpServerStatus.CONNECTED.value
