from __future__ import annotations

import logging
from typing import Any

from .actions import (
    ActionResult,
    BrowserAction,
    CallProtocolTool,
    ClickAt,
    ControlPath,
    DragAndDrop,
    EvaluateScript,
    Navigate,
    ScrollDocument,
    TakeSnapshot,
    TypeTextAt,
)
from .manager import BrowserManager

log = logging.getLogger(__name__)


class BrowserTools:
    """Uniform action surface over the shared browser.

    Coordinates are normalized (0-1000 on both axes).  Failures come back as
    ``ActionResult(error=...)``; they never raise to the caller.
    """

    def __init__(self, browser_manager: BrowserManager) -> None:
        self.browser_manager = browser_manager

    async def dispatch(self, action: BrowserAction) -> ActionResult:
        try:
            if action.path is ControlPath.PROTOCOL:
                target: Any = await self.browser_manager.get_mcp_client()
            else:
                target = await self.browser_manager.get_page()
            return await action.run(target)
        except Exception as exc:  # noqa: BLE001
            disconnected = self.browser_manager.handle_failure(exc)
            log.warning(
                "Browser action %s failed%s: %s",
                action.name,
                " (connection closed)" if disconnected else "",
                exc,
            )
            return ActionResult(error=f"{action.name} failed: {exc}")

    async def navigate(self, url: str) -> ActionResult:
        return await self.dispatch(Navigate(url=url))

    async def click_at(self, x: float, y: float) -> ActionResult:
        return await self.dispatch(ClickAt(x=x, y=y))

    async def type_text_at(
        self,
        x: float,
        y: float,
        text: str,
        press_enter: bool = False,
        clear_before_typing: bool = False,
    ) -> ActionResult:
        return await self.dispatch(
            TypeTextAt(x=x, y=y, text=text, press_enter=press_enter, clear_before_typing=clear_before_typing)
        )

    async def drag_and_drop(self, x: float, y: float, dest_x: float, dest_y: float) -> ActionResult:
        return await self.dispatch(DragAndDrop(x=x, y=y, dest_x=dest_x, dest_y=dest_y))

    async def scroll_document(self, direction: str, amount: float) -> ActionResult:
        return await self.dispatch(ScrollDocument(direction=direction, amount=amount))

    async def evaluate_script(self, code: str) -> ActionResult:
        return await self.dispatch(EvaluateScript(code=code))

    async def take_snapshot(self, verbose: bool = False) -> ActionResult:
        arguments = {"verbose": True} if verbose else {}
        return await self.dispatch(TakeSnapshot(arguments=arguments))

    async def call_protocol_tool(self, tool: str, arguments: dict[str, Any] | None = None) -> ActionResult:
        return await self.dispatch(CallProtocolTool(tool=tool, arguments=arguments or {}))
