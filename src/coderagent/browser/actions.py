"""Browser actions as tagged variants.

Each action names the control path it needs.  ``AUTOMATION`` actions run
against the Playwright page; ``PROTOCOL`` actions run against the MCP client.
Pointer coordinates are always in the normalized 0-1000 space and are
rescaled to the live viewport right before dispatch.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

NORMALIZED_EXTENT = 1000
DRAG_STEPS = 5

_RETURN_RE = re.compile(r"\breturn\b")
_SCROLL_VECTORS = {
    "down": (0, 1),
    "up": (0, -1),
    "right": (1, 0),
    "left": (-1, 0),
}


class ControlPath(str, Enum):
    AUTOMATION = "automation"
    PROTOCOL = "protocol"


@dataclass
class ActionResult:
    output: Any = None
    error: str | None = None
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"output": self.output}
        if self.error is not None:
            payload["error"] = self.error
        return payload


def denormalize(value: float, extent: float) -> float:
    return (value / NORMALIZED_EXTENT) * extent


async def viewport_size(page: Any) -> tuple[float, float]:
    """Current viewport in CSS pixels; read on every call since the page can resize."""
    size = page.viewport_size
    if not size:
        size = await page.evaluate("() => ({width: window.innerWidth, height: window.innerHeight})")
    return float(size["width"]), float(size["height"])


async def to_pixels(page: Any, x: float, y: float) -> tuple[float, float]:
    width, height = await viewport_size(page)
    return denormalize(x, width), denormalize(y, height)


def wrap_script(code: str) -> str:
    body = code.strip()
    if _RETURN_RE.search(body):
        return f"() => {{\n{body}\n}}"
    return f"() => (\n{body.rstrip(';')}\n)"


def protocol_text(result: dict[str, Any]) -> str:
    parts = [
        str(part.get("text", ""))
        for part in result.get("content", [])
        if isinstance(part, dict) and part.get("type") == "text"
    ]
    return "\n".join(parts)


@dataclass(frozen=True)
class BrowserAction:
    path: ClassVar[ControlPath]
    name: ClassVar[str]

    async def run(self, target: Any) -> ActionResult:
        raise NotImplementedError


@dataclass(frozen=True)
class Navigate(BrowserAction):
    path: ClassVar[ControlPath] = ControlPath.AUTOMATION
    name: ClassVar[str] = "navigate"
    url: str = ""

    async def run(self, page: Any) -> ActionResult:
        await page.goto(self.url)
        return ActionResult(output=f"Navigated to {self.url}")


@dataclass(frozen=True)
class ClickAt(BrowserAction):
    path: ClassVar[ControlPath] = ControlPath.AUTOMATION
    name: ClassVar[str] = "click_at"
    x: float = 0
    y: float = 0

    async def run(self, page: Any) -> ActionResult:
        px, py = await to_pixels(page, self.x, self.y)
        await page.mouse.click(px, py)
        return ActionResult(output=f"Clicked at {self.x}, {self.y}")


@dataclass(frozen=True)
class TypeTextAt(BrowserAction):
    path: ClassVar[ControlPath] = ControlPath.AUTOMATION
    name: ClassVar[str] = "type_text_at"
    x: float = 0
    y: float = 0
    text: str = ""
    press_enter: bool = False
    clear_before_typing: bool = False

    async def run(self, page: Any) -> ActionResult:
        px, py = await to_pixels(page, self.x, self.y)
        await page.mouse.click(px, py)
        if self.clear_before_typing:
            await page.keyboard.press("ControlOrMeta+A")
            await page.keyboard.press("Backspace")
        await page.keyboard.type(self.text)
        if self.press_enter:
            await page.keyboard.press("Enter")
        return ActionResult(output=f"Typed text at {self.x}, {self.y}")


@dataclass(frozen=True)
class DragAndDrop(BrowserAction):
    path: ClassVar[ControlPath] = ControlPath.AUTOMATION
    name: ClassVar[str] = "drag_and_drop"
    x: float = 0
    y: float = 0
    dest_x: float = 0
    dest_y: float = 0

    async def run(self, page: Any) -> ActionResult:
        width, height = await viewport_size(page)
        await page.mouse.move(denormalize(self.x, width), denormalize(self.y, height))
        await page.mouse.down()
        # Intermediate mousemove events let page-side drag listeners fire.
        await page.mouse.move(
            denormalize(self.dest_x, width),
            denormalize(self.dest_y, height),
            steps=DRAG_STEPS,
        )
        await page.mouse.up()
        return ActionResult(output=f"Dragged from {self.x}, {self.y} to {self.dest_x}, {self.dest_y}")


@dataclass(frozen=True)
class ScrollDocument(BrowserAction):
    path: ClassVar[ControlPath] = ControlPath.AUTOMATION
    name: ClassVar[str] = "scroll_document"
    direction: str = "down"
    amount: float = 0
    x: float = NORMALIZED_EXTENT / 2
    y: float = NORMALIZED_EXTENT / 2

    async def run(self, page: Any) -> ActionResult:
        vector = _SCROLL_VECTORS.get(self.direction.lower())
        if vector is None:
            return ActionResult(error=f"Unknown scroll direction: {self.direction!r}")
        px, py = await to_pixels(page, self.x, self.y)
        await page.mouse.move(px, py)
        await page.mouse.wheel(vector[0] * self.amount, vector[1] * self.amount)
        return ActionResult(output=f"Scrolled {self.direction} by {self.amount}")


@dataclass(frozen=True)
class EvaluateScript(BrowserAction):
    path: ClassVar[ControlPath] = ControlPath.AUTOMATION
    name: ClassVar[str] = "evaluate_script"
    code: str = ""

    async def run(self, page: Any) -> ActionResult:
        return ActionResult(output=await page.evaluate(wrap_script(self.code)))


@dataclass(frozen=True)
class CallProtocolTool(BrowserAction):
    path: ClassVar[ControlPath] = ControlPath.PROTOCOL
    name: ClassVar[str] = "call_protocol_tool"
    tool: str = ""
    arguments: dict[str, Any] = field(default_factory=dict)

    async def run(self, client: Any) -> ActionResult:
        result = await client.call_tool(self.tool, dict(self.arguments))
        text = protocol_text(result)
        if result.get("isError"):
            return ActionResult(error=text or f"{self.tool} failed", data=result)
        return ActionResult(output=text, data=result)


@dataclass(frozen=True)
class TakeSnapshot(CallProtocolTool):
    name: ClassVar[str] = "take_snapshot"
    tool: str = "take_snapshot"
