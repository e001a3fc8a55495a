from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..browser.tools import BrowserTools
from ..errors import CoderAgentError
from ..hooks.interceptor import generate_call_id
from ..hooks.system import HookSystem

log = logging.getLogger(__name__)

ToolRunner = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    runner: ToolRunner
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


@dataclass(frozen=True)
class ToolCall:
    call_id: str
    name: str
    args: dict[str, Any]

    @classmethod
    def create(cls, name: str, args: dict[str, Any] | None = None, call_id: str | None = None) -> "ToolCall":
        return cls(call_id=call_id or generate_call_id(name), name=name, args=dict(args or {}))

    def as_dict(self) -> dict[str, Any]:
        return {"callId": self.call_id, "name": self.name, "args": self.args}


@dataclass(frozen=True)
class ToolResult:
    call: ToolCall
    ok: bool
    output: Any
    duration: float
    error: str | None = None

    def as_response(self) -> dict[str, Any]:
        return {"success": self.ok, "output": self.output, "error": self.error}


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def definitions(self) -> list[dict[str, Any]]:
        return [
            {"name": spec.name, "description": spec.description, "parameters": spec.parameters}
            for spec in sorted(self._tools.values(), key=lambda s: s.name)
        ]


class ToolExecutor:
    """Runs one tool call between the before and after hook events."""

    def __init__(
        self,
        registry: ToolRegistry,
        hook_system: HookSystem,
        *,
        log_fn: Callable[[str], None] | None = None,
    ) -> None:
        self.registry = registry
        self.hook_system = hook_system
        self.log_fn = log_fn

    async def run(self, call: ToolCall) -> ToolResult:
        spec = self.registry.get(call.name)
        if spec is None:
            return ToolResult(call=call, ok=False, output=None, duration=0.0, error=f"Unknown tool: {call.name}")
        start = time.monotonic()
        outcome = await self.hook_system.fire_before_tool_event(call.name, call.args)
        if getattr(outcome, "blocked", False):
            self._log(f"blocked [{call.name}] {outcome.reason}")
            result = ToolResult(call=call, ok=False, output=None, duration=0.0, error=outcome.reason)
        else:
            self._log(f"running [{call.name}] {self._format_args(call.args)}")
            try:
                output = await spec.runner(call.args)
                result = ToolResult(call=call, ok=True, output=output, duration=time.monotonic() - start)
                self._log(f"success [{call.name}] {result.duration:.2f}s")
            except Exception as exc:  # noqa: BLE001
                result = ToolResult(
                    call=call,
                    ok=False,
                    output=None,
                    duration=time.monotonic() - start,
                    error=str(exc) or type(exc).__name__,
                )
                self._log(f"fail [{call.name}] {result.duration:.2f}s ({type(exc).__name__})")
        await self.hook_system.fire_after_tool_event(call.name, call.args, result.as_response())
        return result

    def _format_args(self, args: dict[str, Any]) -> str:
        try:
            return json.dumps(args, ensure_ascii=False)
        except (TypeError, ValueError):
            return str(args)

    def _log(self, message: str) -> None:
        log.info(message)
        if self.log_fn:
            self.log_fn(message)


# ---------------------------------------------------------------------------
# Browser tools exposed to the agent
# ---------------------------------------------------------------------------

_POINT = {
    "x": {"type": "number", "description": "Normalized x coordinate (0-1000)."},
    "y": {"type": "number", "description": "Normalized y coordinate (0-1000)."},
}


def _browser_runner(method: Callable[..., Awaitable[Any]]) -> ToolRunner:
    async def _run(args: dict[str, Any]) -> Any:
        result = await method(**args)
        if not result.ok:
            raise CoderAgentError(result.error)
        return result.output

    return _run


def register_browser_tools(registry: ToolRegistry, browser_tools: BrowserTools) -> None:
    specs = [
        ToolSpec(
            "browser_navigate",
            "Navigate the browser to a URL.",
            _browser_runner(browser_tools.navigate),
            {"type": "object", "properties": {"url": {"type": "string"}}, "required": ["url"]},
        ),
        ToolSpec(
            "browser_click_at",
            "Click at a normalized (0-1000) viewport position.",
            _browser_runner(browser_tools.click_at),
            {"type": "object", "properties": dict(_POINT), "required": ["x", "y"]},
        ),
        ToolSpec(
            "browser_type_text_at",
            "Click at a normalized position, then type text.",
            _browser_runner(browser_tools.type_text_at),
            {
                "type": "object",
                "properties": {
                    **_POINT,
                    "text": {"type": "string"},
                    "press_enter": {"type": "boolean"},
                    "clear_before_typing": {"type": "boolean"},
                },
                "required": ["x", "y", "text"],
            },
        ),
        ToolSpec(
            "browser_drag_and_drop",
            "Drag from one normalized position to another.",
            _browser_runner(browser_tools.drag_and_drop),
            {
                "type": "object",
                "properties": {
                    **_POINT,
                    "dest_x": {"type": "number"},
                    "dest_y": {"type": "number"},
                },
                "required": ["x", "y", "dest_x", "dest_y"],
            },
        ),
        ToolSpec(
            "browser_scroll_document",
            "Scroll the page up, down, left or right by a pixel amount.",
            _browser_runner(browser_tools.scroll_document),
            {
                "type": "object",
                "properties": {
                    "direction": {"type": "string", "enum": ["up", "down", "left", "right"]},
                    "amount": {"type": "number"},
                },
                "required": ["direction", "amount"],
            },
        ),
        ToolSpec(
            "browser_evaluate_script",
            "Run JavaScript in the page; a top-level return value is captured.",
            _browser_runner(browser_tools.evaluate_script),
            {"type": "object", "properties": {"code": {"type": "string"}}, "required": ["code"]},
        ),
        ToolSpec(
            "browser_take_snapshot",
            "Take an accessibility snapshot of the current page.",
            _browser_runner(browser_tools.take_snapshot),
            {"type": "object", "properties": {"verbose": {"type": "boolean"}}},
        ),
    ]
    for spec in specs:
        registry.register(spec)
