from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

log = logging.getLogger(__name__)


class HookEvent(str, Enum):
    BEFORE_TOOL = "BeforeTool"
    AFTER_TOOL = "AfterTool"


@dataclass(frozen=True)
class HookInput:
    event: HookEvent
    tool_name: str
    tool_input: Any
    tool_response: Any = None
    mcp_context: Any = None


@dataclass
class HookOutcome:
    decision: str = "allow"
    reason: str = ""
    outputs: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return self.decision == "block"


HookHandler = Callable[[HookInput], Union[Awaitable[Any], Any]]


@dataclass(frozen=True)
class _Registration:
    name: str
    handler: HookHandler
    matcher: str = "*"

    def matches(self, tool_name: str) -> bool:
        return self.matcher == "*" or self.matcher == tool_name


class HookSystem:
    """Runs registered before/after tool hooks and aggregates their decisions."""

    def __init__(self) -> None:
        self._hooks: dict[HookEvent, list[_Registration]] = {event: [] for event in HookEvent}

    def register(self, event: HookEvent, name: str, handler: HookHandler, *, matcher: str = "*") -> None:
        self._hooks[event].append(_Registration(name=name, handler=handler, matcher=matcher))

    def handlers(self, event: HookEvent) -> list[str]:
        return [reg.name for reg in self._hooks[event]]

    async def fire_before_tool_event(
        self,
        tool_name: str,
        tool_input: Any,
        mcp_context: Any = None,
    ) -> HookOutcome:
        hook_input = HookInput(HookEvent.BEFORE_TOOL, tool_name, tool_input, mcp_context=mcp_context)
        return await self._run(hook_input)

    async def fire_after_tool_event(
        self,
        tool_name: str,
        tool_input: Any,
        tool_response: Any,
        mcp_context: Any = None,
    ) -> HookOutcome:
        hook_input = HookInput(
            HookEvent.AFTER_TOOL,
            tool_name,
            tool_input,
            tool_response=tool_response,
            mcp_context=mcp_context,
        )
        return await self._run(hook_input)

    async def _run(self, hook_input: HookInput) -> HookOutcome:
        outcome = HookOutcome()
        for reg in self._hooks[hook_input.event]:
            if not reg.matches(hook_input.tool_name):
                continue
            try:
                result = reg.handler(hook_input)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as exc:  # noqa: BLE001
                log.warning("%s hook %r failed for %s: %s", hook_input.event.value, reg.name, hook_input.tool_name, exc)
                outcome.errors.append(f"{reg.name}: {exc}")
                continue
            if not isinstance(result, dict):
                continue
            outcome.outputs.append(result)
            if result.get("decision") == "block" and not outcome.blocked:
                outcome.decision = "block"
                outcome.reason = str(result.get("reason") or f"Blocked by hook {reg.name}")
        return outcome
