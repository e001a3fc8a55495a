"""Tool-call lifecycle interceptor.

Wraps a hook system's ``fire_before_tool_event`` / ``fire_after_tool_event``
so every tool invocation gets one call id that external observers see in
both the before and the after callback.  Observers are notified
fire-and-forget: a slow or failing callback never delays or fails the tool.

Before and after events are matched by a correlation key built from the
tool name and its serialized input.  Two identical invocations that overlap
in time share a key, so their call ids may cross; that is a known limitation.
"""
from __future__ import annotations

import asyncio
import inspect
import itertools
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, Union

log = logging.getLogger(__name__)

BeforeToolCallback = Callable[[str, Any, str], Union[Awaitable[None], None]]
AfterToolCallback = Callable[[str, Any, Any, str, bool], Union[Awaitable[None], None]]

_call_counter = itertools.count(1)


class HookSystemLike(Protocol):
    async def fire_before_tool_event(self, tool_name: str, tool_input: Any, mcp_context: Any = None) -> Any: ...

    async def fire_after_tool_event(
        self, tool_name: str, tool_input: Any, tool_response: Any, mcp_context: Any = None
    ) -> Any: ...


@dataclass(frozen=True)
class ToolLifecycleCallbacks:
    on_before_tool: BeforeToolCallback | None = None
    on_after_tool: AfterToolCallback | None = None


def generate_call_id(tool_name: str) -> str:
    return f"{tool_name}-{int(time.time() * 1000)}-{next(_call_counter)}"


def create_correlation_key(tool_name: str, tool_input: Any) -> str:
    try:
        serialized = json.dumps(tool_input, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return f"{tool_name}:{int(time.time() * 1000)}"
    return f"{tool_name}:{serialized}"


def _field(response: Any, name: str) -> tuple[bool, Any]:
    if isinstance(response, dict):
        return (name in response, response.get(name))
    if hasattr(response, name):
        return (True, getattr(response, name))
    return (False, None)


def is_error_response(response: Any) -> bool:
    """Heuristic failure check for a tool response.

    Lossy on purpose: a successful response whose ``message`` mentions
    "error" is reported as a failure.
    """
    if response is None or isinstance(response, (str, bytes, int, float, bool, list, tuple)):
        return False
    present, error = _field(response, "error")
    if present and error is not None:
        return True
    if _field(response, "isError")[1] is True:
        return True
    if _field(response, "success")[1] is False:
        return True
    message = _field(response, "message")[1]
    return isinstance(message, str) and "error" in message.lower()


class CorrelationStore:
    """Bounded ``correlation key -> call id`` map.

    Entries expire after ``ttl_seconds`` and the oldest entry is dropped once
    ``max_entries`` is reached, so a before event with no matching after
    event cannot grow the map forever.
    """

    def __init__(
        self,
        *,
        max_entries: int = 1024,
        ttl_seconds: float | None = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max(1, max_entries)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[str, float]] = OrderedDict()

    def __len__(self) -> int:
        self._evict_expired()
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        self._evict_expired()
        return key in self._entries

    def put(self, key: str, call_id: str) -> None:
        self._evict_expired()
        self._entries.pop(key, None)
        self._entries[key] = (call_id, self._clock())
        while len(self._entries) > self.max_entries:
            dropped, _ = self._entries.popitem(last=False)
            log.debug("Correlation store full, dropped %s", dropped)

    def pop(self, key: str) -> str | None:
        self._evict_expired()
        entry = self._entries.pop(key, None)
        return entry[0] if entry else None

    def clear(self) -> None:
        self._entries.clear()

    def _evict_expired(self) -> None:
        if self.ttl_seconds is None:
            return
        cutoff = self._clock() - self.ttl_seconds
        while self._entries:
            key, (_, created) = next(iter(self._entries.items()))
            if created >= cutoff:
                break
            del self._entries[key]
            log.debug("Correlation entry expired: %s", key)


class ToolCallInterceptor:
    def __init__(
        self,
        hook_system: HookSystemLike,
        callbacks: ToolLifecycleCallbacks,
        *,
        store: CorrelationStore | None = None,
    ) -> None:
        self.hook_system = hook_system
        self.callbacks = callbacks
        self.store = store if store is not None else CorrelationStore()
        self._original_before = hook_system.fire_before_tool_event
        self._original_after = hook_system.fire_after_tool_event
        self._pending: set[asyncio.Future[Any]] = set()

    def install(self) -> None:
        self.hook_system.fire_before_tool_event = self.fire_before_tool_event  # type: ignore[method-assign]
        self.hook_system.fire_after_tool_event = self.fire_after_tool_event  # type: ignore[method-assign]

    def uninstall(self) -> None:
        self.hook_system.fire_before_tool_event = self._original_before  # type: ignore[method-assign]
        self.hook_system.fire_after_tool_event = self._original_after  # type: ignore[method-assign]

    async def fire_before_tool_event(self, tool_name: str, tool_input: Any, mcp_context: Any = None) -> Any:
        call_id = generate_call_id(tool_name)
        self.store.put(create_correlation_key(tool_name, tool_input), call_id)
        if self.callbacks.on_before_tool is not None:
            self._notify("onBeforeTool", tool_name, self.callbacks.on_before_tool, tool_name, tool_input, call_id)
        return await self._original_before(tool_name, tool_input, mcp_context)

    async def fire_after_tool_event(
        self,
        tool_name: str,
        tool_input: Any,
        tool_response: Any,
        mcp_context: Any = None,
    ) -> Any:
        key = create_correlation_key(tool_name, tool_input)
        call_id = self.store.pop(key)
        if call_id is None:
            call_id = generate_call_id(tool_name)
            log.debug("No before event recorded for %s, using fresh call id %s", tool_name, call_id)
        success = not is_error_response(tool_response)
        if self.callbacks.on_after_tool is not None:
            self._notify(
                "onAfterTool",
                tool_name,
                self.callbacks.on_after_tool,
                tool_name,
                tool_input,
                tool_response,
                call_id,
                success,
            )
        return await self._original_after(tool_name, tool_input, tool_response, mcp_context)

    async def drain(self) -> None:
        """Wait for callbacks still in flight (tests and shutdown only)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _notify(self, label: str, tool_name: str, callback: Callable[..., Any], *args: Any) -> None:
        try:
            result = callback(*args)
        except Exception as exc:  # noqa: BLE001
            log.warning("%s callback threw for %s: %s", label, tool_name, exc)
            return
        if not inspect.isawaitable(result):
            return
        future = asyncio.ensure_future(result)
        self._pending.add(future)
        future.add_done_callback(lambda fut: self._settle(label, tool_name, fut))

    def _settle(self, label: str, tool_name: str, future: asyncio.Future[Any]) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            log.warning("%s callback failed for %s: %s", label, tool_name, exc)


def install_tool_call_interceptor(
    hook_system: HookSystemLike | None,
    callbacks: ToolLifecycleCallbacks,
    *,
    store: CorrelationStore | None = None,
) -> ToolCallInterceptor | None:
    if hook_system is None:
        log.warning("No hook system provided, skipping tool-call interceptor installation")
        return None
    log.info("Installing tool lifecycle interceptor")
    interceptor = ToolCallInterceptor(hook_system, callbacks, store=store)
    interceptor.install()
    log.info("Tool lifecycle interceptor installed")
    return interceptor
