from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol

log = logging.getLogger(__name__)

EventHandler = Callable[..., None]


class TaskStore(Protocol):
    async def save(self, task: dict[str, Any]) -> None: ...

    async def load(self, task_id: str) -> dict[str, Any] | None: ...


class InMemoryTaskStore:
    def __init__(self) -> None:
        self._tasks: dict[str, dict[str, Any]] = {}

    async def save(self, task: dict[str, Any]) -> None:
        self._tasks[task["id"]] = copy.deepcopy(task)

    async def load(self, task_id: str) -> dict[str, Any] | None:
        task = self._tasks.get(task_id)
        return copy.deepcopy(task) if task is not None else None


_FINISHED = object()


class ExecutionEventBus:
    """Fan-out of agent execution events to the subscribers of one request."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {"event": [], "finished": []}
        self.done = False

    def on(self, name: str, handler: EventHandler) -> None:
        self._handlers.setdefault(name, []).append(handler)

    def off(self, name: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: dict[str, Any]) -> None:
        for handler in list(self._handlers["event"]):
            try:
                handler(event)
            except Exception as exc:  # noqa: BLE001
                log.warning("Event handler failed for %s: %s", event.get("kind"), exc)

    def finished(self) -> None:
        if self.done:
            return
        self.done = True
        for handler in list(self._handlers["finished"]):
            handler()

    def subscribe(self) -> asyncio.Queue[Any]:
        """Queue of every event published from now on, ended by a finish marker."""
        queue: asyncio.Queue[Any] = asyncio.Queue()
        self.on("event", queue.put_nowait)
        self.on("finished", lambda: queue.put_nowait(_FINISHED))
        if self.done:
            queue.put_nowait(_FINISHED)
        return queue

    @staticmethod
    async def drain(queue: asyncio.Queue[Any]) -> AsyncIterator[dict[str, Any]]:
        while True:
            item = await queue.get()
            if item is _FINISHED:
                return
            yield item
