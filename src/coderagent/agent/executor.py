from __future__ import annotations

import asyncio
import logging
from typing import Any

from .store import ExecutionEventBus, TaskStore
from .task import PendingToolCall, RequestContext, Task, TaskState
from .tools import ToolCall, ToolExecutor

log = logging.getLogger(__name__)


class CoderAgentExecutor:
    def __init__(self, task_store: TaskStore, tool_executor: ToolExecutor) -> None:
        self.task_store = task_store
        self.tool_executor = tool_executor
        self._tasks: dict[str, Task] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}

    async def create_task(
        self,
        task_id: str,
        context_id: str,
        agent_settings: dict[str, Any] | None = None,
    ) -> Task:
        task = Task(task_id, context_id, self.tool_executor, agent_settings)
        self._tasks[task_id] = task
        log.info("Created task %s (context %s)", task_id, context_id)
        return task

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def get_all_tasks(self) -> list[Task]:
        return list(self._tasks.values())

    async def reconstruct(self, sdk_task: dict[str, Any]) -> Task:
        metadata = sdk_task.get("metadata") or {}
        status = sdk_task.get("status") or {}
        try:
            state = TaskState(status.get("state", TaskState.SUBMITTED.value))
        except ValueError:
            state = TaskState.SUBMITTED
        task = Task(
            sdk_task["id"],
            sdk_task.get("contextId") or sdk_task["id"],
            self.tool_executor,
            metadata.get("agentSettings"),
            state=state,
            history=sdk_task.get("history"),
            created_at=metadata.get("createdAt"),
        )
        for raw in metadata.get("pendingToolCalls") or []:
            call = ToolCall.create(raw.get("name", ""), raw.get("args"), raw.get("callId"))
            task.pending[call.call_id] = PendingToolCall(call=call, requested_at=task.created_at)
        self._tasks[task.id] = task
        log.info("Reconstructed task %s in state %s", task.id, state.value)
        return task

    async def load_task(self, task_id: str) -> Task | None:
        task = self.get_task(task_id)
        if task is None:
            sdk_task = await self.task_store.load(task_id)
            if sdk_task:
                task = await self.reconstruct(sdk_task)
        return task

    async def execute(self, request_context: RequestContext, event_bus: ExecutionEventBus) -> Task:
        task = await self.load_task(request_context.task_id)
        if task is None:
            task = await self.create_task(request_context.task_id, request_context.context_id)
            event_bus.publish(task.to_sdk_task())
        cancel_event = self._cancel_events.setdefault(task.id, asyncio.Event())
        try:
            async for event in task.accept_user_message(request_context, cancel_event):
                event_bus.publish(event)
        except Exception as exc:
            log.error("Task %s failed: %s", task.id, exc, exc_info=True)
            task.set_state(TaskState.FAILED)
            event_bus.publish(task.status_event("state-change", final=True, text=str(exc)))
        finally:
            await self.task_store.save(task.to_sdk_task())
            event_bus.finished()
        return task

    async def cancel_task(self, task_id: str, event_bus: ExecutionEventBus | None = None) -> Task | None:
        task = await self.load_task(task_id)
        if task is None:
            return None
        self._cancel_events.setdefault(task_id, asyncio.Event()).set()
        if not task.state.terminal:
            task.pending.clear()
            task.set_state(TaskState.CANCELED)
        await self.task_store.save(task.to_sdk_task())
        if event_bus is not None:
            event_bus.publish(task.status_event("state-change", final=True))
            event_bus.finished()
        return task
