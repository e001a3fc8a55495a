from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..state import ApprovalMode, ToolConfirmationOutcome
from .tools import ToolCall, ToolExecutor, ToolResult

log = logging.getLogger(__name__)


class TaskState(str, Enum):
    SUBMITTED = "submitted"
    WORKING = "working"
    INPUT_REQUIRED = "input-required"
    COMPLETED = "completed"
    CANCELED = "canceled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in {TaskState.COMPLETED, TaskState.CANCELED, TaskState.FAILED}


@dataclass(frozen=True)
class RequestContext:
    task_id: str
    context_id: str
    user_message: dict[str, Any]


@dataclass
class PendingToolCall:
    call: ToolCall
    requested_at: str


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Task:
    """One agent task: its state, history and tool calls awaiting confirmation.

    User messages carry ``text`` parts (recorded in the history) and ``data``
    parts.  A data part ``{"toolCall": {"name": ..., "args": ...}}`` asks the
    agent to run a tool; a data part ``{"callId": ..., "outcome": ...}``
    answers a pending confirmation.
    """

    def __init__(
        self,
        task_id: str,
        context_id: str,
        tool_executor: ToolExecutor,
        agent_settings: dict[str, Any] | None = None,
        *,
        state: TaskState = TaskState.SUBMITTED,
        history: list[dict[str, Any]] | None = None,
        created_at: str | None = None,
    ) -> None:
        self.id = task_id
        self.context_id = context_id
        self.tool_executor = tool_executor
        self.agent_settings = dict(agent_settings or {})
        self.state = state
        self.history: list[dict[str, Any]] = list(history or [])
        self.pending: dict[str, PendingToolCall] = {}
        self.always_allowed: set[str] = set()
        self.created_at = created_at or _now()
        self.updated_at = self.created_at

    @property
    def approval_mode(self) -> ApprovalMode:
        try:
            return ApprovalMode(self.agent_settings.get("approvalMode", ApprovalMode.DEFAULT.value))
        except ValueError:
            return ApprovalMode.DEFAULT

    def set_state(self, state: TaskState) -> None:
        self.state = state
        self.updated_at = _now()

    async def get_metadata(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "contextId": self.context_id,
            "taskState": self.state.value,
            "approvalMode": self.approval_mode.value,
            "createdAt": self.created_at,
            "lastUpdated": self.updated_at,
            "pendingToolCalls": [p.call.as_dict() for p in self.pending.values()],
            "availableTools": self.tool_executor.registry.names(),
            "agentSettings": self.agent_settings,
        }

    def to_sdk_task(self) -> dict[str, Any]:
        return {
            "kind": "task",
            "id": self.id,
            "contextId": self.context_id,
            "status": {"state": self.state.value, "timestamp": self.updated_at},
            "history": list(self.history),
            "metadata": {
                "agentSettings": self.agent_settings,
                "createdAt": self.created_at,
                "pendingToolCalls": [p.call.as_dict() for p in self.pending.values()],
            },
        }

    def status_event(
        self,
        kind: str,
        *,
        final: bool = False,
        data: dict[str, Any] | None = None,
        text: str | None = None,
    ) -> dict[str, Any]:
        status: dict[str, Any] = {"state": self.state.value, "timestamp": self.updated_at}
        parts: list[dict[str, Any]] = []
        if text:
            parts.append({"kind": "text", "text": text})
        if data is not None:
            parts.append({"kind": "data", "data": data})
        if parts:
            status["message"] = {
                "kind": "message",
                "role": "agent",
                "messageId": f"{self.id}-{len(self.history)}-{kind}",
                "taskId": self.id,
                "contextId": self.context_id,
                "parts": parts,
            }
        return {
            "kind": "status-update",
            "taskId": self.id,
            "contextId": self.context_id,
            "status": status,
            "final": final,
            "metadata": {"coderAgent": {"kind": kind}},
        }

    async def accept_user_message(
        self,
        request_context: RequestContext,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        message = request_context.user_message
        self.history.append(message)
        if self.state is TaskState.SUBMITTED:
            self.set_state(TaskState.WORKING)
        for part in message.get("parts", []):
            if cancel_event is not None and cancel_event.is_set():
                log.info("Task %s cancelled while processing a message", self.id)
                return
            if part.get("kind") != "data":
                continue
            data = part.get("data") or {}
            if "callId" in data and "outcome" in data:
                async for event in self._resolve_confirmation(str(data["callId"]), str(data["outcome"])):
                    yield event
            elif isinstance(data.get("toolCall"), dict):
                async for event in self._request_tool_call(data["toolCall"]):
                    yield event
        if not self.pending and not self.state.terminal:
            self.set_state(TaskState.INPUT_REQUIRED)
            yield self.status_event("state-change", final=True)

    async def _request_tool_call(self, request: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        name = str(request.get("name", ""))
        args = request.get("args") or {}
        call = ToolCall.create(name, args if isinstance(args, dict) else {}, request.get("callId"))
        if self._auto_approved(name):
            async for event in self._execute(call):
                yield event
            return
        self.pending[call.call_id] = PendingToolCall(call=call, requested_at=_now())
        self.set_state(TaskState.INPUT_REQUIRED)
        yield self.status_event("tool-call-confirmation", final=True, data=call.as_dict())

    def _auto_approved(self, name: str) -> bool:
        return self.approval_mode is ApprovalMode.YOLO or name in self.always_allowed

    async def _resolve_confirmation(self, call_id: str, outcome: str) -> AsyncIterator[dict[str, Any]]:
        pending = self.pending.get(call_id)
        if pending is None:
            log.warning("Task %s: no pending tool call %s", self.id, call_id)
            yield self.status_event("error", text=f"No pending tool call {call_id}")
            return
        try:
            decision = ToolConfirmationOutcome(outcome)
        except ValueError:
            yield self.status_event("error", text=f"Unknown confirmation outcome: {outcome}")
            return
        del self.pending[call_id]
        if not decision.proceeds:
            log.info("Task %s: tool call %s cancelled by user", self.id, call_id)
            yield self.status_event(
                "tool-call-update",
                data={**pending.call.as_dict(), "status": "cancelled"},
            )
            return
        if decision.always_allows:
            self.always_allowed.add(pending.call.name)
        async for event in self._execute(pending.call):
            yield event

    async def _execute(self, call: ToolCall) -> AsyncIterator[dict[str, Any]]:
        self.set_state(TaskState.WORKING)
        yield self.status_event("tool-call-update", data={**call.as_dict(), "status": "executing"})
        result: ToolResult = await self.tool_executor.run(call)
        yield self.status_event(
            "tool-call-update",
            data={
                **call.as_dict(),
                "status": "success" if result.ok else "error",
                "output": result.output,
                "error": result.error,
            },
        )
