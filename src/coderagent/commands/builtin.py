from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Any

from ..hooks.system import HookEvent
from .registry import CommandRegistry
from .types import Command, CommandContext

CONTEXT_FILE = "CODERAGENT.md"


class ToolsListCommand(Command):
    async def execute(self, context: CommandContext, args: list[str]) -> Any:
        return {"name": "tools list", "data": context.tool_registry.definitions()}


class HooksListCommand(Command):
    async def execute(self, context: CommandContext, args: list[str]) -> Any:
        return {
            "name": "hooks list",
            "data": {event.value: context.hook_system.handlers(event) for event in HookEvent},
        }


class InitCommand(Command):
    """Write a starter context file into the workspace, streaming progress."""

    async def execute(self, context: CommandContext, args: list[str]) -> Any:
        workspace = Path(context.config.workspace_path or os.environ.get("CODER_AGENT_WORKSPACE_PATH", ".")).expanduser()
        task_id = uuid.uuid4().hex
        target = workspace / CONTEXT_FILE
        if target.exists():
            self._emit(context, task_id, f"{CONTEXT_FILE} already exists, nothing to do.", final=True)
            return {"name": "init", "data": str(target), "created": False}
        self._emit(context, task_id, f"Scanning {workspace} ...")
        entries = sorted(p.name + ("/" if p.is_dir() else "") for p in workspace.iterdir() if not p.name.startswith("."))
        lines = [f"# {workspace.name}", "", "## Layout", ""]
        lines.extend(f"- `{entry}`" for entry in entries)
        target.write_text("\n".join(lines) + "\n", encoding="utf-8")
        self._emit(context, task_id, f"Wrote {target} ({len(entries)} entries).", final=True)
        return {"name": "init", "data": str(target), "created": True}

    def _emit(self, context: CommandContext, task_id: str, text: str, *, final: bool = False) -> None:
        if context.event_bus is None:
            return
        context.event_bus.publish(
            {
                "kind": "status-update",
                "taskId": task_id,
                "contextId": task_id,
                "status": {
                    "state": "completed" if final else "working",
                    "message": {
                        "kind": "message",
                        "role": "agent",
                        "messageId": uuid.uuid4().hex,
                        "parts": [{"kind": "text", "text": text}],
                    },
                },
                "final": final,
            }
        )


def register_builtin_commands(registry: CommandRegistry) -> None:
    registry.register(
        Command(
            name="tools",
            description="Inspect the tools available to the agent.",
            sub_commands=[ToolsListCommand(name="list", description="List registered tools.")],
            top_level=True,
        )
    )
    registry.register(
        Command(
            name="hooks",
            description="Inspect configured tool hooks.",
            sub_commands=[HooksListCommand(name="list", description="List hook handlers per event.")],
            top_level=True,
        )
    )
    registry.register(
        InitCommand(
            name="init",
            description=f"Create a {CONTEXT_FILE} context file in the workspace.",
            top_level=True,
            requires_workspace=True,
            streaming=True,
        )
    )
