from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..agent.executor import CoderAgentExecutor
    from ..agent.store import ExecutionEventBus
    from ..agent.tools import ToolRegistry
    from ..config import AppConfig
    from ..hooks.system import HookSystem


@dataclass(frozen=True)
class CommandArgument:
    name: str
    description: str
    is_required: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "isRequired": self.is_required}


@dataclass
class CommandContext:
    config: "AppConfig"
    agent_executor: "CoderAgentExecutor"
    tool_registry: "ToolRegistry"
    hook_system: "HookSystem"
    event_bus: "ExecutionEventBus | None" = None


@dataclass
class Command:
    name: str
    description: str
    arguments: list[CommandArgument] = field(default_factory=list)
    sub_commands: list["Command"] = field(default_factory=list)
    top_level: bool = False
    requires_workspace: bool = False
    streaming: bool = False

    async def execute(self, context: CommandContext, args: list[str]) -> Any:
        if args:
            sub = next((c for c in self.sub_commands if c.name == args[0]), None)
            if sub is not None:
                return await sub.execute(context, args[1:])
        if self.sub_commands:
            names = ", ".join(c.name for c in self.sub_commands)
            return {"name": self.name, "data": f"Use one of the subcommands: {names}"}
        raise NotImplementedError(f"Command {self.name} has no implementation")
