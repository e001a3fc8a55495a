from .executor import CoderAgentExecutor
from .store import ExecutionEventBus, InMemoryTaskStore
from .task import RequestContext, Task, TaskState
from .tools import ToolCall, ToolExecutor, ToolRegistry, ToolResult, ToolSpec, register_browser_tools

__all__ = [
    "CoderAgentExecutor",
    "ExecutionEventBus",
    "InMemoryTaskStore",
    "RequestContext",
    "Task",
    "TaskState",
    "ToolCall",
    "ToolExecutor",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "register_browser_tools",
]
