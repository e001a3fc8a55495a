from .interceptor import (
    CorrelationStore,
    ToolCallInterceptor,
    ToolLifecycleCallbacks,
    install_tool_call_interceptor,
    is_error_response,
)
from .system import HookEvent, HookInput, HookOutcome, HookSystem

__all__ = [
    "CorrelationStore",
    "HookEvent",
    "HookInput",
    "HookOutcome",
    "HookSystem",
    "ToolCallInterceptor",
    "ToolLifecycleCallbacks",
    "install_tool_call_interceptor",
    "is_error_response",
]
