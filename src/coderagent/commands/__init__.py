from .builtin import register_builtin_commands
from .registry import CommandRegistry
from .types import Command, CommandArgument, CommandContext

__all__ = ["Command", "CommandArgument", "CommandContext", "CommandRegistry", "register_builtin_commands"]
