from __future__ import annotations

import logging

from .types import Command

log = logging.getLogger(__name__)


class CommandRegistry:
    def __init__(self) -> None:
        self._commands: dict[str, Command] = {}

    def register(self, command: Command) -> None:
        if command.name in self._commands:
            log.warning("Command %s already registered, replacing it", command.name)
        self._commands[command.name] = command
        for sub in command.sub_commands:
            self._commands.setdefault(f"{command.name} {sub.name}", sub)

    def get(self, name: str) -> Command | None:
        return self._commands.get(name)

    def get_all_commands(self) -> list[Command]:
        return list(self._commands.values())
