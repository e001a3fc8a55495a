from __future__ import annotations

from enum import Enum


class ApprovalMode(str, Enum):
    DEFAULT = "default"
    AUTO_EDIT = "autoEdit"
    YOLO = "yolo"
    PLAN = "plan"


class ToolConfirmationOutcome(str, Enum):
    PROCEED_ONCE = "proceed_once"
    PROCEED_ALWAYS = "proceed_always"
    PROCEED_ALWAYS_SERVER = "proceed_always_server"
    PROCEED_ALWAYS_TOOL = "proceed_always_tool"
    MODIFY_WITH_EDITOR = "modify_with_editor"
    CANCEL = "cancel"

    @property
    def proceeds(self) -> bool:
        return self is not ToolConfirmationOutcome.CANCEL

    @property
    def always_allows(self) -> bool:
        return self in {
            ToolConfirmationOutcome.PROCEED_ALWAYS,
            ToolConfirmationOutcome.PROCEED_ALWAYS_SERVER,
            ToolConfirmationOutcome.PROCEED_ALWAYS_TOOL,
        }
