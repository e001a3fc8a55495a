from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

from textual import events
from textual.app import App, ComposeResult
from textual.containers import Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Input, Label, ListItem, ListView, Static

from ..state import ApprovalMode

TITLE = "Ready to start implementation?"


@dataclass(frozen=True)
class PlanDecision:
    kind: str  # "approve", "feedback" or "cancel"
    approval_mode: ApprovalMode | None = None
    feedback: str = ""


PLAN_OPTIONS: list[tuple[str, ApprovalMode]] = [
    ("Yes, automatically accept edits", ApprovalMode.AUTO_EDIT),
    ("Yes, manually accept edits", ApprovalMode.DEFAULT),
]


class PlanOptionItem(ListItem):
    def __init__(self, label: str, mode: ApprovalMode) -> None:
        super().__init__(Label(label))
        self.mode = mode


async def read_plan(path: Path) -> str:
    try:
        return await asyncio.to_thread(path.read_text, encoding="utf-8")
    except OSError as exc:
        return f"Error reading plan: {exc}"


class PlanApprovalModal(ModalScreen[PlanDecision]):
    """Show a plan file and ask how to proceed with it."""

    def __init__(self, plan_path: str | Path) -> None:
        super().__init__()
        self.plan_path = Path(plan_path)
        self.plan_text = ""

    def compose(self) -> ComposeResult:
        with Vertical(id="plan-modal"):
            yield Label(TITLE, id="plan-title")
            with VerticalScroll(id="plan-scroll"):
                yield Static("Loading plan...", id="plan-content", markup=False)
            yield ListView(*[PlanOptionItem(label, mode) for label, mode in PLAN_OPTIONS], id="plan-options")
            yield Input(placeholder="Provide feedback...", id="plan-feedback")

    async def on_mount(self) -> None:
        self.set_focus(self.query_one("#plan-options", ListView))
        self.plan_text = await read_plan(self.plan_path)
        self.query_one("#plan-content", Static).update(self.plan_text)

    def on_list_view_selected(self, event: ListView.Selected) -> None:
        item = event.item
        if isinstance(item, PlanOptionItem):
            self.dismiss(PlanDecision(kind="approve", approval_mode=item.mode))

    def on_input_submitted(self, event: Input.Submitted) -> None:
        feedback = event.value.strip()
        if event.input.id == "plan-feedback" and feedback:
            self.dismiss(PlanDecision(kind="feedback", feedback=feedback))

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(PlanDecision(kind="cancel"))
            event.stop()


class PlanReviewApp(App[PlanDecision]):
    def __init__(self, plan_path: str | Path) -> None:
        super().__init__()
        self.plan_path = Path(plan_path)

    def on_mount(self) -> None:
        self.push_screen(PlanApprovalModal(self.plan_path), self.exit)
