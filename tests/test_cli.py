from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from coderagent import cli
from coderagent.state import ApprovalMode
from coderagent.ui.plan_dialog import PlanDecision


def test_no_command_prints_help_and_exits_2(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main([])
    assert exc.value.code == 2
    assert "serve" in capsys.readouterr().out


def test_review_plan_requires_path() -> None:
    with pytest.raises(SystemExit) as exc:
        cli.build_parser().parse_args(["review-plan"])
    assert exc.value.code == 2


def test_serve_passes_port(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, object] = {}
    monkeypatch.setattr(cli, "serve_main", lambda port=None: seen.setdefault("port", port))
    with pytest.raises(SystemExit) as exc:
        cli.main(["serve", "--port", "41242"])
    assert exc.value.code == 0
    assert seen["port"] == 41242


def test_review_plan_reports_decision(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    class FakeApp:
        def __init__(self, path: str) -> None:
            self.path = path

        def run(self) -> PlanDecision:
            return PlanDecision(kind="approve", approval_mode=ApprovalMode.AUTO_EDIT)

    monkeypatch.setattr(cli, "PlanReviewApp", FakeApp)
    with pytest.raises(SystemExit) as exc:
        cli.main(["review-plan", "plan.md"])
    assert exc.value.code == 0
    assert "autoEdit" in capsys.readouterr().out


def test_review_plan_cancelled(monkeypatch: pytest.MonkeyPatch) -> None:
    class FakeApp:
        def __init__(self, path: str) -> None:
            pass

        def run(self) -> None:
            return None

    monkeypatch.setattr(cli, "PlanReviewApp", FakeApp)
    with pytest.raises(SystemExit) as exc:
        cli.main(["review-plan", "plan.md"])
    assert exc.value.code == 1
