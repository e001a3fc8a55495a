from __future__ import annotations

import argparse
import sys

from .server.app import main as serve_main
from .ui.plan_dialog import PlanReviewApp


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coderagent",
        description="Task-execution agent server with shared browser control.",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the agent HTTP server")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (default: CODER_AGENT_PORT or a free port)",
    )
    serve_parser.set_defaults(func=serve_command)

    review_parser = subparsers.add_parser("review-plan", help="Review a plan file and pick an approval mode")
    review_parser.add_argument("path", help="Path to the plan markdown file")
    review_parser.set_defaults(func=review_plan_command)

    return parser


def serve_command(args: argparse.Namespace) -> int:
    serve_main(port=args.port)
    return 0


def review_plan_command(args: argparse.Namespace) -> int:
    decision = PlanReviewApp(args.path).run()
    if decision is None or decision.kind == "cancel":
        print("Plan review cancelled.")
        return 1
    if decision.kind == "feedback":
        print(f"Feedback: {decision.feedback}")
        return 0
    print(f"Approved with approval mode: {decision.approval_mode.value}")
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if hasattr(args, "func"):
        sys.exit(args.func(args))
    parser.print_help()
    sys.exit(2)


if __name__ == "__main__":
    main()
