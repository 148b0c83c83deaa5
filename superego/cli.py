"""`sg`: the superego command line.

Hooks call `sg hook <event>`; people call the rest. stdout carries command
output (JSON for `check` and `hook`); diagnostics go to stderr through logging.

Exit codes: 0 success, 1 failure, 2 corrupt state (run `sg reset`).
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import shutil
import sys
from collections.abc import Sequence
from pathlib import Path

from superego import __version__
from superego.errors import StorageCorrupt, SuperegoError
from superego.evaluator import EvaluationReport
from superego.feedback import clear_feedback, clear_session_id, read_feedback
from superego.gate_model import GateResult
from superego.hooks.router import run_hook
from superego.oh_client import REQUEST_TIMEOUT_SECONDS, wait_for_background
from superego.paths import (
    SUPEREGO_DIR_NAME,
    find_superego_dir,
    get_config_file,
    get_global_oh_config_file,
)
from superego.phase_state import PhaseState, StateStore
from superego.prompts import TEMPLATES_DIR, render_contract
from superego.runtime import Runtime
from superego.setup_oh import run_setup

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CORRUPT = 2

# Hook processes block the agent until they exit
HOOK_BACKGROUND_JOIN_SECONDS = 1.0

DEFAULT_CONFIG_TEMPLATE = TEMPLATES_DIR / "config.yaml"

HOOK_SETTINGS_HINT = """\
Add the hooks to .claude/settings.json:

  "hooks": {
    "SessionStart":     [{"hooks": [{"type": "command", "command": "sg hook SessionStart"}]}],
    "UserPromptSubmit": [{"hooks": [{"type": "command", "command": "sg hook UserPromptSubmit"}]}],
    "PreToolUse":       [{"matcher": "*", "hooks": [{"type": "command", "command": "sg hook PreToolUse"}]}],
    "Stop":             [{"hooks": [{"type": "command", "command": "sg hook Stop"}]}],
    "PreCompact":       [{"hooks": [{"type": "command", "command": "sg hook PreCompact"}]}]
  }
"""


class NotInitialized(SuperegoError):
    """No .superego directory above the working directory."""


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _require_runtime() -> Runtime:
    superego_dir = find_superego_dir()
    if superego_dir is None:
        raise NotInitialized("superego is not initialized here. Run `sg init` first.")
    return Runtime.load(superego_dir)


def _print_report(report: EvaluationReport) -> int:
    if report.skipped:
        print(f"No new messages. Phase: {report.state.phase.value}")
        return EXIT_OK
    if report.failed:
        print(f"Evaluation failed: {report.error}")
        print(f"Phase: {report.state.phase.value}")
        return EXIT_FAILURE
    print(f"Phase: {report.state.phase.value}")
    if report.state.approved_scope:
        print(f"Approved scope: {report.state.approved_scope}")
    if report.feedback:
        print(f"\n{report.feedback}")
    return EXIT_OK


# --- Commands ---


def cmd_init(args: argparse.Namespace) -> int:
    superego_dir = Path.cwd() / SUPEREGO_DIR_NAME
    if superego_dir.exists() and not args.force:
        print(f"{superego_dir} already exists (use --force to rewrite the config).")
        return EXIT_FAILURE

    superego_dir.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(DEFAULT_CONFIG_TEMPLATE, get_config_file(superego_dir))
    store = StateStore(superego_dir)
    if not store.exists() or args.force:
        store.save(PhaseState.create())

    print(f"Initialized superego in {superego_dir}\n")
    print(HOOK_SETTINGS_HINT)
    return EXIT_OK


def cmd_evaluate(args: argparse.Namespace) -> int:
    runtime = _require_runtime()
    report = runtime.evaluator.evaluate_transcript(Path(args.transcript_path), trigger=args.trigger)
    return _print_report(report)


def cmd_check(args: argparse.Namespace) -> int:
    superego_dir = find_superego_dir()
    if superego_dir is None:
        result = GateResult.allow("not initialized")
    else:
        runtime = Runtime.load(superego_dir)
        if runtime.settings.disabled_by_env:
            result = GateResult.allow("superego disabled")
        else:
            result = runtime.gate.run_check(
                args.tool_name,
                evaluation_failed=runtime.decisions.last_failed(),
            )
    print(json.dumps(result.to_json()))
    return EXIT_OK


def cmd_acknowledge(args: argparse.Namespace) -> int:
    runtime = _require_runtime()
    if clear_feedback(runtime.superego_dir):
        print("Feedback acknowledged.")
    else:
        print("No pending feedback.")
    return EXIT_OK


def cmd_override(args: argparse.Namespace) -> int:
    runtime = _require_runtime()
    reason = " ".join(args.reason).strip()
    if not reason:
        print("An override needs a reason.", file=sys.stderr)
        return EXIT_FAILURE
    runtime.gate.grant_override(reason)
    print(f"Override granted for the next write: {reason}")
    return EXIT_OK


def cmd_history(args: argparse.Namespace) -> int:
    runtime = _require_runtime()
    if args.json:
        for line in runtime.decisions.to_json_lines(args.limit):
            print(line)
        return EXIT_OK

    decisions = runtime.decisions.recent(args.limit)
    if not decisions:
        print("No decisions recorded.")
    for decision in decisions:
        print(decision.summary())
    return EXIT_OK


def cmd_context_inject(args: argparse.Namespace) -> int:
    runtime = _require_runtime()
    state = runtime.store.load()
    print(render_contract(state.phase.value, state.approved_scope))
    feedback = read_feedback(runtime.superego_dir)
    if feedback:
        print(f"\nSUPEREGO FEEDBACK:\n{feedback}")
    return EXIT_OK


def cmd_precompact(args: argparse.Namespace) -> int:
    runtime = _require_runtime()
    report = runtime.evaluator.evaluate_transcript(Path(args.transcript_path), trigger="precompact")
    return _print_report(report)


def cmd_reset(args: argparse.Namespace) -> int:
    runtime = _require_runtime()
    runtime.store.clear()
    clear_feedback(runtime.superego_dir)
    if args.clear_session:
        clear_session_id(runtime.superego_dir)
    print("State reset to exploring.")
    return EXIT_OK


def cmd_disable(args: argparse.Namespace) -> int:
    _require_runtime().gate.set_disabled(True)
    print("superego disabled for this project.")
    return EXIT_OK


def cmd_enable(args: argparse.Namespace) -> int:
    _require_runtime().gate.set_disabled(False)
    print("superego enabled for this project.")
    return EXIT_OK


def cmd_hook(args: argparse.Namespace) -> int:
    print(run_hook(args.event, sys.stdin.read(), Path.cwd()))
    return EXIT_OK


def cmd_setup_oh(args: argparse.Namespace) -> int:
    return run_setup(get_global_oh_config_file())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sg", description="superego: phase gate for AI coding agents")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Create .superego in the current directory")
    p.add_argument("--force", action="store_true", help="Rewrite config and state")
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("evaluate", help="Evaluate the conversation phase")
    p.add_argument("--transcript-path", required=True)
    p.add_argument("--trigger", default="evaluate", help=argparse.SUPPRESS)
    p.set_defaults(func=cmd_evaluate)

    p = sub.add_parser("check", help="Decide whether a tool call may proceed")
    p.add_argument("--tool-name", required=True)
    p.set_defaults(func=cmd_check)

    p = sub.add_parser("acknowledge", help="Clear pending feedback")
    p.set_defaults(func=cmd_acknowledge)

    p = sub.add_parser("override", help="Allow the next write once")
    p.add_argument("reason", nargs="+")
    p.set_defaults(func=cmd_override)

    p = sub.add_parser("history", help="Show recent decisions")
    p.add_argument("--limit", type=int, default=10)
    p.add_argument("--json", action="store_true", help="One JSON object per line")
    p.set_defaults(func=cmd_history)

    p = sub.add_parser("context-inject", help="Print the phase contract and pending feedback")
    p.set_defaults(func=cmd_context_inject)

    p = sub.add_parser("precompact", help="Evaluate before context compaction")
    p.add_argument("--transcript-path", required=True)
    p.set_defaults(func=cmd_precompact)

    p = sub.add_parser("reset", help="Reset phase state")
    p.add_argument("--clear-session", action="store_true", help="Also forget the evaluator session")
    p.set_defaults(func=cmd_reset)

    p = sub.add_parser("disable", help="Stop gating in this project")
    p.set_defaults(func=cmd_disable)

    p = sub.add_parser("enable", help="Resume gating in this project")
    p.set_defaults(func=cmd_enable)

    p = sub.add_parser("hook", help="Handle an agent hook event (payload on stdin)")
    p.add_argument("event")
    p.set_defaults(func=cmd_hook, background_join_seconds=HOOK_BACKGROUND_JOIN_SECONDS)

    p = sub.add_parser("setup-oh", help="Configure Open Horizons logging")
    p.set_defaults(func=cmd_setup_oh)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(os.environ.get("SUPEREGO_DEBUG") == "1")

    try:
        return args.func(args)
    except StorageCorrupt as e:
        print(f"sg: {e}", file=sys.stderr)
        return EXIT_CORRUPT
    except SuperegoError as e:
        print(f"sg: {e}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        wait_for_background(getattr(args, "background_join_seconds", REQUEST_TIMEOUT_SECONDS))


if __name__ == "__main__":
    sys.exit(main())
