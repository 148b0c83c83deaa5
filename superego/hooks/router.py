"""
Hook Router.

Single entry point for agent hook events (`sg hook <event>`). Reads the hook
payload from stdin, dispatches on the event and prints the agent's wire
format on stdout.

Events:
- PreToolUse: gate check; the only event that can deny anything.
- UserPromptSubmit: evaluation (mode always), then pending feedback is
  injected as additional context.
- Stop / PreCompact: evaluation (mode always). Never blocks stopping.
- SessionStart: the phase contract plus the current phase.

Architecture:
- Handlers return CanonicalHookOutput; conversion to JSON happens only at
  final output.
- An uninitialized project (no `.superego`), SUPEREGO_DISABLED=1 and the
  evaluator's own transcripts all short-circuit to allow.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from superego.config import Mode
from superego.errors import StorageCorrupt, StorageIoFailed
from superego.feedback import clear_feedback, read_feedback
from superego.hooks.schemas import (
    CanonicalHookOutput,
    ClaudeGeneralHookOutput,
    ClaudeHookOutput,
    ClaudeHookSpecificOutput,
    ClaudeStopHookOutput,
    HookContext,
)
from superego.paths import find_superego_dir, is_superego_path
from superego.prompts import render_contract
from superego.runtime import Runtime

logger = logging.getLogger(__name__)

FEEDBACK_HEADER = "SUPEREGO FEEDBACK:"

# Events that run an evaluation, and the trigger recorded with the decision
EVALUATION_TRIGGERS = {
    "UserPromptSubmit": "user_prompt",
    "Stop": "stop",
    "PreCompact": "precompact",
}


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value:
            return value
    return None


class HookRouter:
    def __init__(self, runtime: Runtime | None):
        self.runtime = runtime
        self._handlers: dict[str, Callable[[Runtime, HookContext], CanonicalHookOutput]] = {
            "PreToolUse": self._pre_tool_use,
            "UserPromptSubmit": self._user_prompt_submit,
            "Stop": self._evaluate_checkpoint,
            "PreCompact": self._evaluate_checkpoint,
            "SessionStart": self._session_start,
        }

    @classmethod
    def for_directory(cls, cwd: Path, environ: Mapping[str, str] | None = None) -> HookRouter:
        superego_dir = find_superego_dir(cwd)
        if superego_dir is None:
            return cls(None)
        return cls(Runtime.load(superego_dir, environ))

    def normalize_input(self, raw_input: dict[str, Any], event: str | None = None) -> HookContext:
        """Create a HookContext from a snake_case or camelCase payload.

        An explicit `event` (from the command line) wins over the payload's
        hook_event_name.
        """
        hook_event = event or _first(raw_input, "hook_event_name", "hookEventName") or ""
        tool_input = raw_input.get("tool_input", raw_input.get("toolInput"))
        if not isinstance(tool_input, (dict, list)):
            tool_input = {}
        return HookContext(
            session_id=_first(raw_input, "session_id", "sessionId"),
            hook_event=hook_event,
            tool_name=_first(raw_input, "tool_name", "toolName"),
            tool_input=tool_input,
            transcript_path=_first(raw_input, "transcript_path", "transcriptPath"),
            cwd=raw_input.get("cwd"),
            raw_input=raw_input,
        )

    def execute(self, ctx: HookContext) -> CanonicalHookOutput:
        runtime = self.runtime
        if runtime is None:
            return CanonicalHookOutput(metadata={"skipped": "not initialized"})
        if runtime.settings.disabled_by_env:
            return CanonicalHookOutput(metadata={"skipped": "SUPEREGO_DISABLED"})
        if is_superego_path(ctx.transcript_path):
            return CanonicalHookOutput(metadata={"skipped": "superego internal"})

        handler = self._handlers.get(ctx.hook_event)
        if handler is None:
            logger.debug(f"No handler for hook event {ctx.hook_event!r}")
            return CanonicalHookOutput()

        try:
            return handler(runtime, ctx)
        except (StorageCorrupt, StorageIoFailed) as e:
            logger.error(f"{ctx.hook_event}: {e}")
            if ctx.hook_event == "PreToolUse":
                return CanonicalHookOutput(verdict="deny", reason=str(e))
            return CanonicalHookOutput(system_message=f"superego: {e}")
        except Exception as e:
            logger.exception(f"{ctx.hook_event} handler failed")
            if ctx.hook_event == "PreToolUse":
                return CanonicalHookOutput(verdict="deny", reason=f"superego could not check this tool call: {e}")
            return CanonicalHookOutput(system_message=f"superego failed: {e}")

    # --- Handlers ---

    def _pre_tool_use(self, runtime: Runtime, ctx: HookContext) -> CanonicalHookOutput:
        result = runtime.gate.run_check(
            ctx.tool_name or "",
            evaluation_failed=runtime.decisions.last_failed(),
        )
        logger.debug(f"PreToolUse {ctx.tool_name}: {result.verdict.value} ({result.reason})")
        metadata = {"reason": result.reason, "phase": result.phase, **result.metadata}
        if result.allowed:
            return CanonicalHookOutput(reason=result.reason, context_injection=result.message, metadata=metadata)
        return CanonicalHookOutput(verdict="deny", reason=result.message or result.reason, metadata=metadata)

    def _run_evaluation(self, runtime: Runtime, ctx: HookContext) -> str | None:
        """Evaluate the transcript when automatic evaluation is on.

        Returns:
            An error description if the evaluation failed, else None.
        """
        if runtime.settings.config.mode != Mode.ALWAYS or not ctx.transcript_path:
            return None
        report = runtime.evaluator.evaluate_transcript(
            Path(ctx.transcript_path), trigger=EVALUATION_TRIGGERS[ctx.hook_event]
        )
        return report.error

    def _user_prompt_submit(self, runtime: Runtime, ctx: HookContext) -> CanonicalHookOutput:
        error = self._run_evaluation(runtime, ctx)
        output = CanonicalHookOutput()
        if error:
            output.system_message = f"superego evaluation failed: {error}"

        feedback = read_feedback(runtime.superego_dir)
        if feedback:
            output.context_injection = f"{FEEDBACK_HEADER}\n{feedback}"
            clear_feedback(runtime.superego_dir)
        return output

    def _evaluate_checkpoint(self, runtime: Runtime, ctx: HookContext) -> CanonicalHookOutput:
        error = self._run_evaluation(runtime, ctx)
        if error:
            return CanonicalHookOutput(system_message=f"superego evaluation failed: {error}")
        return CanonicalHookOutput()

    def _session_start(self, runtime: Runtime, ctx: HookContext) -> CanonicalHookOutput:
        state = runtime.store.load()
        return CanonicalHookOutput(context_injection=render_contract(state.phase.value, state.approved_scope))

    # --- Output ---

    def output_for_claude(self, result: CanonicalHookOutput, event: str) -> ClaudeHookOutput:
        """Format for Claude Code."""
        if event == "Stop":
            # Evaluation never keeps the agent from stopping
            return ClaudeStopHookOutput(decision="approve", systemMessage=result.system_message)

        output = ClaudeGeneralHookOutput(systemMessage=result.system_message)
        if event == "PreToolUse":
            output.hookSpecificOutput = ClaudeHookSpecificOutput(
                hookEventName=event,
                permissionDecision=result.verdict,
                permissionDecisionReason=result.reason,
                additionalContext=result.context_injection,
            )
        elif result.context_injection:
            output.hookSpecificOutput = ClaudeHookSpecificOutput(
                hookEventName=event,
                additionalContext=result.context_injection,
            )
        return output


def parse_payload(text: str) -> dict[str, Any]:
    """Parse the hook payload. Empty or unreadable input yields {}."""
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring malformed hook payload: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def run_hook(
    event: str,
    payload_text: str,
    cwd: Path,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Handle one hook invocation and return the JSON to print."""
    raw_input = parse_payload(payload_text)
    if raw_input.get("cwd"):
        cwd = Path(raw_input["cwd"])

    router = HookRouter.for_directory(cwd, environ)
    ctx = router.normalize_input(raw_input, event)
    result = router.execute(ctx)
    output = router.output_for_claude(result, ctx.hook_event)
    return output.model_dump_json(exclude_none=True)
