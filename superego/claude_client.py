"""Claude CLI invocation for superego evaluation.

Runs `claude -p --output-format json` non-interactively and returns the JSON
envelope it prints:

    {"type": "result", "subtype": "success", "is_error": false,
     "duration_ms": 2100, "result": "<free text>", "session_id": "...",
     "total_cost_usd": 0.004}

The `result` text is what the evaluation parser consumes. Every invocation is
bounded by a timeout; a timeout is an EvaluationTimeout, which the gate treats
exactly like unparsable output.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Protocol

from pydantic import BaseModel, ValidationError

from superego.errors import EvaluationTimeout, MalformedOutput, ProcessInvocationFailed

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sonnet"
DEFAULT_TIMEOUT_SECONDS = 60

# Hooks fired inside the evaluator session must not gate or evaluate it again
RECURSION_GUARD_ENV = {"SUPEREGO_DISABLED": "1"}


class ClaudeResponse(BaseModel):
    """Envelope printed by `claude --output-format json`."""

    type: str
    subtype: str | None = None
    is_error: bool = False
    duration_ms: int = 0
    result: str = ""
    session_id: str = ""
    total_cost_usd: float = 0.0


@dataclass
class InvokeOptions:
    model: str = DEFAULT_MODEL
    # Evaluator session to resume, so the evaluator keeps its own memory
    session_id: str | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    no_session_persistence: bool = False


class ModelInvoker(Protocol):
    def invoke(self, system_prompt: str, message: str, options: InvokeOptions) -> ClaudeResponse: ...


class ClaudeCli:
    """ModelInvoker backed by the `claude` command line."""

    def __init__(self, binary: str = "claude", cwd: str | None = None):
        self.binary = binary
        self.cwd = cwd

    def build_command(self, system_prompt: str, message: str, options: InvokeOptions) -> list[str]:
        cmd = [
            self.binary,
            "-p",
            "--output-format",
            "json",
            "--system-prompt",
            system_prompt,
            "--model",
            options.model,
        ]
        if options.session_id:
            cmd += ["--resume", options.session_id]
        if options.no_session_persistence:
            cmd.append("--no-session-persistence")
        cmd.append(message)
        return cmd

    def invoke(self, system_prompt: str, message: str, options: InvokeOptions) -> ClaudeResponse:
        """Run the evaluator once.

        Raises:
            EvaluationTimeout: The CLI did not finish within options.timeout_seconds.
            ProcessInvocationFailed: The CLI could not run, exited non-zero,
                or reported is_error.
            MalformedOutput: stdout is not a valid response envelope.
        """
        cmd = self.build_command(system_prompt, message, options)
        try:
            result = subprocess.run(
                cmd,
                cwd=self.cwd,
                env={**os.environ, **RECURSION_GUARD_ENV},
                capture_output=True,
                text=True,
                errors="replace",
                timeout=options.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise EvaluationTimeout(options.timeout_seconds) from e
        except OSError as e:
            raise ProcessInvocationFailed(self.binary, str(e)) from e

        if result.returncode != 0:
            raise ProcessInvocationFailed(self.binary, result.stderr.strip() or f"exit code {result.returncode}")

        try:
            response = ClaudeResponse.model_validate_json(result.stdout)
        except ValidationError as e:
            raise MalformedOutput(f"Failed to parse Claude response: {e.error_count()} error(s)") from e

        if response.is_error:
            raise ProcessInvocationFailed(self.binary, response.result or response.subtype or "is_error")

        logger.debug(
            f"Evaluator answered in {response.duration_ms}ms "
            f"(cost ${response.total_cost_usd:.4f}, session {response.session_id})"
        )
        return response
