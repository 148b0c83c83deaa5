from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, Field

# --- Input Schemas (Context) ---


class HookContext(BaseModel):
    """
    Normalized input context for one hook invocation.

    Claude Code sends snake_case keys; other agents (OpenCode) send camelCase.
    Both are folded into these fields by router.normalize_input().
    """

    session_id: str | None = Field(None, description="The agent's session identifier.")
    hook_event: str = Field(
        ..., description="The event name (e.g., SessionStart, PreToolUse)."
    )

    # Event Data
    tool_name: str | None = None
    tool_input: dict[str, Any] | list[Any] = Field(default_factory=dict)

    transcript_path: str | None = None
    cwd: str | None = None

    # Raw Input (for fallback/passthrough)
    raw_input: dict[str, Any] = Field(default_factory=dict)


# --- Claude Code Hook Schemas ---


class ClaudeHookSpecificOutput(BaseModel):
    """
    Nested output structure for Claude Code hooks (PreToolUse, UserPromptSubmit,
    SessionStart).
    """

    hookEventName: str
    permissionDecision: Literal["allow", "deny", "ask"] | None = None
    permissionDecisionReason: str | None = None
    additionalContext: str | None = None


class ClaudeStopHookOutput(BaseModel):
    """
    Output structure specifically for the Claude 'Stop' event.
    Unlike other events, 'Stop' uses top-level fields instead of hookSpecificOutput.
    """

    decision: Literal["approve", "block"] | None = None
    reason: str | None = None
    systemMessage: str | None = None


class ClaudeGeneralHookOutput(BaseModel):
    """
    Output structure for standard Claude Code hooks (PreToolUse, etc.).
    """

    systemMessage: str | None = None
    hookSpecificOutput: ClaudeHookSpecificOutput | None = None


# Union type for any Claude Hook Output
ClaudeHookOutput: TypeAlias = ClaudeGeneralHookOutput | ClaudeStopHookOutput


# --- Canonical Internal Schema ---


class CanonicalHookOutput(BaseModel):
    """
    Internal normalized format produced by every event handler, converted to
    the agent's wire format only at the end.
    """

    verdict: Literal["allow", "deny"] = "allow"
    # Explanation surfaced to the agent when verdict is deny
    reason: str | None = None
    context_injection: str | None = None
    system_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
