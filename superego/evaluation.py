"""Parse superego evaluations out of free-form model output.

The evaluator is asked to answer with a JSON object such as:

    {"phase": "ready", "confidence": 0.9, "approved_scope": "implement auth",
     "concerns": [{"type": "scope_creep", "description": "..."}],
     "suggestion": "...", "reason": "..."}

Its answer is untrusted text and usually arrives wrapped in prose or markdown
fences. Extraction is permissive about the wrapping; validation is strict about
the payload shape. A missed extraction fails closed (the gate blocks), while a
wrongly accepted payload could unlock writes.

Known limitation: only the first fence is considered. Nested or multiple
fences are not disambiguated.
"""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel, ConfigDict, ValidationError

from superego.errors import MalformedOutput, NoStructuredOutput
from superego.phase_state import Phase

logger = logging.getLogger(__name__)

JSON_FENCE = "```json"
FENCE = "```"


class Concern(BaseModel):
    type: str
    description: str


class Evaluation(BaseModel):
    """A single phase judgment produced by the evaluator."""

    model_config = ConfigDict(extra="ignore")

    phase: str
    confidence: float | None = None
    approved_scope: str | None = None
    concerns: list[Concern] | None = None
    suggestion: str | None = None
    reason: str | None = None

    @property
    def confidence_in_range(self) -> bool:
        return self.confidence is None or 0.0 <= self.confidence <= 1.0

    def target_phase(self) -> Phase | None:
        """The Phase this evaluation asks for, or None if the string is unknown."""
        return Phase.parse(self.phase)


def extract_json(text: str) -> str | None:
    """Locate a JSON object embedded in free text.

    Tried in order:
    1. A fence tagged ```json - the content up to the closing fence.
    2. The first generic fence - skipping its language line.
    3. The whole text, if it starts with `{` once trimmed.

    Returns:
        The trimmed JSON candidate, or None if nothing looks like JSON.
    """
    start = text.find(JSON_FENCE)
    if start != -1:
        content_start = start + len(JSON_FENCE)
        end = text.find(FENCE, content_start)
        if end != -1:
            return text[content_start:end].strip()

    start = text.find(FENCE)
    if start != -1:
        content_start = start + len(FENCE)
        newline = text.find("\n", content_start)
        if newline != -1:
            content_start = newline + 1
        end = text.find(FENCE, content_start)
        if end != -1:
            return text[content_start:end].strip()

    trimmed = text.strip()
    if trimmed.startswith("{"):
        return trimmed

    return None


def parse_evaluation(text: str) -> Evaluation:
    """Parse an Evaluation from the evaluator's free-form answer.

    Raises:
        NoStructuredOutput: No JSON object could be located.
        MalformedOutput: JSON was found but is invalid or has the wrong shape.
    """
    payload = extract_json(text)
    if payload is None:
        raise NoStructuredOutput("No JSON found in evaluator response")

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedOutput(f"Evaluator JSON is invalid: {e}") from e

    if not isinstance(data, dict):
        raise MalformedOutput(f"Evaluator JSON must be an object, got {type(data).__name__}")

    try:
        evaluation = Evaluation.model_validate(data)
    except ValidationError as e:
        raise MalformedOutput(f"Evaluator JSON has the wrong shape: {e}") from e

    if not evaluation.confidence_in_range:
        logger.warning(f"Evaluator confidence {evaluation.confidence} is outside 0..1")

    return evaluation
