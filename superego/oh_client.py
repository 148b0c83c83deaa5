"""
Open Horizons decision logging.

Optional integration that posts superego feedback to an Open Horizons
endeavor. Enabled when an API key is available (OH_API_KEY, or the file
written by `sg setup-oh`) AND an endeavor id is configured (OH_ENDEAVOR_ID or
`oh_endeavor_id` in .superego/config.yaml). Without both, it is a no-op.

Non-blocking: posting runs on a background thread after the verdict has been
produced. Failures are logged and never affect the gate.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ValidationError

from superego.config import OhConfig, Settings
from superego.errors import (
    LoggingNotConfigured,
    MalformedOutput,
    ProcessInvocationFailed,
    RemoteApiError,
    SuperegoError,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10

_background_threads: list[threading.Thread] = []


class OhContext(BaseModel):
    """A context (personal or shared space)."""

    id: str
    name: str
    description: str | None = None


class OhEndeavor(BaseModel):
    """An endeavor (mission, aim, initiative, task)."""

    id: str
    title: str
    description: str | None = None
    node_type: str | None = None


class OhClient:
    """Minimal Open Horizons API client over urllib."""

    def __init__(self, config: OhConfig, timeout: float = REQUEST_TIMEOUT_SECONDS):
        self.config = config
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        url = f"{self.config.api_url.rstrip('/')}{path}"
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(url, data=data, headers=headers, method=method)

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                body = response.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            raise RemoteApiError(e.code, body) from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise ProcessInvocationFailed(f"{method} {url}", str(e)) from e

        try:
            return json.loads(body) if body else None
        except json.JSONDecodeError as e:
            raise MalformedOutput(f"Failed to parse Open Horizons response: {e}: {body[:200]}") from e

    def get_contexts(self) -> list[OhContext]:
        """Contexts the user can access. Accepts `{contexts: [...]}` or a bare array."""
        data = self._request("GET", "/api/contexts")
        if isinstance(data, dict):
            data = data.get("contexts")
        return _validate_list(OhContext, data)

    def get_endeavors(self, context_id: str) -> list[OhEndeavor]:
        """Endeavors in a context. Accepts `{nodes: [...]}` or a bare array."""
        query = urllib.parse.urlencode({"contextId": context_id})
        data = self._request("GET", f"/api/dashboard?{query}")
        if isinstance(data, dict):
            data = data.get("nodes")
        return _validate_list(OhEndeavor, data)

    def is_available(self) -> bool:
        try:
            self.get_contexts()
        except SuperegoError as e:
            logger.debug(f"Open Horizons unavailable: {e}")
            return False
        return True

    def log_decision(self, endeavor_id: str, content: str, log_date: str | None = None) -> str:
        """Attach a markdown log entry to an endeavor.

        Returns:
            The id of the created log entry ("unknown" if the API omits it).
        """
        payload = {
            "entity_type": "endeavor",
            "entity_id": endeavor_id,
            "content": content,
            "content_type": "markdown",
            "log_date": log_date or datetime.now(UTC).strftime("%Y-%m-%d"),
        }
        data = self._request("POST", "/api/logs", payload)
        log = data.get("log") if isinstance(data, dict) else None
        if isinstance(log, dict) and log.get("id"):
            return str(log["id"])
        return "unknown"


def _validate_list(model: type[BaseModel], data: Any) -> list[Any]:
    if not isinstance(data, list):
        raise MalformedOutput(f"Expected a list of {model.__name__}, got {type(data).__name__}")
    try:
        return [model.model_validate(item) for item in data]
    except ValidationError as e:
        raise MalformedOutput(f"Unexpected {model.__name__} shape: {e}") from e


@dataclass
class OhIntegration:
    """API client plus the endeavor that receives superego feedback."""

    client: OhClient
    endeavor_id: str

    @classmethod
    def from_settings(cls, settings: Settings) -> OhIntegration:
        """Raises LoggingNotConfigured if the API key or endeavor id is missing."""
        if settings.oh is None:
            raise LoggingNotConfigured("No Open Horizons API key (set OH_API_KEY or run `sg setup-oh`)")
        if not settings.oh_endeavor_id:
            raise LoggingNotConfigured("No endeavor id (set OH_ENDEAVOR_ID or oh_endeavor_id in config.yaml)")
        return cls(client=OhClient(settings.oh), endeavor_id=settings.oh_endeavor_id)

    def log_feedback(self, feedback: str) -> str:
        content = f"## Superego Feedback\n\n{feedback}"
        return self.client.log_decision(self.endeavor_id, content)


def _log_feedback_sync(integration: OhIntegration, feedback: str) -> None:
    try:
        log_id = integration.log_feedback(feedback)
        logger.debug(f"Feedback logged to Open Horizons: {log_id}")
    except SuperegoError as e:
        logger.warning(f"Open Horizons logging failed: {e}")


def post_feedback_in_background(settings: Settings, feedback: str) -> bool:
    """Post feedback to Open Horizons without blocking the caller.

    Returns:
        True if a post was started, False if the integration is not configured.
    """
    try:
        integration = OhIntegration.from_settings(settings)
    except LoggingNotConfigured as e:
        logger.debug(f"Skipping Open Horizons logging: {e}")
        return False

    thread = threading.Thread(
        target=_log_feedback_sync,
        args=(integration, feedback),
        daemon=True,
    )
    thread.start()
    _background_threads.append(thread)
    return True


def wait_for_background(timeout: float = REQUEST_TIMEOUT_SECONDS) -> None:
    """Give pending posts a bounded chance to finish before the process exits.

    `timeout` is the budget for all pending posts together; whatever is still
    running afterwards is abandoned with the daemon thread.
    """
    deadline = time.monotonic() + timeout
    while _background_threads:
        _background_threads.pop().join(max(0.0, deadline - time.monotonic()))
