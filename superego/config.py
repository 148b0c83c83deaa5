"""Configuration for superego.

Reads `.superego/config.yaml`. The file is deliberately line-oriented rather
than full YAML:

    key: value          one setting per line; the value is read as a YAML scalar
                        (so quotes are stripped and integers are typed)
    # comment           ignored
    (blank lines)       ignored

Unknown keys are ignored and every recognized key falls back to its default
independently, so partial files are valid.

Environment variables are read exactly once, in `Settings.from_environment`,
and handed to components as plain values.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml

from superego.paths import get_config_file, get_global_oh_config_file

logger = logging.getLogger(__name__)

DEFAULT_OH_API_URL = "http://localhost:3001"


class Mode(StrEnum):
    """Evaluation mode."""

    # Automatic evaluation at checkpoints (user prompt, stop, precompact)
    ALWAYS = "always"
    # Evaluation only when explicitly requested via `sg evaluate`
    PULL = "pull"

    @classmethod
    def parse(cls, value: str) -> Mode | None:
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class Config:
    """Settings read from `.superego/config.yaml`."""

    mode: Mode = Mode.ALWAYS
    # Number of recent decisions included in carryover context
    carryover_decision_count: int = 2
    # Minutes of recent messages included in carryover context
    carryover_window_minutes: int = 5
    oh_endeavor_id: str | None = None
    model: str = "sonnet"
    eval_timeout_seconds: int = 60


def _parse_scalar(raw: str) -> Any:
    """Parse a config value as a YAML scalar, falling back to the raw text."""
    try:
        value = yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw
    if isinstance(value, (dict, list)):
        return raw
    return value


def _as_int(value: Any) -> int | None:
    # bool is an int subclass; "yes"/"true" must not become 1
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def parse_config(content: str) -> Config:
    """Parse config file content into a Config.

    Args:
        content: Raw text of config.yaml.

    Returns:
        Config with defaults for any key that is missing or unparsable.
    """
    values: dict[str, Any] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if ":" not in line:
            continue

        key, raw = line.split(":", 1)
        key = key.strip()
        value = _parse_scalar(raw.strip())

        if key == "mode":
            mode = Mode.parse(str(value)) if value is not None else None
            if mode is None:
                logger.warning(f"Ignoring unknown mode {raw.strip()!r} in config")
                continue
            values["mode"] = mode
        elif key in ("carryover_decision_count", "carryover_window_minutes", "eval_timeout_seconds"):
            number = _as_int(value)
            if number is None or number < 0:
                logger.warning(f"Ignoring non-integer {key}={raw.strip()!r} in config")
                continue
            values[key] = number
        elif key == "oh_endeavor_id":
            if value is not None and str(value).strip():
                values["oh_endeavor_id"] = str(value).strip()
        elif key == "model":
            if value is not None and str(value).strip():
                values["model"] = str(value).strip()
        # Unknown keys are ignored

    return Config(**values)


def load_config(superego_dir: Path) -> Config:
    """Load config from `.superego/config.yaml`, defaults if absent or unreadable."""
    path = get_config_file(superego_dir)
    if not path.exists():
        return Config()
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Failed to read {path}: {e}")
        return Config()
    return parse_config(content)


@dataclass(frozen=True)
class OhConfig:
    """Open Horizons API credentials."""

    api_url: str
    api_key: str


def _load_global_oh_config(path: Path) -> OhConfig | None:
    """Read credentials saved by `sg setup-oh`."""
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable Open Horizons config {path}: {e}")
        return None
    api_key = data.get("api_key") if isinstance(data, dict) else None
    if not api_key:
        return None
    return OhConfig(api_url=data.get("api_url") or DEFAULT_OH_API_URL, api_key=api_key)


@dataclass(frozen=True)
class Settings:
    """Everything a superego invocation needs, resolved once at startup."""

    superego_dir: Path
    config: Config = field(default_factory=Config)
    oh: OhConfig | None = None
    oh_endeavor_id: str | None = None
    disabled_by_env: bool = False
    debug: bool = False

    @classmethod
    def from_environment(
        cls,
        superego_dir: Path,
        environ: Mapping[str, str] | None = None,
        home: Path | None = None,
    ) -> Settings:
        """Build settings from the config file plus the process environment.

        Args:
            superego_dir: Project `.superego` directory.
            environ: Environment to read. Defaults to os.environ.
            home: Home directory for the global Open Horizons config.

        Returns:
            Settings with environment overrides applied.
        """
        if environ is None:
            environ = os.environ

        config = load_config(superego_dir)

        oh: OhConfig | None = None
        api_key = environ.get("OH_API_KEY")
        if api_key:
            oh = OhConfig(api_url=environ.get("OH_API_URL") or DEFAULT_OH_API_URL, api_key=api_key)
        else:
            oh = _load_global_oh_config(get_global_oh_config_file(home))

        # OH_ENDEAVOR_ID takes priority over the config file
        endeavor_id = environ.get("OH_ENDEAVOR_ID") or config.oh_endeavor_id

        return cls(
            superego_dir=superego_dir,
            config=config,
            oh=oh,
            oh_endeavor_id=endeavor_id or None,
            disabled_by_env=environ.get("SUPEREGO_DISABLED") == "1",
            debug=environ.get("SUPEREGO_DEBUG") == "1",
        )
