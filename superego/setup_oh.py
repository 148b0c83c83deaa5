"""Interactive setup for the Open Horizons integration (`sg setup-oh`).

Opens the API-keys page, asks for a key, verifies it against the API and
writes `~/.config/openhorizons/config.json`, which superego reads whenever
OH_API_KEY is not set.
"""

from __future__ import annotations

import json
import logging
import webbrowser
from collections.abc import Callable
from pathlib import Path

from superego.config import OhConfig
from superego.errors import RemoteApiError, SuperegoError
from superego.oh_client import OhClient

logger = logging.getLogger(__name__)

OH_APP_URL = "https://app.openhorizons.me"
API_KEYS_URL = f"{OH_APP_URL}/settings/api-keys"


def verify_api_key(client: OhClient) -> bool | None:
    """Check a key with a test request.

    Returns:
        True if accepted, False if rejected, None if the API could not be reached.
    """
    try:
        client.get_contexts()
    except RemoteApiError as e:
        logger.debug(f"API key rejected: {e}")
        return False
    except SuperegoError as e:
        logger.warning(f"Could not verify API key: {e}")
        return None
    return True


def write_oh_config(config_path: Path, config: OhConfig) -> None:
    config_path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"api_key": config.api_key, "api_url": config.api_url}
    config_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def run_setup(
    config_path: Path,
    prompt: Callable[[str], str] = input,
    out: Callable[[str], None] = print,
    open_browser: Callable[[str], bool] = webbrowser.open,
    client_factory: Callable[[OhConfig], OhClient] = OhClient,
    api_url: str = OH_APP_URL,
) -> int:
    """Run the wizard. Returns a process exit code."""
    out("Open Horizons Setup")
    out("===================\n")

    if config_path.exists():
        out(f"Existing configuration found at:\n  {config_path}\n")
        if not prompt("Overwrite? [y/N]: ").strip().lower().startswith("y"):
            out("Setup cancelled.")
            return 0

    out("Step 1: Get your API key")
    out(f"Opening {API_KEYS_URL} in your browser...\n")
    if not open_browser(API_KEYS_URL):
        out(f"Could not open a browser. Please open this URL manually:\n  {API_KEYS_URL}\n")

    out("1. Sign in to your Open Horizons account")
    out("2. Create a new API key (or copy an existing one)")
    out("3. Paste the key below\n")
    api_key = prompt("API Key: ").strip()
    if not api_key:
        out("No API key provided. Setup cancelled.")
        return 1

    config = OhConfig(api_url=api_url, api_key=api_key)
    out("\nVerifying API key...")
    verified = verify_api_key(client_factory(config))
    if verified is False:
        out("API key verification failed. Please check your key and try again.")
        return 1
    if verified is None:
        out("Warning: could not reach Open Horizons. Proceeding anyway...\n")
    else:
        out("API key verified.\n")

    write_oh_config(config_path, config)
    out(f"Step 2: Configuration saved to {config_path}\n")
    out("Set OH_ENDEAVOR_ID (or oh_endeavor_id in .superego/config.yaml) to choose")
    out("the endeavor that receives superego feedback.")
    return 0
