"""
Railway-specific gateway config injection.

Railway's reverse proxy forwards requests from internal IPs with
X-Forwarded-For headers, so the gateway sees every Control UI request as
an untrusted proxy connection and demands device pairing. This module
merges a flag that disables device auth for the Control UI (token and
password auth still apply) into the gateway config file inside the
state dir.

The file is ordinary state: it is backed up and restored like any other.

Invariants:
    - Runs after restore, so a fresh state dir is not blocked from restoring
    - Existing user settings are preserved
    - An unparseable config file is left untouched
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_CONFIG: dict[str, Any] = {
    "gateway": {
        "controlUi": {
            "dangerouslyDisableDeviceAuth": True,
        },
    },
}


def merge_railway_config(cfg: dict[str, Any]) -> dict[str, Any]:
    """Apply the Railway overrides to a parsed gateway config in place."""
    control_ui = cfg.setdefault("gateway", {}).setdefault("controlUi", {})
    control_ui["dangerouslyDisableDeviceAuth"] = True

    # Re-enable plugins disabled by older entrypoints.
    plugins = cfg.get("plugins")
    if isinstance(plugins, dict):
        if plugins.get("enabled") is False:
            del plugins["enabled"]
        slots = plugins.get("slots")
        if isinstance(slots, dict) and slots.get("memory") == "none":
            del slots["memory"]
            if not slots:
                del plugins["slots"]
        if not plugins:
            del cfg["plugins"]

    return cfg


def inject_gateway_config(state_dir: str | Path, config_name: str = "openclaw.json") -> Path | None:
    """Create or update the gateway config file with Railway settings.

    Args:
        state_dir: Gateway state directory
        config_name: Config file name inside state_dir

    Returns:
        Path of the written file, or None if it was left untouched
    """
    config_file = Path(state_dir) / config_name

    if config_file.exists():
        logger.info(f"Merging Railway config into existing {config_file}...")
        try:
            cfg = json.loads(config_file.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Cannot parse {config_file}, leaving it untouched: {e}")
            return None
        if not isinstance(cfg, dict):
            logger.error(f"{config_file} is not a JSON object, leaving it untouched")
            return None
        cfg = merge_railway_config(cfg)
    else:
        logger.info(f"Creating Railway config at {config_file}...")
        config_file.parent.mkdir(parents=True, exist_ok=True)
        cfg = json.loads(json.dumps(DEFAULT_GATEWAY_CONFIG))

    config_file.write_text(json.dumps(cfg, indent=2) + "\n", encoding="utf-8")
    return config_file
