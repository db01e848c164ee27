from pathlib import Path
from typing import Optional

import yaml

from patchgate_core.ttl import hours_to_ttl_ms

DEFAULT_CONFIG: dict = {
    "store": "sqlite",  # "sqlite" | "memory"
    "store_path": ".patchgate.db",
    "session_ttl_hours": 24,
    "github_timeout": 30,  # seconds, per GitHub API call
    "commit_message_prefix": "chore(geo)",
    "commit_scan_depth": 50,  # recent commits inspected for existing session trailers
    "max_payload_bytes": 1024 * 1024,
    "host": "127.0.0.1",
    "port": 8787,
}


def load_config(config_path: str = ".patchgate.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .patchgate.yml in the current directory
      3. CLI argument overrides

    The GitHub write token is not part of the config; the CLI resolves it at
    apply time (see patchgate_cli.auth) and the API takes it per request.
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    return config


def ttl_ms_from_config(config: dict) -> int:
    """Session TTL in milliseconds from ``session_ttl_hours``."""
    hours = float(config.get("session_ttl_hours", DEFAULT_CONFIG["session_ttl_hours"]))
    try:
        return hours_to_ttl_ms(hours)
    except ValueError as e:
        raise ValueError(f"session_ttl_hours: {e}") from e
