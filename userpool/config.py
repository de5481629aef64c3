"""
Pool settings from environment variables and ``~/.userpool/config.json``.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional

from .errors import ConfigurationError

_ENV_VARS = {
    "user_pool_id": "USERPOOL_ID",
    "client_id": "USERPOOL_CLIENT_ID",
    "endpoint": "USERPOOL_ENDPOINT",
    "paranoia": "USERPOOL_PARANOIA",
    "timeout": "USERPOOL_TIMEOUT",
    "storage": "USERPOOL_STORAGE",
}


@dataclass
class PoolSettings:
    user_pool_id: str
    client_id: str
    endpoint: Optional[str] = None
    paranoia: int = 0
    timeout: float = 20.0
    storage: str = "keyring"

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


# ---------------------------------------------------------------------------
# Config file helpers (~/.userpool/config.json)
# ---------------------------------------------------------------------------


def _config_path() -> Path:
    return Path.home() / ".userpool" / "config.json"


def load_config() -> dict[str, Any]:
    """Load the local config from ``~/.userpool/config.json``."""
    path = _config_path()
    if path.exists():
        try:
            return json.loads(path.read_text())
        except (json.JSONDecodeError, OSError):
            return {}
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Persist config to ``~/.userpool/config.json``."""
    path = _config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, indent=2) + "\n")
    path.chmod(0o600)


def load_settings(**overrides: Any) -> PoolSettings:
    """Resolve settings: explicit overrides, then env vars, then the config file."""
    cfg = load_config()
    values: dict[str, Any] = {}
    for field_name, env_var in _ENV_VARS.items():
        value = overrides.get(field_name)
        if value is None:
            value = os.environ.get(env_var) or None
        if value is None:
            value = cfg.get(field_name)
        if value is not None:
            values[field_name] = value

    if not values.get("user_pool_id") or not values.get("client_id"):
        raise ConfigurationError(
            "No user pool configured. Run `userpool configure` or set "
            "USERPOOL_ID and USERPOOL_CLIENT_ID."
        )
    try:
        if "paranoia" in values:
            values["paranoia"] = int(values["paranoia"])
        if "timeout" in values:
            values["timeout"] = float(values["timeout"])
    except ValueError as exc:
        raise ConfigurationError(f"Invalid numeric setting: {exc}") from exc
    return PoolSettings(**values)
