"""
Live hub configuration.

Loads conf/streamhub.yml (or the file named by STREAMHUB_CONFIG), then applies
STREAMHUB_* environment overrides:
- host / port the server binds to
- ws_path the WebSocket endpoint is mounted on
- idle_timeout_s / reap_interval_s for the optional idle reaper
- log_level for the streamhub loggers
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "conf/streamhub.yml"


@dataclass
class HubConfig:
    host: str = "0.0.0.0"
    port: int = 4200
    ws_path: str = "/ws"
    idle_timeout_s: float = 0.0    # 0 disables idle reaping
    reap_interval_s: float = 30.0
    log_level: str = "INFO"

    def validate(self) -> None:
        if not self.ws_path.startswith("/"):
            raise ValueError(f"ws_path must start with '/': {self.ws_path!r}")
        if self.idle_timeout_s < 0:
            raise ValueError("idle_timeout_s must be >= 0")
        if self.reap_interval_s <= 0:
            raise ValueError("reap_interval_s must be > 0")
        if not 0 < self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        self.log_level = self.log_level.upper()
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"unknown log_level: {self.log_level!r}")


_FIELD_TYPES = {
    "host": str,
    "port": int,
    "ws_path": str,
    "idle_timeout_s": float,
    "reap_interval_s": float,
    "log_level": str,
}

_ENV_OVERRIDES = {
    "STREAMHUB_HOST": "host",
    "STREAMHUB_PORT": "port",
    "STREAMHUB_WS_PATH": "ws_path",
    "STREAMHUB_IDLE_TIMEOUT": "idle_timeout_s",
    "STREAMHUB_REAP_INTERVAL": "reap_interval_s",
    "STREAMHUB_LOG_LEVEL": "log_level",
}


def _coerce(name: str, value: Any, source: str) -> Any:
    cast = _FIELD_TYPES[name]
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{source}: {name} must be a {cast.__name__}, got {value!r}")
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{source}: {name} must be a {cast.__name__}, got {value!r}") from e


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        logger.info("[HubConfig] %s not found, using defaults", config_path)
        return {}

    logger.info("[HubConfig] Loading configuration from %s", config_path)
    with open(config_path, "r") as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a mapping at the top level")

    known = {f.name for f in fields(HubConfig)}
    values: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            logger.warning("[HubConfig] Ignoring unknown key %r in %s", key, config_path)
            continue
        values[key] = _coerce(key, value, str(config_path))
    return values


def load_hub_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> HubConfig:
    """Build a validated HubConfig from file + environment. Raises ValueError on bad values."""
    environ = os.environ if environ is None else environ
    config_path = Path(path or environ.get("STREAMHUB_CONFIG") or DEFAULT_CONFIG_PATH)

    values = _read_yaml(config_path)

    for env_key, name in _ENV_OVERRIDES.items():
        raw = environ.get(env_key, "").strip()
        if raw:
            values[name] = _coerce(name, raw, env_key)

    config = HubConfig(**values)
    config.validate()
    return config
