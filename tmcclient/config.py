"""Client settings: JSON config file plus environment overrides.

The password is never written to disk; it comes from TMC_PASSWORD or an
interactive prompt.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass

from tmcclient.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join("~", ".tmc", "config.json")
DEFAULT_TIMEOUT_SECONDS = 30

# config key -> TmcSettings attribute
CONFIG_KEYS = {
    "server_url": "server_base_url",
    "username": "username",
    "locale": "error_msg_locale",
    "spyware": "spyware_enabled",
    "timeout": "timeout",
}


@dataclass
class TmcSettings:
    server_base_url: str = ""
    username: str = ""
    password: str = ""
    error_msg_locale: str = "en"
    spyware_enabled: bool = True
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        self.server_base_url = self.server_base_url.rstrip("/")


def get_config_path(path: str | None = None) -> str:
    return os.path.expanduser(path or os.environ.get("TMC_CONFIG", DEFAULT_CONFIG_PATH))


def _load_config(config_path: str) -> dict:
    """Load config from file, returning empty dict if not found."""
    if not os.path.exists(config_path):
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable config %s: %s", config_path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _save_config(config_path: str, cfg: dict) -> None:
    """Save config to file."""
    config_dir = os.path.dirname(config_path)
    if config_dir:
        os.makedirs(config_dir, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(cfg, f, indent=2)


def parse_config_value(key: str, value: str):
    """Convert a CLI string to the stored type for key."""
    if key not in CONFIG_KEYS:
        raise ConfigError(f"Unknown config key: {key}")
    if key == "spyware":
        if value not in ("on", "off"):
            raise ConfigError("Value must be 'on' or 'off'")
        return value == "on"
    if key == "timeout":
        try:
            timeout = float(value)
        except ValueError:
            raise ConfigError(f"Timeout must be a number, got {value!r}") from None
        if timeout <= 0:
            raise ConfigError("Timeout must be positive")
        return timeout
    return value


def _coerce_timeout(value) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        return DEFAULT_TIMEOUT_SECONDS
    return timeout if timeout > 0 else DEFAULT_TIMEOUT_SECONDS


def load_settings(path: str | None = None) -> TmcSettings:
    """Build settings from the config file, then apply TMC_* env overrides."""
    cfg = _load_config(get_config_path(path))
    settings = TmcSettings(
        server_base_url=str(cfg.get("server_url", "")),
        username=str(cfg.get("username", "")),
        error_msg_locale=str(cfg.get("locale", "en")),
        spyware_enabled=bool(cfg.get("spyware", True)),
        timeout=_coerce_timeout(cfg.get("timeout")),
    )

    env = os.environ
    if env.get("TMC_SERVER_URL"):
        settings.server_base_url = env["TMC_SERVER_URL"].rstrip("/")
    if env.get("TMC_USERNAME"):
        settings.username = env["TMC_USERNAME"]
    if env.get("TMC_PASSWORD"):
        settings.password = env["TMC_PASSWORD"]
    if env.get("TMC_LOCALE"):
        settings.error_msg_locale = env["TMC_LOCALE"]
    if env.get("TMC_SPYWARE", "").lower() == "off":
        settings.spyware_enabled = False
    return settings


def set_config_value(key: str, value: str, path: str | None = None) -> None:
    config_path = get_config_path(path)
    cfg = _load_config(config_path)
    cfg[key] = parse_config_value(key, value)
    _save_config(config_path, cfg)


def get_config_value(key: str, path: str | None = None):
    if key not in CONFIG_KEYS:
        raise ConfigError(f"Unknown config key: {key}")
    settings = load_settings(path)
    return getattr(settings, CONFIG_KEYS[key])
