"""Configuration: YAML + env overlay."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from threadbridge.core.errors import BridgeConfigurationError


def _deep_update(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_update(result[key], value)
        else:
            result[key] = value
    return result


def _env_overrides() -> dict[str, Any]:
    """Secrets and endpoints that may come from the environment instead of YAML."""
    platform: dict[str, Any] = {}
    for env, key in (
        ("PLATFORM_BASE_URL", "base_url"),
        ("PLATFORM_EVENTS_URL", "events_url"),
        ("PLATFORM_CLIENT_ID", "client_id"),
        ("PLATFORM_CLIENT_SECRET", "client_secret"),
    ):
        value = os.environ.get(env)
        if value:
            platform[key] = value
    return {"platform": platform} if platform else {}


def load_config(path: str | Path) -> dict[str, Any]:
    """Load config from YAML file. Use SafeLoader. Returns raw dict."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise BridgeConfigurationError(f"invalid YAML in {path}", original_error=exc) from exc
    return data if isinstance(data, dict) else {}


def load_config_with_env(path: str | Path) -> dict[str, Any]:
    """Load config from YAML and overlay env-derived values.

    Loads .env via python-dotenv when present (cwd or documented path).
    """
    from dotenv import load_dotenv

    load_dotenv()
    return _deep_update(load_config(path), _env_overrides())


class Config:
    """Config accessor with attribute-style access for nested keys."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data = data or {}

    def reload(self, data: dict[str, Any]) -> None:
        """Replace config data (e.g. on SIGHUP reload)."""
        self._data = data or {}

    @property
    def raw(self) -> dict[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Get value by dot-separated path (e.g. 'platform.base_url')."""
        parts = key.split(".")
        obj: Any = self._data
        for part in parts:
            if isinstance(obj, dict) and part in obj:
                obj = obj[part]
            else:
                return default
        return obj

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def require(self, key: str) -> Any:
        """Like get(), but a missing value is a configuration error."""
        value = self.get(key)
        if value in (None, ""):
            raise BridgeConfigurationError(f"missing required config value: {key}", code="missing")
        return value

    @property
    def platform_base_url(self) -> str:
        return str(self.require("platform.base_url"))

    @property
    def platform_events_url(self) -> str:
        return str(self.require("platform.events_url"))

    @property
    def platform_client_id(self) -> str:
        return str(self.require("platform.client_id"))

    @property
    def platform_client_secret(self) -> str:
        return str(self.require("platform.client_secret"))

    @property
    def irc_default_port(self) -> int:
        return int(self.get("irc.default_port", 6667))

    @property
    def irc_tls(self) -> bool:
        """Default TLS for networks without an explicit ``+port``."""
        return bool(self.get("irc.tls", False))

    @property
    def irc_tls_verify(self) -> bool:
        return bool(self.get("irc.tls_verify", True))

    @property
    def irc_sasl(self) -> bool:
        """Authenticate IRC sessions with SASL PLAIN using the stored password."""
        return bool(self.get("irc.sasl", True))

    @property
    def settings_path(self) -> Path:
        return Path(str(self._data.get("settings_path", "settings.yaml")))

    @property
    def settings_cache_ttl_seconds(self) -> int:
        return int(self._data.get("settings_cache_ttl_seconds", 300))

    @property
    def extension_type(self) -> str:
        return str(self._data.get("extension_type", "irc"))

    @property
    def help_text_path(self) -> Path:
        return Path(str(self._data.get("help_text_path", "conf/help.txt")))

    @property
    def channel_list_path(self) -> Path:
        return Path(str(self._data.get("channel_list_path", "conf/channels.txt")))


def read_text_file(path: Path, default: str) -> str:
    """Read a reply text file; fall back to default when it is missing."""
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        return default


# Global config instance (set by __main__)
cfg: Config = Config({})
