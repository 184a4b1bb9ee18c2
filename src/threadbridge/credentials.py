"""User IRC settings (YAML store + TTL cache) and Fernet password decryption."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from cachetools import TTLCache
from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

from threadbridge.core.errors import CredentialError

KEY_ENV = "THREADBRIDGE_KEY"


@dataclass
class UserSettings:
    """IRC account a user configured for the extension."""

    network: str
    nick: str
    encrypted_password: str = ""


class SettingsStore:
    """Per-user extension settings read from a YAML file.

    Layout::

        users:
          <platform user id>:
            irc:
              - network: irc.libera.chat:+6697
                nick: alice
                password: <Fernet token>
    """

    def __init__(self, path: str | Path, *, maxsize: int = 1024, ttl: int = 300) -> None:
        self._path = Path(path)
        self._cache: TTLCache[tuple[str, str], list[UserSettings]] = TTLCache(
            maxsize=maxsize,
            ttl=float(ttl),
        )
        self._known_users: set[str] | None = None

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        with open(self._path) as f:
            data = yaml.safe_load(f)
        users = data.get("users") if isinstance(data, dict) else None
        return users if isinstance(users, dict) else {}

    def _parse(self, entries: Any) -> list[UserSettings]:
        if not isinstance(entries, list):
            return []
        result: list[UserSettings] = []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("network") or not entry.get("nick"):
                continue
            result.append(
                UserSettings(
                    network=str(entry["network"]),
                    nick=str(entry["nick"]),
                    encrypted_password=str(entry.get("password") or ""),
                )
            )
        return result

    async def get_user_settings(self, user_id: str, ext_type: str) -> list[UserSettings]:
        """Settings for user under extension type. Empty list when not configured."""
        key = (user_id, ext_type)
        try:
            return self._cache[key]
        except KeyError:
            pass
        try:
            users = await asyncio.to_thread(self._read)
        except (OSError, yaml.YAMLError) as exc:
            raise CredentialError(f"could not read {self._path}: {exc}", original_error=exc) from exc
        user = users.get(str(user_id)) or {}
        settings = self._parse(user.get(ext_type)) if isinstance(user, dict) else []
        self._cache[key] = settings
        return settings

    def reload(self) -> set[str]:
        """Drop the cache and re-read the file. Returns users not seen before."""
        self._cache.clear()
        try:
            users = set(map(str, self._read()))
        except (OSError, yaml.YAMLError) as exc:
            logger.error("Settings reload failed: {}", exc)
            return set()
        fresh = set() if self._known_users is None else users - self._known_users
        self._known_users = users
        return fresh


class Decryptor:
    """Fernet decryption for stored IRC passwords. Key is read from env THREADBRIDGE_KEY."""

    def __init__(self, key: str | bytes | None = None) -> None:
        key = key or os.environ.get(KEY_ENV)
        if not key:
            raise CredentialError(f"Missing encryption key. Set {KEY_ENV} to a Fernet key.")
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except ValueError as exc:
            raise CredentialError(f"Invalid {KEY_ENV}: {exc}", original_error=exc) from exc

    async def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except (InvalidToken, ValueError) as exc:
            raise CredentialError("stored password could not be decrypted", original_error=exc) from exc

    def encrypt(self, text: str) -> str:
        return self._fernet.encrypt(text.encode()).decode()
