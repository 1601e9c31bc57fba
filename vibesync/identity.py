"""Identity and preference store.

Persistent identity lives in ~/.vibecodings/config.json (with a read-only
fallback to the legacy ~/.vibe/config.json). Per-process state such as the
session id or an identity override obtained after interactive auth lives in
a single in-memory map and is never written to disk.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import secrets
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vibesync.constants import (
    SESSION_ID_BITS,
    SESSION_ID_PREFIX,
    ActivityPrivacy,
    NotificationLevel,
)
from vibesync.exceptions import InvalidPreferenceError
from vibesync.handles import normalize_handle

logger = logging.getLogger(__name__)

_BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"

# Older clients wrote these names; map them onto the current keys on load
_LEGACY_KEYS = {
    "username": "handle",
    "workingOn": "one_liner",
    "privyToken": "auth_token",
    "github_activity_privacy": "activity_privacy",
}


class UserConfig(BaseModel):
    """Persistent identity and preferences. Unknown keys are preserved."""

    model_config = ConfigDict(extra="allow")

    handle: str | None = None
    one_liner: str | None = None
    auth_token: str | None = None
    visible: bool = True
    notifications: str = NotificationLevel.ALL
    guided_mode: bool = True
    activity_privacy: str = ActivityPrivacy.FULL
    preferences: dict[str, Any] = Field(default_factory=dict)


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_session_id() -> str:
    """Generate a process session id: 'sess_' + 128 random bits in base36."""
    return SESSION_ID_PREFIX + _to_base36(secrets.randbits(SESSION_ID_BITS))


def _normalize_legacy(data: dict[str, Any]) -> dict[str, Any]:
    """Fill current keys from legacy aliases without overwriting set values."""
    normalized = dict(data)
    for legacy, current in _LEGACY_KEYS.items():
        if legacy in normalized:
            value = normalized.pop(legacy)
            if normalized.get(current) in (None, "") and value not in (None, ""):
                normalized[current] = value
    # Explicit nulls fall back to defaults rather than failing validation
    return {k: v for k, v in normalized.items() if v is not None}


def _atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    """Write JSON to a temp file in the target directory, then rename it over the target."""
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


class ConfigStore:
    """Owns persistent identity/preferences and per-process session state."""

    def __init__(self, config_path: Path | str, legacy_path: Path | str | None = None):
        """
        Initialize the store.

        Args:
            config_path: Primary config file (read and written)
            legacy_path: Optional legacy config file (read only, used when primary is missing)
        """
        self.config_path = Path(config_path)
        self.legacy_path = Path(legacy_path) if legacy_path else None
        self._state: dict[str, Any] = {}

    # --- Persistent config ---

    def _read_file(self, path: Path) -> dict[str, Any] | None:
        try:
            with path.open(encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable config %s: %s", path, e)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring config %s: expected a JSON object", path)
            return None
        return data

    def load(self) -> UserConfig:
        """Load the persistent config. Never fails: missing or broken files give defaults."""
        data = self._read_file(self.config_path)
        if data is None and self.legacy_path is not None:
            data = self._read_file(self.legacy_path)
        if data is None:
            return UserConfig()
        try:
            return UserConfig.model_validate(_normalize_legacy(data))
        except ValidationError as e:
            logger.warning("Config %s failed validation, using defaults: %s", self.config_path, e)
            return UserConfig()

    def save(self, cfg: UserConfig) -> None:
        """Persist the config atomically (write temp file, then rename)."""
        _atomic_write_json(self.config_path, cfg.model_dump(mode="json"))
        logger.debug("Saved config to %s", self.config_path)

    def _update(self, **changes: Any) -> UserConfig:
        cfg = self.load().model_copy(update=changes)
        self.save(cfg)
        return cfg

    # --- Identity ---

    def get_handle(self) -> str | None:
        """Session override first, else the persisted handle."""
        handle = self._state.get("handle") or self.load().handle
        return normalize_handle(handle) or None

    def get_one_liner(self) -> str | None:
        """Session override first, else the persisted one-liner."""
        return self._state.get("one_liner") or self.load().one_liner

    def is_initialized(self) -> bool:
        """True when a handle is available for this process."""
        return self.get_handle() is not None

    def set_session_identity(self, handle: str, one_liner: str | None = None) -> None:
        """Override identity for this process only."""
        self._state["handle"] = normalize_handle(handle)
        self._state["one_liner"] = one_liner
        logger.info("Session identity set to @%s", self._state["handle"])

    def save_identity(self, handle: str, one_liner: str | None = None) -> UserConfig:
        """Persist identity after successful initialization."""
        return self._update(handle=normalize_handle(handle), one_liner=one_liner)

    # --- Auth token ---

    def get_auth_token(self) -> str | None:
        """Session token first, else the persisted bearer token."""
        return self._state.get("token") or self.load().auth_token

    def set_auth_token(
        self, token: str, session_id: str | None = None, persist: bool = True
    ) -> None:
        """
        Store a bearer token issued by the server.

        Args:
            token: Bearer token
            session_id: Optional server-issued session id that replaces the local one
            persist: Also write the token to the config file so restarts keep it
        """
        self._state["token"] = token
        if session_id:
            self.set_session_id(session_id)
        if persist:
            self._update(auth_token=token)

    # --- Session ---

    def get_session_id(self) -> str:
        """Return this process's session id, generating it on first call."""
        session_id = self._state.get("session_id")
        if not session_id:
            session_id = generate_session_id()
            self._state["session_id"] = session_id
        return session_id

    def set_session_id(self, session_id: str) -> None:
        """Adopt an authoritative session id (e.g., issued by the server)."""
        self._state["session_id"] = session_id

    def clear_session(self) -> None:
        """Drop all per-process state."""
        self._state.clear()

    def get(self, key: str, default: Any = None) -> Any:
        """Read an ephemeral per-process value."""
        return self._state.get(key, default)

    def set(self, key: str, value: Any) -> Any:
        """Store an ephemeral per-process value."""
        self._state[key] = value
        return value

    # --- Preferences ---

    def get_notifications(self) -> str:
        return self.load().notifications

    def set_notifications(self, level: str) -> None:
        """Set notification level: all, mentions or off."""
        allowed = [lvl.value for lvl in NotificationLevel]
        if level not in allowed:
            raise InvalidPreferenceError("notification level", level, allowed)
        self._update(notifications=level)

    def get_activity_privacy(self) -> str:
        return self.load().activity_privacy

    def set_activity_privacy(self, level: str) -> None:
        """Set activity privacy: full, status_only or off."""
        allowed = [lvl.value for lvl in ActivityPrivacy]
        if level not in allowed:
            raise InvalidPreferenceError("privacy level", level, allowed)
        self._update(activity_privacy=level)

    def get_guided_mode(self) -> bool:
        return self.load().guided_mode

    def set_guided_mode(self, enabled: bool) -> None:
        self._update(guided_mode=enabled)

    def set_visible(self, visible: bool) -> None:
        self._update(visible=visible)
