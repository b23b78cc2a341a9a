"""Persistence boundary for configuration, timer state and active sessions.

Three independent records live in one key-value scope:

* ``config`` - settings, roster, devices and rules.
* ``timer_state_<device>`` - the device's queue and timer counter.
* ``active_sessions`` - advisory map of every device's running rotation,
  last writer wins per device key, purged of entries older than an hour on
  every read.

Writes are fire-and-forget. A record that fails to decode is discarded and
replaced by defaults; nothing here is allowed to crash the application.
"""

import json
import logging
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Protocol

from . import serialization as codec
from .errors import StorageCorruptionError
from .model import (
    ActiveSessionRecord,
    Device,
    Person,
    Rule,
    Settings,
    TimerSnapshot,
)
from .rules import DEFAULT_RULES

_LOGGER = logging.getLogger(__name__)

CONFIG_KEY = "config"
ACTIVE_SESSIONS_KEY = "active_sessions"
DEVICE_ID_KEY = "device_id"
TIMER_STATE_PREFIX = "timer_state_"

SESSION_MAX_AGE_MS = 3_600_000


class KeyValueStorage(Protocol):
    """String key-value backend (a browser-local-storage equivalent)."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Dict-backed storage. Instances can be shared to simulate devices."""

    def __init__(self, data: Optional[dict[str, str]] = None) -> None:
        self.data: dict[str, str] = data if data is not None else {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class FileStorage:
    """One JSON file per key inside a directory."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(path)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


@dataclass(frozen=True)
class StoredConfig:
    """Configuration and roster record."""

    settings: Settings = field(default_factory=Settings)
    people: list[Person] = field(default_factory=list)
    devices: list[Device] = field(default_factory=list)
    rules: list[Rule] = field(default_factory=lambda: list(DEFAULT_RULES))


def to_epoch_ms(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def _reject_constant(name: str) -> Any:
    # json accepts NaN and Infinity, which no record may contain
    raise StorageCorruptionError(f"Non-finite number {name} in record")


class SessionStore:
    """Reads and writes the persisted records through a key-value backend."""

    def __init__(self, backend: KeyValueStorage) -> None:
        self.backend = backend

    # ---- Raw access ----

    def _read(self, key: str) -> Any:
        raw = self.backend.get(key)
        if raw is None or not raw.strip():
            return None
        try:
            return json.loads(raw, parse_constant=_reject_constant)
        except json.JSONDecodeError as exc:
            raise StorageCorruptionError(f"Record '{key}' is not valid JSON") from exc

    def _write(self, key: str, value: Any) -> None:
        try:
            self.backend.set(key, json.dumps(value))
        except OSError as exc:
            _LOGGER.error(f"Failed to write record '{key}': {exc}")

    def _discard(self, key: str, exc: Exception) -> None:
        _LOGGER.warning(f"Discarding corrupt record '{key}': {exc}")
        try:
            self.backend.remove(key)
        except OSError as remove_exc:
            _LOGGER.error(f"Failed to remove record '{key}': {remove_exc}")

    # ---- Device identity ----

    def device_id(self) -> str:
        """Return this scope's device id, generating one on first use."""
        existing = self.backend.get(DEVICE_ID_KEY)
        if existing:
            return existing
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
        new_id = f"device_{int(time.time() * 1000)}_{suffix}"
        try:
            self.backend.set(DEVICE_ID_KEY, new_id)
        except OSError as exc:
            _LOGGER.error(f"Failed to persist device id: {exc}")
        _LOGGER.info(f"Generated device id {new_id}")
        return new_id

    # ---- Configuration & roster ----

    def load_config(self) -> StoredConfig:
        """Load the configuration record, healing corruption with defaults.

        An absent or empty rule list is replaced by the built-in templates.
        """
        try:
            data = self._read(CONFIG_KEY)
            if data is None:
                return StoredConfig()
            config = self._decode_config(data)
        except StorageCorruptionError as exc:
            self._discard(CONFIG_KEY, exc)
            return StoredConfig()

        _LOGGER.info(
            f"Loaded config: {len(config.people)} people, "
            f"{len(config.devices)} devices, {len(config.rules)} rules"
        )
        return config

    def save_config(self, config: StoredConfig) -> None:
        self._write(CONFIG_KEY, self._encode_config(config))
        _LOGGER.debug("Config saved")

    @staticmethod
    def _encode_config(config: StoredConfig) -> dict[str, Any]:
        return {
            "settings": codec.encode_settings(config.settings),
            "people": [codec.encode_person(p) for p in config.people],
            "devices": [codec.encode_device(d) for d in config.devices],
            "rules": [codec.encode_rule(r) for r in config.rules],
        }

    @staticmethod
    def _decode_config(data: Any) -> StoredConfig:
        if not isinstance(data, dict):
            raise StorageCorruptionError("Config record must be an object")
        settings = (
            codec.decode_settings(data["settings"])
            if data.get("settings") is not None
            else Settings()
        )
        rules = codec.decode_list(data, "rules", codec.decode_rule)
        return StoredConfig(
            settings=settings,
            people=codec.decode_list(data, "people", codec.decode_person),
            devices=codec.decode_list(data, "devices", codec.decode_device),
            rules=rules or list(DEFAULT_RULES),
        )

    # ---- Export / import ----

    def export_document(self, config: StoredConfig, now: datetime) -> dict[str, Any]:
        """Build the backup document ``{settings, people, devices, rules, exportDate}``."""
        document = self._encode_config(config)
        document["exportDate"] = now.isoformat()
        return document

    def import_document(self, document: Any) -> StoredConfig:
        """Decode a backup document.

        Raises:
            StorageCorruptionError: If the document is malformed. Nothing is
                persisted in that case.
        """
        config = self._decode_config(document)
        self.save_config(config)
        _LOGGER.info(f"Imported backup with {len(config.people)} people")
        return config

    def export_json(self, config: StoredConfig, now: datetime) -> str:
        return json.dumps(self.export_document(config, now), indent=2, ensure_ascii=False)

    def import_json(self, text: str) -> StoredConfig:
        try:
            document = json.loads(text, parse_constant=_reject_constant)
        except json.JSONDecodeError as exc:
            raise StorageCorruptionError("Backup is not valid JSON") from exc
        return self.import_document(document)

    # ---- Per-device timer state ----

    def save_timer_state(self, device_id: str, snapshot: TimerSnapshot) -> None:
        self._write(TIMER_STATE_PREFIX + device_id, codec.encode_timer_state(snapshot))

    def load_timer_state(self, device_id: str) -> Optional[TimerSnapshot]:
        """Load this device's timer state, discarding a corrupt record."""
        key = TIMER_STATE_PREFIX + device_id
        try:
            data = self._read(key)
            if data is None:
                return None
            snapshot = codec.decode_timer_state(data)
        except StorageCorruptionError as exc:
            self._discard(key, exc)
            return None
        return snapshot

    def clear_timer_state(self, device_id: str) -> None:
        try:
            self.backend.remove(TIMER_STATE_PREFIX + device_id)
        except OSError as exc:
            _LOGGER.error(f"Failed to clear timer state for {device_id}: {exc}")

    # ---- Shared active sessions ----

    def _read_sessions_raw(self) -> dict[str, Any]:
        try:
            data = self._read(ACTIVE_SESSIONS_KEY)
        except StorageCorruptionError as exc:
            self._discard(ACTIVE_SESSIONS_KEY, exc)
            return {}
        if data is None:
            return {}
        if not isinstance(data, dict):
            self._discard(ACTIVE_SESSIONS_KEY, StorageCorruptionError("not an object"))
            return {}
        return data

    def save_active_session(self, record: ActiveSessionRecord) -> None:
        sessions = self._read_sessions_raw()
        sessions[record.device_id] = codec.encode_session(record)
        self._write(ACTIVE_SESSIONS_KEY, sessions)

    def load_active_sessions(self, now: datetime) -> dict[str, ActiveSessionRecord]:
        """Read the shared map, purging stale and undecodable entries.

        Args:
            now: Current time. Entries last updated more than an hour
                before it are removed from storage.
        """
        raw = self._read_sessions_raw()
        now_ms = to_epoch_ms(now)
        sessions: dict[str, ActiveSessionRecord] = {}

        for device_id, data in raw.items():
            try:
                record = codec.decode_session(device_id, data)
            except StorageCorruptionError as exc:
                _LOGGER.warning(f"Dropping corrupt session for {device_id}: {exc}")
                continue
            if now_ms - record.last_update_ms > SESSION_MAX_AGE_MS:
                _LOGGER.debug(f"  Session {device_id}: expired")
                continue
            sessions[device_id] = record

        if len(sessions) != len(raw):
            self._write(
                ACTIVE_SESSIONS_KEY,
                {device_id: raw[device_id] for device_id in sessions},
            )
        return sessions

    def clear_active_session(self, device_id: str) -> None:
        sessions = self._read_sessions_raw()
        if sessions.pop(device_id, None) is not None:
            self._write(ACTIVE_SESSIONS_KEY, sessions)
