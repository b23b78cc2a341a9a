"""JSON-compatible encoding of the persisted records.

Encoders produce plain dicts with the camelCase field names used by the
stored records and the backup document. Decoders validate shape and types
and raise :class:`StorageCorruptionError` on anything they cannot trust.
"""

import math
from dataclasses import fields
from typing import Any, Mapping

from .errors import StorageCorruptionError
from .model import (
    ActiveSessionRecord,
    Device,
    Person,
    Queue,
    QueueEntry,
    ReshuffleScope,
    Rule,
    Settings,
    TimerMode,
    TimerSnapshot,
)

# Settings attribute -> stored key
_SETTINGS_KEYS = {
    "priority_mode": "priorityMode",
    "default_turn_minutes": "defaultTurnMinutes",
    "allow_pause": "allowPause",
    "allow_reset": "allowReset",
    "show_progress": "showProgress",
    "show_percent": "showPercent",
    "count_down": "countDown",
    "warning_minutes": "warningMinutes",
    "theme": "theme",
    "reshuffle_scope": "reshuffleScope",
}


def _field(data: Mapping[str, Any], key: str, kind: type | tuple[type, ...]) -> Any:
    if not isinstance(data, Mapping):
        raise StorageCorruptionError(f"Expected an object, got {type(data).__name__}")
    if key not in data:
        raise StorageCorruptionError(f"Missing field '{key}'")
    value = data[key]
    # bool is an int subclass; never accept it where a number is expected
    if isinstance(value, bool) and bool not in (kind if isinstance(kind, tuple) else (kind,)):
        raise StorageCorruptionError(f"Field '{key}' has invalid type bool")
    if not isinstance(value, kind):
        raise StorageCorruptionError(
            f"Field '{key}' has invalid type {type(value).__name__}"
        )
    return value


def _optional(
    data: Mapping[str, Any], key: str, kind: type | tuple[type, ...], default: Any
) -> Any:
    if data.get(key) is None:
        return default
    return _field(data, key, kind)


def _timestamp(data: Mapping[str, Any], key: str) -> int:
    value = _field(data, key, (int, float))
    if not math.isfinite(value):
        raise StorageCorruptionError(f"Field '{key}' is not a finite number")
    return int(value)


def _list(data: Mapping[str, Any], key: str) -> list[Any]:
    if not isinstance(data, Mapping):
        raise StorageCorruptionError(f"Expected an object, got {type(data).__name__}")
    if key not in data or data[key] is None:
        return []
    value = data[key]
    if not isinstance(value, list):
        raise StorageCorruptionError(f"Field '{key}' must be a list")
    return value


# ---- Settings ----


def encode_settings(settings: Settings) -> dict[str, Any]:
    dump = {}
    for f in fields(settings):
        value = getattr(settings, f.name)
        if isinstance(value, ReshuffleScope):
            value = value.value
        dump[_SETTINGS_KEYS[f.name]] = value
    return dump


def decode_settings(data: Mapping[str, Any]) -> Settings:
    """Decode settings, falling back to defaults for absent keys."""
    if not isinstance(data, Mapping):
        raise StorageCorruptionError("Settings must be an object")
    defaults = Settings()
    values: dict[str, Any] = {}
    for f in fields(defaults):
        key = _SETTINGS_KEYS[f.name]
        if key not in data or data[key] is None:
            continue
        default = getattr(defaults, f.name)
        if isinstance(default, ReshuffleScope):
            try:
                values[f.name] = ReshuffleScope(data[key])
            except ValueError as exc:
                raise StorageCorruptionError(f"Unknown reshuffle scope {data[key]!r}") from exc
        else:
            values[f.name] = _field(data, key, type(default))

    for key in ("default_turn_minutes", "warning_minutes"):
        if key in values and values[key] <= 0:
            raise StorageCorruptionError(f"Setting '{_SETTINGS_KEYS[key]}' must be positive")
    return Settings(**values)


# ---- Roster ----


def encode_person(person: Person) -> dict[str, Any]:
    return {
        "id": person.id,
        "name": person.name,
        "defaultTurnSeconds": person.default_turn_seconds,
        "hasPriority": person.has_priority,
        "totalUsageSeconds": person.total_usage_seconds,
    }


def decode_person(data: Mapping[str, Any]) -> Person:
    return Person(
        id=str(_field(data, "id", (str, int))),
        name=_field(data, "name", str),
        default_turn_seconds=_field(data, "defaultTurnSeconds", int),
        has_priority=_optional(data, "hasPriority", bool, False),
        total_usage_seconds=_optional(data, "totalUsageSeconds", int, 0),
    )


def encode_device(device: Device) -> dict[str, Any]:
    return {"id": device.id, "name": device.name}


def decode_device(data: Mapping[str, Any]) -> Device:
    return Device(
        id=str(_field(data, "id", (str, int))),
        name=_field(data, "name", str),
    )


def encode_rule(rule: Rule) -> dict[str, Any]:
    return {
        "name": rule.name,
        "description": rule.description,
        "condition": rule.condition,
        "action": rule.action,
        "enabled": rule.enabled,
    }


def decode_rule(data: Mapping[str, Any]) -> Rule:
    return Rule(
        name=_field(data, "name", str),
        description=_optional(data, "description", str, ""),
        condition=_field(data, "condition", str),
        action=_field(data, "action", str),
        enabled=_optional(data, "enabled", bool, True),
    )


# ---- Queue ----


def encode_entry(entry: QueueEntry) -> dict[str, Any]:
    return {
        "id": entry.person_id,
        "name": entry.name,
        "allottedSeconds": entry.allotted_seconds,
        "hasPriority": entry.has_priority,
    }


def decode_entry(data: Mapping[str, Any]) -> QueueEntry:
    return QueueEntry(
        person_id=str(_field(data, "id", (str, int))),
        name=_field(data, "name", str),
        allotted_seconds=_field(data, "allottedSeconds", int),
        has_priority=_optional(data, "hasPriority", bool, False),
    )


def decode_entries(data: Mapping[str, Any], key: str = "queue") -> tuple[QueueEntry, ...]:
    return tuple(decode_entry(item) for item in _list(data, key))


# ---- Per-device timer state ----


def encode_timer_state(snapshot: TimerSnapshot) -> dict[str, Any]:
    dump = {
        "queue": [encode_entry(e) for e in snapshot.queue.entries],
        "currentIndex": snapshot.queue.current_index,
        "elapsedOrRemainingSeconds": snapshot.counter,
        "totalSeconds": snapshot.total_seconds,
        "isPaused": snapshot.is_paused,
        "warningFired": snapshot.warning_fired,
        "expiryFired": snapshot.expiry_fired,
    }
    if snapshot.mode is not None:
        dump["countDown"] = snapshot.mode == TimerMode.COUNTDOWN
    return dump


def decode_timer_state(data: Mapping[str, Any]) -> TimerSnapshot:
    """Decode a timer-state record.

    Counters must be integers and the index must point into the queue (or
    one past its end for a finished rotation).
    """
    entries = decode_entries(data)
    current_index = _optional(data, "currentIndex", int, 0)
    if not 0 <= current_index <= len(entries):
        raise StorageCorruptionError(f"currentIndex {current_index} out of range")
    count_down = _optional(data, "countDown", bool, None)
    return TimerSnapshot(
        queue=Queue(entries=entries, current_index=current_index),
        counter=_optional(data, "elapsedOrRemainingSeconds", int, 0),
        total_seconds=_optional(data, "totalSeconds", int, 0),
        is_paused=_optional(data, "isPaused", bool, False),
        mode=(
            None
            if count_down is None
            else TimerMode.COUNTDOWN if count_down else TimerMode.COUNTUP
        ),
        warning_fired=_optional(data, "warningFired", bool, False),
        expiry_fired=_optional(data, "expiryFired", bool, False),
    )


# ---- Active sessions ----


def encode_session(record: ActiveSessionRecord) -> dict[str, Any]:
    return {
        "deviceId": record.device_id,
        "queue": [encode_entry(e) for e in record.queue],
        "currentIndex": record.current_index,
        "elapsedOrRemainingSeconds": record.counter,
        "totalSeconds": record.total_seconds,
        "isPaused": record.is_paused,
        "deviceName": record.device_name,
        "lastUpdate": record.last_update_ms,
    }


def decode_session(device_id: str, data: Mapping[str, Any]) -> ActiveSessionRecord:
    return ActiveSessionRecord(
        device_id=device_id,
        queue=decode_entries(data),
        current_index=_field(data, "currentIndex", int),
        counter=_field(data, "elapsedOrRemainingSeconds", int),
        total_seconds=_field(data, "totalSeconds", int),
        is_paused=_optional(data, "isPaused", bool, False),
        device_name=_optional(data, "deviceName", str, device_id),
        last_update_ms=_timestamp(data, "lastUpdate"),
    )


def decode_list(data: Mapping[str, Any], key: str, decoder) -> list[Any]:
    """Decode every item of a list field with ``decoder``."""
    return [decoder(item) for item in _list(data, key)]
