"""Turn Rotation - a shared-device turn timer with rule-based time adjustment."""

from turn_rotation.controller import SessionContext, TurnController
from turn_rotation.errors import (
    EmptyInputError,
    EmptyQueueError,
    EmptyRosterError,
    RuleEvaluationError,
    StorageCorruptionError,
    TurnRotationError,
    ValidationError,
)
from turn_rotation.model import (
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
    TimerState,
    TimerStatus,
    TurnEvent,
    TurnEventType,
    TurnResult,
)
from turn_rotation.rules import DEFAULT_RULES, RuleOutcome, compute_next_duration
from turn_rotation.scheduler import ManualTicker, SleepTicker
from turn_rotation.storage import FileStorage, MemoryStorage, SessionStore
from turn_rotation.timer import TurnTimer

__version__ = "0.1.0"

__all__ = [
    "TurnController",
    "SessionContext",
    "TurnTimer",
    "SessionStore",
    "MemoryStorage",
    "FileStorage",
    "ManualTicker",
    "SleepTicker",
    "DEFAULT_RULES",
    "RuleOutcome",
    "compute_next_duration",
    "ActiveSessionRecord",
    "Device",
    "Person",
    "Queue",
    "QueueEntry",
    "ReshuffleScope",
    "Rule",
    "Settings",
    "TimerMode",
    "TimerSnapshot",
    "TimerState",
    "TimerStatus",
    "TurnEvent",
    "TurnEventType",
    "TurnResult",
    "TurnRotationError",
    "ValidationError",
    "EmptyInputError",
    "EmptyRosterError",
    "EmptyQueueError",
    "RuleEvaluationError",
    "StorageCorruptionError",
]
