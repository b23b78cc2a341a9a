"""Data models for the turn rotation library.

This module defines the core data structures used throughout the library.
All state classes are frozen (immutable) to support functional updates via
``dataclasses.replace``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class TimerMode(Enum):
    """Direction the turn timer counts in."""

    COUNTDOWN = "countdown"  # Counter starts at the allotted time and falls
    COUNTUP = "countup"  # Counter starts at zero and rises


class TimerStatus(Enum):
    """State machine position of the turn timer."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


class ReshuffleScope(Enum):
    """Which part of an active queue a mid-rotation reshuffle permutes."""

    ALL = "all"  # Every entry, restarting from the first position
    REMAINING = "remaining"  # Only entries after the current one


class TurnEventType(Enum):
    """Type of event emitted to the presentation layer."""

    TURN_LOADED = "turn_loaded"  # A queue entry was loaded into the timer
    WARNING = "warning"  # The warning threshold was reached
    TIME_UP = "time_up"  # Allotted time ran out (turn still active)
    OVERTIME = "overtime"  # Finished turn ran more than 30s over
    EARLY_FINISH = "early_finish"  # Finished turn ended more than 30s early
    ROTATION_COMPLETE = "rotation_complete"


@dataclass(frozen=True)
class Settings:
    """User configuration.

    Attributes:
        priority_mode: Group priority people at the start of a rotation
            instead of shuffling.
        default_turn_minutes: Turn length for newly registered people.
        allow_pause: Whether the timer may be paused.
        allow_reset: Whether the timer may be reset.
        show_progress: Presentation hint for the progress bar.
        show_percent: Presentation hint for the percentage label.
        count_down: Count down from the allotted time (otherwise count up).
        warning_minutes: Minutes before the end at which a warning fires.
        theme: Presentation theme name.
        reshuffle_scope: What a mid-rotation reshuffle permutes.
    """

    priority_mode: bool = False
    default_turn_minutes: int = 30
    allow_pause: bool = True
    allow_reset: bool = True
    show_progress: bool = True
    show_percent: bool = True
    count_down: bool = True
    warning_minutes: int = 2
    theme: str = "light"
    reshuffle_scope: ReshuffleScope = ReshuffleScope.ALL

    @property
    def timer_mode(self) -> TimerMode:
        return TimerMode.COUNTDOWN if self.count_down else TimerMode.COUNTUP


@dataclass(frozen=True)
class Person:
    """A registered participant.

    Attributes:
        id: Unique identifier.
        name: Display name (non-empty).
        default_turn_seconds: Length of this person's next turn. Rewritten by
            the rule engine after each completed turn.
        has_priority: Whether the person is grouped first in priority mode.
        total_usage_seconds: Accumulated usage, in whole minutes.
    """

    id: str
    name: str
    default_turn_seconds: int
    has_priority: bool = False
    total_usage_seconds: int = 0


@dataclass(frozen=True)
class QueueEntry:
    """A person's slot in one rotation.

    This is a copy of the person taken when the rotation is built, so changes
    to ``allotted_seconds`` never reach the roster.

    Attributes:
        person_id: Identifier of the person this entry was copied from.
        name: Person's name at rotation start.
        allotted_seconds: Duration decided for this turn.
        has_priority: Person's priority flag at rotation start.
    """

    person_id: str
    name: str
    allotted_seconds: int
    has_priority: bool = False


@dataclass(frozen=True)
class Queue:
    """Ordered entries of a rotation with a position pointer.

    ``current_index == len(entries)`` means the rotation is complete.
    """

    entries: tuple[QueueEntry, ...] = ()
    current_index: int = 0

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_complete(self) -> bool:
        return self.current_index >= len(self.entries)

    @property
    def current(self) -> Optional[QueueEntry]:
        if self.is_complete:
            return None
        return self.entries[self.current_index]

    @property
    def remaining(self) -> tuple[QueueEntry, ...]:
        """Entries strictly after the current position."""
        return self.entries[self.current_index + 1 :]


@dataclass(frozen=True)
class TimerState:
    """Runtime state of the turn timer.

    Attributes:
        counter: Remaining seconds (countdown) or elapsed seconds (count-up).
            Signed and unbounded: goes negative or past the total in overtime.
        total_seconds: Allotted duration of the loaded entry.
        mode: Counting direction.
        status: State machine position.
        warning_fired: Warning event already emitted for this approach.
        expiry_fired: Time-up event already emitted for this approach.
    """

    counter: int = 0
    total_seconds: int = 0
    mode: TimerMode = TimerMode.COUNTDOWN
    status: TimerStatus = TimerStatus.IDLE
    warning_fired: bool = False
    expiry_fired: bool = False

    @property
    def is_paused(self) -> bool:
        return self.status == TimerStatus.PAUSED


@dataclass(frozen=True)
class Rule:
    """A user-editable duration adjustment rule.

    Attributes:
        name: Short label.
        description: Human readable explanation.
        condition: Expression over ``overtime``.
        action: Expression over ``nextTurn`` and ``overtime``, or an
            ``allOthers`` expression giving a bonus for everyone still waiting.
        enabled: Disabled rules are never evaluated.
    """

    name: str
    description: str
    condition: str
    action: str
    enabled: bool = True


@dataclass(frozen=True)
class Device:
    """A named device that can run a rotation."""

    id: str
    name: str


@dataclass(frozen=True)
class ActiveSessionRecord:
    """Advisory snapshot of a device's running rotation.

    Shared between devices through storage, last writer wins per device.
    Records older than one hour are purged when the map is read.
    """

    device_id: str
    queue: tuple[QueueEntry, ...]
    current_index: int
    counter: int
    total_seconds: int
    is_paused: bool
    device_name: str
    last_update_ms: int

    @property
    def current(self) -> Optional[QueueEntry]:
        if 0 <= self.current_index < len(self.queue):
            return self.queue[self.current_index]
        return None


@dataclass(frozen=True)
class TimerSnapshot:
    """Per-device timer-state record, enough to resume after a restart.

    Attributes:
        queue: Active rotation with its position.
        counter: Timer counter, read in ``mode``.
        total_seconds: Allotted duration of the current entry.
        is_paused: Whether the timer was paused.
        mode: Counting direction the counter was written in. None for
            records that predate it; the configured direction applies then.
        warning_fired: Warning already emitted for the current entry.
        expiry_fired: Time-up already emitted for the current entry.
    """

    queue: Queue
    counter: int
    total_seconds: int
    is_paused: bool
    mode: Optional[TimerMode] = None
    warning_fired: bool = False
    expiry_fired: bool = False


@dataclass(frozen=True)
class TurnEvent:
    """An output event for the presentation layer.

    Attributes:
        event_type: What happened.
        person_id: Person the event concerns, if any.
        person_name: Display name of that person.
        seconds: Event magnitude (overtime seconds, remaining seconds, ...).
        message: Suggested human readable wording.
    """

    event_type: TurnEventType
    person_id: Optional[str] = None
    person_name: Optional[str] = None
    seconds: int = 0
    message: str = ""


@dataclass(frozen=True)
class TurnResult:
    """Result of a controller command or tick.

    Attributes:
        events: Events emitted while handling the command, in order.
        accepted: False when the command was refused by configuration
            (e.g. pausing while pausing is disabled).
    """

    events: list[TurnEvent] = field(default_factory=list)
    accepted: bool = True

    def of_type(self, event_type: TurnEventType) -> list[TurnEvent]:
        return [e for e in self.events if e.event_type == event_type]


@dataclass(frozen=True)
class QueueItemView:
    """One line of the rendered queue."""

    position: int
    name: str
    allotted_minutes: int
    has_priority: bool
    is_current: bool


@dataclass(frozen=True)
class TimerView:
    """Snapshot of everything the timer screen displays."""

    person_name: Optional[str]
    display: str
    is_overtime: bool
    progress_percent: float
    elapsed: str
    remaining: str
    status: TimerStatus
    queue: list[QueueItemView] = field(default_factory=list)


@dataclass(frozen=True)
class UsageLine:
    """Per-person usage statistics."""

    person_id: str
    name: str
    total_usage_seconds: int
    share_percent: float


@dataclass(frozen=True)
class SessionView:
    """Another device's rotation, as shown in the cross-device panel."""

    device_id: str
    device_name: str
    person_name: Optional[str]
    counter_display: str
    total_display: str
    is_paused: bool
    progress_percent: int
