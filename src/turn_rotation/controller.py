"""Turn controller: orchestrates queue, timer and rule engine for a device.

The controller owns no global state. Everything it works on lives in an
explicit :class:`SessionContext`; persistence goes through an optional
:class:`SessionStore`. Commands return a :class:`TurnResult` carrying the
events the presentation layer should render.
"""

import logging
import random
import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Callable, Optional

from . import expression, rotation
from .errors import (
    EmptyQueueError,
    RuleEvaluationError,
    ValidationError,
)
from .formatting import describe_overtime, format_clock, format_time
from .model import (
    ActiveSessionRecord,
    Device,
    Person,
    Queue,
    QueueItemView,
    ReshuffleScope,
    Rule,
    SessionView,
    Settings,
    TimerSnapshot,
    TimerState,
    TimerStatus,
    TimerView,
    TurnEvent,
    TurnEventType,
    TurnResult,
    UsageLine,
)
from .rules import DEFAULT_RULES, compute_next_duration, floor_to_minutes
from .storage import SessionStore, StoredConfig, to_epoch_ms
from .timer import TurnTimer

_LOGGER = logging.getLogger(__name__)

# Finished turns further than this from the allotted time produce a notice
NOTICE_THRESHOLD_SECONDS = 30


@dataclass
class SessionContext:
    """Everything one device's rotation works on.

    Attributes:
        settings: Current configuration.
        people: Roster in registration order.
        devices: Named devices.
        rules: Ordered rule set.
        device_id: Identity of this device in shared storage.
        selected_device_id: Which named device this is, if chosen.
        queue: Active rotation (empty when none).
    """

    settings: Settings = field(default_factory=Settings)
    people: list[Person] = field(default_factory=list)
    devices: list[Device] = field(default_factory=list)
    rules: list[Rule] = field(default_factory=lambda: list(DEFAULT_RULES))
    device_id: str = "local"
    selected_device_id: Optional[str] = None
    queue: Queue = field(default_factory=Queue)

    def find_person(self, person_id: str) -> Optional[Person]:
        for person in self.people:
            if person.id == person_id:
                return person
        return None

    def replace_person(self, updated: Person) -> None:
        self.people = [updated if p.id == updated.id else p for p in self.people]

    def to_config(self) -> StoredConfig:
        return StoredConfig(
            settings=self.settings,
            people=list(self.people),
            devices=list(self.devices),
            rules=list(self.rules),
        )


class TurnController:
    """Runs rotations for one device."""

    def __init__(
        self,
        context: SessionContext,
        store: Optional[SessionStore] = None,
        shuffle: rotation.Shuffle = random.shuffle,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        """Initialize the controller.

        Args:
            context: Session state to operate on.
            store: Optional persistence; without it nothing is saved.
            shuffle: In-place permutation used for rotations and reshuffles.
            clock: Source of the current time for session records.
            id_factory: Generator for person and device ids.
        """
        self.context = context
        self.store = store
        self.shuffle = shuffle
        self.clock = clock
        self.id_factory = id_factory
        self.timer = TurnTimer(
            mode=context.settings.timer_mode,
            warning_seconds=context.settings.warning_minutes * 60,
        )

    @classmethod
    def from_store(cls, store: SessionStore, **kwargs: Any) -> "TurnController":
        """Build a controller from persisted config and resume this device's rotation."""
        config = store.load_config()
        context = SessionContext(
            settings=config.settings,
            people=list(config.people),
            devices=list(config.devices),
            rules=list(config.rules),
            device_id=store.device_id(),
        )
        controller = cls(context, store=store, **kwargs)
        controller.restore()
        return controller

    # ---- Roster ----

    def add_person(
        self,
        name: str,
        turn_minutes: Optional[int] = None,
        has_priority: bool = False,
    ) -> Person:
        """Register a person.

        Args:
            name: Display name; surrounding whitespace is stripped.
            turn_minutes: Turn length; defaults to the configured default.
            has_priority: Group this person first in priority mode.

        Raises:
            ValidationError: On an empty name or non-positive duration.
        """
        name = self._validate_name(name)
        minutes = (
            self.context.settings.default_turn_minutes
            if turn_minutes is None
            else self._validate_minutes(turn_minutes, "Turn length")
        )
        person = Person(
            id=self.id_factory(),
            name=name,
            default_turn_seconds=minutes * 60,
            has_priority=has_priority,
        )
        self.context.people.append(person)
        _LOGGER.info(f"Added {person.name} ({minutes} min, priority={has_priority})")
        self._save_config()
        return person

    def update_person(
        self,
        person_id: str,
        name: Optional[str] = None,
        turn_minutes: Optional[int] = None,
        has_priority: Optional[bool] = None,
    ) -> Person:
        person = self._require_person(person_id)
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = self._validate_name(name)
        if turn_minutes is not None:
            changes["default_turn_seconds"] = (
                self._validate_minutes(turn_minutes, "Turn length") * 60
            )
        if has_priority is not None:
            changes["has_priority"] = has_priority
        updated = replace(person, **changes)
        self.context.replace_person(updated)
        _LOGGER.info(f"Updated {updated.name}")
        self._save_config()
        return updated

    def remove_person(self, person_id: str) -> None:
        person = self._require_person(person_id)
        self.context.people = [p for p in self.context.people if p.id != person_id]
        _LOGGER.info(f"Removed {person.name}")
        self._save_config()

    def reset_usage(self) -> None:
        """Zero every person's usage total."""
        self.context.people = [
            replace(p, total_usage_seconds=0) for p in self.context.people
        ]
        _LOGGER.info("Usage statistics reset")
        self._save_config()

    def usage_report(self) -> list[UsageLine]:
        """Usage totals with each person's share of the overall time."""
        total = sum(p.total_usage_seconds for p in self.context.people)
        return [
            UsageLine(
                person_id=p.id,
                name=p.name,
                total_usage_seconds=p.total_usage_seconds,
                share_percent=(
                    round(p.total_usage_seconds / total * 100, 1) if total else 0.0
                ),
            )
            for p in self.context.people
        ]

    # ---- Devices ----

    def add_device(self, name: str) -> Device:
        device = Device(id=self.id_factory(), name=self._validate_name(name))
        self.context.devices.append(device)
        self._save_config()
        return device

    def remove_device(self, device_id: str) -> None:
        if not any(d.id == device_id for d in self.context.devices):
            raise ValidationError(f"Unknown device: {device_id}")
        self.context.devices = [d for d in self.context.devices if d.id != device_id]
        if self.context.selected_device_id == device_id:
            self.context.selected_device_id = None
        self._save_config()

    def select_device(self, device_id: Optional[str]) -> None:
        if device_id is not None and not any(
            d.id == device_id for d in self.context.devices
        ):
            raise ValidationError(f"Unknown device: {device_id}")
        self.context.selected_device_id = device_id

    @property
    def device_name(self) -> str:
        for device in self.context.devices:
            if device.id == self.context.selected_device_id:
                return device.name
        return f"Device {self.context.device_id[-4:]}"

    # ---- Rules ----

    def add_rule(self, name: str, description: str, condition: str, action: str) -> Rule:
        """Append a custom rule.

        Raises:
            ValidationError: If a field is empty or an expression is malformed.
        """
        values = [v.strip() if isinstance(v, str) else "" for v in (name, description, condition, action)]
        if not all(values):
            raise ValidationError("Rule name, description, condition and action are required")
        for text in values[2:]:
            try:
                expression.parse(text)
            except RuleEvaluationError as exc:
                raise ValidationError(str(exc)) from exc
        rule = Rule(*values, enabled=True)
        self.context.rules.append(rule)
        _LOGGER.info(f"Added rule '{rule.name}'")
        self._save_config()
        return rule

    def toggle_rule(self, index: int) -> Rule:
        rule = self._require_rule(index)
        updated = replace(rule, enabled=not rule.enabled)
        self.context.rules[index] = updated
        _LOGGER.info(f"Rule '{rule.name}' {'enabled' if updated.enabled else 'disabled'}")
        self._save_config()
        return updated

    def remove_rule(self, index: int) -> None:
        """Delete a custom rule. Built-in templates can only be disabled."""
        rule = self._require_rule(index)
        if any(
            (t.name, t.condition, t.action) == (rule.name, rule.condition, rule.action)
            for t in DEFAULT_RULES
        ):
            raise ValidationError(f"Built-in rule '{rule.name}' cannot be deleted")
        del self.context.rules[index]
        self._save_config()

    # ---- Settings ----

    def update_settings(self, **changes: Any) -> Settings:
        """Apply setting changes.

        The counting direction takes effect when the next entry is loaded;
        the warning threshold applies immediately.

        Raises:
            ValidationError: On unknown settings or non-positive minutes.
        """
        known = {f.name for f in fields(Settings)}
        unknown = set(changes) - known
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        for key in ("default_turn_minutes", "warning_minutes"):
            if key in changes:
                self._validate_minutes(changes[key], key)

        settings = replace(self.context.settings, **changes)
        self.context.settings = settings
        self.timer.mode = settings.timer_mode
        self.timer.warning_seconds = settings.warning_minutes * 60
        _LOGGER.info(f"Settings updated: {', '.join(sorted(changes))}")
        self._save_config()
        return settings

    # ---- Rotation ----

    def start_rotation(self) -> TurnResult:
        """Build a new rotation from the roster and load its first entry.

        Raises:
            EmptyRosterError: If nobody is registered.
        """
        self.context.queue = rotation.build_rotation(
            self.context.people, self.context.settings.priority_mode, self.shuffle
        )
        events = [self._load_current()]
        self._save_timer_state()
        return TurnResult(events=events)

    def reshuffle(self) -> TurnResult:
        """Re-permute the active queue according to the configured scope.

        Raises:
            EmptyQueueError: If there is no active queue.
        """
        scope = self.context.settings.reshuffle_scope
        self.context.queue = rotation.reshuffle(self.context.queue, scope, self.shuffle)
        events: list[TurnEvent] = []
        if scope == ReshuffleScope.ALL:
            # Restarting from the top always reloads the timer
            events.append(self._load_current())
        self._save_timer_state()
        return TurnResult(events=events)

    def end_rotation(self) -> None:
        """Drop the queue and this device's persisted rotation state."""
        self.context.queue = Queue()
        self.timer = TurnTimer(
            mode=self.context.settings.timer_mode,
            warning_seconds=self.context.settings.warning_minutes * 60,
        )
        if self.store:
            self.store.clear_timer_state(self.context.device_id)
            self.store.clear_active_session(self.context.device_id)
        _LOGGER.info("Rotation ended")

    # ---- Timer commands ----

    def start_timer(self) -> TurnResult:
        if self.context.queue.current is None:
            raise EmptyQueueError("No active turn to start")
        accepted = self.timer.start()
        self._save_active_session()
        self._save_timer_state()
        return TurnResult(accepted=accepted)

    def pause_timer(self) -> TurnResult:
        """Pause; refused (``accepted=False``) when pausing is disabled."""
        accepted = self.timer.pause(self.context.settings.allow_pause)
        if accepted:
            self._save_active_session()
            self._save_timer_state()
        return TurnResult(accepted=accepted)

    def resume_timer(self) -> TurnResult:
        accepted = self.timer.resume()
        if accepted:
            self._save_active_session()
            self._save_timer_state()
        return TurnResult(accepted=accepted)

    def reset_timer(self) -> TurnResult:
        """Reset; refused (``accepted=False``) when resetting is disabled."""
        accepted = self.timer.reset(self.context.settings.allow_reset)
        if accepted:
            self._save_timer_state()
        return TurnResult(accepted=accepted)

    def tick(self) -> TurnResult:
        """Handle one scheduler tick."""
        if self.timer.status != TimerStatus.RUNNING:
            return TurnResult()
        events = self.timer.tick()
        self._save_active_session()
        self._save_timer_state()
        return TurnResult(events=events)

    def finish_current_turn(self) -> TurnResult:
        """End the active turn and move the rotation on.

        Stops the timer, runs the rule set over the turn's overtime, applies
        queue bonuses, records usage, then loads the next entry or reports
        that the rotation is complete.

        Raises:
            EmptyQueueError: If no turn is active.
        """
        queue = self.context.queue
        entry = queue.current
        if entry is None:
            raise EmptyQueueError("No active turn to finish")

        self.timer.stop()
        overtime = self.timer.overtime
        used = max(0, self.timer.elapsed_seconds)
        events: list[TurnEvent] = []

        _LOGGER.info(f"Finishing turn of {entry.name} (overtime={overtime}s)")

        person = self.context.find_person(entry.person_id)
        if person is None:
            _LOGGER.warning(
                f"{entry.name} is no longer on the roster; rules and usage skipped"
            )
        else:
            enabled = [r for r in self.context.rules if r.enabled]
            outcome = compute_next_duration(person, overtime, enabled, queue.remaining)
            queue = rotation.apply_adjustments(queue, outcome.queue_adjustments)
            updated = replace(
                outcome.person,
                total_usage_seconds=person.total_usage_seconds + floor_to_minutes(used),
            )
            self.context.replace_person(updated)
            self._save_config()

        if abs(overtime) > NOTICE_THRESHOLD_SECONDS:
            events.append(
                TurnEvent(
                    event_type=(
                        TurnEventType.OVERTIME if overtime > 0 else TurnEventType.EARLY_FINISH
                    ),
                    person_id=entry.person_id,
                    person_name=entry.name,
                    seconds=overtime,
                    message=describe_overtime(entry.name, overtime),
                )
            )

        self.context.queue = rotation.advance(queue)

        if self.context.queue.is_complete:
            if self.store:
                self.store.clear_active_session(self.context.device_id)
            self._save_timer_state()
            events.append(
                TurnEvent(
                    event_type=TurnEventType.ROTATION_COMPLETE,
                    message="Everyone has had their turn",
                )
            )
            _LOGGER.info("Rotation complete")
            return TurnResult(events=events)

        events.append(self._load_current())
        self._save_active_session()
        self._save_timer_state()
        return TurnResult(events=events)

    # ---- Restoration ----

    def restore(self) -> bool:
        """Reload this device's rotation from storage.

        A rotation that was not paused resumes running, as it would have
        kept running had the host not restarted.
        The counter is read in the direction it was saved in, and alerts
        already delivered for the turn stay delivered.

        Returns:
            True if an unfinished rotation was restored.
        """
        if not self.store:
            return False
        snapshot = self.store.load_timer_state(self.context.device_id)
        if snapshot is None:
            return False

        self.context.queue = snapshot.queue
        entry = snapshot.queue.current
        if entry is None or snapshot.total_seconds <= 0:
            return False

        self.timer.restore(
            entry,
            TimerState(
                counter=snapshot.counter,
                total_seconds=snapshot.total_seconds,
                mode=snapshot.mode or self.context.settings.timer_mode,
                status=TimerStatus.PAUSED if snapshot.is_paused else TimerStatus.RUNNING,
                warning_fired=snapshot.warning_fired,
                expiry_fired=snapshot.expiry_fired,
            ),
        )
        _LOGGER.info(
            f"Restored rotation at {entry.name} "
            f"({'paused' if snapshot.is_paused else 'running'})"
        )
        return True

    # ---- Views ----

    def view(self) -> TimerView:
        """Snapshot of the timer screen."""
        queue = self.context.queue
        entry = queue.current
        timer = self.timer
        overtime = timer.is_overtime
        return TimerView(
            person_name=entry.name if entry else None,
            display=format_clock(timer.state.counter, overtime),
            is_overtime=overtime,
            progress_percent=round(timer.progress_percent, 1),
            elapsed=format_time(timer.elapsed_seconds),
            remaining=format_time(timer.time_remaining),
            status=timer.status,
            queue=[
                QueueItemView(
                    position=i + 1,
                    name=e.name,
                    allotted_minutes=e.allotted_seconds // 60,
                    has_priority=e.has_priority,
                    is_current=i == queue.current_index,
                )
                for i, e in enumerate(queue.entries)
            ],
        )

    def other_sessions(self) -> list[SessionView]:
        """Rotations running on other devices, from the shared record."""
        if not self.store:
            return []
        sessions = self.store.load_active_sessions(self.clock())
        views = []
        for device_id, record in sessions.items():
            if device_id == self.context.device_id:
                continue
            entry = record.current
            views.append(
                SessionView(
                    device_id=device_id,
                    device_name=record.device_name,
                    person_name=entry.name if entry else None,
                    counter_display=format_time(record.counter),
                    total_display=format_time(record.total_seconds),
                    is_paused=record.is_paused,
                    progress_percent=(
                        round(record.counter / record.total_seconds * 100)
                        if record.total_seconds > 0
                        else 0
                    ),
                )
            )
        return views

    # ---- Backup ----

    def export_json(self) -> str:
        if not self.store:
            raise ValidationError("Export requires a session store")
        return self.store.export_json(self.context.to_config(), self.clock())

    def import_json(self, text: str) -> None:
        """Replace settings, roster, devices and rules from a backup.

        Raises:
            StorageCorruptionError: If the backup is malformed; nothing changes.
        """
        if not self.store:
            raise ValidationError("Import requires a session store")
        config = self.store.import_json(text)
        self.context.settings = config.settings
        self.context.people = list(config.people)
        self.context.devices = list(config.devices)
        self.context.rules = list(config.rules)
        self.timer.mode = config.settings.timer_mode
        self.timer.warning_seconds = config.settings.warning_minutes * 60

    # ---- Internals ----

    def _load_current(self) -> TurnEvent:
        entry = self.context.queue.current
        if entry is None:
            raise EmptyQueueError("No entry to load")
        self.timer.load_entry(entry)
        return TurnEvent(
            event_type=TurnEventType.TURN_LOADED,
            person_id=entry.person_id,
            person_name=entry.name,
            seconds=entry.allotted_seconds,
            message=f"{entry.name}'s turn: {format_time(entry.allotted_seconds)}",
        )

    def _require_person(self, person_id: str) -> Person:
        person = self.context.find_person(person_id)
        if person is None:
            raise ValidationError(f"Unknown person: {person_id}")
        return person

    def _require_rule(self, index: int) -> Rule:
        if not 0 <= index < len(self.context.rules):
            raise ValidationError(f"No rule at index {index}")
        return self.context.rules[index]

    @staticmethod
    def _validate_name(name: str) -> str:
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            raise ValidationError("Name must not be empty")
        return name

    @staticmethod
    def _validate_minutes(value: Any, label: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(f"{label} must be a positive whole number of minutes")
        return value

    def _save_config(self) -> None:
        if self.store:
            self.store.save_config(self.context.to_config())

    def _save_timer_state(self) -> None:
        if not self.store:
            return
        state = self.timer.state
        self.store.save_timer_state(
            self.context.device_id,
            TimerSnapshot(
                queue=self.context.queue,
                counter=state.counter,
                total_seconds=state.total_seconds,
                is_paused=state.is_paused,
                mode=state.mode,
                warning_fired=state.warning_fired,
                expiry_fired=state.expiry_fired,
            ),
        )

    def _save_active_session(self) -> None:
        if not self.store or self.context.queue.current is None:
            return
        state = self.timer.state
        self.store.save_active_session(
            ActiveSessionRecord(
                device_id=self.context.device_id,
                queue=self.context.queue.entries,
                current_index=self.context.queue.current_index,
                counter=state.counter,
                total_seconds=state.total_seconds,
                is_paused=state.is_paused,
                device_name=self.device_name,
                last_update_ms=to_epoch_ms(self.clock()),
            )
        )
