"""Turn timer state machine.

The timer is driven by external ticks (one tick = one second) and never
stops on its own: once the allotted time is used up it keeps counting into
overtime until the controller ends the turn. Overtime is what feeds the
rule engine, so it must keep accruing.
"""

import logging
from dataclasses import replace
from typing import Optional

from .formatting import format_time
from .model import (
    QueueEntry,
    TimerMode,
    TimerState,
    TimerStatus,
    TurnEvent,
    TurnEventType,
)

_LOGGER = logging.getLogger(__name__)

# Width of the window in which a threshold event may fire
ALERT_WINDOW_SECONDS = 5


class TurnTimer:
    """Tracks elapsed/remaining time for the active queue entry."""

    def __init__(
        self,
        mode: TimerMode = TimerMode.COUNTDOWN,
        warning_seconds: int = 120,
    ) -> None:
        """Initialize an idle timer with nothing loaded.

        Args:
            mode: Counting direction applied to entries loaded from now on.
            warning_seconds: Remaining time at which the warning fires.
        """
        self.mode = mode
        self.warning_seconds = warning_seconds
        self.entry: Optional[QueueEntry] = None
        self.state = TimerState(mode=mode)

    # ---- Derived values ----

    @property
    def status(self) -> TimerStatus:
        return self.state.status

    @property
    def time_remaining(self) -> int:
        """Seconds left; negative in overtime."""
        if self.state.mode == TimerMode.COUNTDOWN:
            return self.state.counter
        return self.state.total_seconds - self.state.counter

    @property
    def elapsed_seconds(self) -> int:
        if self.state.mode == TimerMode.COUNTDOWN:
            return self.state.total_seconds - self.state.counter
        return self.state.counter

    @property
    def is_overtime(self) -> bool:
        if self.state.mode == TimerMode.COUNTDOWN:
            return self.state.counter < 0
        return self.state.counter > self.state.total_seconds

    @property
    def overtime(self) -> int:
        """Signed seconds past the allotted time (negative when early)."""
        if self.state.mode == TimerMode.COUNTDOWN:
            return -self.state.counter
        return self.state.counter - self.state.total_seconds

    @property
    def progress_percent(self) -> float:
        """Share of the allotted time used, held at 100 in overtime."""
        if self.is_overtime or self.state.total_seconds <= 0:
            return 100.0 if self.is_overtime else 0.0
        return self.elapsed_seconds / self.state.total_seconds * 100

    # ---- Transitions ----

    def load_entry(self, entry: QueueEntry) -> TimerState:
        """Load a queue entry, resetting the timer to its allotted time."""
        self.entry = entry
        self.state = TimerState(
            counter=self._initial_counter(self.mode, entry.allotted_seconds),
            total_seconds=entry.allotted_seconds,
            mode=self.mode,
            status=TimerStatus.IDLE,
        )
        _LOGGER.info(
            f"Loaded {entry.name}: {format_time(entry.allotted_seconds)} "
            f"({self.mode.value})"
        )
        return self.state

    def start(self) -> bool:
        """Start counting. Returns False if nothing is loaded or already running."""
        if self.entry is None:
            _LOGGER.warning("start() with no entry loaded")
            return False
        if self.state.status == TimerStatus.RUNNING:
            return False
        if self.state.status == TimerStatus.PAUSED:
            return self.resume()
        self.state = replace(self.state, status=TimerStatus.RUNNING)
        _LOGGER.info(f"Timer started for {self.entry.name}")
        return True

    def pause(self, allow_pause: bool = True) -> bool:
        """Pause a running timer.

        Args:
            allow_pause: Current configuration. Pausing is refused when False.

        Returns:
            True if the timer is now paused because of this call.
        """
        if not allow_pause:
            _LOGGER.info("Pause refused: pausing is disabled")
            return False
        if self.state.status != TimerStatus.RUNNING:
            return False
        self.state = replace(self.state, status=TimerStatus.PAUSED)
        _LOGGER.info("Timer paused")
        return True

    def resume(self) -> bool:
        if self.state.status != TimerStatus.PAUSED:
            return False
        self.state = replace(self.state, status=TimerStatus.RUNNING)
        _LOGGER.info("Timer resumed")
        return True

    def reset(self, allow_reset: bool = True) -> bool:
        """Return to Idle with the full allotted time.

        Args:
            allow_reset: Current configuration. Resetting is refused when False.

        Returns:
            True if the timer was reset.
        """
        if not allow_reset:
            _LOGGER.info("Reset refused: resetting is disabled")
            return False
        self.state = replace(
            self.state,
            counter=self._initial_counter(self.state.mode, self.state.total_seconds),
            status=TimerStatus.IDLE,
            warning_fired=False,
            expiry_fired=False,
        )
        _LOGGER.info("Timer reset")
        return True

    def stop(self) -> TimerState:
        """Stop counting without touching the counter (end of turn)."""
        self.state = replace(self.state, status=TimerStatus.IDLE)
        return self.state

    def restore(self, entry: QueueEntry, state: TimerState) -> None:
        """Hydrate from a persisted snapshot."""
        self.entry = entry
        self.state = state

    def tick(self) -> list[TurnEvent]:
        """Advance one second and report threshold crossings.

        Returns:
            Events fired by this tick (warning, time up). Empty when the
            timer is not running.
        """
        if self.state.status != TimerStatus.RUNNING:
            return []

        step = -1 if self.state.mode == TimerMode.COUNTDOWN else 1
        self.state = replace(self.state, counter=self.state.counter + step)
        _LOGGER.debug(f"  tick: counter={self.state.counter}")
        return self._check_thresholds()

    def _check_thresholds(self) -> list[TurnEvent]:
        events: list[TurnEvent] = []
        remaining = self.time_remaining
        warning = self.warning_seconds
        warning_fired = self.state.warning_fired
        expiry_fired = self.state.expiry_fired
        name = self.entry.name if self.entry else None
        person_id = self.entry.person_id if self.entry else None

        if (
            0 < remaining <= warning
            and remaining > warning - ALERT_WINDOW_SECONDS
            and not warning_fired
        ):
            warning_fired = True
            minutes = warning // 60
            events.append(
                TurnEvent(
                    event_type=TurnEventType.WARNING,
                    person_id=person_id,
                    person_name=name,
                    seconds=remaining,
                    message=f"{minutes} minutes left",
                )
            )
            _LOGGER.info(f"Warning: {name} has {format_time(remaining)} left")

        if -ALERT_WINDOW_SECONDS < remaining <= 0 and not expiry_fired:
            expiry_fired = True
            events.append(
                TurnEvent(
                    event_type=TurnEventType.TIME_UP,
                    person_id=person_id,
                    person_name=name,
                    seconds=remaining,
                    message=f"Time is up for {name}",
                )
            )
            _LOGGER.info(f"Time up for {name}")

        # Re-arm once the counter moves back out of the threshold
        if remaining > warning:
            warning_fired = False
        if remaining > 0:
            expiry_fired = False

        if (warning_fired, expiry_fired) != (
            self.state.warning_fired,
            self.state.expiry_fired,
        ):
            self.state = replace(
                self.state, warning_fired=warning_fired, expiry_fired=expiry_fired
            )
        return events

    @staticmethod
    def _initial_counter(mode: TimerMode, total_seconds: int) -> int:
        return total_seconds if mode == TimerMode.COUNTDOWN else 0
