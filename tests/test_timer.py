"""Tests for the turn timer state machine."""

import pytest

from turn_rotation.model import QueueEntry, TimerMode, TimerStatus, TurnEventType
from turn_rotation.timer import TurnTimer


def entry(seconds, name="A"):
    return QueueEntry(person_id=name.lower(), name=name, allotted_seconds=seconds)


def run(timer, ticks):
    """Tick ``ticks`` times and return every event emitted."""
    events = []
    for _ in range(ticks):
        events.extend(timer.tick())
    return events


@pytest.fixture
def countdown():
    timer = TurnTimer(mode=TimerMode.COUNTDOWN, warning_seconds=120)
    timer.load_entry(entry(300))
    return timer


@pytest.fixture
def countup():
    timer = TurnTimer(mode=TimerMode.COUNTUP, warning_seconds=120)
    timer.load_entry(entry(300))
    return timer


def test_load_entry_initial_counter(countdown, countup):
    """Test the initial counter depends on the mode."""
    assert countdown.state.counter == 300
    assert countup.state.counter == 0
    assert countdown.status == TimerStatus.IDLE


def test_idle_timer_does_not_tick(countdown):
    assert countdown.tick() == []
    assert countdown.state.counter == 300


def test_countdown_runs_into_overtime():
    """Test the counter never clamps at zero."""
    timer = TurnTimer(mode=TimerMode.COUNTDOWN)
    timer.load_entry(entry(5))
    timer.start()
    run(timer, 7)
    assert timer.state.counter == -2
    assert timer.is_overtime is True
    assert timer.overtime == 2
    assert timer.time_remaining == -2


def test_countup_runs_past_total():
    timer = TurnTimer(mode=TimerMode.COUNTUP)
    timer.load_entry(entry(150))
    timer.start()
    run(timer, 200)
    assert timer.state.counter == 200
    assert timer.is_overtime is True
    assert timer.overtime == 50
    assert timer.time_remaining == -50


def test_each_tick_moves_by_one(countdown, countup):
    countdown.start()
    countup.start()
    for expected in range(1, 10):
        countdown.tick()
        countup.tick()
        assert countdown.state.counter == 300 - expected
        assert countup.state.counter == expected


def test_progress(countdown):
    countdown.start()
    run(countdown, 150)
    assert countdown.progress_percent == 50
    run(countdown, 200)
    assert countdown.progress_percent == 100


def test_pause_and_resume(countdown):
    countdown.start()
    run(countdown, 10)
    assert countdown.pause() is True
    assert countdown.status == TimerStatus.PAUSED
    run(countdown, 10)
    assert countdown.state.counter == 290
    # Pausing again is a no-op
    assert countdown.pause() is False
    assert countdown.resume() is True
    run(countdown, 1)
    assert countdown.state.counter == 289


def test_start_on_paused_timer_resumes(countdown):
    countdown.start()
    countdown.pause()
    assert countdown.start() is True
    assert countdown.status == TimerStatus.RUNNING


def test_pause_refused_when_disabled(countdown):
    countdown.start()
    assert countdown.pause(allow_pause=False) is False
    assert countdown.status == TimerStatus.RUNNING


def test_reset(countdown):
    countdown.start()
    run(countdown, 30)
    assert countdown.reset() is True
    assert countdown.status == TimerStatus.IDLE
    assert countdown.state.counter == 300


def test_reset_refused_when_disabled(countdown):
    countdown.start()
    run(countdown, 30)
    assert countdown.reset(allow_reset=False) is False
    assert countdown.state.counter == 270
    assert countdown.status == TimerStatus.RUNNING


def test_countup_reset_returns_to_zero(countup):
    countup.start()
    run(countup, 30)
    countup.reset()
    assert countup.state.counter == 0


def test_start_without_entry():
    assert TurnTimer().start() is False


def test_warning_fires_once(countdown):
    """Test the warning fires once as remaining time enters the window."""
    countdown.start()
    events = run(countdown, 185)  # down to 115 seconds
    warnings = [e for e in events if e.event_type == TurnEventType.WARNING]
    assert len(warnings) == 1
    assert warnings[0].seconds == 120
    assert warnings[0].person_name == "A"


def test_time_up_fires_once_at_zero(countdown):
    countdown.start()
    events = run(countdown, 320)
    time_up = [e for e in events if e.event_type == TurnEventType.TIME_UP]
    assert len(time_up) == 1
    assert time_up[0].seconds == 0


def test_countup_thresholds():
    timer = TurnTimer(mode=TimerMode.COUNTUP, warning_seconds=60)
    timer.load_entry(entry(120))
    timer.start()
    events = run(timer, 130)
    kinds = [e.event_type for e in events]
    assert kinds == [TurnEventType.WARNING, TurnEventType.TIME_UP]


def test_no_warning_when_turn_shorter_than_window():
    """Test a turn that starts below the warning window never warns."""
    timer = TurnTimer(mode=TimerMode.COUNTDOWN, warning_seconds=120)
    timer.load_entry(entry(60))
    timer.start()
    events = run(timer, 70)
    assert [e.event_type for e in events] == [TurnEventType.TIME_UP]


def test_reset_rearms_alerts(countdown):
    countdown.start()
    run(countdown, 300)
    countdown.reset()
    countdown.start()
    events = run(countdown, 300)
    kinds = [e.event_type for e in events]
    assert kinds == [TurnEventType.WARNING, TurnEventType.TIME_UP]


def test_load_entry_resets_state(countdown):
    countdown.start()
    run(countdown, 310)
    countdown.load_entry(entry(120, name="B"))
    assert countdown.status == TimerStatus.IDLE
    assert countdown.state.counter == 120
    assert countdown.state.expiry_fired is False
    assert countdown.entry.name == "B"
