"""Integration tests running whole rotations across devices."""

from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import make_controller
from turn_rotation.model import Person, TurnEventType
from turn_rotation.rules import DEFAULT_RULES
from turn_rotation.scheduler import ManualTicker
from turn_rotation.storage import MemoryStorage, SessionStore


@pytest.fixture
def family():
    """Four people, two of them with priority."""
    return [
        Person(id="p1", name="Ana", default_turn_seconds=300),
        Person(id="p2", name="Ben", default_turn_seconds=600, has_priority=True),
        Person(id="p3", name="Cy", default_turn_seconds=300),
        Person(id="p4", name="Dee", default_turn_seconds=420, has_priority=True),
    ]


def play_turn(controller, seconds):
    """Run the timer for ``seconds`` and finish the turn."""
    controller.start_timer()
    ticker = ManualTicker(controller.tick)
    tick_events = [e for result in ticker.fire(seconds) for e in result.events]
    finish = controller.finish_current_turn()
    return tick_events, finish


def test_full_priority_rotation(family, store, clock):
    """Test: a whole priority rotation with several rules enabled."""
    controller = make_controller(family, store=store, clock=clock, priority_mode=True)
    controller.context.rules = [
        replace(DEFAULT_RULES[0], enabled=False),
        replace(DEFAULT_RULES[1], enabled=True),  # early exit bonus
        replace(DEFAULT_RULES[2], enabled=True),  # heavy late penalty
        replace(DEFAULT_RULES[3], enabled=True),  # shared compensation
    ]
    controller.start_rotation()
    assert [e.name for e in controller.context.queue.entries] == ["Ben", "Dee", "Ana", "Cy"]

    # Ben leaves before the warning: the unused 130s go to his next turn
    ticks, finish = play_turn(controller, 470)
    assert [e.event_type for e in ticks] == []
    assert finish.of_type(TurnEventType.EARLY_FINISH)[0].seconds == -130
    assert controller.context.find_person("p2").default_turn_seconds == 720

    # Dee runs 6 minutes over: heavy penalty, everyone waiting gets a minute
    ticks, finish = play_turn(controller, 420 + 360)
    kinds = [e.event_type for e in ticks]
    assert kinds == [TurnEventType.WARNING, TurnEventType.TIME_UP]
    assert finish.of_type(TurnEventType.OVERTIME)[0].seconds == 360
    assert controller.context.find_person("p4").default_turn_seconds == 60
    assert [e.allotted_seconds for e in controller.context.queue.entries[2:]] == [360, 360]
    assert controller.timer.state.total_seconds == 360

    # Ana and Cy use exactly their time
    play_turn(controller, 360)
    _, finish = play_turn(controller, 360)
    assert finish.events[-1].event_type == TurnEventType.ROTATION_COMPLETE

    usage = {line.name: line.total_usage_seconds for line in controller.usage_report()}
    assert usage == {"Ana": 360, "Ben": 420, "Cy": 360, "Dee": 780}
    # Queue bonuses never reach the roster
    assert controller.context.find_person("p1").default_turn_seconds == 300


def test_roster_persists_across_rotation(family, store, clock):
    controller = make_controller(family, store=store, clock=clock)
    controller.start_rotation()
    play_turn(controller, 400)

    config = store.load_config()
    ana = next(p for p in config.people if p.id == "p1")
    assert ana.total_usage_seconds == 360


def test_two_devices_share_sessions(roster, clock):
    """Test devices see each other's running rotation but not their own."""
    backend = MemoryStorage()
    kitchen = make_controller(
        roster, store=SessionStore(backend), clock=clock, device_id="device_kitchen"
    )
    den = make_controller(
        roster, store=SessionStore(backend), clock=clock, device_id="device_den"
    )
    kitchen.add_device("Kitchen")
    kitchen.context.selected_device_id = kitchen.context.devices[0].id

    kitchen.start_rotation()
    kitchen.start_timer()
    for _ in range(15):
        kitchen.tick()
    den.start_rotation()
    den.start_timer()
    den.pause_timer()

    seen_by_den = den.other_sessions()
    assert len(seen_by_den) == 1
    view = seen_by_den[0]
    assert view.device_id == "device_kitchen"
    assert view.device_name == "Kitchen"
    assert view.person_name == "A"
    assert view.counter_display == "0:45"
    assert view.total_display == "1:00"
    assert view.is_paused is False
    assert view.progress_percent == 75

    seen_by_kitchen = kitchen.other_sessions()
    assert [v.device_name for v in seen_by_kitchen] == ["Device _den"]
    assert seen_by_kitchen[0].is_paused is True


def test_idle_device_session_expires(roster, clock):
    """Test a device that stops updating drops out after an hour."""
    backend = MemoryStorage()
    left = make_controller(roster, store=SessionStore(backend), clock=clock, device_id="d_left")
    watcher = make_controller(roster, store=SessionStore(backend), clock=clock, device_id="d_w")
    left.start_rotation()
    left.start_timer()

    clock.now += timedelta(minutes=30)
    assert len(watcher.other_sessions()) == 1

    clock.now += timedelta(minutes=31)
    assert watcher.other_sessions() == []


def test_finished_device_leaves_shared_record(roster, clock):
    backend = MemoryStorage()
    first = make_controller(roster, store=SessionStore(backend), clock=clock, device_id="d1")
    second = make_controller(roster, store=SessionStore(backend), clock=clock, device_id="d2")
    first.start_rotation()
    first.start_timer()
    first.finish_current_turn()
    assert len(second.other_sessions()) == 1

    first.finish_current_turn()
    assert second.other_sessions() == []


def test_reshuffle_mid_rotation_keeps_everyone(family, store, clock):
    controller = make_controller(family, store=store, clock=clock)
    controller.start_rotation()
    play_turn(controller, 300)
    controller.shuffle = lambda entries: entries.reverse()
    controller.reshuffle()

    names = sorted(e.name for e in controller.context.queue.entries)
    assert names == ["Ana", "Ben", "Cy", "Dee"]
    assert controller.context.queue.current_index == 0


def test_countup_rotation(roster):
    controller = make_controller(roster, count_down=False, warning_minutes=1)
    controller.context.rules = []
    controller.start_rotation()
    ticks, finish = play_turn(controller, 100)

    # A turn as long as the warning window warns on its first tick
    assert [e.event_type for e in ticks] == [TurnEventType.WARNING, TurnEventType.TIME_UP]
    assert finish.of_type(TurnEventType.OVERTIME)[0].seconds == 40
    assert controller.timer.state.counter == 0
    assert controller.timer.state.total_seconds == 120


def test_backup_restores_on_another_device(family, clock):
    source = make_controller(family, store=SessionStore(MemoryStorage()), clock=clock)
    source.add_rule("Bonus", "Always a minute more", "true", "nextTurn + 60")
    source.update_settings(theme="dark")
    text = source.export_json()

    target = make_controller([], store=SessionStore(MemoryStorage()), clock=clock)
    target.import_json(text)
    assert target.context.people == source.context.people
    assert target.context.rules == source.context.rules
    assert target.context.settings.theme == "dark"
