"""Tests for building, shuffling and advancing rotations."""

import random
from collections import Counter

import pytest

from conftest import identity_shuffle, reverse_shuffle
from turn_rotation.errors import EmptyInputError, EmptyQueueError, EmptyRosterError
from turn_rotation.model import Person, Queue, ReshuffleScope
from turn_rotation.rotation import advance, apply_adjustments, build_rotation, reshuffle


@pytest.fixture
def people():
    return [
        Person(id="a", name="A", default_turn_seconds=60),
        Person(id="b", name="B", default_turn_seconds=120, has_priority=True),
        Person(id="c", name="C", default_turn_seconds=180),
        Person(id="d", name="D", default_turn_seconds=240, has_priority=True),
    ]


def ids(queue):
    return [e.person_id for e in queue.entries]


def test_build_requires_people():
    """Test an empty roster is refused."""
    with pytest.raises(EmptyRosterError):
        build_rotation([], priority_mode=False)
    assert issubclass(EmptyRosterError, EmptyInputError)


def test_build_copies_defaults(people):
    """Test every entry starts with the person's default turn."""
    queue = build_rotation(people, priority_mode=False, shuffle=identity_shuffle)
    assert queue.current_index == 0
    assert ids(queue) == ["a", "b", "c", "d"]
    assert [e.allotted_seconds for e in queue.entries] == [60, 120, 180, 240]


@pytest.mark.parametrize("seed", range(20))
def test_build_covers_everyone_once(people, seed):
    """Test a shuffled rotation has one entry per person."""
    rng = random.Random(seed)
    queue = build_rotation(people, priority_mode=False, shuffle=rng.shuffle)
    assert sorted(ids(queue)) == ["a", "b", "c", "d"]


def test_priority_mode_groups_first_stably(people):
    """Test priority people lead, each group in registration order."""
    queue = build_rotation(people, priority_mode=True, shuffle=reverse_shuffle)
    assert ids(queue) == ["b", "d", "a", "c"]


def test_entries_are_copies(people):
    """Test adjusting the queue never reaches the roster."""
    queue = build_rotation(people, priority_mode=True)
    adjusted = apply_adjustments(queue, {"a": 600})
    assert people[0].default_turn_seconds == 60
    assert adjusted.entries[2].allotted_seconds == 660


def test_reshuffle_all_restarts(people):
    """Test a full reshuffle permutes everything and resets the pointer."""
    queue = Queue(
        entries=build_rotation(people, False, identity_shuffle).entries, current_index=2
    )
    shuffled = reshuffle(queue, ReshuffleScope.ALL, reverse_shuffle)
    assert shuffled.current_index == 0
    assert ids(shuffled) == ["d", "c", "b", "a"]
    assert Counter(shuffled.entries) == Counter(queue.entries)


def test_reshuffle_remaining_keeps_position(people):
    """Test a remaining-only reshuffle leaves done and current entries alone."""
    queue = Queue(
        entries=build_rotation(people, False, identity_shuffle).entries, current_index=1
    )
    shuffled = reshuffle(queue, ReshuffleScope.REMAINING, reverse_shuffle)
    assert shuffled.current_index == 1
    assert ids(shuffled) == ["a", "b", "d", "c"]


@pytest.mark.parametrize("seed", range(10))
def test_reshuffle_is_a_permutation(people, seed):
    queue = build_rotation(people, False, identity_shuffle)
    shuffled = reshuffle(queue, shuffle=random.Random(seed).shuffle)
    assert Counter(shuffled.entries) == Counter(queue.entries)


def test_reshuffle_requires_queue():
    with pytest.raises(EmptyQueueError):
        reshuffle(Queue())


def test_advance_until_complete(people):
    queue = build_rotation(people[:2], False, identity_shuffle)
    queue = advance(queue)
    assert queue.current.person_id == "b"
    queue = advance(queue)
    assert queue.is_complete
    # Never moves past the end
    assert advance(queue).current_index == 2


def test_adjustments_only_touch_waiting_entries(people):
    """Test bonuses skip finished and current entries."""
    queue = Queue(
        entries=build_rotation(people, False, identity_shuffle).entries, current_index=1
    )
    adjusted = apply_adjustments(queue, {"a": 60, "b": 60, "c": 60, "d": 60})
    assert [e.allotted_seconds for e in adjusted.entries] == [60, 120, 240, 300]


def test_adjustments_round_down_and_floor(people):
    """Test deltas round down to minutes and never go below a minute."""
    queue = build_rotation(people, False, identity_shuffle)
    adjusted = apply_adjustments(queue, {"b": 89, "c": -1000, "d": -30})
    # b: +60, c: 180-1020 -> 60, d: -30 rounds down to -60
    assert [e.allotted_seconds for e in adjusted.entries] == [60, 180, 60, 180]
