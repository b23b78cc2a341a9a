"""Queue model: building, shuffling and advancing a rotation.

All functions are pure; they take a :class:`Queue` and return a new one.
Shuffling is injectable so callers (and tests) can substitute a deterministic
permutation for ``random.shuffle``.
"""

import logging
import random
from dataclasses import replace
from typing import Callable, Mapping, Sequence

from .errors import EmptyQueueError, EmptyRosterError
from .model import Person, Queue, QueueEntry, ReshuffleScope
from .rules import MIN_TURN_SECONDS, floor_to_minutes

_LOGGER = logging.getLogger(__name__)

Shuffle = Callable[[list], None]


def build_rotation(
    people: Sequence[Person],
    priority_mode: bool,
    shuffle: Shuffle = random.shuffle,
) -> Queue:
    """Create the queue for a new rotation.

    Args:
        people: The roster, in registration order.
        priority_mode: If True, priority people go first (stable order within
            each group). Otherwise the whole queue is shuffled.
        shuffle: In-place permutation, Fisher-Yates by default.

    Returns:
        Queue positioned at its first entry.

    Raises:
        EmptyRosterError: If nobody is registered.
    """
    if not people:
        raise EmptyRosterError("Add people before starting a rotation")

    entries = [
        QueueEntry(
            person_id=p.id,
            name=p.name,
            allotted_seconds=p.default_turn_seconds,
            has_priority=p.has_priority,
        )
        for p in people
    ]

    if priority_mode:
        entries = [e for e in entries if e.has_priority] + [
            e for e in entries if not e.has_priority
        ]
    else:
        shuffle(entries)

    _LOGGER.info(
        f"Rotation built ({'priority' if priority_mode else 'shuffled'}): "
        f"{', '.join(e.name for e in entries)}"
    )
    return Queue(entries=tuple(entries), current_index=0)


def reshuffle(
    queue: Queue,
    scope: ReshuffleScope = ReshuffleScope.ALL,
    shuffle: Shuffle = random.shuffle,
) -> Queue:
    """Re-permute an active queue.

    With ``ReshuffleScope.ALL`` every entry is permuted and the rotation
    restarts from the first position, so people who already had their turn
    may come up again. ``ReshuffleScope.REMAINING`` keeps finished and
    current entries where they are and permutes only the waiting ones.

    Raises:
        EmptyQueueError: If there is no queue to shuffle.
    """
    if not queue.entries:
        raise EmptyQueueError("No active queue to shuffle")

    if scope == ReshuffleScope.ALL:
        entries = list(queue.entries)
        shuffle(entries)
        _LOGGER.info("Queue reshuffled, restarting from the first entry")
        return Queue(entries=tuple(entries), current_index=0)

    keep = queue.entries[: queue.current_index + 1]
    waiting = list(queue.remaining)
    shuffle(waiting)
    _LOGGER.info(f"Reshuffled {len(waiting)} waiting entries")
    return replace(queue, entries=keep + tuple(waiting))


def advance(queue: Queue) -> Queue:
    """Move to the next entry. A completed queue is returned unchanged."""
    if queue.is_complete:
        _LOGGER.debug("advance() on a completed rotation ignored")
        return queue
    return replace(queue, current_index=queue.current_index + 1)


def apply_adjustments(queue: Queue, adjustments: Mapping[str, int]) -> Queue:
    """Add per-person bonuses to the entries still waiting.

    Deltas are rounded down to whole minutes. Entries at or before the
    current position are never touched, and no entry drops below one minute.
    """
    if not adjustments:
        return queue

    entries = list(queue.entries)
    for idx in range(queue.current_index + 1, len(entries)):
        entry = entries[idx]
        delta = adjustments.get(entry.person_id)
        if not delta:
            continue
        allotted = max(
            MIN_TURN_SECONDS, entry.allotted_seconds + floor_to_minutes(delta)
        )
        _LOGGER.debug(
            f"  {entry.name}: allotted {entry.allotted_seconds}s -> {allotted}s"
        )
        entries[idx] = replace(entry, allotted_seconds=allotted)

    return replace(queue, entries=tuple(entries))
