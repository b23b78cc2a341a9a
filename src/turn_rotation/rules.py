"""Rule engine: turns a finished turn's overtime into the next turn's length.

Every enabled rule is evaluated in order for every finished turn. A matching
rule either rewrites ``nextTurn`` (the last matching rule wins) or, when its
action mentions ``allOthers``, hands a bonus to everyone still waiting in
the rotation. A rule that fails to evaluate is logged and skipped.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Sequence

from . import expression
from .errors import RuleEvaluationError
from .model import Person, QueueEntry, Rule

_LOGGER = logging.getLogger(__name__)

MIN_TURN_SECONDS = 60
ALL_OTHERS = "allOthers"

DEFAULT_RULES: tuple[Rule, ...] = (
    Rule(
        name="Late penalty",
        description="Ran over by less than a minute: lose the overtime plus 5 minutes next turn",
        condition="overtime < 60",
        action="nextTurn - overtime - 300",
        enabled=True,
    ),
    Rule(
        name="Early exit bonus",
        description="Finished early: the unused time is added to the next turn",
        condition="overtime < 0",
        action="nextTurn + Math.abs(overtime)",
        enabled=False,
    ),
    Rule(
        name="Heavy late penalty",
        description="Ran over by more than 5 minutes: lose 10 minutes next turn",
        condition="overtime > 300",
        action="nextTurn - 600",
        enabled=False,
    ),
    Rule(
        name="Shared compensation",
        description="Ran over by more than a minute: everyone else gets a minute extra",
        condition="overtime > 60",
        action="allOthers + 60",
        enabled=False,
    ),
    Rule(
        name="Proportional penalty",
        description="Lose twice the overtime from the next turn",
        condition="overtime > 0",
        action="nextTurn - (overtime * 2)",
        enabled=False,
    ),
    Rule(
        name="On time bonus",
        description="Finished within 30 seconds of the allotted time: 5 minutes extra next turn",
        condition="Math.abs(overtime) <= 30",
        action="nextTurn + 300",
        enabled=False,
    ),
)


@dataclass(frozen=True)
class RuleOutcome:
    """Result of applying the rule set to one finished turn.

    Attributes:
        person: The finishing person with the new default turn committed.
        next_turn_seconds: Committed duration, whole minutes in seconds.
        queue_adjustments: Seconds to add per waiting person id.
        applied_rules: Names of the rules whose condition held.
    """

    person: Person
    next_turn_seconds: int
    queue_adjustments: dict[str, int] = field(default_factory=dict)
    applied_rules: list[str] = field(default_factory=list)


def floor_to_minutes(seconds: float) -> int:
    """Round down to a whole number of minutes, expressed in seconds."""
    return int(seconds // 60) * 60


def compute_next_duration(
    person: Person,
    overtime: int,
    rules: Sequence[Rule],
    rest_of_queue: Sequence[QueueEntry] = (),
) -> RuleOutcome:
    """Evaluate the rule set for a finished turn.

    Args:
        person: The person whose turn just ended.
        overtime: Signed seconds; positive when the turn ran over.
        rules: Ordered rule set. Disabled rules are ignored.
        rest_of_queue: Entries still waiting after the finished one.

    Returns:
        RuleOutcome with the committed next duration and queue adjustments.
    """
    next_turn: float = person.default_turn_seconds
    adjustments: dict[str, float] = {}
    applied: list[str] = []

    for rule in rules:
        if not rule.enabled:
            continue
        try:
            if not expression.evaluate(rule.condition, {"overtime": overtime}):
                _LOGGER.debug(f"  Rule '{rule.name}': condition not met")
                continue

            bindings = {"overtime": overtime, "nextTurn": next_turn}
            if expression.references(rule.action, ALL_OTHERS):
                bonus = expression.evaluate(rule.action, {**bindings, ALL_OTHERS: 0})
                bonus = _as_number(bonus, rule.action)
                updated = {
                    entry.person_id: _as_number(
                        adjustments.get(entry.person_id, 0) + bonus, rule.action
                    )
                    for entry in rest_of_queue
                    if entry.person_id != person.id
                }
                adjustments.update(updated)
            else:
                candidate = _as_number(
                    expression.evaluate(rule.action, bindings), rule.action
                )
                next_turn = max(MIN_TURN_SECONDS, candidate)
        except RuleEvaluationError as exc:
            _LOGGER.error(f"Error applying rule '{rule.name}': {exc}")
            continue

        applied.append(rule.name)
        _LOGGER.info(f"Rule applied: {rule.name} (overtime={overtime}s)")

    committed = floor_to_minutes(next_turn)
    _LOGGER.info(
        f"{person.name}: next turn {person.default_turn_seconds}s -> {committed}s"
    )

    return RuleOutcome(
        person=replace(person, default_turn_seconds=committed),
        next_turn_seconds=committed,
        queue_adjustments={pid: math.floor(delta) for pid, delta in adjustments.items()},
        applied_rules=applied,
    )


def _as_number(value: object, text: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RuleEvaluationError(f"Action {text!r} did not produce a number")
    if not math.isfinite(value):
        raise RuleEvaluationError(f"Action {text!r} produced {value}")
    return value
