"""Exception taxonomy for the turn rotation library.

Nothing raised here is fatal to an application. Validation errors block the
command that caused them, rule errors are logged and skipped by the rule
engine, and storage corruption is healed by falling back to defaults.
"""


class TurnRotationError(Exception):
    """Base class for all library errors."""


class ValidationError(TurnRotationError):
    """Rejected user input. Raised before any state is mutated."""


class EmptyInputError(TurnRotationError):
    """An operation required a non-empty collection."""


class EmptyRosterError(EmptyInputError):
    """A rotation was requested with nobody on the roster."""


class EmptyQueueError(EmptyInputError):
    """A queue operation was requested while no queue is active."""


class RuleEvaluationError(TurnRotationError):
    """A rule expression could not be parsed or evaluated safely."""


class StorageCorruptionError(TurnRotationError):
    """A persisted record could not be decoded."""
