"""Pytest configuration for turn rotation tests."""

import logging
from datetime import datetime

import pytest

from turn_rotation.controller import SessionContext, TurnController
from turn_rotation.model import Person, Settings
from turn_rotation.storage import MemoryStorage, SessionStore

# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)8s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

# Set the controller and rule loggers to INFO level
logging.getLogger("turn_rotation.controller").setLevel(logging.INFO)
logging.getLogger("turn_rotation.rules").setLevel(logging.INFO)


def identity_shuffle(entries):
    """Deterministic stand-in for random.shuffle."""


def reverse_shuffle(entries):
    """Deterministic permutation that visibly changes order."""
    entries.reverse()


class FakeClock:
    """Settable clock for session timestamps."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 1, 12, 0, 0))


@pytest.fixture
def backend():
    return MemoryStorage()


@pytest.fixture
def store(backend):
    return SessionStore(backend)


@pytest.fixture
def roster():
    """Two people: A with one minute, B with two minutes."""
    return [
        Person(id="a", name="A", default_turn_seconds=60),
        Person(id="b", name="B", default_turn_seconds=120),
    ]


def make_controller(people, store=None, clock=None, device_id="device_1", **settings):
    """Controller over a fresh context with deterministic ids and shuffling."""
    counter = iter(range(1, 1000))
    context = SessionContext(
        settings=Settings(**settings),
        people=list(people),
        device_id=device_id,
    )
    kwargs = {"shuffle": identity_shuffle, "id_factory": lambda: f"id{next(counter)}"}
    if clock is not None:
        kwargs["clock"] = clock
    return TurnController(context, store=store, **kwargs)
