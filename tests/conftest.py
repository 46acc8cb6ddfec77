"""Pytest fixtures for Roleplay State tests."""

import pytest
from roleplay_state import CharacterProfile, EngineConfig, RoleplayEngine


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def tick(self, seconds: float = 1.0) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def profile():
    """A basic character record."""
    return CharacterProfile(
        id="mara",
        name="Mara",
        description="A tavern keeper with a sharp memory for faces.",
        personality="Wry, protective, slow to trust.",
        scenario="A rainy night at the Gilded Anchor.",
    )


@pytest.fixture
def engine(clock):
    """An uninitialized engine with a fixed clock."""
    return RoleplayEngine(EngineConfig(), clock=clock)


@pytest.fixture
def active_engine(engine, profile):
    """Engine with a character set and a starting location."""
    engine.set_character(profile)
    engine.update_location(
        name="The Gilded Anchor",
        description="A low-beamed tavern by the docks.",
        interactable_objects=["bar", "hearth"],
    )
    return engine
