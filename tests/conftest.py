"""
Pytest fixtures for BIOMON tests.

Provides in-memory stores, forced dice and ready-made sessions for
isolated testing.
"""

import pytest

from biomon.rules import load_tables
from biomon.state import MemorySessionStore, SessionManager
from biomon.tools import fixed_roller


@pytest.fixture(scope="session")
def tables():
    """Bundled response tables, loaded once."""
    return load_tables()


@pytest.fixture
def memory_store():
    """In-memory session store for testing."""
    return MemorySessionStore()


@pytest.fixture
def make_manager(memory_store, tables):
    """Factory for a session whose d6 replays the given faces."""
    def _make(*faces: int) -> SessionManager:
        return SessionManager(
            memory_store,
            tables=tables,
            roll_die=fixed_roller(*faces) if faces else None,
        )
    return _make


@pytest.fixture
def manager(make_manager):
    """Session manager whose die always shows 1."""
    return make_manager(1)


@pytest.fixture
def character(manager):
    """Fresh crew member with default vitals."""
    return manager.add_character("Ripley")


@pytest.fixture
def force_die(manager):
    """Replace the session's d6 mid-test."""
    def _force(*faces: int) -> None:
        manager.rolls.roll_die = fixed_roller(*faces)
    return _force
