"""Shared test fixtures and helpers for gamelytics tests."""

import itertools
import tempfile
from pathlib import Path

import pytest

from gamelytics.events import MemoryEventStore, SQLiteEventStore
from gamelytics.models import DecisionEvent

BASE_TS = 1_736_899_200_000  # 2025-01-15T00:00:00Z

_counter = itertools.count()


# --- Fixtures ---


@pytest.fixture
def temp_db_dir():
    """Provide a temporary directory for database files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sqlite_store(temp_db_dir):
    """Provide a fresh SQLite event store, closed after the test."""
    store = SQLiteEventStore(temp_db_dir / "gamelytics.db")
    yield store
    store.close()


@pytest.fixture
def memory_store():
    return MemoryEventStore()


# --- Helper Functions (not fixtures) ---


def make_event(
    user_id: str = "u1",
    game_id: str = "chess",
    r_type: str = "R1",
    t_type: str = "T1",
    thinking_time_ms: int = 1000,
    session_id: str = "s1",
    ts: int | None = None,
    correct: bool | None = None,
    outcome: str | None = None,
    **kwargs,
) -> DecisionEvent:
    """Build a DecisionEvent with sensible defaults.

    Timestamps increase monotonically across calls unless ``ts`` is given,
    so events built in sequence are in chronological order.
    """
    n = next(_counter)
    metadata = dict(kwargs.pop("metadata", {}))
    if correct is not None:
        metadata["correct"] = correct
    if outcome is not None:
        metadata["outcome"] = outcome

    return DecisionEvent(
        id=kwargs.pop("id", f"evt-{n:08d}"),
        timestamp=ts if ts is not None else BASE_TS + n * 1000,
        user_id=user_id,
        session_id=session_id,
        game_id=game_id,
        position=kwargs.pop("position", "start"),
        available_actions=kwargs.pop("available_actions", ("a", "b")),
        chosen_action=kwargs.pop("chosen_action", "a"),
        r_type=r_type,
        t_type=t_type,
        modal_operator=kwargs.pop("modal_operator", "P"),
        thinking_time_ms=thinking_time_ms,
        metadata=metadata,
    )


def make_session(r_types: list[str], **kwargs) -> list[DecisionEvent]:
    """One event per rule type, in order, sharing the given fields."""
    return [make_event(r_type=r, **kwargs) for r in r_types]


def decision_params(**overrides) -> dict:
    """Keyword arguments for AnalyticsTracker.track_decision."""
    params = {
        "user_id": "u1",
        "game_id": "chess",
        "position": "start",
        "available_actions": ["e4", "d4"],
        "chosen_action": "e4",
        "r_type": "R1",
        "t_type": "T1",
        "modal_operator": "P",
        "thinking_time_ms": 100,
    }
    params.update(overrides)
    return params
