#!/usr/bin/env python3
"""Seed script to populate an event store with a synthetic multi-game corpus.

Usage:
    GAMELYTICS_DB=/path/to/gamelytics.db python scripts/seed.py

    # Or with default path:
    python scripts/seed.py
"""

import asyncio
import os
import random
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from gamelytics.events import SQLiteEventStore
from gamelytics.sinks import store_sink
from gamelytics.tracker import AnalyticsTracker

GAMES = ["chess", "shogi", "checkers"]
R_TYPES = ["R1", "R2", "R3", "R4", "R5"]
T_TYPES = ["T1", "T2", "T3"]
MODALS = ["P", "O", "F"]
USERS = [f"user-{i}" for i in range(6)]


async def seed_session(store: SQLiteEventStore, rng: random.Random, user_id: str, game_id: str) -> int:
    """Play one synthetic session through a tracker."""
    tracker = AnalyticsTracker(buffer_size=25, flush_interval_ms=1000, on_flush=store_sink(store))
    moves = rng.randint(20, 60)
    skill = USERS.index(user_id) / len(USERS)

    async with tracker:
        for move in range(moves):
            actions = [f"a{i}" for i in range(rng.randint(2, 8))]
            metadata = {"correct": rng.random() < 0.4 + skill / 2}
            if move == moves - 1:
                metadata["outcome"] = rng.choice(["win", "loss", "draw"])
            tracker.track_decision(
                user_id=user_id,
                game_id=game_id,
                position=f"{game_id}:{move}",
                available_actions=actions,
                chosen_action=rng.choice(actions),
                r_type=R_TYPES[(move + rng.randint(0, 1)) % len(R_TYPES)],
                t_type=rng.choice(T_TYPES),
                modal_operator=rng.choice(MODALS),
                thinking_time_ms=int(rng.expovariate(1 / (8000 * (1.2 - skill)))),
                metadata=metadata,
            )
    return tracker.stats.flushed_events


async def seed(store: SQLiteEventStore, seed_value: int = 7) -> int:
    rng = random.Random(seed_value)
    total = 0
    for user_id in USERS:
        for game_id in rng.sample(GAMES, k=rng.randint(1, len(GAMES))):
            for _ in range(rng.randint(2, 4)):
                total += await seed_session(store, rng, user_id, game_id)
    return total


def main():
    db_path = Path(os.environ.get("GAMELYTICS_DB", "gamelytics.db"))
    print(f"Seeding event store at: {db_path}")

    store = SQLiteEventStore(db_path)
    total = asyncio.run(seed(store))
    store.close()

    print(f"Seeded {total} decision events across {len(GAMES)} games")


if __name__ == "__main__":
    main()
