"""Session summarization.

Shared by the tracker (summaries over the live buffer) and the query engine
(summaries over stored events).
"""

from collections import Counter
from typing import Iterable

from .models import DecisionEvent, SessionSummary
from .timeutil import now_ms


def summarize_events(
    events: Iterable[DecisionEvent],
    user_id: str,
    game_id: str,
    *,
    session_id: str | None = None,
    outcome: str | None = None,
    now: int | None = None,
) -> SessionSummary:
    """Summarize the events matching ``user_id`` and ``game_id``.

    With no matching events the summary is empty: zero decisions, zero
    average thinking time, ``start_time`` set to ``now`` and no ``end_time``.

    Args:
        events: Candidate events; non-matching ones are ignored
        user_id: User to summarize
        game_id: Game to summarize
        session_id: Recorded on the summary as-is
        outcome: Explicit outcome; defaults to the last outcome found in
            event metadata
        now: Fallback start time for empty summaries (default: current time)
    """
    matching = [e for e in events if e.user_id == user_id and e.game_id == game_id]

    if not matching:
        return SessionSummary(
            session_id=session_id,
            user_id=user_id,
            game_id=game_id,
            start_time=now if now is not None else now_ms(),
            outcome=outcome,
        )

    timestamps = [e.timestamp for e in matching]
    graded = [e.correct for e in matching if e.correct is not None]

    if outcome is None:
        outcome = next((e.outcome for e in reversed(matching) if e.outcome), None)

    return SessionSummary(
        session_id=session_id,
        user_id=user_id,
        game_id=game_id,
        start_time=min(timestamps),
        end_time=max(timestamps),
        total_decisions=len(matching),
        r_type_distribution=dict(Counter(e.r_type for e in matching)),
        t_type_distribution=dict(Counter(e.t_type for e in matching)),
        outcome=outcome,
        average_thinking_time=sum(e.thinking_time_ms for e in matching) / len(matching),
        decision_accuracy=sum(graded) / len(graded) if graded else None,
    )


def summarize_sessions(events: Iterable[DecisionEvent]) -> list[SessionSummary]:
    """One summary per (session_id, user_id, game_id), ordered by start time."""
    groups: dict[tuple[str, str, str], list[DecisionEvent]] = {}
    for event in events:
        groups.setdefault((event.session_id, event.user_id, event.game_id), []).append(event)

    summaries = [
        summarize_events(group, user_id, game_id, session_id=session_id)
        for (session_id, user_id, game_id), group in groups.items()
    ]
    summaries.sort(key=lambda s: (s.start_time, s.session_id or "", s.user_id, s.game_id))
    return summaries
