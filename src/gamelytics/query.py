"""Ad-hoc analytics queries over the event store.

The engine reads the filtered events once, builds every result row
(aggregating across the full filtered set), and only then applies
``offset``/``limit``. ``total`` is the row count before pagination.
"""

import logging
from typing import Any, Callable

from .analyzer import DecisionAnalyzer, population_thinking_times
from .events import EventFilter, EventStore
from .models import AnalyticsQuery, AnalyticsResult, DecisionEvent, SessionSummary
from .sessions import summarize_sessions
from .timeutil import day_key, now_ms, week_key

logger = logging.getLogger(__name__)

EVENT_DIMENSIONS: dict[str, Callable[[DecisionEvent], str]] = {
    "user_id": lambda e: e.user_id,
    "game_id": lambda e: e.game_id,
    "r_type": lambda e: e.r_type,
    "t_type": lambda e: e.t_type,
    "day": lambda e: day_key(e.timestamp),
    "week": lambda e: week_key(e.timestamp),
}

SESSION_DIMENSIONS: dict[str, Callable[[SessionSummary], str]] = {
    "user_id": lambda s: s.user_id,
    "game_id": lambda s: s.game_id,
    "day": lambda s: day_key(s.start_time),
    "week": lambda s: week_key(s.start_time),
}


def _partition(items: list, dimensions: tuple[str, ...], extractors: dict) -> list[tuple[tuple, list]]:
    """Split items by the cartesian key of ``dimensions``; only non-empty partitions."""
    unknown = [d for d in dimensions if d not in extractors]
    if unknown:
        raise ValueError(f"Cannot group by {', '.join(unknown)} for this query type")

    groups: dict[tuple, list] = {}
    for item in items:
        key = tuple(extractors[d](item) for d in dimensions)
        groups.setdefault(key, []).append(item)
    return sorted(groups.items())


class QueryEngine:
    """Answers AnalyticsQuery requests against an EventStore."""

    def __init__(
        self,
        store: EventStore,
        analyzer: DecisionAnalyzer | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.analyzer = analyzer or DecisionAnalyzer()
        self._clock = clock
        self._handlers = {
            "decisions": self._decisions,
            "sessions": self._sessions,
            "patterns": self._patterns,
            "profiles": self._profiles,
        }

    def execute(self, query: AnalyticsQuery) -> AnalyticsResult:
        """Run a query.

        Raises:
            ValueError: If ``group_by`` names a dimension the query type
                cannot be grouped by
        """
        events = self.store.query(EventFilter.from_query(query.filters))
        rows = self._handlers[query.type](query, events)

        end = None if query.limit is None else query.offset + query.limit
        data = rows[query.offset:end]
        logger.debug(
            f"Query {query.type}: {len(events)} events, {len(rows)} rows, returned {len(data)}"
        )
        return AnalyticsResult(data=data, total=len(rows), query=query, executed_at=self._clock())

    def _decisions(self, query: AnalyticsQuery, events: list[DecisionEvent]) -> list[dict[str, Any]]:
        if not query.group_by:
            return [e.model_dump(mode="json") for e in events]

        return [
            {
                "key": dict(zip(query.group_by, key)),
                "count": len(group),
                "average_thinking_time": sum(e.thinking_time_ms for e in group) / len(group),
            }
            for key, group in _partition(events, query.group_by, EVENT_DIMENSIONS)
        ]

    def _sessions(self, query: AnalyticsQuery, events: list[DecisionEvent]) -> list[dict[str, Any]]:
        summaries = summarize_sessions(events)
        if not query.group_by:
            return [s.model_dump(mode="json") for s in summaries]

        rows = []
        for key, group in _partition(summaries, query.group_by, SESSION_DIMENSIONS):
            decisions = sum(s.total_decisions for s in group)
            thinking = sum(s.average_thinking_time * s.total_decisions for s in group)
            rows.append({
                "key": dict(zip(query.group_by, key)),
                "count": len(group),
                "total_decisions": decisions,
                "average_thinking_time": thinking / decisions if decisions else 0.0,
            })
        return rows

    def _patterns(self, query: AnalyticsQuery, events: list[DecisionEvent]) -> list[dict[str, Any]]:
        if query.group_by:
            logger.warning("group_by is ignored for pattern queries")
        return [p.model_dump(mode="json") for p in self.analyzer.identify_patterns(events)]

    def _profiles(self, query: AnalyticsQuery, events: list[DecisionEvent]) -> list[dict[str, Any]]:
        if query.group_by:
            logger.warning("group_by is ignored for profile queries")
        users = sorted({e.user_id for e in events})
        population = population_thinking_times(events)
        return [
            self.analyzer.build_cognitive_profile(user_id, events, population).model_dump(mode="json")
            for user_id in users
        ]
