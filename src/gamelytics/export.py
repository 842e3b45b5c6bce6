"""Research exports: anonymized aggregates over a filtered slice of the store."""

import hashlib
import logging
from collections import Counter

from .analyzer import DecisionAnalyzer
from .events import EventFilter, EventStore
from .models import (
    DecisionEvent,
    ExportAggregations,
    ExportFilters,
    ResearchExport,
)

logger = logging.getLogger(__name__)


def anonymize_user(user_id: str, salt: str) -> str:
    """Stable pseudonym for a user id under ``salt``."""
    digest = hashlib.sha256(f"{salt}:{user_id}".encode()).hexdigest()
    return f"anon_{digest[:16]}"


def _matches(event: DecisionEvent, filters: ExportFilters) -> bool:
    if filters.game_ids and event.game_id not in filters.game_ids:
        return False
    if filters.user_cohort and event.user_id not in filters.user_cohort:
        return False
    return True


def build_research_export(
    store: EventStore,
    filters: ExportFilters | None = None,
    *,
    include_events: bool = False,
    salt: str = "",
    analyzer: DecisionAnalyzer | None = None,
) -> ResearchExport:
    """Aggregate the events selected by ``filters`` for research use.

    Cross-game patterns are the detected patterns prevalent in at least two
    games. Raw events are only included when ``include_events`` is set, and
    then with every user id replaced by a salted pseudonym. The echoed
    filters name the cohort by the same pseudonyms.
    """
    filters = filters or ExportFilters()
    analyzer = analyzer or DecisionAnalyzer()

    # Date range and rule types go to the store; game and cohort sets are
    # applied here because the store filters on single values.
    events = store.query(EventFilter(
        start=filters.date_range.start if filters.date_range else None,
        end=filters.date_range.end if filters.date_range else None,
        r_types=frozenset(filters.r_types) if filters.r_types else None,
    ))
    events = [e for e in events if _matches(e, filters)]

    cross_game = tuple(
        p for p in analyzer.identify_patterns(events) if len(p.game_prevalence) >= 2
    )

    exported = None
    if include_events:
        exported = tuple(
            e.model_copy(update={"user_id": anonymize_user(e.user_id, salt)}) for e in events
        )

    logger.info(
        f"Research export: {len(events)} decisions, {len(cross_game)} cross-game patterns, "
        f"events {'included' if include_events else 'omitted'}"
    )

    echoed = filters
    if filters.user_cohort:
        echoed = filters.model_copy(update={
            "user_cohort": tuple(anonymize_user(u, salt) for u in filters.user_cohort),
        })

    return ResearchExport(
        filters=echoed,
        aggregations=ExportAggregations(
            total_decisions=len(events),
            unique_users=len({e.user_id for e in events}),
            r_type_distribution=dict(Counter(e.r_type for e in events)),
            cross_game_patterns=cross_game,
        ),
        events=exported,
    )
