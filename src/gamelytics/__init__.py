"""Cross-game decision event tracking and behavioral analytics.

Public API:
- AnalyticsTracker: buffer decision events for one session and flush them
- SQLiteEventStore / MemoryEventStore: append-only event stores
- DecisionAnalyzer: patterns, mastery, cognitive profiles, transfer learning
- QueryEngine: filter, group and paginate analytics queries
"""

from .analyzer import DecisionAnalyzer
from .events import EventFilter, EventStore, MemoryEventStore, SQLiteEventStore
from .query import QueryEngine
from .sinks import RetryingSink, store_sink
from .tracker import AnalyticsTracker

__all__ = [
    "AnalyticsTracker",
    "DecisionAnalyzer",
    "EventFilter",
    "EventStore",
    "MemoryEventStore",
    "QueryEngine",
    "RetryingSink",
    "SQLiteEventStore",
    "store_sink",
]
