"""Core data models for decision analytics.

Uses Pydantic v2 for validation, ULID for sortable unique IDs.
All timestamps are integer milliseconds since the Unix epoch (UTC).
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from ulid import ULID

from .constants import (
    CONFIDENCE_CEILING,
    DEFAULT_ACCURACY_WEIGHT,
    DEFAULT_BUFFER_SIZE,
    DEFAULT_FLUSH_INTERVAL_MS,
    DEFAULT_MAX_WINDOW,
    DEFAULT_MIN_OCCURRENCES,
    DEFAULT_MIN_WINDOW,
    DEFAULT_T_TYPE_CARDINALITY,
    DEFAULT_TREND_THRESHOLD,
    MIN_SAMPLE_SIZE,
)
from .timeutil import now_ms


def generate_id() -> str:
    """Generate a ULID (sortable, unique identifier)."""
    return str(ULID())


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ─────────────────────────────────────────────────────────────────────────────
# Events
# ─────────────────────────────────────────────────────────────────────────────

Outcome = Literal["win", "loss", "draw", "abandoned"]


class DecisionEvent(_Frozen):
    """A single decision reported while a user plays a game.

    ``chosen_action`` is expected to be one of ``available_actions``. This is
    a caller precondition and is not checked here; analysis over events that
    violate it is undefined.
    """

    id: str = Field(default_factory=generate_id)
    timestamp: int = Field(default_factory=now_ms)
    user_id: str
    session_id: str
    game_id: str  # "chess", "shogi", "go", ...

    position: str  # game-specific state encoding, never interpreted here
    available_actions: tuple[str, ...] = ()
    chosen_action: str

    r_type: str
    t_type: str
    modal_operator: str

    thinking_time_ms: int = Field(ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def is_consistent(self) -> bool:
        """Whether the chosen action is one of the available actions."""
        return self.chosen_action in self.available_actions

    @property
    def correct(self) -> bool | None:
        """Ground truth for this decision, if the caller supplied one."""
        value = self.metadata.get("correct")
        return value if isinstance(value, bool) else None

    @property
    def outcome(self) -> str | None:
        value = self.metadata.get("outcome")
        return value if value in ("win", "loss", "draw", "abandoned") else None


class SessionSummary(_Frozen):
    """Aggregate over events sharing (user_id, game_id) within one session."""

    id: str = Field(default_factory=generate_id)
    session_id: str | None = None
    user_id: str
    game_id: str
    start_time: int
    end_time: int | None = None

    total_decisions: int = 0
    r_type_distribution: dict[str, int] = Field(default_factory=dict)
    t_type_distribution: dict[str, int] = Field(default_factory=dict)

    outcome: Outcome | None = None

    average_thinking_time: float = 0.0
    decision_accuracy: float | None = None


# ─────────────────────────────────────────────────────────────────────────────
# Analysis results
# ─────────────────────────────────────────────────────────────────────────────


class DecisionPattern(_Frozen):
    """A recurring sequence of rule types observed across sessions."""

    id: str
    name: str
    description: str

    r_type_sequence: tuple[str, ...]
    t_type_context: tuple[str, ...] = ()

    occurrences: int = 0
    game_prevalence: dict[str, float] = Field(default_factory=dict)

    average_thinking_time: float = 0.0
    error_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    ground_truth_samples: int = 0
    transfer_potential: float = Field(default=0.0, ge=0.0, le=1.0)


class MasteryTier(str, Enum):
    """Ordinal skill level: novice < beginner < intermediate < advanced < expert."""

    NOVICE = "novice"
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"

    @property
    def rank(self) -> int:
        return list(MasteryTier).index(self)

    def __lt__(self, other):
        if not isinstance(other, MasteryTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, MasteryTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, MasteryTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, MasteryTier):
            return NotImplemented
        return self.rank >= other.rank


class MasteryLevel(_Frozen):
    """Skill estimate for one rule type, with the evidence behind it."""

    level: MasteryTier
    score: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)
    sample_size: int = Field(ge=0)
    last_assessed: int = Field(default_factory=now_ms)

    @model_validator(mode="after")
    def _cap_sparse_confidence(self) -> "MasteryLevel":
        if self.sample_size < MIN_SAMPLE_SIZE and self.confidence > CONFIDENCE_CEILING:
            raise ValueError(
                f"confidence {self.confidence} exceeds {CONFIDENCE_CEILING} "
                f"with only {self.sample_size} samples"
            )
        return self


SkillTrend = Literal["improving", "stable", "declining"]


class GameProfile(_Frozen):
    """Per-user, per-game rollup."""

    game_id: str
    total_games: int = 0
    decided_games: int = 0  # sessions that reported an outcome
    win_rate: float = Field(default=0.0, ge=0.0, le=1.0)

    r_type_mastery: dict[str, MasteryLevel] = Field(default_factory=dict)

    skill_trend: SkillTrend = "stable"
    last_updated: int = Field(default_factory=now_ms)


class CognitiveProfile(_Frozen):
    """Per-user rollup across every game the user has played."""

    user_id: str

    r_type_strengths: tuple[str, ...] = ()
    r_type_weaknesses: tuple[str, ...] = ()

    preferred_t_type: str | None = None
    t_type_flexibility: float = Field(default=0.0, ge=0.0, le=1.0)

    game_profiles: dict[str, GameProfile] = Field(default_factory=dict)

    cross_game_transfer_score: float = Field(default=0.0, ge=0.0, le=1.0)
    r_type_generalization_score: float = Field(default=0.0, ge=0.0, le=1.0)
    sample_size: int = 0


class TransferLearningResult(_Frozen):
    """How well mastery in ``source_game`` predicts mastery in ``target_game``.

    A zero score with ``sample_size == 0`` means there was no paired data;
    a zero score with a positive sample size is a measured lack of correlation.
    """

    source_game: str
    target_game: str
    common_users: int = 0
    sample_size: int = 0
    common_r_types: tuple[str, ...] = ()
    r_type_transfer_scores: dict[str, float] = Field(default_factory=dict)
    overall_transfer_score: float = Field(default=0.0, ge=0.0, le=1.0)
    interpretation: str = ""


# ─────────────────────────────────────────────────────────────────────────────
# Research data
# ─────────────────────────────────────────────────────────────────────────────


class DateRange(_Frozen):
    """Inclusive millisecond range."""

    start: int
    end: int

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError("date range end precedes start")
        return self


class ExportFilters(_Frozen):
    date_range: DateRange | None = None
    game_ids: tuple[str, ...] | None = None
    user_cohort: tuple[str, ...] | None = None  # user ids
    r_types: tuple[str, ...] | None = None


class ExportAggregations(_Frozen):
    total_decisions: int = 0
    unique_users: int = 0
    r_type_distribution: dict[str, int] = Field(default_factory=dict)
    cross_game_patterns: tuple[DecisionPattern, ...] = ()


class ResearchExport(_Frozen):
    export_id: str = Field(default_factory=generate_id)
    exported_at: int = Field(default_factory=now_ms)
    filters: ExportFilters = Field(default_factory=ExportFilters)
    aggregations: ExportAggregations = Field(default_factory=ExportAggregations)
    events: tuple[DecisionEvent, ...] | None = None


ExperimentStatus = Literal["draft", "active", "completed", "archived"]

_NEXT_STATUS: dict[str, str] = {
    "draft": "active",
    "active": "completed",
    "completed": "archived",
}


class ExperimentConfig(_Frozen):
    """A controlled comparison between two user groups.

    Status only moves forward: draft -> active -> completed -> archived.
    Transition methods return a new config.
    """

    id: str = Field(default_factory=generate_id)
    name: str
    description: str = ""

    control_group: tuple[str, ...] = ()
    treatment_group: tuple[str, ...] = ()

    target_r_types: tuple[str, ...] = ()
    target_games: tuple[str, ...] = ()

    hypothesis: str = ""
    expected_effect: str = ""

    status: ExperimentStatus = "draft"
    start_date: int | None = None
    end_date: int | None = None

    @model_validator(mode="after")
    def _disjoint_groups(self) -> "ExperimentConfig":
        overlap = set(self.control_group) & set(self.treatment_group)
        if overlap:
            raise ValueError(f"users in both groups: {sorted(overlap)}")
        return self

    def _advance(self, expected: str, **updates: Any) -> "ExperimentConfig":
        if self.status != expected:
            target = _NEXT_STATUS[expected]
            raise ValueError(f"cannot move experiment from {self.status} to {target}")
        return self.model_copy(update={"status": _NEXT_STATUS[expected], **updates})

    def activate(self, start_date: int | None = None) -> "ExperimentConfig":
        return self._advance("draft", start_date=start_date or now_ms())

    def complete(self, end_date: int | None = None) -> "ExperimentConfig":
        return self._advance("active", end_date=end_date or now_ms())

    def archive(self) -> "ExperimentConfig":
        return self._advance("completed")


# ─────────────────────────────────────────────────────────────────────────────
# Queries
# ─────────────────────────────────────────────────────────────────────────────

QueryType = Literal["decisions", "sessions", "patterns", "profiles"]
GroupDimension = Literal["user_id", "game_id", "r_type", "t_type", "day", "week"]


class QueryFilters(_Frozen):
    """Filter fields combine with AND. A missing or empty field is no constraint."""

    user_id: str | None = None
    game_id: str | None = None
    date_range: DateRange | None = None
    r_types: tuple[str, ...] | None = None
    t_types: tuple[str, ...] | None = None


class AnalyticsQuery(_Frozen):
    type: QueryType = "decisions"
    filters: QueryFilters = Field(default_factory=QueryFilters)
    group_by: tuple[GroupDimension, ...] = ()
    limit: int | None = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)


class AnalyticsResult(_Frozen):
    data: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    query: AnalyticsQuery
    executed_at: int = Field(default_factory=now_ms)


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────


class TrackerConfig(_Frozen):
    """Tracker settings. Invalid values fail at construction."""

    buffer_size: int = Field(default=DEFAULT_BUFFER_SIZE, gt=0)
    flush_interval_ms: int = Field(default=DEFAULT_FLUSH_INTERVAL_MS, gt=0)
    endpoint: str | None = None
    on_flush: Any = None  # sink callable, see gamelytics.sinks
    validate_actions: bool = False

    @model_validator(mode="after")
    def _callable_sink(self) -> "TrackerConfig":
        if self.on_flush is not None and not callable(self.on_flush):
            raise ValueError("on_flush must be callable")
        return self


class AnalyzerConfig(_Frozen):
    """Analyzer thresholds.

    The confidence ceiling and minimum sample size may be made stricter than
    the defaults but never looser, so MasteryLevel always holds its invariant.
    """

    min_window: int = Field(default=DEFAULT_MIN_WINDOW, ge=1)
    max_window: int = Field(default=DEFAULT_MAX_WINDOW, ge=1)
    min_occurrences: int = Field(default=DEFAULT_MIN_OCCURRENCES, ge=1)
    min_sample_size: int = Field(default=MIN_SAMPLE_SIZE, ge=MIN_SAMPLE_SIZE)
    confidence_ceiling: float = Field(default=CONFIDENCE_CEILING, gt=0.0, le=CONFIDENCE_CEILING)
    accuracy_weight: float = Field(default=DEFAULT_ACCURACY_WEIGHT, ge=0.0, le=1.0)
    t_type_cardinality: int = Field(default=DEFAULT_T_TYPE_CARDINALITY, ge=2)
    trend_threshold: float = Field(default=DEFAULT_TREND_THRESHOLD, ge=0.0)

    @model_validator(mode="after")
    def _window_order(self) -> "AnalyzerConfig":
        if self.max_window < self.min_window:
            raise ValueError("max_window must be >= min_window")
        return self
