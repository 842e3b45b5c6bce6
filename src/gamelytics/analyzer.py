"""Decision analysis: patterns, mastery, profiles and transfer learning.

Everything here is a pure function of an event corpus. Profiles are never
patched incrementally; the store-backed helpers only memoize results for an
unchanged corpus. Sparse data is an expected condition: results carry zero or
empty aggregates plus an explicit sample size instead of raising.

Scores:
- efficiency of one decision = p / (p + t), where t is its thinking time and
  p the population mean thinking time for its rule type (0.5 when both are 0)
- mastery score = w * accuracy + (1 - w) * mean efficiency when ground truth
  (metadata "correct") exists, mean efficiency alone otherwise
- confidence = n / (n + 5), capped below the ceiling while n is small
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Iterable

from .constants import (
    CONFIDENCE_HALF_SAMPLE,
    GENERALIZATION_MIN_EVENTS,
    GENERALIZATION_VARIANCE_SCALE,
    MASTERY_THRESHOLDS,
    NEUTRAL_SCORE,
    STRENGTH_THRESHOLD,
    TRANSFER_SOURCE_FLOOR,
    TREND_MIN_EVENTS,
    WEAKNESS_THRESHOLD,
)
from .events import EventFilter, EventStore
from .models import (
    AnalyzerConfig,
    CognitiveProfile,
    DecisionEvent,
    DecisionPattern,
    GameProfile,
    MasteryLevel,
    MasteryTier,
    TransferLearningResult,
)
from .timeutil import now_ms

logger = logging.getLogger(__name__)

Population = dict[str, float]  # r_type -> mean thinking time (ms)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _group(events: Iterable[DecisionEvent], key: Callable[[DecisionEvent], object]) -> dict:
    groups: dict = {}
    for event in events:
        groups.setdefault(key(event), []).append(event)
    return groups


def _chronological(events: Iterable[DecisionEvent]) -> list[DecisionEvent]:
    return sorted(events, key=lambda e: (e.timestamp, e.id))


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _normalized_entropy(counts: Iterable[float], categories: int) -> float:
    """Shannon entropy of ``counts`` divided by the maximum for ``categories``."""
    values = [c for c in counts if c > 0]
    total = sum(values)
    if total == 0 or categories < 2:
        return 0.0
    entropy = -sum((c / total) * math.log2(c / total) for c in values)
    return _clamp(entropy / math.log2(categories))


def pearson(xs: list[float], ys: list[float]) -> float | None:
    """Pearson correlation, or None when undefined (fewer than 2 points or no variance)."""
    n = len(xs)
    if n < 2 or n != len(ys):
        return None

    mean_x = sum(xs) / n
    mean_y = sum(ys) / n
    num = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys))
    den_x = sum((x - mean_x) ** 2 for x in xs)
    den_y = sum((y - mean_y) ** 2 for y in ys)

    den = math.sqrt(den_x * den_y)
    if den == 0:
        return None
    return num / den


def population_thinking_times(events: Iterable[DecisionEvent]) -> Population:
    """Mean thinking time per rule type over the whole corpus."""
    totals: dict[str, list[int]] = {}
    for event in events:
        totals.setdefault(event.r_type, []).append(event.thinking_time_ms)
    return {r_type: sum(times) / len(times) for r_type, times in totals.items()}


def level_for(score: float) -> MasteryTier:
    for threshold, level in MASTERY_THRESHOLDS:
        if score >= threshold:
            return MasteryTier(level)
    return MasteryTier.NOVICE


def interpret_transfer(score: float, sample_size: int) -> str:
    if sample_size == 0:
        return "Insufficient paired data: no user has comparable rule types in both games"
    if score >= 0.8:
        return "Strong transfer: skills carry over well between games"
    if score >= 0.6:
        return "Moderate transfer: some skill carry-over observed"
    if score >= 0.4:
        return "Weak transfer: little carry-over detected"
    if score >= 0.2:
        return "Marginal transfer: mastery in one game barely predicts the other"
    return "No measurable transfer"


@dataclass
class _PatternStats:
    occurrences: int = 0
    per_game: Counter = field(default_factory=Counter)
    t_types: set[str] = field(default_factory=set)
    thinking_total: int = 0
    thinking_count: int = 0
    graded: int = 0
    wrong: int = 0


@dataclass
class CorpusAnalysis:
    """Batch analysis of one corpus snapshot."""

    patterns: list[DecisionPattern]
    profiles: dict[str, CognitiveProfile]
    sample_size: int
    fingerprint: tuple[int, str | None] | None = None


# ─────────────────────────────────────────────────────────────────────────────
# Analyzer
# ─────────────────────────────────────────────────────────────────────────────


class DecisionAnalyzer:
    """Derives patterns, mastery levels and profiles from decision events."""

    def __init__(self, config: AnalyzerConfig | None = None, clock: Callable[[], int] = now_ms):
        self.config = config or AnalyzerConfig()
        self._clock = clock
        self._profile_cache: dict[str, CognitiveProfile] = {}
        self._cache_fingerprint: tuple[int, str | None] | None = None

    # --- Patterns ---

    def identify_patterns(self, events: Iterable[DecisionEvent]) -> list[DecisionPattern]:
        """Find rule-type sequences recurring at least ``min_occurrences`` times.

        Windows of every length between ``min_window`` and ``max_window`` slide
        over each session's events (per game, in time order). A game's
        prevalence is the pattern's occurrences there divided by the number of
        sessions observed for that game.
        """
        sessions = _group(events, lambda e: (e.session_id, e.game_id))
        sessions_per_game = Counter(game_id for _, game_id in sessions)

        stats: dict[tuple[str, ...], _PatternStats] = {}
        for (_, game_id), session_events in sessions.items():
            ordered = _chronological(session_events)
            for size in range(self.config.min_window, self.config.max_window + 1):
                for i in range(len(ordered) - size + 1):
                    window = ordered[i:i + size]
                    signature = tuple(e.r_type for e in window)
                    entry = stats.setdefault(signature, _PatternStats())
                    entry.occurrences += 1
                    entry.per_game[game_id] += 1
                    entry.t_types.update(e.t_type for e in window)
                    entry.thinking_total += sum(e.thinking_time_ms for e in window)
                    entry.thinking_count += size
                    for e in window:
                        if e.correct is not None:
                            entry.graded += 1
                            entry.wrong += not e.correct

        patterns = [
            self._build_pattern(signature, entry, sessions_per_game)
            for signature, entry in stats.items()
            if entry.occurrences >= self.config.min_occurrences
        ]
        patterns.sort(key=lambda p: (-p.occurrences, p.id))
        logger.debug(f"Found {len(patterns)} patterns among {len(stats)} signatures")
        return patterns

    def _build_pattern(
        self,
        signature: tuple[str, ...],
        entry: _PatternStats,
        sessions_per_game: Counter,
    ) -> DecisionPattern:
        prevalence = {
            game_id: count / sessions_per_game[game_id]
            for game_id, count in sorted(entry.per_game.items())
        }
        return DecisionPattern(
            id=f"pat_{'-'.join(signature)}",
            name=f"Pattern: {' → '.join(signature)}",
            description=(
                f"Sequence of {len(signature)} rule types seen {entry.occurrences} times "
                f"in {len(prevalence)} game{'s' if len(prevalence) != 1 else ''}"
            ),
            r_type_sequence=signature,
            t_type_context=tuple(sorted(entry.t_types)),
            occurrences=entry.occurrences,
            game_prevalence=prevalence,
            average_thinking_time=entry.thinking_total / entry.thinking_count,
            error_rate=entry.wrong / entry.graded if entry.graded else 0.0,
            ground_truth_samples=entry.graded,
            transfer_potential=_normalized_entropy(prevalence.values(), len(prevalence)),
        )

    # --- Mastery ---

    @staticmethod
    def _efficiency(event: DecisionEvent, population: Population) -> float:
        reference = population.get(event.r_type, float(event.thinking_time_ms))
        if reference + event.thinking_time_ms == 0:
            return NEUTRAL_SCORE
        return reference / (reference + event.thinking_time_ms)

    def score(self, events: list[DecisionEvent], population: Population) -> float:
        """Mastery score in [0, 1] for a set of decisions."""
        if not events:
            return NEUTRAL_SCORE

        efficiency = sum(self._efficiency(e, population) for e in events) / len(events)
        graded = [e.correct for e in events if e.correct is not None]
        if not graded:
            return _clamp(efficiency)

        accuracy = sum(graded) / len(graded)
        weight = self.config.accuracy_weight
        return _clamp(weight * accuracy + (1 - weight) * efficiency)

    def confidence(self, sample_size: int) -> float:
        value = sample_size / (sample_size + CONFIDENCE_HALF_SAMPLE)
        if sample_size < self.config.min_sample_size:
            value = min(value, self.config.confidence_ceiling)
        return value

    def _mastery(self, events: list[DecisionEvent], population: Population) -> MasteryLevel:
        score = self.score(events, population)
        return MasteryLevel(
            level=level_for(score),
            score=score,
            confidence=self.confidence(len(events)),
            sample_size=len(events),
            last_assessed=self._clock(),
        )

    def assess_mastery(
        self,
        events: Iterable[DecisionEvent],
        user_id: str,
        game_id: str,
        r_type: str,
    ) -> MasteryLevel:
        """Mastery for one (user, game, rule type) triple, measured against ``events``."""
        corpus = list(events)
        population = population_thinking_times(corpus)
        subset = [
            e for e in corpus
            if e.user_id == user_id and e.game_id == game_id and e.r_type == r_type
        ]
        return self._mastery(subset, population)

    def skill_trend(self, events: list[DecisionEvent], population: Population) -> str:
        """Compare the earliest third of a user's game history with the latest third."""
        ordered = _chronological(events)
        if len(ordered) < TREND_MIN_EVENTS:
            return "stable"

        third = len(ordered) // 3
        change = self.score(ordered[-third:], population) - self.score(ordered[:third], population)

        if change > self.config.trend_threshold:
            return "improving"
        if change < -self.config.trend_threshold:
            return "declining"
        return "stable"

    # --- Profiles ---

    def _game_profile(
        self, game_id: str, events: list[DecisionEvent], population: Population
    ) -> GameProfile:
        by_session = _group(_chronological(events), lambda e: e.session_id)
        outcomes = [
            next((e.outcome for e in reversed(session) if e.outcome), None)
            for session in by_session.values()
        ]
        decided = [o for o in outcomes if o is not None]

        return GameProfile(
            game_id=game_id,
            total_games=len(by_session),
            decided_games=len(decided),
            win_rate=decided.count("win") / len(decided) if decided else 0.0,
            r_type_mastery={
                r_type: self._mastery(r_events, population)
                for r_type, r_events in sorted(_group(events, lambda e: e.r_type).items())
            },
            skill_trend=self.skill_trend(events, population),
            last_updated=max(e.timestamp for e in events),
        )

    def build_game_profiles(
        self,
        user_id: str,
        events: Iterable[DecisionEvent],
        population: Population | None = None,
    ) -> dict[str, GameProfile]:
        """Per-game profiles for one user. ``events`` is the whole corpus."""
        corpus = list(events)
        if population is None:
            population = population_thinking_times(corpus)

        user_events = [e for e in corpus if e.user_id == user_id]
        return {
            game_id: self._game_profile(game_id, game_events, population)
            for game_id, game_events in sorted(_group(user_events, lambda e: e.game_id).items())
        }

    def build_cognitive_profile(
        self,
        user_id: str,
        events: Iterable[DecisionEvent],
        population: Population | None = None,
    ) -> CognitiveProfile:
        """Full cognitive profile for one user, recomputed from the corpus."""
        corpus = list(events)
        if population is None:
            population = population_thinking_times(corpus)

        user_events = [e for e in corpus if e.user_id == user_id]
        if not user_events:
            return CognitiveProfile(user_id=user_id)

        r_type_scores = {
            r_type: self.score(r_events, population)
            for r_type, r_events in _group(user_events, lambda e: e.r_type).items()
        }

        t_type_counts = Counter(e.t_type for e in user_events)
        preferred = min(t_type_counts, key=lambda t: (-t_type_counts[t], t))
        categories = max(self.config.t_type_cardinality, len(t_type_counts))

        game_profiles = self.build_game_profiles(user_id, corpus, population)

        return CognitiveProfile(
            user_id=user_id,
            r_type_strengths=tuple(sorted(r for r, s in r_type_scores.items() if s > STRENGTH_THRESHOLD)),
            r_type_weaknesses=tuple(sorted(r for r, s in r_type_scores.items() if s < WEAKNESS_THRESHOLD)),
            preferred_t_type=preferred,
            t_type_flexibility=_normalized_entropy(t_type_counts.values(), categories),
            game_profiles=game_profiles,
            cross_game_transfer_score=self._cross_game_transfer(game_profiles),
            r_type_generalization_score=self._generalization(user_events, population),
            sample_size=len(user_events),
        )

    def _cross_game_transfer(self, profiles: dict[str, GameProfile]) -> float:
        """Mean correlation of mastery scores over shared rule types, per game pair."""
        game_ids = sorted(profiles)
        correlations = []
        for i, first in enumerate(game_ids):
            for second in game_ids[i + 1:]:
                a = profiles[first].r_type_mastery
                b = profiles[second].r_type_mastery
                common = sorted(set(a) & set(b))
                r = pearson([a[t].score for t in common], [b[t].score for t in common])
                if r is not None:
                    correlations.append(r)

        if not correlations:
            return 0.0
        return _clamp(sum(correlations) / len(correlations))

    def _generalization(self, events: list[DecisionEvent], population: Population) -> float:
        """1 - scaled variance of per-game scores for rule types played in several games."""
        by_game = _group(events, lambda e: e.game_id)
        if len(by_game) < 2:
            return 0.0

        variances = []
        for r_type in sorted({e.r_type for e in events}):
            scores = []
            for game_events in by_game.values():
                r_events = [e for e in game_events if e.r_type == r_type]
                if len(r_events) >= GENERALIZATION_MIN_EVENTS:
                    scores.append(self.score(r_events, population))
            if len(scores) >= 2:
                mean = sum(scores) / len(scores)
                variances.append(sum((s - mean) ** 2 for s in scores) / len(scores))

        if not variances:
            return 0.0
        return _clamp(1 - GENERALIZATION_VARIANCE_SCALE * sum(variances) / len(variances))

    # --- Transfer learning ---

    def measure_transfer_learning(
        self,
        events: Iterable[DecisionEvent],
        source_game: str,
        target_game: str,
    ) -> TransferLearningResult:
        """How well a user's mastery vector in one game predicts the other.

        Each user who played both games contributes the correlation between
        their per-rule-type scores in the two games, over rule types they
        played in both. Users with fewer than two such rule types, or with no
        variance, contribute nothing. ``sample_size`` counts contributors.
        """
        corpus = list(events)
        population = population_thinking_times(corpus)

        source_events = [e for e in corpus if e.game_id == source_game]
        target_events = [e for e in corpus if e.game_id == target_game]
        common_users = sorted({e.user_id for e in source_events} & {e.user_id for e in target_events})
        common_r_types = sorted({e.r_type for e in source_events} & {e.r_type for e in target_events})

        source_by_user = _group(source_events, lambda e: e.user_id)
        target_by_user = _group(target_events, lambda e: e.user_id)

        correlations = []
        for user_id in common_users:
            src = _group(source_by_user[user_id], lambda e: e.r_type)
            tgt = _group(target_by_user[user_id], lambda e: e.r_type)
            shared = sorted(set(src) & set(tgt))
            r = pearson(
                [self.score(src[t], population) for t in shared],
                [self.score(tgt[t], population) for t in shared],
            )
            if r is not None:
                correlations.append(r)

        # Population-level ratio per rule type, over users who played both games
        paired = set(common_users)
        r_type_scores = {}
        for r_type in common_r_types:
            src = [e for e in source_events if e.r_type == r_type and e.user_id in paired]
            tgt = [e for e in target_events if e.r_type == r_type and e.user_id in paired]
            if src and tgt:
                ratio = self.score(tgt, population) / max(TRANSFER_SOURCE_FLOOR, self.score(src, population))
                r_type_scores[r_type] = min(1.0, ratio)

        overall = _clamp(sum(correlations) / len(correlations)) if correlations else 0.0
        if not correlations:
            logger.debug(f"No paired data for transfer {source_game} -> {target_game}")

        return TransferLearningResult(
            source_game=source_game,
            target_game=target_game,
            common_users=len(common_users),
            sample_size=len(correlations),
            common_r_types=tuple(common_r_types),
            r_type_transfer_scores=r_type_scores,
            overall_transfer_score=overall,
            interpretation=interpret_transfer(overall, len(correlations)),
        )

    # --- Store-backed modes ---

    def analyze_events(self, events: Iterable[DecisionEvent]) -> CorpusAnalysis:
        """Batch recomputation: patterns and every user's profile."""
        corpus = list(events)
        population = population_thinking_times(corpus)
        users = sorted({e.user_id for e in corpus})
        return CorpusAnalysis(
            patterns=self.identify_patterns(corpus),
            profiles={u: self.build_cognitive_profile(u, corpus, population) for u in users},
            sample_size=len(corpus),
        )

    def analyze_store(
        self, store: EventStore, event_filter: EventFilter | None = None
    ) -> CorpusAnalysis:
        """Batch recomputation over one snapshot of the store."""
        fingerprint = store.fingerprint()
        events = store.query(event_filter)
        logger.info(f"Analyzing {len(events)} events")
        analysis = self.analyze_events(events)
        analysis.fingerprint = fingerprint
        return analysis

    def profile_for(self, store: EventStore, user_id: str) -> CognitiveProfile:
        """Cognitive profile for one user, memoized while the corpus is unchanged."""
        fingerprint = store.fingerprint()
        if fingerprint != self._cache_fingerprint:
            self._profile_cache.clear()
            self._cache_fingerprint = fingerprint

        cached = self._profile_cache.get(user_id)
        if cached is not None:
            return cached

        profile = self.build_cognitive_profile(user_id, store.read_all())
        self._profile_cache[user_id] = profile
        return profile

    def assess_user_game(self, store: EventStore, user_id: str, game_id: str) -> GameProfile:
        """Game profile for one user and game, reading only the events it needs."""
        user_events = store.query(EventFilter(user_id=user_id, game_id=game_id))
        if not user_events:
            return GameProfile(game_id=game_id, last_updated=self._clock())

        r_types = frozenset(e.r_type for e in user_events)
        population = population_thinking_times(store.query(EventFilter(r_types=r_types)))
        return self._game_profile(game_id, user_events, population)
