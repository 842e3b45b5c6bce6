"""Tests for decision analysis: patterns, mastery, profiles and transfer."""

import pytest

from gamelytics.analyzer import (
    DecisionAnalyzer,
    interpret_transfer,
    level_for,
    pearson,
    population_thinking_times,
)
from gamelytics.constants import CONFIDENCE_CEILING, MIN_SAMPLE_SIZE
from gamelytics.models import AnalyzerConfig, MasteryTier

from conftest import make_event, make_session


@pytest.fixture
def analyzer():
    return DecisionAnalyzer(clock=lambda: 999)


def graded(user_id, game_id, r_type, correct, n=1, **kwargs):
    """n graded events with the default thinking time."""
    return [make_event(user_id=user_id, game_id=game_id, r_type=r_type, correct=correct, **kwargs) for _ in range(n)]


def mirrored_games(user_id, games=("chess", "go")):
    """Same rule-type results in every game: R1 right, R2 wrong, R3 right."""
    events = []
    for game_id in games:
        for r_type, correct in (("R1", True), ("R2", False), ("R3", True)):
            events += graded(user_id, game_id, r_type, correct, n=3, session_id=f"{user_id}-{game_id}")
    return events


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


class TestHelpers:
    def test_pearson(self):
        assert pearson([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)
        assert pearson([1, 2, 3], [3, 2, 1]) == pytest.approx(-1.0)

    def test_pearson_undefined(self):
        assert pearson([1], [1]) is None
        assert pearson([1, 1, 1], [1, 2, 3]) is None
        assert pearson([1, 2], [1, 2, 3]) is None

    @pytest.mark.parametrize("score,tier", [
        (0.95, MasteryTier.EXPERT),
        (0.9, MasteryTier.EXPERT),
        (0.75, MasteryTier.ADVANCED),
        (0.5, MasteryTier.INTERMEDIATE),
        (0.3, MasteryTier.BEGINNER),
        (0.29, MasteryTier.NOVICE),
        (0.0, MasteryTier.NOVICE),
    ])
    def test_level_for(self, score, tier):
        assert level_for(score) == tier

    def test_population_thinking_times(self):
        events = [
            make_event(r_type="R1", thinking_time_ms=100),
            make_event(r_type="R1", thinking_time_ms=300),
            make_event(r_type="R2", thinking_time_ms=50),
        ]
        assert population_thinking_times(events) == {"R1": 200, "R2": 50}

    def test_interpretation_distinguishes_missing_data(self):
        assert interpret_transfer(0.0, 0).startswith("Insufficient")
        assert interpret_transfer(0.0, 4) == "No measurable transfer"
        assert interpret_transfer(0.85, 4).startswith("Strong")


# ─────────────────────────────────────────────────────────────────────────────
# Patterns
# ─────────────────────────────────────────────────────────────────────────────


class TestPatterns:
    def test_below_min_occurrences_not_reported(self, analyzer):
        events = []
        for i in range(4):
            events += make_session(["R1", "R2"], session_id=f"s{i}")
        assert analyzer.identify_patterns(events) == []

    def test_reported_at_min_occurrences(self, analyzer):
        events = []
        for i in range(5):
            events += make_session(["R1", "R2"], session_id=f"s{i}")

        [pattern] = analyzer.identify_patterns(events)

        assert pattern.id == "pat_R1-R2"
        assert pattern.r_type_sequence == ("R1", "R2")
        assert pattern.occurrences == 5
        assert pattern.game_prevalence == {"chess": 1.0}
        assert pattern.transfer_potential == 0.0
        assert pattern.average_thinking_time == 1000

    def test_cross_game_prevalence(self, analyzer):
        events = []
        for i in range(3):
            events += make_session(["R1", "R2"], session_id=f"c{i}", game_id="chess")
        for i in range(2):
            events += make_session(["R1", "R2"], session_id=f"g{i}", game_id="go")
        events += make_session(["R3", "R4"], session_id="g-other", game_id="go")

        [pattern] = analyzer.identify_patterns(events)

        assert pattern.game_prevalence == {"chess": 1.0, "go": pytest.approx(2 / 3)}
        assert 0.9 < pattern.transfer_potential <= 1.0

    def test_windows_do_not_span_sessions(self, analyzer):
        # R2 ends one session and R1 starts the next; never a window
        events = []
        for i in range(6):
            events += make_session(["R1", "R2"], session_id=f"s{i}")
        signatures = {p.r_type_sequence for p in analyzer.identify_patterns(events)}
        assert ("R2", "R1") not in signatures

    def test_longer_windows_and_ordering(self):
        analyzer = DecisionAnalyzer(AnalyzerConfig(min_occurrences=2, max_window=3))
        events = []
        for i in range(2):
            events += make_session(["R1", "R2", "R3"], session_id=f"s{i}")
        events += make_session(["R1", "R2"], session_id="s-short")

        patterns = analyzer.identify_patterns(events)

        assert [p.r_type_sequence for p in patterns] == [
            ("R1", "R2"),
            ("R1", "R2", "R3"),
            ("R2", "R3"),
        ]
        assert patterns[0].occurrences == 3

    def test_error_rate_from_ground_truth(self, analyzer):
        events = []
        for i in range(5):
            events += [
                make_event(r_type="R1", session_id=f"s{i}", correct=True),
                make_event(r_type="R2", session_id=f"s{i}", correct=i == 0),
            ]
        [pattern] = analyzer.identify_patterns(events)
        assert pattern.ground_truth_samples == 10
        assert pattern.error_rate == pytest.approx(0.4)

    def test_chronological_within_session(self, analyzer):
        events = []
        for i in range(5):
            events += [
                make_event(r_type="R2", session_id=f"s{i}", ts=2000),
                make_event(r_type="R1", session_id=f"s{i}", ts=1000),
            ]
        [pattern] = analyzer.identify_patterns(events)
        assert pattern.r_type_sequence == ("R1", "R2")


# ─────────────────────────────────────────────────────────────────────────────
# Mastery
# ─────────────────────────────────────────────────────────────────────────────


class TestMastery:
    def test_confidence_capped_for_small_samples(self, analyzer):
        for n in range(MIN_SAMPLE_SIZE):
            assert analyzer.confidence(n) <= CONFIDENCE_CEILING

    def test_confidence_grows_with_sample(self, analyzer):
        assert analyzer.confidence(0) == 0.0
        assert analyzer.confidence(5) == 0.5
        assert analyzer.confidence(95) == pytest.approx(0.95)
        assert analyzer.confidence(200) > CONFIDENCE_CEILING

    def test_stricter_ceiling_applies(self):
        analyzer = DecisionAnalyzer(AnalyzerConfig(confidence_ceiling=0.3, min_sample_size=20))
        assert analyzer.confidence(15) == 0.3

    def test_accuracy_and_efficiency(self, analyzer):
        events = graded("u1", "chess", "R1", True, n=4)
        mastery = analyzer.assess_mastery(events, "u1", "chess", "R1")

        # Average speed: efficiency 0.5, accuracy 1.0
        assert mastery.score == pytest.approx(0.8)
        assert mastery.level == MasteryTier.ADVANCED
        assert mastery.sample_size == 4
        assert mastery.confidence == pytest.approx(4 / 9)
        assert mastery.last_assessed == 999

    def test_efficiency_only_without_ground_truth(self, analyzer):
        events = [
            make_event(user_id="u1", thinking_time_ms=100),
            make_event(user_id="u2", thinking_time_ms=300),
        ]
        fast = analyzer.assess_mastery(events, "u1", "chess", "R1")
        slow = analyzer.assess_mastery(events, "u2", "chess", "R1")

        assert fast.score == pytest.approx(200 / 300)
        assert slow.score == pytest.approx(200 / 500)
        assert fast.level > slow.level

    def test_zero_thinking_time_is_neutral(self, analyzer):
        events = [make_event(thinking_time_ms=0)]
        assert analyzer.assess_mastery(events, "u1", "chess", "R1").score == 0.5

    def test_no_matching_events(self, analyzer):
        mastery = analyzer.assess_mastery([make_event()], "u1", "chess", "R9")
        assert mastery.sample_size == 0
        assert mastery.confidence == 0.0

    def test_trend_needs_enough_history(self, analyzer):
        events = graded("u1", "chess", "R1", False, n=2) + graded("u1", "chess", "R1", True, n=3)
        assert analyzer.skill_trend(events, population_thinking_times(events)) == "stable"

    def test_trend_improving_and_declining(self, analyzer):
        improving = graded("u1", "chess", "R1", False, n=2) + graded("u1", "chess", "R1", True, n=4)
        declining = graded("u1", "chess", "R1", True, n=4) + graded("u1", "chess", "R1", False, n=2)

        assert analyzer.skill_trend(improving, population_thinking_times(improving)) == "improving"
        assert analyzer.skill_trend(declining, population_thinking_times(declining)) == "declining"


# ─────────────────────────────────────────────────────────────────────────────
# Profiles
# ─────────────────────────────────────────────────────────────────────────────


class TestProfiles:
    def test_unknown_user_gets_empty_profile(self, analyzer):
        profile = analyzer.build_cognitive_profile("ghost", [make_event()])
        assert profile.sample_size == 0
        assert profile.game_profiles == {}
        assert profile.preferred_t_type is None

    def test_strengths_weaknesses_and_preference(self, analyzer):
        events = (
            graded("u1", "chess", "R1", True, n=3, t_type="T1")
            + graded("u1", "chess", "R2", False, n=3, t_type="T1")
            + graded("u1", "chess", "R3", True, n=1, t_type="T2")
        )
        profile = analyzer.build_cognitive_profile("u1", events)

        assert profile.r_type_strengths == ("R1", "R3")
        assert profile.r_type_weaknesses == ("R2",)
        assert profile.preferred_t_type == "T1"
        assert 0.0 < profile.t_type_flexibility < 1.0
        assert profile.sample_size == 7

    def test_single_tactic_has_no_flexibility(self, analyzer):
        profile = analyzer.build_cognitive_profile("u1", graded("u1", "chess", "R1", True, n=3))
        assert profile.t_type_flexibility == 0.0

    def test_game_profile_rollup(self, analyzer):
        events = (
            [make_event(session_id="a"), make_event(session_id="a", outcome="win")]
            + [make_event(session_id="b", outcome="loss")]
            + [make_event(session_id="c")]
        )
        [game] = analyzer.build_game_profiles("u1", events).values()

        assert game.game_id == "chess"
        assert game.total_games == 3
        assert game.decided_games == 2
        assert game.win_rate == 0.5
        assert set(game.r_type_mastery) == {"R1"}
        assert game.last_updated == events[-1].timestamp

    def test_no_decided_games(self, analyzer):
        [game] = analyzer.build_game_profiles("u1", [make_event()]).values()
        assert game.win_rate == 0.0
        assert game.decided_games == 0

    def test_consistent_player_generalizes_and_transfers(self, analyzer):
        profile = analyzer.build_cognitive_profile("u1", mirrored_games("u1"))

        assert set(profile.game_profiles) == {"chess", "go"}
        assert profile.cross_game_transfer_score == pytest.approx(1.0)
        assert profile.r_type_generalization_score == pytest.approx(1.0)

    def test_single_game_has_no_cross_game_scores(self, analyzer):
        profile = analyzer.build_cognitive_profile("u1", mirrored_games("u1", games=("chess",)))
        assert profile.cross_game_transfer_score == 0.0
        assert profile.r_type_generalization_score == 0.0

    def test_inconsistent_player_generalizes_less(self, analyzer):
        events = (
            graded("u1", "chess", "R1", True, n=3)
            + graded("u1", "go", "R1", False, n=3)
        )
        profile = analyzer.build_cognitive_profile("u1", events)
        # Scores 0.8 and 0.2: variance 0.09
        assert profile.r_type_generalization_score == pytest.approx(0.64)
        assert profile.cross_game_transfer_score == 0.0


# ─────────────────────────────────────────────────────────────────────────────
# Transfer learning
# ─────────────────────────────────────────────────────────────────────────────


class TestTransferLearning:
    def test_no_common_users(self, analyzer):
        events = graded("u1", "chess", "R1", True, n=3) + graded("u2", "go", "R1", True, n=3)
        result = analyzer.measure_transfer_learning(events, "chess", "go")

        assert result.common_users == 0
        assert result.sample_size == 0
        assert result.overall_transfer_score == 0.0
        assert result.interpretation.startswith("Insufficient")

    def test_common_user_without_variance_contributes_nothing(self, analyzer):
        events = graded("u1", "chess", "R1", True, n=2) + graded("u1", "go", "R1", True, n=2)
        result = analyzer.measure_transfer_learning(events, "chess", "go")

        assert result.common_users == 1
        assert result.sample_size == 0
        assert result.common_r_types == ("R1",)
        assert result.r_type_transfer_scores == {"R1": pytest.approx(1.0)}

    def test_strong_transfer(self, analyzer):
        events = mirrored_games("u1") + mirrored_games("u2")
        result = analyzer.measure_transfer_learning(events, "chess", "go")

        assert result.common_users == 2
        assert result.sample_size == 2
        assert result.common_r_types == ("R1", "R2", "R3")
        assert result.overall_transfer_score == pytest.approx(1.0)
        assert result.interpretation.startswith("Strong")

    def test_opposite_skills_clamped_to_zero(self, analyzer):
        events = (
            graded("u1", "chess", "R1", True, n=2) + graded("u1", "chess", "R2", False, n=2)
            + graded("u1", "go", "R1", False, n=2) + graded("u1", "go", "R2", True, n=2)
        )
        result = analyzer.measure_transfer_learning(events, "chess", "go")

        assert result.sample_size == 1
        assert result.overall_transfer_score == 0.0
        assert result.interpretation == "No measurable transfer"

    def test_ratio_scores_capped_at_one(self, analyzer):
        events = (
            graded("u1", "chess", "R1", False, n=2) + graded("u1", "chess", "R2", False, n=2)
            + graded("u1", "go", "R1", True, n=2) + graded("u1", "go", "R2", True, n=2)
        )
        result = analyzer.measure_transfer_learning(events, "chess", "go")
        assert result.r_type_transfer_scores == {"R1": 1.0, "R2": 1.0}


# ─────────────────────────────────────────────────────────────────────────────
# Store-backed modes
# ─────────────────────────────────────────────────────────────────────────────


class TestStoreBacked:
    def test_analyze_store(self, analyzer, memory_store):
        memory_store.append_batch(mirrored_games("u1") + mirrored_games("u2"))
        analysis = analyzer.analyze_store(memory_store)

        assert analysis.sample_size == 36
        assert set(analysis.profiles) == {"u1", "u2"}
        assert analysis.fingerprint == memory_store.fingerprint()

    def test_profile_cached_until_corpus_changes(self, analyzer, memory_store):
        memory_store.append_batch(graded("u1", "chess", "R1", True, n=3))

        first = analyzer.profile_for(memory_store, "u1")
        assert analyzer.profile_for(memory_store, "u1") is first

        memory_store.append_batch(graded("u1", "go", "R1", True, n=1))
        refreshed = analyzer.profile_for(memory_store, "u1")
        assert refreshed is not first
        assert refreshed.sample_size == 4

    def test_assess_user_game(self, analyzer, sqlite_store):
        sqlite_store.append_batch(
            graded("u1", "chess", "R1", True, n=3, session_id="a")
            + graded("u1", "go", "R2", False, n=2)
            + graded("u2", "chess", "R1", False, n=2)
        )
        game = analyzer.assess_user_game(sqlite_store, "u1", "chess")

        assert game.total_games == 1
        assert set(game.r_type_mastery) == {"R1"}
        assert game.r_type_mastery["R1"].sample_size == 3

    def test_assess_user_game_without_data(self, analyzer, memory_store):
        game = analyzer.assess_user_game(memory_store, "u1", "chess")
        assert game.total_games == 0
        assert game.r_type_mastery == {}
        assert game.last_updated == 999
