"""Tests for the shared thresholds in constants.py.

Configuration models take their defaults from here, so these also pin the
defaults a tracker or analyzer starts with.
"""

import ast
from pathlib import Path

import gamelytics.constants as constants
from gamelytics.models import AnalyzerConfig, TrackerConfig


class TestConstantsValues:
    def test_tracker_defaults(self):
        assert constants.DEFAULT_BUFFER_SIZE == 100
        assert constants.DEFAULT_FLUSH_INTERVAL_MS == 5000

    def test_confidence_bounds(self):
        assert constants.MIN_SAMPLE_SIZE == 10
        assert constants.CONFIDENCE_CEILING == 0.95

    def test_mastery_thresholds_descend(self):
        thresholds = [t for t, _ in constants.MASTERY_THRESHOLDS]
        assert thresholds == sorted(thresholds, reverse=True)

    def test_strength_above_weakness(self):
        assert constants.WEAKNESS_THRESHOLD < constants.STRENGTH_THRESHOLD

    def test_time_constants(self):
        assert constants.SECONDS_PER_DAY == 86400
        assert constants.SECONDS_PER_WEEK == 7 * constants.SECONDS_PER_DAY


class TestConfigDefaults:
    def test_tracker_config_uses_constants(self):
        config = TrackerConfig()
        assert config.buffer_size == constants.DEFAULT_BUFFER_SIZE
        assert config.flush_interval_ms == constants.DEFAULT_FLUSH_INTERVAL_MS

    def test_analyzer_config_uses_constants(self):
        config = AnalyzerConfig()
        assert (config.min_window, config.max_window) == (
            constants.DEFAULT_MIN_WINDOW,
            constants.DEFAULT_MAX_WINDOW,
        )
        assert config.min_occurrences == constants.DEFAULT_MIN_OCCURRENCES
        assert config.confidence_ceiling == constants.CONFIDENCE_CEILING


class TestNoDuplicates:
    """Thresholds are defined once, in constants.py."""

    def _module_level_names(self, filename):
        path = Path(constants.__file__).parent / filename
        tree = ast.parse(path.read_text())
        names = set()
        for node in tree.body:
            if isinstance(node, ast.Assign):
                names.update(t.id for t in node.targets if isinstance(t, ast.Name))
        return names

    def test_analyzer_defines_no_thresholds(self):
        defined = self._module_level_names("analyzer.py")
        shared = {n for n in dir(constants) if n.isupper()}
        assert not defined & shared

    def test_tracker_defines_no_thresholds(self):
        defined = self._module_level_names("tracker.py")
        shared = {n for n in dir(constants) if n.isupper()}
        assert not defined & shared
