"""Tunable defaults for tracking and analysis.

Every threshold used by the tracker, analyzer and query engine lives here so
tests and configuration models share one source of truth.
"""

# --- Tracker ---
DEFAULT_BUFFER_SIZE = 100
DEFAULT_FLUSH_INTERVAL_MS = 5000

# --- Pattern extraction ---
DEFAULT_MIN_WINDOW = 2
DEFAULT_MAX_WINDOW = 4
DEFAULT_MIN_OCCURRENCES = 5

# --- Mastery ---
MIN_SAMPLE_SIZE = 10  # below this, confidence is capped
CONFIDENCE_CEILING = 0.95
CONFIDENCE_HALF_SAMPLE = 5  # sample size at which confidence reaches 0.5
DEFAULT_ACCURACY_WEIGHT = 0.6
NEUTRAL_SCORE = 0.5

MASTERY_THRESHOLDS = (
    (0.9, "expert"),
    (0.7, "advanced"),
    (0.5, "intermediate"),
    (0.3, "beginner"),
)

STRENGTH_THRESHOLD = 0.7
WEAKNESS_THRESHOLD = 0.3

# --- Trends ---
TREND_MIN_EVENTS = 6
DEFAULT_TREND_THRESHOLD = 0.05

# --- Profiles ---
DEFAULT_T_TYPE_CARDINALITY = 7
GENERALIZATION_MIN_EVENTS = 3
GENERALIZATION_VARIANCE_SCALE = 4.0
TRANSFER_SOURCE_FLOOR = 0.1

# --- Time ---
MS_PER_SECOND = 1000
SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400
SECONDS_PER_WEEK = 604800

# --- Sinks ---
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_MS = 200
