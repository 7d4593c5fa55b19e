"""
Configuration for Practice Log
"""
import logging
from dataclasses import dataclass, replace

logger = logging.getLogger(__name__)

# Practice detection thresholds (milliseconds)
GRACE_PERIOD_MS = 8000  # Silence tolerated before a practice run ends
AUTO_END_THRESHOLD_MS = 20 * 60 * 1000  # Idle time before the session ends itself
GOAL_MINUTES = 0  # Practice goal, 0 = disabled

# Classifier filtering
MUSIC_CONFIDENCE_THRESHOLD = 0.5
SINGING_CONFIDENCE_THRESHOLD = 0.8  # Singing only counts with high confidence

# Labels (case-insensitive substrings) treated as instrument practice
MUSIC_KEYWORDS = [
    'musical instrument',
    'guitar',
    'piano',
    'violin',
    'trumpet',
    'saxophone',
    'flute',
    'drum',
    'bass',
]

# Loop cadence
CLASSIFICATION_INTERVAL_MS = 500
UI_UPDATE_INTERVAL_MS = 1000
CLASSIFICATION_TIMEOUT_MS = 2000  # A stalled read or classify counts as a skipped tick

# Audio capture
SAMPLE_RATE = 16000
WINDOW_SECONDS = 0.975  # One classification window

# Web server configuration
WEB_PORT = 5000

# Database
DATABASE_PATH = "practice_sessions.db"


@dataclass(frozen=True)
class SessionConfig:
    """Configuration inputs read once when a session starts."""

    grace_period_ms: int = GRACE_PERIOD_MS
    auto_end_threshold_ms: int = AUTO_END_THRESHOLD_MS
    goal_minutes: int = GOAL_MINUTES
    music_confidence_threshold: float = MUSIC_CONFIDENCE_THRESHOLD
    classification_interval_ms: int = CLASSIFICATION_INTERVAL_MS
    ui_update_interval_ms: int = UI_UPDATE_INTERVAL_MS
    classification_timeout_ms: int = CLASSIFICATION_TIMEOUT_MS

    @property
    def goal_millis(self) -> int:
        return self.goal_minutes * 60 * 1000

    def validated(self) -> "SessionConfig":
        """
        Return a copy with invalid values replaced by their defaults.

        Intervals and thresholds must be positive, and the confidence
        threshold must lie in (0, 1]. A negative goal disables the goal.
        """
        fixes = {}

        for name, default in (
            ('grace_period_ms', GRACE_PERIOD_MS),
            ('auto_end_threshold_ms', AUTO_END_THRESHOLD_MS),
            ('classification_interval_ms', CLASSIFICATION_INTERVAL_MS),
            ('ui_update_interval_ms', UI_UPDATE_INTERVAL_MS),
            ('classification_timeout_ms', CLASSIFICATION_TIMEOUT_MS),
        ):
            value = getattr(self, name)
            if value is None or value <= 0:
                logger.warning(f"Invalid {name}={value!r}, using default {default}")
                fixes[name] = default

        threshold = self.music_confidence_threshold
        if threshold is None or not 0 < threshold <= 1:
            logger.warning(f"Invalid music_confidence_threshold={threshold!r}, "
                           f"using default {MUSIC_CONFIDENCE_THRESHOLD}")
            fixes['music_confidence_threshold'] = MUSIC_CONFIDENCE_THRESHOLD

        if self.goal_minutes is None or self.goal_minutes < 0:
            logger.warning(f"Invalid goal_minutes={self.goal_minutes!r}, disabling goal")
            fixes['goal_minutes'] = 0

        return replace(self, **fixes) if fixes else self
