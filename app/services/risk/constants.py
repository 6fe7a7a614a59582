from typing import Final

# Category thresholds (lower bound inclusive)
MEDIUM_THRESHOLD: Final[float] = 0.33
HIGH_THRESHOLD: Final[float] = 0.75

# Scores are rounded before bucketing so boundary checks are exact
SCORE_PRECISION: Final[int] = 6

# Signal strengths
THREAT_LEVEL_STRENGTHS: Final[dict[str, float]] = {
    "none": 0.0,
    "low": 0.2,
    "medium": 0.5,
    "high": 0.9,
}
CRIMINAL_RECORD_STRENGTH: Final[float] = 0.4  # Per record, capped at 1.0
FLAGGED_STRENGTH: Final[float] = 0.6
WATCHLIST_MATCH_STRENGTH: Final[float] = 1.0

# Field names read directly as a [0, 1] score
DIRECT_SCORE_FIELDS: Final[frozenset[str]] = frozenset({"risk", "risk_score"})

# Source label for transform features that are not namespaced
TRANSFORM_SOURCE: Final[str] = "transform"
