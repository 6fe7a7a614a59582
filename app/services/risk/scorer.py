import math
from typing import Any, Literal

from app.models.record import CombinedRecord, TransformedRecord
from app.models.risk import RiskAssessment, RiskCategory, RiskSignal
from app.services.risk.constants import (
    CRIMINAL_RECORD_STRENGTH,
    DIRECT_SCORE_FIELDS,
    FLAGGED_STRENGTH,
    HIGH_THRESHOLD,
    MEDIUM_THRESHOLD,
    SCORE_PRECISION,
    THREAT_LEVEL_STRENGTHS,
    TRANSFORM_SOURCE,
    WATCHLIST_MATCH_STRENGTH,
)

ScoreInput = Literal["combined", "transformed", "both"]


def categorize(score: float) -> RiskCategory:
    """
    Bucket a normalized score.

    0 -> none, (0, 0.33) -> low, [0.33, 0.75) -> medium, [0.75, 1] -> high.
    """
    if score >= HIGH_THRESHOLD:
        return RiskCategory.HIGH
    if score >= MEDIUM_THRESHOLD:
        return RiskCategory.MEDIUM
    if score > 0.0:
        return RiskCategory.LOW
    return RiskCategory.NONE


def _clamp(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return min(max(value, 0.0), 1.0)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class RiskScorer:
    """
    Derives a risk assessment from a combined and/or transformed record.

    Pure function of its input: no I/O and no clock, so the same record
    always produces the same assessment.
    """

    @staticmethod
    def signal_strength(field: str, value: Any) -> float:
        """
        Strength in [0, 1] of a single field, 0 when it is not a risk signal.

        Malformed values are ignored rather than rejected.
        """
        field = field.lower()

        if field in DIRECT_SCORE_FIELDS:
            return _clamp(float(value)) if _is_number(value) else 0.0

        if field == "threat_level":
            if isinstance(value, str):
                return THREAT_LEVEL_STRENGTHS.get(value.strip().lower(), 0.0)
            return _clamp(float(value)) if _is_number(value) else 0.0

        if field == "criminal_records":
            if isinstance(value, (list, tuple)):
                count = len(value)
            elif isinstance(value, bool):
                count = int(value)
            elif _is_number(value) and math.isfinite(value):
                count = max(int(value), 0)
            else:
                return 0.0
            return min(count * CRIMINAL_RECORD_STRENGTH, 1.0)

        if field == "flagged":
            return FLAGGED_STRENGTH if value is True else 0.0

        if field == "watchlist_match":
            return WATCHLIST_MATCH_STRENGTH if value is True else 0.0

        return 0.0

    def score(
        self,
        identifier: str,
        combined: CombinedRecord | None = None,
        transformed: TransformedRecord | None = None,
    ) -> RiskAssessment:
        # Keyed by "source.name"; the same signal seen twice keeps its strongest reading
        signals: dict[str, RiskSignal] = {}

        if combined is not None:
            for key, value in combined.namespaced.items():
                source, _, field = key.partition(".")
                strength = self.signal_strength(field, value)
                if strength > 0.0:
                    self._keep(signals, RiskSignal(source=source, name=field, strength=strength))

        if transformed is not None:
            for key, value in transformed.features.items():
                if "." in key:
                    source, _, name = key.partition(".")
                else:
                    source, name = TRANSFORM_SOURCE, key
                strength = _clamp(float(value))
                if strength > 0.0:
                    self._keep(signals, RiskSignal(source=source, name=name, strength=strength))

        evidence = sorted(signals.values(), key=lambda s: (s.source, s.name))

        # Noisy-OR: independent signals reinforce each other without leaving [0, 1]
        remaining = 1.0
        for signal in evidence:
            remaining *= 1.0 - signal.strength
        score = round(_clamp(1.0 - remaining), SCORE_PRECISION)

        return RiskAssessment(identifier=identifier, score=score, category=categorize(score), evidence=evidence)

    def score_for(
        self, mode: ScoreInput, combined: CombinedRecord, transformed: TransformedRecord
    ) -> RiskAssessment:
        """Score the record(s) an operation is configured to use."""
        if mode == "combined":
            return self.score(combined.identifier, combined=combined)
        if mode == "transformed":
            return self.score(transformed.identifier, transformed=transformed)
        return self.score(combined.identifier, combined=combined, transformed=transformed)

    @staticmethod
    def _keep(signals: dict[str, RiskSignal], signal: RiskSignal) -> None:
        key = f"{signal.source}.{signal.name}"
        current = signals.get(key)
        if current is None or signal.strength > current.strength:
            signals[key] = signal
