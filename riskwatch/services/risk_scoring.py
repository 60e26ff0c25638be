"""Risk scoring and threat-level classification.

Every detector describes its findings as weighted indicators; this module
turns them into a clamped 0-100 score and a threat level. It is the only
place threat levels are derived.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from riskwatch.config import ThreatThresholds
from riskwatch.models.security_events import ThreatLevel

MIN_SCORE = 0
MAX_SCORE = 100

_DEFAULT_THRESHOLDS = ThreatThresholds()


@dataclass(frozen=True)
class Indicator:
    """A triggered reason and its contribution to the risk score."""

    label: str
    weight: int = 0


@dataclass(frozen=True)
class RiskAssessment:
    """Score, level and ordered indicator labels for one detection."""

    score: int
    threat_level: ThreatLevel
    indicators: List[str] = field(default_factory=list)


def clamp_score(value: float) -> int:
    """Round and clamp a raw score into [0, 100]."""
    return int(max(MIN_SCORE, min(MAX_SCORE, round(value))))


def classify_threat_level(
    score: float,
    thresholds: Optional[ThreatThresholds] = None,
) -> ThreatLevel:
    """Classify a numeric risk score into a threat level.

    Bands are inclusive at their lower bound.
    """
    t = thresholds or _DEFAULT_THRESHOLDS
    if score >= t.critical:
        return ThreatLevel.CRITICAL
    if score >= t.high:
        return ThreatLevel.HIGH
    if score >= t.medium:
        return ThreatLevel.MEDIUM
    return ThreatLevel.LOW


def assess(
    indicators: Sequence[Indicator],
    thresholds: Optional[ThreatThresholds] = None,
) -> RiskAssessment:
    """Sum indicator weights, clamp, and classify."""
    score = clamp_score(sum(i.weight for i in indicators))
    return RiskAssessment(
        score=score,
        threat_level=classify_threat_level(score, thresholds),
        indicators=[i.label for i in indicators],
    )
