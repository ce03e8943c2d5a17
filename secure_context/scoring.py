"""
Consistency Scorer

Computes a bounded trust score from a context snapshot. Scoring is a
pure function of the snapshot: no I/O, no clock, no shared state.

Sub-scores:
    location  1.0 if the reported accuracy is within 20 units, else 0.5
    temporal  1.0 if all readings fall within a 5000 ms window, else 0.5
    motion    pluggable evaluator, default 1.0
    network   pluggable evaluator, default 1.0

The aggregate is the unweighted mean of the four.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .context import ContextSnapshot
from .signals import SignalReading

logger = logging.getLogger(__name__)

LOCATION_ACCURACY_LIMIT = 20.0
TEMPORAL_WINDOW_MS = 5000
DEGRADED_SCORE = 0.5

# Aggregates are rounded so that threshold comparisons are exact.
SCORE_PRECISION = 10

Evaluator = Callable[[SignalReading], float]


@dataclass(frozen=True)
class ConsistencySubScores:
    """Per-signal consistency, each in [0, 1]."""
    location: float
    temporal: float
    motion: float
    network: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "location_consistency": self.location,
            "temporal_consistency": self.temporal,
            "motion_consistency": self.motion,
            "network_consistency": self.network,
        }


@dataclass(frozen=True)
class ConsistencyScore:
    """Aggregate score together with the sub-scores it was derived from."""
    value: float
    sub_scores: ConsistencySubScores

    def meets(self, threshold: float) -> bool:
        return self.value >= threshold

    def to_dict(self) -> Dict[str, Any]:
        return {"consistency_score": self.value, **self.sub_scores.to_dict()}


def evaluate_location(snapshot: ContextSnapshot) -> float:
    return 1.0 if snapshot.location_accuracy <= LOCATION_ACCURACY_LIMIT else DEGRADED_SCORE


def evaluate_temporal(snapshot: ContextSnapshot) -> float:
    """Detects replayed or stale readings by their spread in time."""
    timestamps = [reading.timestamp for reading in snapshot.readings]
    spread = max(timestamps) - min(timestamps)
    return 1.0 if spread < TEMPORAL_WINDOW_MS else DEGRADED_SCORE


def accept_all(reading: SignalReading) -> float:
    return 1.0


def _bounded(name: str, value: float) -> float:
    value = float(value)
    if math.isnan(value):
        logger.warning("%s evaluator returned NaN; scoring as 0", name)
        return 0.0
    if value < 0.0 or value > 1.0:
        logger.warning("%s evaluator returned %r; clamping to [0, 1]", name, value)
        return min(1.0, max(0.0, value))
    return value


class ConsistencyScorer:
    """
    Scores snapshots with pluggable motion and network evaluators.

    Usage:
        scorer = ConsistencyScorer()
        result = scorer.score(snapshot)
        if result.meets(0.7):
            ...
    """

    def __init__(
        self,
        motion_evaluator: Optional[Evaluator] = None,
        network_evaluator: Optional[Evaluator] = None
    ):
        self.motion_evaluator = motion_evaluator or accept_all
        self.network_evaluator = network_evaluator or accept_all

    def sub_scores(self, snapshot: ContextSnapshot) -> ConsistencySubScores:
        return ConsistencySubScores(
            location=_bounded("location", evaluate_location(snapshot)),
            temporal=_bounded("temporal", evaluate_temporal(snapshot)),
            motion=_bounded("motion", self.motion_evaluator(snapshot.motion_signature)),
            network=_bounded("network", self.network_evaluator(snapshot.network_fingerprint)),
        )

    def score(self, snapshot: ContextSnapshot) -> ConsistencyScore:
        subs = self.sub_scores(snapshot)
        values = (subs.location, subs.temporal, subs.motion, subs.network)
        mean = round(math.fsum(values) / len(values), SCORE_PRECISION)
        return ConsistencyScore(value=mean, sub_scores=subs)


_default_scorer = ConsistencyScorer()


def score(snapshot: ContextSnapshot) -> ConsistencyScore:
    """Score a snapshot with the default (placeholder) evaluators."""
    return _default_scorer.score(snapshot)
