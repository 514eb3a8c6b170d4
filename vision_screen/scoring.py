"""Score formulas and risk bands for the three assessments.

Scores run from 1 (highest risk) to 10 (lowest risk).  They are heuristic
screening indicators only and carry no diagnostic meaning.
"""
from __future__ import annotations

import math
from typing import Dict, Mapping, Sequence

MIN_SCORE: int = 1
MAX_SCORE: int = 10

# Inclusive upper bound of each band, checked in order.
RISK_BANDS: Sequence[tuple[str, int]] = (
    ("High", 3),
    ("Moderate", 6),
    ("Low", MAX_SCORE),
)

RECOMMENDATIONS: Dict[str, str] = {
    "High": "Results suggest a possible problem. Book an eye examination soon.",
    "Moderate": "Some results were weaker than expected. Consider a routine eye check.",
    "Low": "No concerns from this screening. Repeat it periodically.",
}


def round_half_up(value: float) -> int:
    """Round ``value`` to the nearest integer, ties toward positive infinity."""

    return int(math.floor(value + 0.5))


def clamp_score(value: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(value)))


def field_score(misses: int, avg_reaction_ms: float) -> int:
    """Score the peripheral field test from its miss count and mean reaction time."""

    return clamp_score(10 - misses - round_half_up((avg_reaction_ms - 200.0) / 200.0))


def contrast_score(correct_count: int, total_trials: int = 9) -> int:
    """Map ``correct_count`` out of ``total_trials`` onto the 1..10 scale."""

    if total_trials <= 0:
        raise ValueError("total_trials must be positive")
    return max(MIN_SCORE, round_half_up((correct_count / total_trials) * 9) + 1)


def gaze_verdict(flags: Mapping[str, bool]) -> str:
    """Return ``"normal"`` only when every direction flag is set."""

    return "normal" if all(flags.values()) else "abnormal"


def severity_band(score: int) -> str:
    """Return the risk band label for a 1..10 score."""

    for label, upper in RISK_BANDS:
        if score <= upper:
            return label
    return RISK_BANDS[-1][0]


__all__ = [
    "MIN_SCORE",
    "MAX_SCORE",
    "RISK_BANDS",
    "RECOMMENDATIONS",
    "round_half_up",
    "clamp_score",
    "field_score",
    "contrast_score",
    "gaze_verdict",
    "severity_band",
]
