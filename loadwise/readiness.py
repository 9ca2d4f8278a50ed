from dataclasses import dataclass

# Score bands for the general target calculation: (lower bound, weight pct, reps delta).
# Checked top down; the first band whose lower bound the score reaches wins.
READINESS_SCALE_BANDS = [
    (90, 1.05, 1),
    (75, 1.025, 0),
    (60, 1.00, 0),
    (40, 0.98, 0),
    (25, 0.95, -1),
    (15, 0.93, -1),
    (0, 0.90, -2),
]

# Finer bands used by the equipment-aware proposal path.
READINESS_MULTIPLIER_BANDS = [
    (85, 1.03),
    (70, 1.015),
    (55, 1.0),
    (40, 0.985),
    (25, 0.97),
    (0, 0.94),
]


@dataclass(frozen=True)
class ReadinessScale:
    weight_pct: float
    reps_delta: int


def clamp_score(score: float) -> float:
    return max(0.0, min(100.0, float(score)))


def scale_by_readiness(score: float) -> ReadinessScale:
    """
    Maps a 0-100 readiness score to a weight multiplier and a reps delta.

    Args:
        score: Daily readiness score. Values outside 0-100 are clamped.

    Returns:
        ReadinessScale with weight_pct (0.90 to 1.05) and reps_delta (-2 to +1).
        Both are non-decreasing in score.
    """
    score = clamp_score(score)
    for lower, weight_pct, reps_delta in READINESS_SCALE_BANDS:
        if score >= lower:
            return ReadinessScale(weight_pct, reps_delta)
    return ReadinessScale(*READINESS_SCALE_BANDS[-1][1:])


def readiness_multiplier(score: float) -> float:
    """
    Weight multiplier (0.94 to 1.03) for equipment-aware target proposals.

    Deliberately not the same table as scale_by_readiness.
    """
    score = clamp_score(score)
    for lower, multiplier in READINESS_MULTIPLIER_BANDS:
        if score >= lower:
            return multiplier
    return READINESS_MULTIPLIER_BANDS[-1][1]


def describe_readiness(score: float | None) -> str:
    if score is None:
        return "Unknown"
    score = clamp_score(score)
    if score >= 80:
        return "Excellent"
    if score >= 60:
        return "Good"
    if score >= 40:
        return "Fair"
    return "Poor"
