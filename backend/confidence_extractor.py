"""
Confidence Extractor

Reduces the classifier's per-class score mapping to one scalar: the winning
class's score, clamped to [0, 1] and rounded to 4 decimal places.
"""

import math
from numbers import Real
from typing import Any, Optional

CONFIDENCE_PRECISION = 4


def clamp_confidence(value: Any) -> Optional[float]:
    """Clamp one score into [0, 1] and round it; None for non-finite or non-numeric input."""
    if isinstance(value, bool) or not isinstance(value, Real):
        return None
    value = float(value)
    if not math.isfinite(value):
        return None
    return round(min(1.0, max(0.0, value)), CONFIDENCE_PRECISION)


def extract_confidence(confidences: Any) -> Optional[float]:
    """
    Take the maximum score across a label -> score mapping.

    Args:
        confidences: Mapping from class label to score; may be None or malformed

    Returns:
        The clamped, rounded maximum, or None when the mapping is absent,
        empty, or holds any non-numeric, NaN or infinite value
    """
    if not isinstance(confidences, dict) or not confidences:
        return None

    scores = []
    for value in confidences.values():
        if isinstance(value, bool) or not isinstance(value, Real):
            return None
        value = float(value)
        if not math.isfinite(value):
            return None
        scores.append(value)

    return clamp_confidence(max(scores))
