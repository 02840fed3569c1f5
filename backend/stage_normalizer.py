"""
Stage Normalizer

Maps the free-text label produced by the external MRI classifier onto the
closed four-value dementia stage enum.

Precedence:
    1. exact match against a fixed label table
    2. containment match against the normalized stage names
    3. keyword fallback ("moderate", "very mild", "mild" without "very",
       "normal"/"non")
    4. None; the caller flags the visit for manual review

There is no default stage. A label that cannot be mapped stays unmapped.
"""

import math
import re
from enum import Enum
from typing import List, Optional


class DementiaStage(str, Enum):
    """Stages ordered by severity; the order is the 0-3 ordinal used for trends."""
    NORMAL = "Normal"
    VERY_MILD_DEMENTIA = "Very_Mild_Dementia"
    MILD_DEMENTIA = "Mild_Dementia"
    MODERATE_DEMENTIA = "Moderate_Dementia"


STAGE_ORDER = [
    DementiaStage.NORMAL,
    DementiaStage.VERY_MILD_DEMENTIA,
    DementiaStage.MILD_DEMENTIA,
    DementiaStage.MODERATE_DEMENTIA,
]

# Labels the classifier is known to emit
EXACT_LABELS = {
    "Non Demented": DementiaStage.NORMAL,
    "Very Mild Dementia": DementiaStage.VERY_MILD_DEMENTIA,
    "Mild Dementia": DementiaStage.MILD_DEMENTIA,
    "Moderate Dementia": DementiaStage.MODERATE_DEMENTIA,
    # Kaggle Alzheimer MRI dataset folder names
    "NonDemented": DementiaStage.NORMAL,
    "VeryMildDemented": DementiaStage.VERY_MILD_DEMENTIA,
    "MildDemented": DementiaStage.MILD_DEMENTIA,
    "ModerateDemented": DementiaStage.MODERATE_DEMENTIA,
    # Already canonical
    "Normal": DementiaStage.NORMAL,
    "Very_Mild_Dementia": DementiaStage.VERY_MILD_DEMENTIA,
    "Mild_Dementia": DementiaStage.MILD_DEMENTIA,
    "Moderate_Dementia": DementiaStage.MODERATE_DEMENTIA,
}

# Longest names first so "very mild dementia" wins over "mild dementia"
_CONTAINMENT_ORDER = [
    ("very mild dementia", DementiaStage.VERY_MILD_DEMENTIA),
    ("moderate dementia", DementiaStage.MODERATE_DEMENTIA),
    ("mild dementia", DementiaStage.MILD_DEMENTIA),
    ("normal", DementiaStage.NORMAL),
]


def _normalize(label: str) -> str:
    text = label.strip().lower().replace("_", " ").replace("-", " ")
    return re.sub(r"\s+", " ", text)


# Fallback keywords in priority order; the first stage that matches wins
_KEYWORD_RULES = [
    (DementiaStage.MODERATE_DEMENTIA, lambda text: "moderate" in text),
    (DementiaStage.VERY_MILD_DEMENTIA, lambda text: "very mild" in text or "verymild" in text.replace(" ", "")),
    (DementiaStage.MILD_DEMENTIA, lambda text: "mild" in text and "very" not in text),
    (DementiaStage.NORMAL, lambda text: "normal" in text or "non" in text),
]


def _keyword_stages(text: str) -> List[DementiaStage]:
    """Every stage whose keyword appears in the normalized text, highest priority first."""
    return [stage for stage, matches in _KEYWORD_RULES if matches(text)]


def normalize_stage(label: Optional[str]) -> Optional[DementiaStage]:
    """
    Map a classifier label to a DementiaStage.

    Args:
        label: Free-text label, possibly None or empty

    Returns:
        The stage, or None when no confident mapping exists
    """
    if label is None or not isinstance(label, str):
        return None

    stripped = label.strip()
    if not stripped:
        return None

    if stripped in EXACT_LABELS:
        return EXACT_LABELS[stripped]

    text = _normalize(stripped)

    # A containment hit only counts when no other stage's keyword is present,
    # e.g. "mild dementia, possibly moderate" is left to the keyword ladder.
    fired = _keyword_stages(text)
    for name, stage in _CONTAINMENT_ORDER:
        if name in text and fired == [stage]:
            return stage

    return fired[0] if fired else None


def stage_to_ordinal(stage) -> Optional[int]:
    """0 for Normal up to 3 for Moderate_Dementia; None for a missing stage."""
    if stage is None:
        return None
    return STAGE_ORDER.index(DementiaStage(stage))


def ordinal_to_stage(value: float) -> DementiaStage:
    """Round half up to the nearest stage, clamped to 0-3."""
    index = max(0, min(3, math.floor(value + 0.5)))
    return STAGE_ORDER[index]


def stage_label(stage) -> str:
    """Human-readable stage text, e.g. "Very Mild Dementia"."""
    if stage is None:
        return "Unknown"
    return DementiaStage(stage).value.replace("_", " ")
