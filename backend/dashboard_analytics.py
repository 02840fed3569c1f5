"""
Dashboard Analytics

Read-only views derived from stored visits. Every function takes a sequence
of visit-like objects (ORM rows or anything with the same attributes),
orders them by creation time, and returns plain dicts/lists. Nothing here
writes to the store.

The progression forecast is linear extrapolation over the stage ordinal
treated as a number. It is an informal heuristic for the dashboard, not a
validated clinical model.
"""

from datetime import datetime
from numbers import Real
from typing import Any, Dict, List, Optional, Sequence

from config import CONFIDENCE_ALERT_THRESHOLD
from stage_normalizer import STAGE_ORDER, DementiaStage, ordinal_to_stage, stage_to_ordinal

FORECAST_DISCLAIMER = (
    "Linear trend over stage ordinals (0-3). Informal heuristic, "
    "not a validated clinical prediction."
)

# Largest possible two-step worsening used to scale the risk figure
MAX_STAGE_DELTA = 2


def _created(visit) -> datetime:
    return getattr(visit, "created_at", None) or datetime.min


def sort_visits(visits: Sequence[Any]) -> List[Any]:
    """Oldest first."""
    return sorted(visits, key=_created)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def stage_distribution(visits: Sequence[Any]) -> List[Dict[str, Any]]:
    """
    Count and percentage (0-100) per stage among visits that have a stage.

    All four stages are always present, in severity order.
    """
    counts = {stage: 0 for stage in STAGE_ORDER}
    for visit in visits:
        if visit.predicted_class is not None:
            counts[DementiaStage(visit.predicted_class)] += 1

    total = sum(counts.values())
    return [
        {
            "stage": stage,
            "count": counts[stage],
            "percentage": round(counts[stage] / total * 100, 1) if total else 0.0,
        }
        for stage in STAGE_ORDER
    ]


def average_confidence(visits: Sequence[Any]) -> Optional[float]:
    values = [v.confidence for v in visits if v.confidence is not None]
    if not values:
        return None
    return round(sum(values) / len(values), 4)


def confidence_alert(visits: Sequence[Any], threshold: float = CONFIDENCE_ALERT_THRESHOLD) -> Dict[str, Any]:
    """Alert when confidence fell by more than `threshold` between the two latest visits."""
    ordered = sort_visits(visits)
    if len(ordered) < 2:
        return {"alert": False, "delta": None, "latest": None, "previous": None, "message": None}

    latest, previous = ordered[-1], ordered[-2]
    if latest.confidence is None or previous.confidence is None:
        return {
            "alert": False,
            "delta": None,
            "latest": latest.confidence,
            "previous": previous.confidence,
            "message": None,
        }

    delta = round(latest.confidence - previous.confidence, 4)
    alert = delta < -threshold
    message = None
    if alert:
        message = (
            f"Confidence decreased by {abs(delta) * 100:.1f}% since the last visit. "
            "Consider re-scanning in 3 months."
        )
    return {
        "alert": alert,
        "delta": delta,
        "latest": latest.confidence,
        "previous": previous.confidence,
        "message": message,
    }


def progression_forecast(visits: Sequence[Any]) -> Optional[Dict[str, Any]]:
    """
    Ordinary least squares of stage ordinal against visit index.

    Only visits with a stage take part. Needs at least two of them;
    returns None otherwise. Projections one and two steps past the last
    visit are clamped to [0, 3]; risk of worsening is the clamped two-step
    delta over MAX_STAGE_DELTA, in [0, 1].
    """
    ordinals = [stage_to_ordinal(v.predicted_class) for v in sort_visits(visits) if v.predicted_class is not None]
    n = len(ordinals)
    if n < 2:
        return None

    xs = list(range(n))
    x_mean = sum(xs) / n
    y_mean = sum(ordinals) / n
    numerator = sum((x - x_mean) * (y - y_mean) for x, y in zip(xs, ordinals))
    denominator = sum((x - x_mean) ** 2 for x in xs) or 1
    slope = numerator / denominator
    intercept = y_mean - slope * x_mean

    next1_raw = slope * n + intercept
    next2_raw = slope * (n + 1) + intercept
    next1 = _clamp(next1_raw, 0, 3)
    next2 = _clamp(next2_raw, 0, 3)

    current = ordinals[-1]
    risk = _clamp((next2 - current) / MAX_STAGE_DELTA, 0, 1)

    return {
        "slope": round(slope, 4),
        "intercept": round(intercept, 4),
        "current": current,
        "next_visit": round(next1, 4),
        "two_steps_ahead": round(next2, 4),
        "next_visit_raw": round(next1_raw, 4),
        "two_steps_ahead_raw": round(next2_raw, 4),
        "next_visit_stage": ordinal_to_stage(next1),
        "two_steps_ahead_stage": ordinal_to_stage(next2),
        "risk_of_worsening": round(risk, 4),
        "visits_used": n,
        "disclaimer": FORECAST_DISCLAIMER,
    }


def _class_confidences(raw_report: Any) -> Optional[Dict[str, float]]:
    if not isinstance(raw_report, dict):
        return None
    analysis = raw_report.get("dementiaAnalysis")
    if not isinstance(analysis, dict):
        return None
    confidences = analysis.get("confidences")
    if not isinstance(confidences, dict):
        return None
    return {
        str(label): float(score) if isinstance(score, Real) and not isinstance(score, bool) else 0.0
        for label, score in confidences.items()
    }


def change_highlights(visits: Sequence[Any], top: int = 3) -> List[Dict[str, Any]]:
    """Per-class confidence changes between the two latest visits, largest first."""
    ordered = sort_visits(visits)
    if len(ordered) < 2:
        return []

    latest = _class_confidences(ordered[-1].raw_report)
    previous = _class_confidences(ordered[-2].raw_report)
    if latest is None or previous is None:
        return []

    labels = list(dict.fromkeys(list(latest) + list(previous)))
    deltas = [
        {"label": label, "delta": round(latest.get(label, 0.0) - previous.get(label, 0.0), 4)}
        for label in labels
    ]
    deltas.sort(key=lambda d: abs(d["delta"]), reverse=True)
    return deltas[:top]


def confidence_trend(visits: Sequence[Any]) -> List[Dict[str, Any]]:
    """One point per visit: label, date, confidence as a percentage, stage."""
    points = []
    for i, visit in enumerate(sort_visits(visits)):
        created = getattr(visit, "created_at", None)
        points.append({
            "label": created.strftime("%Y-%m-%d") if created else f"Visit {i + 1}",
            "date": created,
            "confidence_percent": round(visit.confidence * 100, 1) if visit.confidence is not None else None,
            "stage": visit.predicted_class,
        })
    return points


def visit_comparison(visits: Sequence[Any]) -> Dict[str, Any]:
    """Latest visit against the one before it."""
    ordered = sort_visits(visits)
    latest = ordered[-1] if ordered else None
    previous = ordered[-2] if len(ordered) >= 2 else None

    confidence_delta = None
    stage_changed = False
    if latest is not None and previous is not None:
        if latest.confidence is not None and previous.confidence is not None:
            confidence_delta = round(latest.confidence - previous.confidence, 4)
        stage_changed = latest.predicted_class != previous.predicted_class

    return {
        "latest": latest,
        "previous": previous,
        "stage_changed": stage_changed,
        "confidence_delta": confidence_delta,
    }


def patient_insights(patient_id: str, visits: Sequence[Any], threshold: float = CONFIDENCE_ALERT_THRESHOLD) -> Dict[str, Any]:
    """Everything the patient dashboard shows, in one bundle."""
    return {
        "patient_id": patient_id,
        "visit_count": len(visits),
        "stage_distribution": stage_distribution(visits),
        "confidence_alert": confidence_alert(visits, threshold),
        "forecast": progression_forecast(visits),
        "change_highlights": change_highlights(visits),
        "confidence_trend": confidence_trend(visits),
        "comparison": visit_comparison(visits),
    }
