"""
Stage Guidance

Stage-tailored, non-prescriptive care recommendations and medication-class
information links for the patient's latest visit.
"""

from typing import Any, Dict, List, Optional

from stage_normalizer import DementiaStage

GUIDANCE_DISCLAIMER = "General information only. Not a prescription or a substitute for clinical judgement."

CARE_RECOMMENDATIONS: Dict[DementiaStage, List[str]] = {
    DementiaStage.NORMAL: [
        "Maintain Mediterranean-style nutrition rich in fruits, vegetables, whole grains.",
        "Engage in regular aerobic exercise (150 min/week) and resistance training.",
        "Cognitive activities: puzzles, reading, language learning, social engagement.",
    ],
    DementiaStage.VERY_MILD_DEMENTIA: [
        "Establish routines and use memory aids (journals, phone reminders).",
        "Structured physical activity; consider supervised exercise programs.",
        "Sleep hygiene and stress reduction (CBT, mindfulness).",
    ],
    DementiaStage.MILD_DEMENTIA: [
        "Occupational therapy for ADLs; simplify home environment and labels.",
        "Caregiver support resources; consider community programs.",
        "Discuss driving safety and home safety assessments.",
    ],
    DementiaStage.MODERATE_DEMENTIA: [
        "Advance care planning; safety and fall-risk mitigation.",
        "Caregiver respite support; plan medication administration schedules.",
        "Evaluate need for home health aids or assisted living services.",
    ],
}

DEFAULT_MEDICATION_CLASSES = [
    {
        "name": "Cholinesterase inhibitors",
        "examples": ["Donepezil", "Rivastigmine"],
        "link": "https://dailymed.nlm.nih.gov/dailymed/search.cfm?labeltype=all&query=cholinesterase%20inhibitor",
    },
    {
        "name": "NMDA receptor antagonist",
        "examples": ["Memantine"],
        "link": "https://dailymed.nlm.nih.gov/dailymed/search.cfm?labeltype=all&query=memantine",
    },
    {
        "name": "Sleep/Behavioral support (non-prescriptive)",
        "examples": ["Melatonin", "Sleep hygiene"],
        "link": "https://www.cdc.gov/sleep",
    },
]


def _medications_from_report(raw_report: Any) -> Optional[List[Dict[str, Any]]]:
    """Use the classifier's own med_recommendations when it sent a usable list."""
    if not isinstance(raw_report, dict):
        return None
    meds = raw_report.get("med_recommendations")
    if not isinstance(meds, list):
        return None
    usable = []
    for med in meds:
        if isinstance(med, dict) and isinstance(med.get("name"), str):
            examples = med.get("examples") or []
            usable.append({
                "name": med["name"],
                "examples": [str(e) for e in examples] if isinstance(examples, list) else [],
                "link": med.get("link") if isinstance(med.get("link"), str) else None,
            })
    return usable or None


def guidance_for(latest_visit) -> Dict[str, Any]:
    """
    Guidance for the latest visit's stage; Normal when there is no visit
    or the visit has no stage.
    """
    stage = DementiaStage.NORMAL
    raw_report = None
    if latest_visit is not None:
        raw_report = latest_visit.raw_report
        if latest_visit.predicted_class is not None:
            stage = DementiaStage(latest_visit.predicted_class)

    return {
        "stage": stage,
        "care_recommendations": list(CARE_RECOMMENDATIONS[stage]),
        "medication_classes": _medications_from_report(raw_report) or [dict(m) for m in DEFAULT_MEDICATION_CLASSES],
        "disclaimer": GUIDANCE_DISCLAIMER,
    }
