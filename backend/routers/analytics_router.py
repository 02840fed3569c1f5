"""
Analytics Router

Endpoints for:
- Per-patient insights (stage distribution, confidence alert, forecast,
  change highlights, confidence trend, latest-vs-previous comparison)
- Stage-tailored guidance for the latest visit
- Clinic dashboard (totals, recent patients and visits, stage distribution)

All views are recomputed from stored visits on every call.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db, User, Patient, Visit
from auth import get_current_active_user
from config import CONFIDENCE_ALERT_THRESHOLD, RECENT_WINDOW
from dashboard_analytics import patient_insights, stage_distribution, average_confidence, sort_visits
from models import (
    PatientInsights, StageGuidanceResponse, DashboardResponse,
    PatientResponse, VisitResponse, RecentVisitResponse
)
from routers.patients_router import get_patient_or_404
from stage_guidance import guidance_for

router = APIRouter(tags=["Analytics"])


@router.get("/patients/{patient_id}/insights", response_model=PatientInsights)
def get_patient_insights(
    patient_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Dashboard analytics for one patient."""
    patient = get_patient_or_404(db, patient_id)
    bundle = patient_insights(patient.id, list(patient.visits), CONFIDENCE_ALERT_THRESHOLD)
    return PatientInsights.model_validate(bundle, from_attributes=True)


@router.get("/patients/{patient_id}/guidance", response_model=StageGuidanceResponse)
def get_stage_guidance(
    patient_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Non-prescriptive care and medication-class guidance for the latest stage."""
    patient = get_patient_or_404(db, patient_id)
    visits = sort_visits(patient.visits)
    latest = visits[-1] if visits else None
    return StageGuidanceResponse(patient_id=patient.id, **guidance_for(latest))


@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Clinic-wide overview."""
    visits = db.query(Visit).all()

    recent_patients = (
        db.query(Patient)
        .order_by(Patient.created_at.desc())
        .limit(RECENT_WINDOW)
        .all()
    )
    recent_rows = (
        db.query(Visit, Patient.name)
        .join(Patient, Visit.patient_id == Patient.id)
        .order_by(Visit.created_at.desc())
        .limit(RECENT_WINDOW)
        .all()
    )

    return DashboardResponse(
        total_patients=db.query(Patient).count(),
        total_visits=len(visits),
        average_confidence=average_confidence(visits),
        recent_patients=[PatientResponse.model_validate(p) for p in recent_patients],
        recent_visits=[
            RecentVisitResponse(**VisitResponse.model_validate(v).model_dump(), patient_name=name)
            for v, name in recent_rows
        ],
        stage_distribution=stage_distribution(visits),
    )
