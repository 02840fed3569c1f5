"""
Visits Router

MRI upload and classification, plus read access to stored visits.
Visits are immutable: there is no update endpoint.
"""

from fastapi import APIRouter, Depends, HTTPException, File, UploadFile, Form, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from database import get_db, User, Visit, Patient
from auth import get_current_active_user
from classifier_client import ClassifierClient, get_classifier_client
from config import RECENT_WINDOW
from exceptions import MindScanError
from models import VisitResponse, RecentVisitResponse, IngestionResponse
from visit_ingestion import VisitIngestionHandler

router = APIRouter(tags=["Visits"])


@router.post("/process-mri", response_model=IngestionResponse)
async def process_mri(
    file: Optional[UploadFile] = File(None),
    patientId: Optional[str] = Form(None),
    patient_id: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    classifier: ClassifierClient = Depends(get_classifier_client),
    current_user: User = Depends(get_current_active_user)
):
    """
    Classify an uploaded MRI image and record the visit.

    Non-MRI images are recorded too and answered with isValid=false.
    """
    image_bytes = await file.read() if file is not None else None
    handler = VisitIngestionHandler(db, classifier)

    try:
        result = await handler.ingest(
            caller=current_user,
            patient_id=patientId or patient_id,
            image_bytes=image_bytes,
            filename=file.filename if file is not None else None,
            content_type=file.content_type if file is not None else None,
        )
    except MindScanError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return IngestionResponse(
        success=result["success"],
        isValid=result["isValid"],
        visit=VisitResponse.model_validate(result["visit"]),
        analysis=result["analysis"],
        needsReview=result["needsReview"],
    )


@router.get("/visits/recent", response_model=List[RecentVisitResponse])
def recent_visits(
    limit: int = Query(RECENT_WINDOW, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Latest visits across all patients, with the patient's name."""
    rows = (
        db.query(Visit, Patient.name)
        .join(Patient, Visit.patient_id == Patient.id)
        .order_by(Visit.created_at.desc())
        .limit(limit)
        .all()
    )
    return [
        RecentVisitResponse(**VisitResponse.model_validate(visit).model_dump(), patient_name=name)
        for visit, name in rows
    ]


@router.get("/visits/{visit_id}", response_model=VisitResponse)
def get_visit(
    visit_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Get one visit."""
    visit = db.get(Visit, visit_id)
    if visit is None:
        raise HTTPException(status_code=404, detail="Visit not found")
    return visit
