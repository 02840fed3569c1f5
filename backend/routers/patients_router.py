"""
Patients Router

CRUD for patient records and the per-patient visit list. Every
authenticated clinician can see and edit every patient.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from pathlib import Path
from typing import List, Optional

from database import get_db, User, Patient, Visit
from auth import get_current_active_user
from config import UPLOAD_DIR
from exceptions import classify_storage_error
from models import PatientCreate, PatientUpdate, PatientResponse, VisitResponse
from structured_logging import get_logger

router = APIRouter(tags=["Patients"])
logger = get_logger(__name__)


def get_patient_or_404(db: Session, patient_id: str) -> Patient:
    patient = db.get(Patient, patient_id)
    if patient is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    return patient


def _remove_upload(image_url: Optional[str]):
    """Delete a stored image; only files under UPLOAD_DIR are touched."""
    if not image_url or not image_url.startswith("/uploads/"):
        return
    path = UPLOAD_DIR / Path(image_url).name
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove uploaded image", extra={"path": str(path), "error": str(e)})


def _commit_patient(db: Session):
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        error = classify_storage_error(e)
        if error.constraint == "unique":
            raise HTTPException(status_code=400, detail="Medical record number already exists")
        raise HTTPException(status_code=error.status_code, detail=str(error))


@router.post("/patients", response_model=PatientResponse, status_code=201)
def create_patient(
    patient: PatientCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Create a patient record."""
    db_patient = Patient(
        name=patient.name,
        date_of_birth=patient.date_of_birth,
        medical_record_number=patient.medical_record_number,
    )
    db.add(db_patient)
    _commit_patient(db)
    db.refresh(db_patient)

    logger.info("Patient created", extra={"patient_id": db_patient.id, "user_id": current_user.id})
    return db_patient


@router.get("/patients", response_model=List[PatientResponse])
def list_patients(
    search: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """List patients, newest first, optionally filtered by name or MRN."""
    query = db.query(Patient)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Patient.name.ilike(pattern),
            Patient.medical_record_number.ilike(pattern),
        ))
    return query.order_by(Patient.created_at.desc()).offset(skip).limit(limit).all()


@router.get("/patients/{patient_id}", response_model=PatientResponse)
def get_patient(
    patient_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Get one patient."""
    return get_patient_or_404(db, patient_id)


@router.put("/patients/{patient_id}", response_model=PatientResponse)
def update_patient(
    patient_id: str,
    update: PatientUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Partially update a patient."""
    patient = get_patient_or_404(db, patient_id)

    changes = update.model_dump(exclude_unset=True)
    if "name" in changes:
        if not changes["name"] or not changes["name"].strip():
            raise HTTPException(status_code=400, detail="Name must not be blank")
        changes["name"] = changes["name"].strip()
    if "date_of_birth" in changes and changes["date_of_birth"] is None:
        raise HTTPException(status_code=400, detail="Date of birth is required")
    if "medical_record_number" in changes:
        mrn = changes["medical_record_number"]
        changes["medical_record_number"] = mrn.strip() if mrn and mrn.strip() else None

    for field, value in changes.items():
        setattr(patient, field, value)

    _commit_patient(db)
    db.refresh(patient)
    return patient


@router.delete("/patients/{patient_id}")
def delete_patient(
    patient_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Delete a patient and all of their visits."""
    patient = get_patient_or_404(db, patient_id)
    image_urls = [
        url for (url,) in db.query(Visit.image_url).filter(Visit.patient_id == patient_id).all()
    ]
    visit_count = len(image_urls)
    db.delete(patient)
    db.commit()

    for url in image_urls:
        _remove_upload(url)

    logger.info(
        "Patient deleted",
        extra={"patient_id": patient_id, "visits_deleted": visit_count, "user_id": current_user.id},
    )
    return {"message": "Patient deleted", "id": patient_id, "visits_deleted": visit_count}


@router.get("/patients/{patient_id}/visits", response_model=List[VisitResponse])
def list_patient_visits(
    patient_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """A patient's visits, newest first."""
    get_patient_or_404(db, patient_id)
    return (
        db.query(Visit)
        .filter(Visit.patient_id == patient_id)
        .order_by(Visit.created_at.desc())
        .all()
    )
