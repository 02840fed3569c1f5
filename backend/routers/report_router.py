"""
Report Export Router

Endpoints for:
- Research CSV export of visits (optionally anonymized)
- JSON snapshot of one visit
- PDF reports for one visit or a patient's full history
"""

import io
import re
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session
from typing import Optional

from database import get_db, User, Visit
from auth import get_current_active_user
from dashboard_analytics import sort_visits
from report_exporter import visits_to_csv, visit_to_json, report_filename, MriReportGenerator
from routers.patients_router import get_patient_or_404

router = APIRouter(tags=["Reports"])


def _get_visit_or_404(db: Session, visit_id: str) -> Visit:
    visit = db.get(Visit, visit_id)
    if visit is None:
        raise HTTPException(status_code=404, detail="Visit not found")
    return visit


def attachment_header(filename: str) -> str:
    """
    Content-Disposition for a download. Header values must be latin-1, so
    the real name travels RFC 5987 encoded next to an ASCII fallback.
    """
    fallback = re.sub(r"[^A-Za-z0-9._-]", "_", filename)
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def _pdf_response(pdf_bytes: bytes, filename: str) -> StreamingResponse:
    return StreamingResponse(
        io.BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={"Content-Disposition": attachment_header(filename)}
    )


@router.get("/visits/export.csv")
def export_visits_csv(
    patient_id: Optional[str] = None,
    anonymized: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """CSV of visits for research; all patients unless patient_id is given."""
    query = db.query(Visit)
    if patient_id:
        get_patient_or_404(db, patient_id)
        query = query.filter(Visit.patient_id == patient_id)

    csv_text = visits_to_csv(query.all(), anonymized=anonymized)
    filename = "visits_anonymized.csv" if anonymized else "visits.csv"
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": attachment_header(filename)}
    )


@router.get("/visits/{visit_id}/export.json")
def export_visit_json(
    visit_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Pretty-printed JSON of the visit and its patient."""
    visit = _get_visit_or_404(db, visit_id)
    return Response(
        content=visit_to_json(visit, visit.patient),
        media_type="application/json",
        headers={"Content-Disposition": attachment_header(f"visit-{visit.id}.json")}
    )


@router.get("/visits/{visit_id}/report.pdf")
def export_visit_pdf(
    visit_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Single-page PDF report for one visit."""
    visit = _get_visit_or_404(db, visit_id)
    patient = visit.patient
    pdf = MriReportGenerator().generate(patient, [visit])
    return _pdf_response(pdf, report_filename(patient.name, visit.created_at))


@router.get("/patients/{patient_id}/report.pdf")
def export_patient_pdf(
    patient_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """PDF with one page per visit, oldest first."""
    patient = get_patient_or_404(db, patient_id)
    visits = sort_visits(patient.visits)
    scan_date = visits[-1].created_at if visits else None
    pdf = MriReportGenerator().generate(patient, visits)
    return _pdf_response(pdf, report_filename(patient.name, scan_date))
