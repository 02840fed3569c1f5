"""
Visit Ingestion

Turns one uploaded image into one stored visit:

    caller check -> input check -> classifier -> normalize -> insert

Non-MRI uploads are stored too, with a null stage and the classifier's own
MRI confidence, so every attempt that reached the classifier is on record.
Each call inserts at most one row; any failure leaves nothing behind.
"""

import asyncio
import contextvars
import functools
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from classifier_client import ClassifierClient, MriResult, parse_detection
from config import UPLOAD_DIR, MAX_UPLOAD_SIZE, PERSONALIZE_INSIGHTS
from confidence_extractor import clamp_confidence, extract_confidence
from database import Patient, User, Visit
from exceptions import MappingFailure, Unauthenticated, ValidationError, classify_storage_error
from stage_normalizer import normalize_stage
from structured_logging import get_logger, log_database_query

logger = get_logger(__name__)

ALLOWED_SUFFIXES = {".jpg", ".jpeg", ".png", ".bmp", ".gif", ".tif", ".tiff", ".webp", ".dcm"}


class VisitIngestionHandler:
    """Per-request ingestion; the session and classifier are passed in, never shared."""

    def __init__(
        self,
        db: Session,
        classifier: ClassifierClient,
        upload_dir: Path = UPLOAD_DIR,
        personalize_insights: bool = PERSONALIZE_INSIGHTS,
        max_upload_size: int = MAX_UPLOAD_SIZE,
    ):
        self.db = db
        self.classifier = classifier
        self.upload_dir = Path(upload_dir)
        self.personalize_insights = personalize_insights
        self.max_upload_size = max_upload_size

    async def ingest(
        self,
        caller: Optional[User],
        patient_id: Optional[str],
        image_bytes: Optional[bytes],
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Classify an image and store the visit.

        Returns:
            {"success", "isValid", "visit", "analysis", "needsReview"} where
            "visit" is the stored Visit row

        Raises:
            Unauthenticated, ValidationError, UpstreamError,
            MalformedUpstreamResponse, StorageError
        """
        if caller is None:
            raise Unauthenticated("No authorization header")
        if not image_bytes:
            raise ValidationError("No file provided")
        patient_id = (patient_id or "").strip()
        if not patient_id:
            raise ValidationError("No patient ID provided")
        if len(image_bytes) > self.max_upload_size:
            raise ValidationError(
                f"File too large: {len(image_bytes)} bytes (limit {self.max_upload_size})"
            )

        filename = filename or "scan.jpg"
        logger.info(
            "Processing MRI upload",
            extra={"patient_id": patient_id, "upload_bytes": len(image_bytes), "user_id": caller.id},
        )

        payload = await self.classifier.detect(image_bytes, filename, content_type or "image/jpeg")
        result = parse_detection(payload)

        annotated_image_url = None
        needs_review = False

        if isinstance(result, MriResult):
            analysis = result.dementiaAnalysis
            stage = normalize_stage(analysis.predicted_class)
            if stage is None:
                needs_review = True
                failure = MappingFailure(analysis.predicted_class)
                logger.warning(
                    str(failure),
                    extra={"patient_id": patient_id, "raw_label": analysis.predicted_class, "needs_review": True},
                )

            if analysis.confidences is not None:
                confidence = extract_confidence(analysis.confidences)
            else:
                confidence = clamp_confidence(analysis.confidence)

            insights = analysis.insights
            personalize = bool(insights) and self.personalize_insights

            url = analysis.annotated_image_url
            if url and url.startswith(("http://", "https://")):
                annotated_image_url = url

            is_valid = True
            analysis_out = payload.get("dementiaAnalysis")
        else:
            stage = None
            confidence = clamp_confidence(result.mriConfidence)
            message = result.message or "no message from classifier"
            insights = f"Not a valid brain MRI scan: {message}"
            personalize = False
            is_valid = False
            analysis_out = None

        # File and database work block; keep it off the event loop
        loop = asyncio.get_event_loop()
        visit = await loop.run_in_executor(None, functools.partial(
            contextvars.copy_context().run,
            self._save_visit,
            caller=caller,
            patient_id=patient_id,
            payload=payload,
            image_bytes=image_bytes,
            filename=filename,
            stage=stage,
            confidence=confidence,
            insights=insights,
            personalize=personalize,
            needs_review=needs_review,
            annotated_image_url=annotated_image_url,
        ))

        logger.info(
            "Visit saved",
            extra={
                "visit_id": visit.id,
                "patient_id": patient_id,
                "is_valid": is_valid,
                "predicted_class": stage.value if stage else None,
                "confidence": confidence,
            },
        )

        return {
            "success": True,
            "isValid": is_valid,
            "visit": visit,
            "analysis": analysis_out,
            "needsReview": needs_review,
        }

    def _save_visit(
        self,
        caller: User,
        patient_id: str,
        payload: Dict[str, Any],
        image_bytes: bytes,
        filename: str,
        stage,
        confidence: Optional[float],
        insights: Optional[str],
        personalize: bool,
        needs_review: bool,
        annotated_image_url: Optional[str],
    ) -> Visit:
        """Write the image and insert the row. Blocking; runs on a worker thread."""
        if personalize:
            patient = self.db.get(Patient, patient_id)
            if patient is not None:
                insights = f"{patient.name}: {insights}"

        stored_path = self._store_image(image_bytes, filename)

        visit = Visit(
            patient_id=patient_id,
            raw_report=payload,
            predicted_class=stage,
            confidence=confidence,
            insights=insights,
            needs_review=needs_review,
            image_url=f"/uploads/{stored_path.name}",
            annotated_image_url=annotated_image_url,
            created_by=caller.id,
        )

        start_time = time.time()
        try:
            self.db.add(visit)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            stored_path.unlink(missing_ok=True)
            error = classify_storage_error(e)
            log_database_query(
                operation="insert",
                table="visits",
                duration_ms=(time.time() - start_time) * 1000,
                error=error.message,
                constraint=error.constraint,
                patient_id=patient_id,
            )
            raise error from e

        self.db.refresh(visit)
        return visit

    def _store_image(self, image_bytes: bytes, filename: str) -> Path:
        suffix = Path(filename).suffix.lower()
        if suffix not in ALLOWED_SUFFIXES:
            suffix = ".bin"
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        path = self.upload_dir / f"{uuid.uuid4().hex}{suffix}"
        path.write_bytes(image_bytes)
        return path
