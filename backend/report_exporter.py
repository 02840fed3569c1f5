"""
Report Exporter

Renders stored visits for download:
- CSV rows for research export (optionally anonymized)
- a pretty-printed JSON snapshot of one visit and its patient
- a PDF report, one page per visit

Nothing is computed here beyond formatting what the records already hold.
"""

import io
import json
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import (
    SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle, HRFlowable, PageBreak
)

from dashboard_analytics import sort_visits
from stage_normalizer import stage_label
from structured_logging import get_logger

logger = get_logger(__name__)

CSV_COLUMNS = ["date", "patient_id", "stage", "confidence", "insights_len"]
ANONYMIZED_CSV_COLUMNS = ["anon_id", "date", "stage", "confidence", "insights_len"]


# =============================================================================
# VALUE FORMATTING
# =============================================================================

def iso_utc(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 in UTC with millisecond precision, e.g. 2025-06-21T10:30:45.123Z.

    Naive datetimes are taken to be UTC already.
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _stage_value(stage) -> Optional[str]:
    if stage is None:
        return None
    return getattr(stage, "value", stage)


def _iso_date(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


# =============================================================================
# CSV
# =============================================================================

def _visit_row(visit) -> Dict[str, Any]:
    return {
        "date": iso_utc(visit.created_at) or "",
        "patient_id": visit.patient_id,
        "stage": _stage_value(visit.predicted_class) or "",
        "confidence": visit.confidence if visit.confidence is not None else "",
        "insights_len": len(visit.insights) if visit.insights else 0,
    }


def to_csv(rows: List[Dict[str, Any]], columns: Optional[List[str]] = None) -> str:
    """
    Header row of plain column names, then one line per row with every value
    JSON-encoded so embedded commas and quotes survive. Empty input gives "".
    """
    if not rows:
        return ""
    columns = columns or list(rows[0].keys())
    lines = [",".join(columns)]
    for row in rows:
        values = [row.get(col) if row.get(col) is not None else "" for col in columns]
        lines.append(",".join(json.dumps(v, ensure_ascii=False) for v in values))
    return "\n".join(lines)


def visits_to_csv(visits: Sequence[Any], anonymized: bool = False) -> str:
    """
    Research export of visits, oldest first.

    The anonymized form drops patient_id and labels each distinct patient
    P1, P2, ... in order of first appearance.
    """
    ordered = sort_visits(visits)
    if not anonymized:
        return to_csv([_visit_row(v) for v in ordered], CSV_COLUMNS)

    anon_ids: Dict[str, str] = {}
    rows = []
    for visit in ordered:
        if visit.patient_id not in anon_ids:
            anon_ids[visit.patient_id] = f"P{len(anon_ids) + 1}"
        row = _visit_row(visit)
        row.pop("patient_id")
        row["anon_id"] = anon_ids[visit.patient_id]
        rows.append(row)
    return to_csv(rows, ANONYMIZED_CSV_COLUMNS)


# =============================================================================
# JSON
# =============================================================================

def visit_snapshot(visit, patient) -> Dict[str, Any]:
    """Plain-data view of one visit and its patient."""
    return {
        "visit": {
            "id": visit.id,
            "patient_id": visit.patient_id,
            "created_at": iso_utc(visit.created_at),
            "timestamp": iso_utc(visit.timestamp),
            "predicted_class": _stage_value(visit.predicted_class),
            "confidence": visit.confidence,
            "insights": visit.insights,
            "needs_review": bool(visit.needs_review),
            "image_url": visit.image_url,
            "annotated_image_url": visit.annotated_image_url,
            "created_by": visit.created_by,
            "raw_report": visit.raw_report,
        },
        "patient": {
            "id": patient.id,
            "name": patient.name,
            "date_of_birth": _iso_date(patient.date_of_birth),
            "medical_record_number": patient.medical_record_number,
            "created_at": iso_utc(patient.created_at),
            "updated_at": iso_utc(patient.updated_at),
        } if patient is not None else None,
    }


def visit_to_json(visit, patient) -> str:
    """Pretty-printed, key-sorted JSON. Identical records give identical bytes."""
    return json.dumps(visit_snapshot(visit, patient), indent=2, sort_keys=True, ensure_ascii=False, default=str)


# =============================================================================
# PDF
# =============================================================================

def report_filename(patient_name: str, scan_date: Optional[datetime]) -> str:
    """mri-report-<name-with-dashes>-<YYYY-MM-DD>.pdf"""
    name = re.sub(r"\s+", "-", (patient_name or "patient").strip())
    day = (scan_date or datetime.utcnow()).strftime("%Y-%m-%d")
    return f"mri-report-{name}-{day}.pdf"


def _format_confidence(confidence: Optional[float]) -> str:
    # Zero confidence reads as N/A, matching the on-screen report
    if not confidence:
        return "N/A"
    return f"{confidence * 100:.1f}%"


class MriReportGenerator:
    """PDF reports built with reportlab platypus."""

    def __init__(self):
        styles = getSampleStyleSheet()
        self.styles = styles
        self.title_style = ParagraphStyle(
            'ReportTitle',
            parent=styles['Title'],
            fontSize=20,
            spaceAfter=4,
            textColor=colors.HexColor('#1a365d')
        )
        self.subtitle_style = ParagraphStyle(
            'ReportSubtitle',
            parent=styles['Normal'],
            fontSize=12,
            alignment=1,
            textColor=colors.HexColor('#555555'),
            spaceAfter=12
        )
        self.heading_style = ParagraphStyle(
            'ReportHeading',
            parent=styles['Heading2'],
            fontSize=14,
            spaceBefore=12,
            spaceAfter=6,
            textColor=colors.HexColor('#2c5282')
        )
        self.insights_style = ParagraphStyle(
            'Insights',
            parent=styles['Normal'],
            fontSize=10,
            leading=14,
            backColor=colors.HexColor('#f9f9f9'),
            borderPadding=6
        )
        self.footer_style = ParagraphStyle(
            'Footer',
            parent=styles['Normal'],
            fontSize=8,
            alignment=1,
            textColor=colors.HexColor('#777777')
        )

    def generate(self, patient, visits: Sequence[Any], generated_at: Optional[datetime] = None) -> bytes:
        """Render one page per visit, oldest first."""
        generated_at = generated_at or datetime.utcnow()
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=0.75*inch,
            leftMargin=0.75*inch,
            topMargin=0.75*inch,
            bottomMargin=0.75*inch,
            title="Mind Scan Report",
        )

        elements = []
        ordered = sort_visits(visits)
        for i, visit in enumerate(ordered):
            if i > 0:
                elements.append(PageBreak())
            elements.extend(self._visit_page(patient, visit, generated_at))

        if not elements:
            elements.append(Paragraph("Mind Scan Report", self.title_style))
            elements.append(Paragraph("No visits recorded for this patient.", self.styles['Normal']))

        doc.build(elements)
        pdf = buffer.getvalue()
        logger.info(
            "PDF report generated",
            extra={"patient_id": getattr(patient, "id", None), "pages": max(len(ordered), 1), "bytes": len(pdf)},
        )
        return pdf

    def _visit_page(self, patient, visit, generated_at: datetime) -> list:
        elements = [
            Paragraph("Mind Scan Report", self.title_style),
            Paragraph("MRI Analysis Results", self.subtitle_style),
            HRFlowable(width="100%", thickness=1, color=colors.HexColor('#eeeeee')),
        ]

        elements.append(Paragraph("Patient Information", self.heading_style))
        patient_rows = [
            ["Name:", patient.name or ""],
            ["DOB:", _iso_date(patient.date_of_birth) or ""],
        ]
        if patient.medical_record_number:
            patient_rows.append(["MRN:", patient.medical_record_number])
        elements.append(self._info_table(patient_rows))

        elements.append(Paragraph("Scan Details", self.heading_style))
        elements.append(self._info_table([
            ["Scan Date:", _iso_date(visit.created_at) or "Unknown"],
            ["Diagnosis:", stage_label(visit.predicted_class)],
            ["Confidence:", _format_confidence(visit.confidence)],
        ]))

        if visit.insights:
            elements.append(Paragraph("Analysis Insights", self.heading_style))
            elements.append(Paragraph(escape(visit.insights).replace("\n", "<br/>"), self.insights_style))

        elements.append(Spacer(1, 0.4*inch))
        elements.append(Paragraph(
            f"This report was generated on {generated_at.strftime('%Y-%m-%d %H:%M')} UTC.",
            self.footer_style
        ))
        elements.append(Paragraph("Mind Scan Analysis Platform. All rights reserved.", self.footer_style))
        return elements

    def _info_table(self, rows: List[List[str]]) -> Table:
        table = Table(rows, colWidths=[1.3*inch, 4.9*inch])
        table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
        ]))
        return table
