from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, Dict, List, Any
from datetime import datetime, date

from stage_normalizer import DementiaStage

class UserBase(BaseModel):
    username: str
    email: EmailStr
    full_name: Optional[str] = None

class UserCreate(UserBase):
    password: str = Field(..., min_length=8)

class UserResponse(UserBase):
    id: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True

class UserLogin(BaseModel):
    username: str
    password: str

class Token(BaseModel):
    access_token: str
    token_type: str

class TokenData(BaseModel):
    username: Optional[str] = None


# Profile Models
class ProfileResponse(BaseModel):
    id: int
    full_name: Optional[str] = None
    role: str
    created_at: datetime

    class Config:
        from_attributes = True


class ProfileUpdate(BaseModel):
    # Role is assigned by the system, not self-editable
    full_name: Optional[str] = None


# Patient Models
class PatientBase(BaseModel):
    name: str = Field(..., min_length=1)
    date_of_birth: date
    medical_record_number: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()

    @field_validator("medical_record_number")
    @classmethod
    def empty_mrn_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v


class PatientCreate(PatientBase):
    pass


class PatientUpdate(BaseModel):
    name: Optional[str] = None
    date_of_birth: Optional[date] = None
    medical_record_number: Optional[str] = None


class PatientResponse(PatientBase):
    id: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Visit Models
class VisitResponse(BaseModel):
    id: str
    patient_id: str
    timestamp: Optional[datetime] = None
    created_at: datetime
    raw_report: Dict[str, Any]
    predicted_class: Optional[DementiaStage] = None
    confidence: Optional[float] = None
    insights: Optional[str] = None
    needs_review: bool = False
    image_url: Optional[str] = None
    annotated_image_url: Optional[str] = None
    created_by: Optional[int] = None

    class Config:
        from_attributes = True


class RecentVisitResponse(VisitResponse):
    patient_name: Optional[str] = None


class IngestionResponse(BaseModel):
    success: bool
    isValid: bool
    visit: VisitResponse
    analysis: Optional[Dict[str, Any]] = None
    needsReview: bool = False


# Analytics Models
class StageCount(BaseModel):
    stage: DementiaStage
    count: int
    percentage: float


class ConfidenceAlert(BaseModel):
    alert: bool
    delta: Optional[float] = None
    latest: Optional[float] = None
    previous: Optional[float] = None
    message: Optional[str] = None


class ProgressionForecast(BaseModel):
    slope: float
    intercept: float
    current: int
    next_visit: float
    two_steps_ahead: float
    next_visit_raw: float
    two_steps_ahead_raw: float
    next_visit_stage: DementiaStage
    two_steps_ahead_stage: DementiaStage
    risk_of_worsening: float
    visits_used: int
    disclaimer: str


class ChangeHighlight(BaseModel):
    label: str
    delta: float


class TrendPoint(BaseModel):
    label: str
    date: Optional[datetime] = None
    confidence_percent: Optional[float] = None
    stage: Optional[DementiaStage] = None


class VisitComparison(BaseModel):
    latest: Optional[VisitResponse] = None
    previous: Optional[VisitResponse] = None
    stage_changed: bool = False
    confidence_delta: Optional[float] = None


class PatientInsights(BaseModel):
    patient_id: str
    visit_count: int
    stage_distribution: List[StageCount]
    confidence_alert: ConfidenceAlert
    forecast: Optional[ProgressionForecast] = None
    change_highlights: List[ChangeHighlight]
    confidence_trend: List[TrendPoint]
    comparison: VisitComparison


class MedicationClass(BaseModel):
    name: str
    examples: List[str] = []
    link: Optional[str] = None


class StageGuidanceResponse(BaseModel):
    patient_id: str
    stage: DementiaStage
    care_recommendations: List[str]
    medication_classes: List[MedicationClass]
    disclaimer: str


class DashboardResponse(BaseModel):
    total_patients: int
    total_visits: int
    average_confidence: Optional[float] = None
    recent_patients: List[PatientResponse]
    recent_visits: List[RecentVisitResponse]
    stage_distribution: List[StageCount]
