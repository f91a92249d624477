from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from datetime import date, datetime, timezone

from app.models.consultation import ConsultationCategory, ConsultationStatus, ConsultationType
from app.models.payment import PaymentMethod
from app.schemas.payment import PaymentResponse


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC"""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ConsultationCreate(BaseModel):
    consultation_type: ConsultationType
    consultation_category: Optional[ConsultationCategory] = None
    preferred_date: Optional[date] = None
    preferred_time_range: Optional[str] = Field(None, max_length=50)
    reason_for_consultation: Optional[str] = Field(None, max_length=2000)
    consent_acknowledged: bool = False

    # Profile details captured on the booking form
    patient_name: Optional[str] = Field(None, max_length=255)
    patient_phone: Optional[str] = Field(None, max_length=20)

    # Admin booking on behalf of a patient
    patient_id: Optional[str] = None

    # Optional payment leg
    payment_method: Optional[PaymentMethod] = None
    payment_phone: Optional[str] = Field(None, max_length=20)


class ConsultationAssign(BaseModel):
    provider_id: str
    scheduled_at: Optional[datetime] = None
    cost_leone: Optional[int] = Field(None, gt=0)

    normalize_scheduled_at = field_validator("scheduled_at")(to_naive_utc)


class ConsultationConfirm(BaseModel):
    confirmed: bool = True
    provider_id: Optional[str] = None


class ConsultationUpdate(BaseModel):
    """Admin/doctor update; ``status`` stays a plain string so unknown values reach the workflow rules"""
    status: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=5000)

    normalize_scheduled_at = field_validator("scheduled_at")(to_naive_utc)


class ConsultationCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class ProviderSummary(BaseModel):
    id: str
    full_name: str
    specialty: Optional[str] = None

    class Config:
        from_attributes = True


class ConsultationResponse(BaseModel):
    id: str
    user_id: str
    provider_id: Optional[str] = None
    consultation_type: ConsultationType
    consultation_category: Optional[ConsultationCategory] = None
    status: ConsultationStatus
    preferred_date: Optional[date] = None
    preferred_time_range: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    cost_leone: int
    reason_for_consultation: Optional[str] = None
    notes: Optional[str] = None
    consent_acknowledged: bool
    created_at: datetime
    updated_at: Optional[datetime] = None
    provider: Optional[ProviderSummary] = None

    class Config:
        from_attributes = True


class ConsultationDetail(ConsultationResponse):
    allowed_next_statuses: List[ConsultationStatus] = []


class BookingResponse(BaseModel):
    consultation: ConsultationResponse
    payment: Optional[PaymentResponse] = None
    payment_message: Optional[str] = None
