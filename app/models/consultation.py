from sqlalchemy import Column, String, Boolean, Date, DateTime, Integer, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum

from app.core.database import Base


class ConsultationStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_ADMIN_REVIEW = "pending_admin_review"
    ASSIGNED = "assigned"
    CONFIRMED = "confirmed"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ConsultationType(str, enum.Enum):
    VIDEO = "video"
    VOICE = "voice"
    SMS = "sms"


class ConsultationCategory(str, enum.Enum):
    MATERNAL_HEALTH = "maternal_health"
    REPRODUCTIVE_HEALTH = "reproductive_health"
    GENERAL_INQUIRY = "general_inquiry"
    CHILDCARE = "childcare"
    NUTRITION = "nutrition"
    OTHER = "other"


class Consultation(Base):
    __tablename__ = "consultations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    # Null until an admin assigns a provider
    provider_id = Column(String, ForeignKey("healthcare_providers.id"), nullable=True, index=True)

    consultation_type = Column(SQLEnum(ConsultationType), nullable=False)
    consultation_category = Column(SQLEnum(ConsultationCategory), nullable=True)
    status = Column(
        SQLEnum(ConsultationStatus),
        nullable=False,
        default=ConsultationStatus.DRAFT,
        index=True
    )

    # Patient hints, only meaningful before assignment
    preferred_date = Column(Date, nullable=True)
    preferred_time_range = Column(String(50), nullable=True)

    scheduled_at = Column(DateTime, nullable=True, index=True)
    duration_minutes = Column(Integer, nullable=True)
    cost_leone = Column(Integer, nullable=False)

    reason_for_consultation = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    consent_acknowledged = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    patient = relationship("User", back_populates="consultations")
    provider = relationship("HealthcareProvider", back_populates="consultations")
    payments = relationship("Payment", back_populates="consultation")
