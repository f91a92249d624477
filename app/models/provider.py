from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Numeric
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid

from app.core.database import Base


class HealthcareProvider(Base):
    __tablename__ = "healthcare_providers"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    # Doctor account behind the directory listing
    user_id = Column(String, ForeignKey("users.id"), unique=True, nullable=True)

    full_name = Column(String(255), nullable=False)
    specialty = Column(String(100), nullable=True)
    languages = Column(String(255), nullable=True)
    rating = Column(Numeric(3, 2), nullable=True)

    is_available = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="provider_profile")
    consultations = relationship("Consultation", back_populates="provider")
