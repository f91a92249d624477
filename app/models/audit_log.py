from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid

from app.core.database import Base


class AuditLog(Base):
    """Append-only trail of consultation and payment changes"""
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    # Null when the system acted (webhook, reconciliation, scheduled jobs)
    user_id = Column(String, ForeignKey("users.id"), nullable=True)
    source = Column(String(30), nullable=False, default="api", index=True)

    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String, nullable=True)

    # {"from": ..., "to": ...} for status changes, free-form otherwise
    changes = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    actor = relationship("User", back_populates="audit_logs")
