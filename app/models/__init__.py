from app.models.user import User, UserRole
from app.models.provider import HealthcareProvider
from app.models.consultation import Consultation, ConsultationStatus, ConsultationType, ConsultationCategory
from app.models.payment import Payment, PaymentMethod, PaymentStatus, PaymentProvider
from app.models.audit_log import AuditLog

__all__ = [
    "User",
    "UserRole",
    "HealthcareProvider",
    "Consultation",
    "ConsultationStatus",
    "ConsultationType",
    "ConsultationCategory",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "PaymentProvider",
    "AuditLog",
]
