import logging
from datetime import datetime, time
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import AppException, AuthorizationError, NotFoundError, ValidationError
from app.models.consultation import Consultation, ConsultationStatus
from app.models.provider import HealthcareProvider
from app.models.user import User, UserRole
from app.schemas.consultation import (
    ConsultationAssign,
    ConsultationConfirm,
    ConsultationCreate,
    ConsultationUpdate,
)
from app.services.audit_service import AuditService
from app.services.notification_service import NotificationDispatcher, notify_safely
from app.services.payment_gateway import PaymentGatewayService
from app.services.payment_service import PaymentService
from app.services.status_transitions import (
    ConsultationAction,
    get_valid_next_statuses,
    raise_for_result,
    validate_role_permission,
    validate_status_transition,
)
from app.utils.phone import normalize_phone_number

logger = logging.getLogger(__name__)

PAYMENT_RETRY_MESSAGE = (
    "Consultation created, but payment setup failed. "
    "You can retry the payment from your consultations page."
)

# Statuses a consultation may hold while provider_id is null
UNASSIGNED_STATUSES = {
    ConsultationStatus.DRAFT.value,
    ConsultationStatus.PENDING_ADMIN_REVIEW.value,
    ConsultationStatus.CANCELLED.value,
}


def _preferred_datetime(consultation: Consultation) -> Optional[datetime]:
    if consultation.preferred_date:
        return datetime.combine(consultation.preferred_date, time.min)
    return None


class ConsultationService:
    @staticmethod
    def get_consultation(db: Session, consultation_id: str) -> Consultation:
        consultation = db.query(Consultation).filter(Consultation.id == consultation_id).first()
        if not consultation:
            raise NotFoundError("Consultation not found", details={"consultation_id": consultation_id})
        return consultation

    @staticmethod
    def get_for_user(db: Session, consultation_id: str, user: User) -> Consultation:
        """Load a consultation the caller is allowed to see"""
        consultation = ConsultationService.get_consultation(db, consultation_id)

        if user.role == UserRole.ADMIN:
            return consultation
        if user.role == UserRole.PATIENT and consultation.user_id == user.id:
            return consultation
        if user.role == UserRole.DOCTOR and consultation.provider and consultation.provider.user_id == user.id:
            return consultation

        raise AuthorizationError("You do not have access to this consultation")

    @staticmethod
    def list_consultations(
        db: Session,
        user: User,
        status: Optional[ConsultationStatus] = None,
        skip: int = 0,
        limit: int = 20
    ):
        """List consultations visible to the caller"""
        query = db.query(Consultation)

        if user.role == UserRole.PATIENT:
            query = query.filter(Consultation.user_id == user.id)
        elif user.role == UserRole.DOCTOR:
            query = query.join(HealthcareProvider, Consultation.provider_id == HealthcareProvider.id).filter(
                HealthcareProvider.user_id == user.id
            )

        if status:
            query = query.filter(Consultation.status == status)

        return query.order_by(Consultation.created_at.desc()).offset(skip).limit(limit).all()

    @staticmethod
    def with_next_statuses(consultation: Consultation, user: User) -> Consultation:
        consultation.allowed_next_statuses = get_valid_next_statuses(consultation.status, user.role)
        return consultation

    @staticmethod
    def transition(
        db: Session,
        consultation: Consultation,
        target,
        user: User,
        source: str = "api"
    ) -> bool:
        """Move the consultation along a workflow edge; returns whether the status changed.

        Every status write goes through here. Does not commit.
        """
        result = validate_status_transition(consultation.status, target, user.role)
        raise_for_result(
            result,
            details={
                "consultation_id": consultation.id,
                "current_status": consultation.status.value,
                "target_status": getattr(target, "value", target),
            }
        )

        target = ConsultationStatus(target)
        if consultation.status == target:
            return False

        if target == ConsultationStatus.SCHEDULED and consultation.scheduled_at is None:
            raise ValidationError(
                "scheduled_at is required to schedule a consultation",
                details={"consultation_id": consultation.id}
            )

        old_status = consultation.status
        consultation.status = target
        AuditService.log_status_change(
            db=db,
            entity_type="consultation",
            entity_id=consultation.id,
            old_status=old_status,
            new_status=target,
            user_id=user.id,
            source=source
        )
        return True

    @staticmethod
    def schedule_after_payment(db: Session, consultation: Consultation, source: str = "webhook") -> bool:
        """Fast-forward a paid consultation to ``scheduled`` when the workflow allows it.

        Runs as the system acting with admin rights. Never raises for business
        rules: a consultation that cannot be scheduled yet is left alone.
        """
        if consultation.status == ConsultationStatus.SCHEDULED:
            return False

        result = validate_status_transition(consultation.status, ConsultationStatus.SCHEDULED, UserRole.ADMIN)
        if not result.valid:
            logger.info(f"Consultation {consultation.id} not advanced after payment: {result.error}")
            return False

        if consultation.scheduled_at is None:
            consultation.scheduled_at = _preferred_datetime(consultation)
            if consultation.scheduled_at is None:
                logger.warning(f"Consultation {consultation.id} paid but has no date to schedule on")
                return False

        old_status = consultation.status
        consultation.status = ConsultationStatus.SCHEDULED
        AuditService.log_status_change(
            db=db,
            entity_type="consultation",
            entity_id=consultation.id,
            old_status=old_status,
            new_status=ConsultationStatus.SCHEDULED,
            source=source
        )
        return True

    @staticmethod
    def create_request(db: Session, user: User, data: ConsultationCreate) -> Consultation:
        """Create a consultation request, submitted straight to admin review"""
        if not data.consent_acknowledged:
            raise ValidationError("Consent must be acknowledged before booking a consultation")

        patient = user
        if data.patient_id and data.patient_id != user.id:
            if user.role != UserRole.ADMIN:
                raise AuthorizationError("Only admins can book on behalf of another patient")
            patient = db.query(User).filter(User.id == data.patient_id, User.role == UserRole.PATIENT).first()
            if not patient:
                raise NotFoundError("Patient not found", details={"patient_id": data.patient_id})

        if data.patient_phone:
            patient.phone_number = normalize_phone_number(data.patient_phone)
        if data.patient_name:
            patient.full_name = data.patient_name.strip()

        pricing = get_settings().CONSULTATION_PRICING
        consultation = Consultation(
            user_id=patient.id,
            consultation_type=data.consultation_type,
            consultation_category=data.consultation_category,
            status=ConsultationStatus.DRAFT,
            preferred_date=data.preferred_date,
            preferred_time_range=data.preferred_time_range,
            reason_for_consultation=data.reason_for_consultation,
            consent_acknowledged=data.consent_acknowledged,
            cost_leone=pricing[data.consultation_type.value]
        )
        db.add(consultation)
        db.flush()

        ConsultationService.transition(db, consultation, ConsultationStatus.PENDING_ADMIN_REVIEW, user)
        db.commit()
        db.refresh(consultation)

        logger.info(f"Consultation {consultation.id} requested by {user.role.value} {user.id}")
        return consultation

    @staticmethod
    async def book(
        db: Session,
        user: User,
        data: ConsultationCreate,
        gateway: PaymentGatewayService
    ):
        """Create the consultation, then attempt the payment leg on its own.

        A failed payment never undoes the booking; the caller gets the
        consultation back with ``payment`` set to ``None`` and a retry message.
        """
        consultation = ConsultationService.create_request(db, user, data)

        if data.payment_method is None:
            return {"consultation": consultation, "payment": None, "payment_message": None}

        try:
            payment, response = await PaymentService.initiate_payment(
                db=db,
                user=user,
                consultation_id=consultation.id,
                amount_leone=consultation.cost_leone,
                payment_method=data.payment_method,
                gateway=gateway,
                phone_number=data.payment_phone
            )
        except AppException as e:
            db.rollback()
            logger.warning(f"Payment setup failed for consultation {consultation.id}: {e.message}")
            return {"consultation": consultation, "payment": None, "payment_message": PAYMENT_RETRY_MESSAGE}

        return {"consultation": consultation, "payment": payment, "payment_message": response.message}

    @staticmethod
    async def assign_provider(
        db: Session,
        admin: User,
        consultation_id: str,
        data: ConsultationAssign,
        notifier: NotificationDispatcher
    ) -> Consultation:
        consultation = ConsultationService.get_consultation(db, consultation_id)

        raise_for_result(
            validate_role_permission(consultation.status, admin.role, ConsultationAction.ASSIGN_PROVIDER)
        )

        provider = db.query(HealthcareProvider).filter(HealthcareProvider.id == data.provider_id).first()
        if not provider:
            raise NotFoundError("Healthcare provider not found", details={"provider_id": data.provider_id})
        if not provider.is_available:
            raise ValidationError("Healthcare provider is not available", details={"provider_id": provider.id})

        ConsultationService.transition(db, consultation, ConsultationStatus.ASSIGNED, admin)

        consultation.provider_id = provider.id
        consultation.scheduled_at = data.scheduled_at or consultation.scheduled_at or _preferred_datetime(consultation)
        if data.cost_leone is not None:
            consultation.cost_leone = data.cost_leone

        AuditService.log_action(
            db=db,
            user_id=admin.id,
            action="consultation_assigned",
            entity_type="consultation",
            entity_id=consultation.id,
            changes={
                "provider_id": provider.id,
                "scheduled_at": consultation.scheduled_at.isoformat() if consultation.scheduled_at else None,
                "cost_leone": consultation.cost_leone,
            },
            commit=False
        )
        db.commit()
        db.refresh(consultation)

        await notify_safely(
            notifier.notify_patient_assignment(db, consultation.id, consultation.user_id),
            "patient assignment"
        )
        return consultation

    @staticmethod
    async def confirm(
        db: Session,
        patient: User,
        consultation_id: str,
        data: ConsultationConfirm,
        notifier: NotificationDispatcher
    ) -> Consultation:
        """Patient accepts the assigned provider, optionally switching to another"""
        consultation = ConsultationService.get_consultation(db, consultation_id)
        if consultation.user_id != patient.id:
            raise AuthorizationError("You can only confirm your own consultations")

        raise_for_result(
            validate_role_permission(consultation.status, patient.role, ConsultationAction.CONFIRM)
        )

        if data.provider_id and data.provider_id != consultation.provider_id:
            provider = db.query(HealthcareProvider).filter(HealthcareProvider.id == data.provider_id).first()
            if not provider or not provider.is_available:
                raise ValidationError("Selected provider is not available", details={"provider_id": data.provider_id})
            consultation.provider_id = provider.id

        changed = False
        if data.confirmed:
            changed = ConsultationService.transition(db, consultation, ConsultationStatus.CONFIRMED, patient)

        db.commit()
        db.refresh(consultation)

        if changed:
            await notify_safely(
                notifier.notify_provider_booking(db, consultation.id, consultation.provider_id),
                "provider booking"
            )
            await notify_safely(
                notifier.notify_patient_acceptance(db, consultation.id, consultation.user_id),
                "patient acceptance"
            )
        return consultation

    @staticmethod
    def _apply_update(db: Session, consultation: Consultation, user: User, data: ConsultationUpdate) -> Consultation:
        current = consultation.status

        # Attribute permissions are judged against the status before any transition
        if data.notes:
            raise_for_result(validate_role_permission(current, user.role, ConsultationAction.UPDATE_NOTES))
        if data.duration_minutes is not None:
            raise_for_result(validate_role_permission(current, user.role, ConsultationAction.UPDATE_DURATION))
        if data.scheduled_at is not None and data.scheduled_at != consultation.scheduled_at:
            raise_for_result(validate_role_permission(current, user.role, ConsultationAction.RESCHEDULE))

        if data.status is not None:
            # Fail on a bad edge before touching any attribute
            raise_for_result(
                validate_status_transition(current, data.status, user.role),
                details={"consultation_id": consultation.id, "current_status": current.value}
            )
            if consultation.provider_id is None and data.status not in UNASSIGNED_STATUSES:
                if data.status == ConsultationStatus.ASSIGNED.value:
                    message = "Use the assign endpoint to attach a provider to this consultation"
                else:
                    message = "A provider must be assigned before this consultation can move on"
                raise ValidationError(
                    message,
                    details={"consultation_id": consultation.id, "target_status": data.status}
                )
            if data.status == ConsultationStatus.SCHEDULED.value and (data.scheduled_at or consultation.scheduled_at) is None:
                raise ValidationError(
                    "scheduled_at is required to schedule a consultation",
                    details={"consultation_id": consultation.id}
                )

        if data.scheduled_at is not None:
            consultation.scheduled_at = data.scheduled_at
        if data.duration_minutes is not None:
            consultation.duration_minutes = data.duration_minutes
        if data.notes:
            consultation.notes = f"{consultation.notes}\n\n{data.notes}" if consultation.notes else data.notes

        if data.status is not None:
            ConsultationService.transition(db, consultation, data.status, user)

        db.commit()
        db.refresh(consultation)
        return consultation

    @staticmethod
    def update_as_admin(db: Session, admin: User, consultation_id: str, data: ConsultationUpdate) -> Consultation:
        consultation = ConsultationService.get_consultation(db, consultation_id)
        return ConsultationService._apply_update(db, consultation, admin, data)

    @staticmethod
    def update_as_doctor(db: Session, doctor: User, consultation_id: str, data: ConsultationUpdate) -> Consultation:
        consultation = ConsultationService.get_consultation(db, consultation_id)
        provider = doctor.provider_profile
        if not provider or consultation.provider_id != provider.id:
            raise AuthorizationError("This consultation is not assigned to you")
        return ConsultationService._apply_update(db, consultation, doctor, data)

    @staticmethod
    def cancel(db: Session, user: User, consultation_id: str, reason: Optional[str] = None) -> Consultation:
        """Cancel on behalf of the patient who owns it or an admin"""
        if user.role == UserRole.ADMIN:
            consultation = ConsultationService.get_consultation(db, consultation_id)
        else:
            consultation = ConsultationService.get_for_user(db, consultation_id, user)

        if consultation.status == ConsultationStatus.CANCELLED:
            return consultation

        raise_for_result(validate_role_permission(consultation.status, user.role, ConsultationAction.CANCEL))
        changed = ConsultationService.transition(db, consultation, ConsultationStatus.CANCELLED, user)

        if changed and reason:
            AuditService.log_action(
                db=db,
                user_id=user.id,
                action="consultation_cancelled",
                entity_type="consultation",
                entity_id=consultation.id,
                changes={"reason": reason},
                commit=False
            )
        db.commit()
        db.refresh(consultation)
        return consultation
