import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from app.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    PaymentAmountMismatchError,
    PaymentGatewayError,
    ValidationError,
)
from app.models.consultation import Consultation
from app.models.payment import Payment, PaymentMethod, PaymentProvider, PaymentStatus
from app.models.user import User, UserRole
from app.services.audit_service import AuditService
from app.services.payment_gateway import PaymentGatewayService, PaymentRequest, PaymentResponse
from app.services.status_transitions import is_terminal

logger = logging.getLogger(__name__)


class PaymentService:
    @staticmethod
    def get_payment(db: Session, payment_id: str) -> Payment:
        payment = db.query(Payment).filter(Payment.id == payment_id).first()
        if not payment:
            raise NotFoundError("Payment not found", details={"payment_id": payment_id})
        return payment

    @staticmethod
    def get_payment_for_user(db: Session, payment_id: str, user: User) -> Payment:
        payment = PaymentService.get_payment(db, payment_id)
        if user.role != UserRole.ADMIN and payment.user_id != user.id:
            raise AuthorizationError("You do not have access to this payment")
        return payment

    @staticmethod
    def list_payments(
        db: Session,
        user: User,
        consultation_id: Optional[str] = None,
        payment_status: Optional[PaymentStatus] = None,
        skip: int = 0,
        limit: int = 20
    ):
        """List payments"""
        query = db.query(Payment)

        # Patients only see their own payments
        if user.role != UserRole.ADMIN:
            query = query.filter(Payment.user_id == user.id)

        if consultation_id:
            query = query.filter(Payment.consultation_id == consultation_id)
        if payment_status:
            query = query.filter(Payment.payment_status == payment_status)

        return query.order_by(Payment.created_at.desc()).offset(skip).limit(limit).all()

    @staticmethod
    async def initiate_payment(
        db: Session,
        user: User,
        consultation_id: str,
        amount_leone: int,
        payment_method: PaymentMethod,
        gateway: PaymentGatewayService,
        phone_number: Optional[str] = None
    ) -> Tuple[Payment, PaymentResponse]:
        """Start a payment for a consultation and persist the pending row.

        The amount is checked against the consultation cost once, here; later
        drift is only surfaced by reconciliation.
        """
        consultation = db.query(Consultation).filter(Consultation.id == consultation_id).first()
        if not consultation:
            raise NotFoundError("Consultation not found", details={"consultation_id": consultation_id})

        if user.role != UserRole.ADMIN and consultation.user_id != user.id:
            raise AuthorizationError("You can only pay for your own consultations")

        if is_terminal(consultation.status):
            raise ValidationError(f"Cannot pay for a {consultation.status.value} consultation")

        if amount_leone != consultation.cost_leone:
            raise PaymentAmountMismatchError(
                details={"expected": consultation.cost_leone, "received": amount_leone}
            )

        already_paid = db.query(Payment).filter(
            Payment.consultation_id == consultation.id,
            Payment.payment_status == PaymentStatus.COMPLETED
        ).first()
        if already_paid:
            raise ValidationError("Consultation is already paid", details={"payment_id": already_paid.id})

        patient = consultation.patient
        response = await gateway.initiate(
            PaymentRequest(
                amount=amount_leone,
                payment_method=payment_method,
                consultation_id=consultation.id,
                user_id=patient.id,
                phone_number=phone_number or patient.phone_number,
                email=patient.email,
                customer_name=patient.full_name,
            )
        )

        if not response.success:
            raise PaymentGatewayError(response.message, details={"consultation_id": consultation.id})

        payment = Payment(
            consultation_id=consultation.id,
            user_id=patient.id,
            amount_leone=amount_leone,
            payment_method=payment_method,
            payment_provider=response.provider,
            payment_status=response.status,
            transaction_id=response.reference or response.transaction_id,
            gateway_transaction_id=response.transaction_id,
            payment_instructions=response.payment_instructions,
            payment_link=response.payment_link
        )
        db.add(payment)
        db.flush()

        AuditService.log_action(
            db=db,
            user_id=user.id,
            action="payment_initiated",
            entity_type="payment",
            entity_id=payment.id,
            changes={
                "consultation_id": consultation.id,
                "amount_leone": amount_leone,
                "payment_method": payment_method.value,
                "transaction_id": payment.transaction_id,
            },
            commit=False
        )
        db.commit()
        db.refresh(payment)

        logger.info(f"Payment {payment.id} initiated for consultation {consultation.id} ({payment.transaction_id})")
        return payment, response

    @staticmethod
    def apply_gateway_status(
        db: Session,
        payment: Payment,
        new_status: PaymentStatus,
        source: str,
        gateway_transaction_id: Optional[str] = None
    ) -> bool:
        """Write a provider-derived status onto the payment; returns whether it changed.

        Refunded payments are never overwritten. Does not commit.
        """
        if payment.payment_status == PaymentStatus.REFUNDED:
            logger.info(f"Payment {payment.id} is refunded, ignoring {source} status {new_status.value}")
            return False
        if payment.payment_status == new_status:
            return False

        old_status = payment.payment_status
        payment.payment_status = new_status
        if gateway_transaction_id and not payment.gateway_transaction_id:
            payment.gateway_transaction_id = gateway_transaction_id

        AuditService.log_status_change(
            db=db,
            entity_type="payment",
            entity_id=payment.id,
            old_status=old_status,
            new_status=new_status,
            source=source
        )
        return True

    @staticmethod
    async def verify_payment(db: Session, user: User, payment_id: str, gateway: PaymentGatewayService):
        """Poll the provider and apply a settled status to the local row"""
        payment = PaymentService.get_payment_for_user(db, payment_id, user)

        verification = await gateway.verify(payment.transaction_id, payment.payment_method)
        changed = False
        if verification.verified and verification.status != PaymentStatus.PENDING:
            changed = PaymentService.apply_gateway_status(
                db, payment, verification.status, source="verify",
                gateway_transaction_id=verification.transaction_id
            )
            if changed:
                db.commit()
                db.refresh(payment)

        return {
            "payment": payment,
            "verified": verification.verified,
            "gateway_status": verification.status,
            "updated": changed,
        }

    @staticmethod
    async def refund_payment(
        db: Session,
        admin: User,
        payment_id: str,
        gateway: PaymentGatewayService,
        reason: Optional[str] = None
    ):
        """Refund a completed payment (admin only)"""
        payment = PaymentService.get_payment(db, payment_id)

        if payment.payment_status != PaymentStatus.COMPLETED:
            raise ValidationError(
                f"Only completed payments can be refunded (current status: {payment.payment_status.value})"
            )

        payment.payment_status = PaymentStatus.REFUNDED
        db.flush()

        warning = None
        refund_id = None
        if payment.payment_provider == PaymentProvider.FLUTTERWAVE and payment.gateway_transaction_id:
            result = await gateway.refund(payment.gateway_transaction_id, payment.amount_leone)
            if not result.success:
                db.rollback()
                logger.error(f"Gateway refund failed for payment {payment.id}: {result.message}")
                raise PaymentGatewayError(
                    f"Refund failed: {result.message}",
                    details={"payment_id": payment.id}
                )
            refund_id = result.refund_id
        else:
            warning = "Refund recorded locally only; settle it with the patient manually."
            logger.warning(f"Payment {payment.id} ({payment.payment_provider.value}) refunded without gateway call")

        AuditService.log_action(
            db=db,
            user_id=admin.id,
            action="payment_refunded",
            entity_type="payment",
            entity_id=payment.id,
            changes={
                "amount_leone": payment.amount_leone,
                "reason": reason,
                "refund_id": refund_id,
            },
            commit=False
        )
        db.commit()
        db.refresh(payment)

        return {"payment": payment, "refund_id": refund_id, "warning": warning}
