from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.security import require_role
from app.schemas.consultation import ConsultationAssign, ConsultationResponse, ConsultationUpdate
from app.schemas.payment import RefundRequest, RefundResponse
from app.models.user import User, UserRole
from app.services.consultation_service import ConsultationService
from app.services.notification_service import NotificationDispatcher, get_notification_dispatcher
from app.services.payment_gateway import PaymentGatewayService, get_payment_gateway
from app.services.payment_service import PaymentService

router = APIRouter()


@router.post("/consultations/{consultation_id}/assign", response_model=ConsultationResponse)
async def assign_provider(
    consultation_id: str,
    request: ConsultationAssign,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher)
):
    """Assign an available provider to a consultation awaiting review"""
    return await ConsultationService.assign_provider(
        db=db,
        admin=current_user,
        consultation_id=consultation_id,
        data=request,
        notifier=notifier
    )


@router.patch("/consultations/{consultation_id}", response_model=ConsultationResponse)
async def update_consultation(
    consultation_id: str,
    request: ConsultationUpdate,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    """Reschedule, cancel or move a consultation along the workflow (admin only)"""
    return ConsultationService.update_as_admin(db, current_user, consultation_id, request)


@router.delete("/consultations/{consultation_id}", response_model=ConsultationResponse)
async def cancel_consultation(
    consultation_id: str,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    """Cancel a consultation (admin only); consultations are never deleted"""
    return ConsultationService.cancel(db, current_user, consultation_id)


@router.post("/payments/{payment_id}/refund", response_model=RefundResponse)
async def refund_payment(
    payment_id: str,
    request: RefundRequest,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db),
    gateway: PaymentGatewayService = Depends(get_payment_gateway)
):
    return await PaymentService.refund_payment(
        db=db,
        admin=current_user,
        payment_id=payment_id,
        gateway=gateway,
        reason=request.reason
    )
