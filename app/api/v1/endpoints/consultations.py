from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional

from app.core.database import get_db
from app.core.security import get_current_user, require_role
from app.schemas.consultation import (
    BookingResponse,
    ConsultationCancel,
    ConsultationConfirm,
    ConsultationCreate,
    ConsultationDetail,
    ConsultationResponse,
)
from app.models.consultation import ConsultationStatus
from app.models.user import User, UserRole
from app.services.consultation_service import ConsultationService
from app.services.notification_service import NotificationDispatcher, get_notification_dispatcher
from app.services.payment_gateway import PaymentGatewayService, get_payment_gateway

router = APIRouter()


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def book_consultation(
    request: ConsultationCreate,
    current_user: User = Depends(require_role(UserRole.PATIENT, UserRole.ADMIN)),
    db: Session = Depends(get_db),
    gateway: PaymentGatewayService = Depends(get_payment_gateway)
):
    """Request a consultation, optionally starting its payment"""
    return await ConsultationService.book(db=db, user=current_user, data=request, gateway=gateway)


@router.get("/", response_model=List[ConsultationResponse])
async def list_consultations(
    status: Optional[ConsultationStatus] = None,
    skip: int = 0,
    limit: int = 20,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List consultations visible to the caller"""
    return ConsultationService.list_consultations(
        db=db,
        user=current_user,
        status=status,
        skip=skip,
        limit=limit
    )


@router.get("/{consultation_id}", response_model=ConsultationDetail)
async def get_consultation(
    consultation_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    consultation = ConsultationService.get_for_user(db, consultation_id, current_user)
    return ConsultationService.with_next_statuses(consultation, current_user)


@router.patch("/{consultation_id}/confirm", response_model=ConsultationResponse)
async def confirm_consultation(
    consultation_id: str,
    request: ConsultationConfirm,
    current_user: User = Depends(require_role(UserRole.PATIENT)),
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher)
):
    """Accept the assigned provider (or switch to another available one)"""
    return await ConsultationService.confirm(
        db=db,
        patient=current_user,
        consultation_id=consultation_id,
        data=request,
        notifier=notifier
    )


@router.post("/{consultation_id}/cancel", response_model=ConsultationResponse)
async def cancel_consultation(
    consultation_id: str,
    request: ConsultationCancel,
    current_user: User = Depends(require_role(UserRole.PATIENT)),
    db: Session = Depends(get_db)
):
    return ConsultationService.cancel(db, current_user, consultation_id, reason=request.reason)
