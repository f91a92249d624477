from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional

from app.core.database import get_db
from app.core.security import require_role
from app.schemas.payment import (
    PaymentCreate,
    PaymentInitiationResponse,
    PaymentResponse,
    PaymentVerifyResponse,
)
from app.models.user import User, UserRole
from app.models.payment import PaymentStatus
from app.services.payment_gateway import PaymentGatewayService, get_payment_gateway
from app.services.payment_service import PaymentService

router = APIRouter()


@router.get("/", response_model=List[PaymentResponse])
async def list_payments(
    consultation_id: Optional[str] = None,
    payment_status: Optional[PaymentStatus] = None,
    skip: int = 0,
    limit: int = 20,
    current_user: User = Depends(require_role(UserRole.PATIENT, UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    """List payments"""
    return PaymentService.list_payments(
        db=db,
        user=current_user,
        consultation_id=consultation_id,
        payment_status=payment_status,
        skip=skip,
        limit=limit
    )


@router.post("/", response_model=PaymentInitiationResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    request: PaymentCreate,
    current_user: User = Depends(require_role(UserRole.PATIENT, UserRole.ADMIN)),
    db: Session = Depends(get_db),
    gateway: PaymentGatewayService = Depends(get_payment_gateway)
):
    """Initiate (or retry) the payment for a consultation"""
    payment, response = await PaymentService.initiate_payment(
        db=db,
        user=current_user,
        consultation_id=request.consultation_id,
        amount_leone=request.amount_leone,
        payment_method=request.payment_method,
        gateway=gateway,
        phone_number=request.phone_number
    )
    return {"payment": payment, "message": response.message}


@router.get("/{payment_id}/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    payment_id: str,
    current_user: User = Depends(require_role(UserRole.PATIENT, UserRole.ADMIN)),
    db: Session = Depends(get_db),
    gateway: PaymentGatewayService = Depends(get_payment_gateway)
):
    """Poll the gateway for the payment's current status"""
    return await PaymentService.verify_payment(db, current_user, payment_id, gateway)
