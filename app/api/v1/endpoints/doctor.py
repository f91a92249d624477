from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.security import require_role
from app.schemas.consultation import ConsultationResponse, ConsultationUpdate
from app.models.user import User, UserRole
from app.services.consultation_service import ConsultationService

router = APIRouter()


@router.patch("/consultations/{consultation_id}", response_model=ConsultationResponse)
async def update_consultation(
    consultation_id: str,
    request: ConsultationUpdate,
    current_user: User = Depends(require_role(UserRole.DOCTOR)),
    db: Session = Depends(get_db)
):
    """Schedule, start, complete or annotate one of the doctor's consultations"""
    return ConsultationService.update_as_doctor(db, current_user, consultation_id, request)
