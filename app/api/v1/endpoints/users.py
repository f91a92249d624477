from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.exceptions import ValidationError
from app.core.security import get_current_user
from app.schemas.user import UserResponse, UserUpdate
from app.models.user import User
from app.utils.phone import normalize_phone_number

router = APIRouter()


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return current_user


@router.patch("/me", response_model=UserResponse)
async def update_current_user(
    user_update: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update contact details used for notifications"""
    if user_update.email and user_update.email != current_user.email:
        taken = db.query(User).filter(User.email == user_update.email, User.id != current_user.id).first()
        if taken:
            raise ValidationError("Email is already in use")
        current_user.email = user_update.email
    if user_update.full_name:
        current_user.full_name = user_update.full_name.strip()
    if user_update.phone_number:
        current_user.phone_number = normalize_phone_number(user_update.phone_number)

    db.commit()
    db.refresh(current_user)

    return current_user
