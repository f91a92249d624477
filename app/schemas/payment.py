from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from app.models.payment import PaymentMethod, PaymentProvider, PaymentStatus


class PaymentCreate(BaseModel):
    consultation_id: str
    amount_leone: int = Field(..., gt=0)
    payment_method: PaymentMethod
    phone_number: Optional[str] = Field(None, max_length=20)


class PaymentResponse(BaseModel):
    id: str
    consultation_id: str
    user_id: str
    amount_leone: int
    payment_method: PaymentMethod
    payment_provider: PaymentProvider
    payment_status: PaymentStatus
    transaction_id: Optional[str] = None
    payment_instructions: Optional[str] = None
    payment_link: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentInitiationResponse(BaseModel):
    payment: PaymentResponse
    message: str


class PaymentVerifyResponse(BaseModel):
    payment: PaymentResponse
    verified: bool
    gateway_status: PaymentStatus
    updated: bool


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class RefundResponse(BaseModel):
    payment: PaymentResponse
    refund_id: Optional[str] = None
    warning: Optional[str] = None
