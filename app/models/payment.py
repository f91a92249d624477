from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum

from app.core.database import Base


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    ORANGE_MONEY = "orange_money"
    AFRICELL_MONEY = "africell_money"
    QMONEY = "qmoney"
    MTN_MONEY = "mtn_money"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"


MOBILE_MONEY_METHODS = {
    PaymentMethod.ORANGE_MONEY,
    PaymentMethod.AFRICELL_MONEY,
    PaymentMethod.QMONEY,
    PaymentMethod.MTN_MONEY,
}


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentProvider(str, enum.Enum):
    FLUTTERWAVE = "flutterwave"
    MANUAL = "manual"
    MOCK = "mock"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    consultation_id = Column(String, ForeignKey("consultations.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    amount_leone = Column(Integer, nullable=False)
    payment_method = Column(SQLEnum(PaymentMethod), nullable=False)
    payment_provider = Column(SQLEnum(PaymentProvider), nullable=False, default=PaymentProvider.FLUTTERWAVE)
    payment_status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)

    # Provider reference (tx_ref), join key for webhooks and reconciliation
    transaction_id = Column(String(255), unique=True, nullable=True, index=True)
    gateway_transaction_id = Column(String(255), nullable=True)

    payment_instructions = Column(Text, nullable=True)
    payment_link = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    consultation = relationship("Consultation", back_populates="payments")
    user = relationship("User")
