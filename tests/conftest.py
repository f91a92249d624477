"""
Shared pytest fixtures.

Every test gets a fresh in-memory SQLite database built from the ORM metadata,
a recording notifier instead of SMS/email, and a payment gateway running in
mock mode unless a test wires its own ``httpx.MockTransport``.
"""

import hashlib
import hmac
import json
import os
from datetime import datetime
from typing import List, Optional

# Must be set before the application settings are first loaded
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import Settings
from app.core.database import Base, get_db
from app.core.security import create_access_token
from app.main import app
from app.models import (
    Consultation,
    ConsultationStatus,
    ConsultationType,
    HealthcareProvider,
    Payment,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
    User,
    UserRole,
)
from app.services.notification_service import get_notification_dispatcher
from app.services.payment_gateway import GatewayCallError, GatewayTransaction, PaymentGatewayService, get_payment_gateway


# ============================================================================
# DATABASE
# ============================================================================


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


# ============================================================================
# COLLABORATOR FAKES
# ============================================================================


class RecordingNotifier:
    """Stands in for the notification dispatcher and records every call."""

    def __init__(self, result: bool = True, raise_error: Optional[Exception] = None):
        self.result = result
        self.raise_error = raise_error
        self.calls: List[tuple] = []

    async def _record(self, name: str, *args) -> bool:
        self.calls.append((name,) + args)
        if self.raise_error is not None:
            raise self.raise_error
        return self.result

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def notify_payment_confirmation(self, db, consultation_id, patient_id, amount):
        return await self._record("payment_confirmation", consultation_id, patient_id, amount)

    async def notify_consultation_reminder(self, db, consultation_id, user_id, recipient_type):
        return await self._record("reminder", consultation_id, user_id, recipient_type)

    async def notify_patient_assignment(self, db, consultation_id, patient_id):
        return await self._record("patient_assignment", consultation_id, patient_id)

    async def notify_provider_booking(self, db, consultation_id, provider_id):
        return await self._record("provider_booking", consultation_id, provider_id)

    async def notify_patient_acceptance(self, db, consultation_id, patient_id):
        return await self._record("patient_acceptance", consultation_id, patient_id)


class StubLedgerGateway:
    """Gateway double for reconciliation: serves a fixed transaction list."""

    def __init__(self, transactions: Optional[List[GatewayTransaction]] = None, error: Optional[str] = None):
        self.transactions = transactions or []
        self.error = error
        self.requested_window = None

    async def list_transactions(self, start, end):
        self.requested_window = (start, end)
        if self.error:
            raise GatewayCallError(self.error)
        return self.transactions


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def mock_gateway():
    return PaymentGatewayService(settings=Settings(ENVIRONMENT="test", ENABLE_MOCK_PAYMENTS=True))


@pytest.fixture
def live_settings():
    """Settings with Flutterwave keys so the adapter talks HTTP"""
    return Settings(
        ENVIRONMENT="test",
        ENABLE_MOCK_PAYMENTS=False,
        FLUTTERWAVE_PUBLIC_KEY="FLWPUBK_TEST-x",
        FLUTTERWAVE_SECRET_KEY="FLWSECK_TEST-x",
        FLUTTERWAVE_BASE_URL="https://flw.test/v3",
        GATEWAY_TIMEOUT_SECONDS=2.0,
    )


# ============================================================================
# DATA
# ============================================================================


@pytest.fixture
def patient(db):
    user = User(full_name="Aminata Kamara", email="aminata@example.com", phone_number="+23276123456", role=UserRole.PATIENT)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin(db):
    user = User(full_name="Admin User", email="admin@example.com", role=UserRole.ADMIN)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def doctor(db):
    user = User(full_name="Dr. Mohamed Sesay", email="sesay@example.com", phone_number="+23277000111", role=UserRole.DOCTOR)
    db.add(user)
    db.flush()
    db.add(HealthcareProvider(user_id=user.id, full_name="Dr. Mohamed Sesay", specialty="General Practice"))
    db.commit()
    return user


@pytest.fixture
def provider(doctor):
    return doctor.provider_profile


@pytest.fixture
def unavailable_provider(db):
    provider = HealthcareProvider(full_name="Dr. Off Duty", is_available=False)
    db.add(provider)
    db.commit()
    return provider


def make_consultation(
    db,
    patient,
    status=ConsultationStatus.PENDING_ADMIN_REVIEW,
    provider=None,
    scheduled_at=None,
    cost_leone=15000,
    consultation_type=ConsultationType.VIDEO,
    preferred_date=None
):
    consultation = Consultation(
        user_id=patient.id,
        provider_id=provider.id if provider else None,
        consultation_type=consultation_type,
        status=status,
        scheduled_at=scheduled_at,
        preferred_date=preferred_date,
        cost_leone=cost_leone,
        consent_acknowledged=True,
    )
    db.add(consultation)
    db.commit()
    return consultation


def make_payment(
    db,
    consultation,
    transaction_id,
    status=PaymentStatus.PENDING,
    amount_leone=None,
    provider=PaymentProvider.FLUTTERWAVE,
    method=PaymentMethod.ORANGE_MONEY,
    created_at=None
):
    payment = Payment(
        consultation_id=consultation.id,
        user_id=consultation.user_id,
        amount_leone=consultation.cost_leone if amount_leone is None else amount_leone,
        payment_method=method,
        payment_provider=provider,
        payment_status=status,
        transaction_id=transaction_id,
        gateway_transaction_id=f"FLW-{transaction_id}",
        created_at=created_at or datetime.utcnow(),
    )
    db.add(payment)
    db.commit()
    return payment


def auth_headers(user) -> dict:
    token = create_access_token({"sub": user.id, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def webhook_body(tx_ref: str, status: str = "successful", event: str = "charge.completed", amount: int = 15000) -> bytes:
    return json.dumps(
        {
            "event": event,
            "data": {"id": 987654, "tx_ref": tx_ref, "status": status, "amount": amount, "currency": "SLL"},
        }
    ).encode()


# ============================================================================
# HTTP CLIENT
# ============================================================================


@pytest.fixture
def client(db, notifier, mock_gateway):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_dispatcher] = lambda: notifier
    app.dependency_overrides[get_payment_gateway] = lambda: mock_gateway

    yield TestClient(app)

    app.dependency_overrides.clear()
