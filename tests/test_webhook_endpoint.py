from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.core.config import get_settings
from app.models.consultation import ConsultationStatus
from app.models.payment import PaymentStatus
from tests.conftest import make_consultation, make_payment, sign, webhook_body

URL = "/api/v1/webhooks/flutterwave"
SECRET = "endpoint-secret"


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr(get_settings(), "FLUTTERWAVE_WEBHOOK_SECRET", SECRET)
    return SECRET


@pytest.fixture
def pending_payment(db, patient, provider):
    consultation = make_consultation(
        db, patient,
        status=ConsultationStatus.CONFIRMED,
        provider=provider,
        scheduled_at=datetime.utcnow() + timedelta(days=2),
    )
    return make_payment(db, consultation, "HC-endpoint-1")


def test_bad_signature_is_401(client, db, webhook_secret, pending_payment):
    response = client.post(URL, content=webhook_body("HC-endpoint-1"), headers={"verif-hash": "bad"})

    assert response.status_code == 401
    db.refresh(pending_payment)
    assert pending_payment.payment_status == PaymentStatus.PENDING


def test_completed_charge_is_acknowledged(client, db, notifier, webhook_secret, pending_payment):
    body = webhook_body("HC-endpoint-1")

    response = client.post(URL, content=body, headers={"verif-hash": sign(body, SECRET)})

    assert response.status_code == 200
    assert response.json() == {"message": "Webhook processed successfully", "status": "success"}
    db.refresh(pending_payment)
    assert pending_payment.payment_status == PaymentStatus.COMPLETED
    assert pending_payment.consultation.status == ConsultationStatus.SCHEDULED
    assert len(notifier.called("payment_confirmation")) == 1


@pytest.mark.parametrize(
    "body, expected",
    [
        (webhook_body("HC-endpoint-1", event="charge.pending"), "ignored"),
        (webhook_body("HC-nobody"), "not_found"),
    ],
)
def test_non_actionable_webhooks_still_return_200(client, webhook_secret, pending_payment, body, expected):
    response = client.post(URL, content=body, headers={"verif-hash": sign(body, SECRET)})

    assert response.status_code == 200
    assert response.json()["status"] == expected


def test_database_failure_is_500(client, webhook_secret, pending_payment):
    body = webhook_body("HC-endpoint-1")

    with patch(
        "app.services.webhook_service.PaymentService.apply_gateway_status",
        side_effect=OperationalError("UPDATE payments", {}, Exception("database is locked")),
    ):
        response = client.post(URL, content=body, headers={"verif-hash": sign(body, SECRET)})

    assert response.status_code == 500


def test_health_check(client, webhook_secret):
    response = client.get(URL)

    assert response.status_code == 200
    assert response.json()["signature_verification"] is True
