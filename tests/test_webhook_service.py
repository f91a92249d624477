import json
from datetime import date, datetime, timedelta

import pytest

from app.core.config import Settings
from app.models.audit_log import AuditLog
from app.models.consultation import ConsultationStatus
from app.models.payment import PaymentStatus
from app.services.webhook_service import WebhookOutcome, process_webhook, verify_signature
from tests.conftest import RecordingNotifier, make_consultation, make_payment, sign, webhook_body

SECRET = "whsec-test"


@pytest.fixture
def signed_settings():
    return Settings(ENVIRONMENT="test", FLUTTERWAVE_WEBHOOK_SECRET=SECRET)


@pytest.fixture
def confirmed_booking(db, patient, provider):
    consultation = make_consultation(
        db, patient,
        status=ConsultationStatus.CONFIRMED,
        provider=provider,
        scheduled_at=datetime.utcnow() + timedelta(days=1),
    )
    payment = make_payment(db, consultation, "HC-1-1700000000000")
    return consultation, payment


class TestSignature:
    def test_valid_signature(self, signed_settings):
        body = b'{"event":"charge.completed"}'
        assert verify_signature(body, sign(body, SECRET), signed_settings)

    def test_prefixed_signature(self, signed_settings):
        body = b'{"event":"charge.completed"}'
        assert verify_signature(body, "sha256=" + sign(body, SECRET), signed_settings)

    def test_wrong_or_missing_signature(self, signed_settings):
        body = b'{"event":"charge.completed"}'
        assert not verify_signature(body, sign(body, "other-secret"), signed_settings)
        assert not verify_signature(body, None, signed_settings)
        assert not verify_signature(body, "not-hex-é", signed_settings)

    def test_tampered_body(self, signed_settings):
        signature = sign(b'{"amount":1}', SECRET)
        assert not verify_signature(b'{"amount":100000}', signature, signed_settings)

    def test_missing_secret_allowed_outside_production(self):
        assert verify_signature(b"{}", None, Settings(ENVIRONMENT="development"))

    def test_missing_secret_rejected_in_production(self):
        assert not verify_signature(b"{}", None, Settings(ENVIRONMENT="production"))


class TestProcessWebhook:
    @pytest.mark.asyncio
    async def test_bad_signature_never_mutates(self, db, confirmed_booking, notifier, signed_settings):
        consultation, payment = confirmed_booking
        body = webhook_body(payment.transaction_id)

        result = await process_webhook(db, body, "deadbeef", notifier, signed_settings)

        assert result.outcome == WebhookOutcome.REJECTED
        assert not result.acknowledged
        db.refresh(payment)
        db.refresh(consultation)
        assert payment.payment_status == PaymentStatus.PENDING
        assert consultation.status == ConsultationStatus.CONFIRMED
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_completed_charge_updates_payment_and_schedules(self, db, confirmed_booking, notifier, signed_settings):
        consultation, payment = confirmed_booking
        body = webhook_body(payment.transaction_id)

        result = await process_webhook(db, body, sign(body, SECRET), notifier, signed_settings)

        assert result.outcome == WebhookOutcome.PROCESSED
        assert result.to_response() == {"message": "Webhook processed successfully", "status": "success"}
        db.refresh(payment)
        db.refresh(consultation)
        assert payment.payment_status == PaymentStatus.COMPLETED
        assert consultation.status == ConsultationStatus.SCHEDULED
        assert notifier.called("payment_confirmation") == [
            ("payment_confirmation", consultation.id, payment.user_id, 15000)
        ]

    @pytest.mark.asyncio
    async def test_same_webhook_twice_is_idempotent(self, db, confirmed_booking, notifier, signed_settings):
        consultation, payment = confirmed_booking
        body = webhook_body(payment.transaction_id)

        first = await process_webhook(db, body, sign(body, SECRET), notifier, signed_settings)
        second = await process_webhook(db, body, sign(body, SECRET), notifier, signed_settings)

        assert first.status_changed and not second.status_changed
        assert second.outcome == WebhookOutcome.PROCESSED
        db.refresh(payment)
        db.refresh(consultation)
        assert payment.payment_status == PaymentStatus.COMPLETED
        assert consultation.status == ConsultationStatus.SCHEDULED
        assert len(notifier.called("payment_confirmation")) == 1
        payment_changes = db.query(AuditLog).filter(
            AuditLog.entity_id == payment.id, AuditLog.action == "payment_status_changed"
        ).count()
        assert payment_changes == 1

    @pytest.mark.asyncio
    async def test_failed_charge_does_not_cascade(self, db, confirmed_booking, notifier, signed_settings):
        consultation, payment = confirmed_booking
        body = webhook_body(payment.transaction_id, status="failed")

        result = await process_webhook(db, body, sign(body, SECRET), notifier, signed_settings)

        assert result.outcome == WebhookOutcome.PROCESSED
        db.refresh(payment)
        db.refresh(consultation)
        assert payment.payment_status == PaymentStatus.FAILED
        assert consultation.status == ConsultationStatus.CONFIRMED
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_unhandled_event_is_ignored(self, db, confirmed_booking, notifier, signed_settings):
        _, payment = confirmed_booking
        body = webhook_body(payment.transaction_id, event="transfer.completed")

        result = await process_webhook(db, body, sign(body, SECRET), notifier, signed_settings)

        assert result.outcome == WebhookOutcome.IGNORED
        assert result.acknowledged
        db.refresh(payment)
        assert payment.payment_status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_malformed_body_is_ignored(self, db, notifier, signed_settings):
        body = b"not json"
        result = await process_webhook(db, body, sign(body, SECRET), notifier, signed_settings)
        assert result.outcome == WebhookOutcome.IGNORED

    @pytest.mark.asyncio
    async def test_flw_ref_is_used_when_tx_ref_is_absent(self, db, confirmed_booking, notifier, signed_settings):
        consultation, payment = confirmed_booking
        body = json.dumps({
            "event": "charge.completed",
            "data": {"id": 987654, "flw_ref": payment.transaction_id, "status": "successful", "amount": 15000},
        }).encode()

        result = await process_webhook(db, body, sign(body, SECRET), notifier, signed_settings)

        assert result.outcome == WebhookOutcome.PROCESSED
        db.refresh(payment)
        assert payment.payment_status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_payload_without_any_reference_is_ignored(self, db, notifier, signed_settings):
        body = json.dumps({"event": "charge.completed", "data": {"id": 1, "status": "successful"}}).encode()

        result = await process_webhook(db, body, sign(body, SECRET), notifier, signed_settings)

        assert result.outcome == WebhookOutcome.IGNORED
        assert result.acknowledged

    @pytest.mark.asyncio
    async def test_unknown_reference_is_not_found(self, db, notifier, signed_settings):
        body = webhook_body("HC-unknown-1")

        result = await process_webhook(db, body, sign(body, SECRET), notifier, signed_settings)

        assert result.outcome == WebhookOutcome.NOT_FOUND
        assert result.to_response()["status"] == "not_found"
        assert result.acknowledged

    @pytest.mark.asyncio
    async def test_refunded_payment_is_not_reopened(self, db, confirmed_booking, notifier, signed_settings):
        _, payment = confirmed_booking
        payment.payment_status = PaymentStatus.REFUNDED
        db.commit()
        body = webhook_body(payment.transaction_id)

        await process_webhook(db, body, sign(body, SECRET), notifier, signed_settings)

        db.refresh(payment)
        assert payment.payment_status == PaymentStatus.REFUNDED
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_consultation_under_review_keeps_its_status(self, db, patient, notifier, signed_settings):
        consultation = make_consultation(db, patient, status=ConsultationStatus.PENDING_ADMIN_REVIEW)
        payment = make_payment(db, consultation, "HC-2-1700000000000")
        body = webhook_body(payment.transaction_id)

        result = await process_webhook(db, body, sign(body, SECRET), notifier, signed_settings)

        assert result.outcome == WebhookOutcome.PROCESSED
        db.refresh(payment)
        db.refresh(consultation)
        assert payment.payment_status == PaymentStatus.COMPLETED
        assert consultation.status == ConsultationStatus.PENDING_ADMIN_REVIEW
        assert consultation.provider_id is None

    @pytest.mark.asyncio
    async def test_schedule_falls_back_to_preferred_date(self, db, patient, provider, notifier, signed_settings):
        consultation = make_consultation(
            db, patient,
            status=ConsultationStatus.CONFIRMED,
            provider=provider,
            preferred_date=date(2026, 11, 2),
        )
        payment = make_payment(db, consultation, "HC-3-1700000000000")
        body = webhook_body(payment.transaction_id)

        await process_webhook(db, body, sign(body, SECRET), notifier, signed_settings)

        db.refresh(consultation)
        assert consultation.status == ConsultationStatus.SCHEDULED
        assert consultation.scheduled_at == datetime(2026, 11, 2)

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_webhook(self, db, confirmed_booking, signed_settings):
        consultation, payment = confirmed_booking
        notifier = RecordingNotifier(raise_error=RuntimeError("SMS provider down"))
        body = webhook_body(payment.transaction_id)

        result = await process_webhook(db, body, sign(body, SECRET), notifier, signed_settings)

        assert result.outcome == WebhookOutcome.PROCESSED
        db.refresh(payment)
        assert payment.payment_status == PaymentStatus.COMPLETED
