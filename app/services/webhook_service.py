"""
Payment webhook ingestion.

Once the signature checks out, every outcome is acknowledged with a success
response so the provider stops retrying: processed, ignored and not-found are
ordinary results, not exceptions. Only a bad signature is rejected. Database
errors propagate so the caller can answer 500 and let the provider retry.
"""

import enum
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.models.consultation import ConsultationStatus
from app.models.payment import Payment, PaymentStatus
from app.services.consultation_service import ConsultationService
from app.services.notification_service import NotificationDispatcher, notify_safely
from app.services.payment_gateway import map_gateway_status
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "verif-hash"
SIGNATURE_PREFIX = "sha256="

# Events that carry a final charge outcome
HANDLED_EVENTS = {"charge.completed", "charge.successful"}


class WebhookOutcome(str, enum.Enum):
    PROCESSED = "success"
    IGNORED = "ignored"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"


@dataclass
class WebhookResult:
    outcome: WebhookOutcome
    message: str
    payment_id: Optional[str] = None
    payment_status: Optional[PaymentStatus] = None
    consultation_status: Optional[ConsultationStatus] = None
    status_changed: bool = False

    @property
    def acknowledged(self) -> bool:
        return self.outcome != WebhookOutcome.REJECTED

    def to_response(self) -> Dict[str, Any]:
        return {"message": self.message, "status": self.outcome.value}


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], settings: Optional[Settings] = None) -> bool:
    """HMAC-SHA256 over the raw body, compared in constant time.

    Without a configured secret the check passes outside production only.
    """
    settings = settings or get_settings()
    secret = settings.FLUTTERWAVE_WEBHOOK_SECRET

    if not secret:
        if settings.is_production:
            logger.error("FLUTTERWAVE_WEBHOOK_SECRET is not configured; rejecting webhook in production")
            return False
        logger.warning(
            "FLUTTERWAVE_WEBHOOK_SECRET is not configured - accepting UNVERIFIED webhook. "
            "Never run like this in production."
        )
        return True

    if not signature:
        return False

    provided = signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]

    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), provided.lower().encode("utf-8"))


def _parse_payload(raw_body: bytes) -> Optional[Dict[str, Any]]:
    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


async def process_webhook(
    db: Session,
    raw_body: bytes,
    signature: Optional[str],
    notifier: NotificationDispatcher,
    settings: Optional[Settings] = None
) -> WebhookResult:
    if not verify_signature(raw_body, signature, settings):
        logger.error("Invalid webhook signature")
        return WebhookResult(WebhookOutcome.REJECTED, "Invalid signature")

    payload = _parse_payload(raw_body)
    if payload is None:
        logger.warning("Webhook body is not a JSON object, acknowledging without processing")
        return WebhookResult(WebhookOutcome.IGNORED, "Malformed payload ignored")

    event = payload.get("event")
    logger.info(f"Payment webhook received: {event}")

    if event not in HANDLED_EVENTS:
        return WebhookResult(WebhookOutcome.IGNORED, f"Event type {event} not processed")

    data = payload.get("data") or {}
    tx_ref = data.get("tx_ref") or data.get("flw_ref")
    if not tx_ref:
        logger.warning(f"Webhook {event} carries neither tx_ref nor flw_ref")
        return WebhookResult(WebhookOutcome.IGNORED, "No transaction reference in payload")

    new_status = map_gateway_status(data.get("status"))
    gateway_id = f"FLW-{data['id']}" if data.get("id") else None

    try:
        payment = db.query(Payment).filter(Payment.transaction_id == tx_ref).first()
        if not payment:
            # Orphaned webhook, resolved by a human
            logger.warning(f"Payment not found for webhook tx_ref={tx_ref}")
            return WebhookResult(WebhookOutcome.NOT_FOUND, "Payment not found")

        changed = PaymentService.apply_gateway_status(
            db, payment, new_status, source="webhook", gateway_transaction_id=gateway_id
        )

        consultation = payment.consultation
        if payment.payment_status == PaymentStatus.COMPLETED and consultation is not None:
            ConsultationService.schedule_after_payment(db, consultation)

        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Database error while processing webhook tx_ref={tx_ref}")
        raise

    if changed and payment.payment_status == PaymentStatus.COMPLETED:
        await notify_safely(
            notifier.notify_payment_confirmation(db, payment.consultation_id, payment.user_id, payment.amount_leone),
            "payment confirmation"
        )

    logger.info(
        f"Webhook applied to payment {payment.id}: {payment.payment_status.value}"
        f"{'' if changed else ' (no change)'}"
    )
    return WebhookResult(
        WebhookOutcome.PROCESSED,
        "Webhook processed successfully",
        payment_id=payment.id,
        payment_status=payment.payment_status,
        consultation_status=consultation.status if consultation is not None else None,
        status_changed=changed
    )
