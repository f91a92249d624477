"""
Notification dispatcher.

Best-effort fan-out to SMS (Africa's Talking) and email (SMTP). Every public
method returns ``True``/``False`` and never raises: a notification failure must
not fail the operation that triggered it.
"""

import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Awaitable, Optional

import httpx
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.models.consultation import Consultation, ConsultationType
from app.models.provider import HealthcareProvider
from app.models.user import User
from app.utils.phone import normalize_phone_number

logger = logging.getLogger(__name__)


CONSULTATION_TYPE_LABELS = {
    ConsultationType.VIDEO: "Video Call",
    ConsultationType.VOICE: "Voice Call",
    ConsultationType.SMS: "SMS Consultation",
}


def consultation_type_label(consultation_type) -> str:
    return CONSULTATION_TYPE_LABELS.get(consultation_type, "Consultation")


class NotificationDispatcher:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    def sms_enabled(self) -> bool:
        return bool(self.settings.AFRICAS_TALKING_USERNAME and self.settings.AFRICAS_TALKING_API_KEY)

    def email_enabled(self) -> bool:
        return bool(self.settings.SMTP_HOST and self.settings.EMAIL_FROM)

    async def send_sms(self, to: str, message: str) -> bool:
        phone = normalize_phone_number(to)
        if not phone:
            logger.debug("No phone number provided for SMS")
            return False
        if not self.sms_enabled():
            logger.warning(f"SMS provider not configured; dropping SMS to {phone}")
            return False

        data = {
            "username": self.settings.AFRICAS_TALKING_USERNAME,
            "to": phone,
            "message": message,
        }
        if self.settings.AFRICAS_TALKING_SENDER_ID:
            data["from"] = self.settings.AFRICAS_TALKING_SENDER_ID

        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(
                    f"{self.settings.AFRICAS_TALKING_BASE_URL}/messaging",
                    data=data,
                    headers={
                        "apiKey": self.settings.AFRICAS_TALKING_API_KEY,
                        "Accept": "application/json",
                    },
                )
            if response.status_code not in (200, 201):
                logger.error(f"SMS provider rejected message to {phone}: HTTP {response.status_code}")
                return False

            recipients = response.json().get("SMSMessageData", {}).get("Recipients", [])
            if recipients and recipients[0].get("status") not in ("Success", "Sent"):
                logger.error(f"SMS to {phone} not accepted: {recipients[0].get('status')}")
                return False

            logger.info(f"SMS sent to {phone}")
            return True
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to send SMS to {phone}: {e}")
            return False

    def _send_smtp(self, to: str, subject: str, html: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.settings.EMAIL_FROM
        msg["To"] = to
        msg.attach(MIMEText(html, "html"))

        if self.settings.SMTP_PORT == 465:
            server = smtplib.SMTP_SSL(
                self.settings.SMTP_HOST,
                self.settings.SMTP_PORT,
                context=ssl.create_default_context(),
                timeout=30,
            )
        else:
            server = smtplib.SMTP(self.settings.SMTP_HOST, self.settings.SMTP_PORT, timeout=30)
            server.starttls(context=ssl.create_default_context())
        try:
            if self.settings.SMTP_USER:
                server.login(self.settings.SMTP_USER, self.settings.SMTP_PASSWORD or "")
            server.sendmail(self.settings.EMAIL_FROM, [to], msg.as_string())
        finally:
            server.quit()

    async def send_email(self, to: str, subject: str, html: str) -> bool:
        if not to:
            return False
        if not self.email_enabled():
            logger.warning(f"Email not configured; dropping '{subject}' to {to}")
            return False
        try:
            await asyncio.to_thread(self._send_smtp, to, subject, html)
            logger.info(f"Email '{subject}' sent to {to}")
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email '{subject}' to {to}: {e}")
            return False

    async def _deliver(self, user: User, subject: str, html: str, sms: str) -> bool:
        """Send on every channel the user has; True if at least one got through."""
        delivered = False
        if user.email:
            delivered = await self.send_email(user.email, subject, html) or delivered
        if user.phone_number:
            delivered = await self.send_sms(user.phone_number, sms) or delivered
        return delivered

    # ------------------------------------------------------------------
    # Workflow notifications
    # ------------------------------------------------------------------

    async def notify_payment_confirmation(self, db: Session, consultation_id: str, patient_id: str, amount: int) -> bool:
        try:
            patient = db.get(User, patient_id)
            consultation = db.get(Consultation, consultation_id)
            if not patient or not consultation:
                logger.error(f"Patient or consultation missing for payment confirmation ({consultation_id})")
                return False

            label = consultation_type_label(consultation.consultation_type)
            return await self._deliver(
                patient,
                subject="Payment confirmed",
                html=(
                    f"<p>Your payment of Le {amount:,} for your {label} has been received.</p>"
                    f"<p>Consultation reference: {consultation_id}</p>"
                ),
                sms=f"HealthConnect: Payment of Le {amount:,} received for your {label}. Thank you.",
            )
        except Exception as e:
            logger.error(f"Error sending payment confirmation for {consultation_id}: {e}")
            return False

    async def notify_consultation_reminder(self, db: Session, consultation_id: str, user_id: str, recipient_type: str) -> bool:
        try:
            user = db.get(User, user_id)
            consultation = db.get(Consultation, consultation_id)
            if not user:
                logger.error(f"User {user_id} not found for reminder")
                return False
            if not consultation or not consultation.scheduled_at:
                logger.error(f"Consultation {consultation_id} not found or not scheduled for reminder")
                return False

            provider_name = consultation.provider.full_name if consultation.provider else "Healthcare Provider"
            patient_name = (consultation.patient.full_name if consultation.patient else None) or "Patient"
            counterpart = provider_name if recipient_type == "patient" else patient_name
            label = consultation_type_label(consultation.consultation_type)
            when = consultation.scheduled_at.strftime("%d %b %Y %H:%M")

            return await self._deliver(
                user,
                subject="Consultation reminder",
                html=(
                    f"<p>Reminder: your {label} with {counterpart} is scheduled for {when} UTC.</p>"
                    "<p>Please join on time.</p>"
                ),
                sms=(
                    f"Consultation Reminder\n\nWith: {counterpart}\nType: {label}\n"
                    f"Scheduled: {when} UTC\n\nPlease join on time."
                ),
            )
        except Exception as e:
            logger.error(f"Error sending {recipient_type} reminder for {consultation_id}: {e}")
            return False

    async def notify_patient_assignment(self, db: Session, consultation_id: str, patient_id: str) -> bool:
        try:
            patient = db.get(User, patient_id)
            consultation = db.get(Consultation, consultation_id)
            if not patient or not consultation:
                return False

            provider_name = consultation.provider.full_name if consultation.provider else "a provider"
            return await self._deliver(
                patient,
                subject="A provider has been assigned",
                html=(
                    f"<p>{provider_name} has been assigned to your consultation request.</p>"
                    "<p>Please log in to confirm.</p>"
                ),
                sms=f"HealthConnect: {provider_name} was assigned to your consultation. Log in to confirm.",
            )
        except Exception as e:
            logger.error(f"Error sending patient assignment notification for {consultation_id}: {e}")
            return False

    async def notify_provider_booking(self, db: Session, consultation_id: str, provider_id: str) -> bool:
        try:
            provider = db.get(HealthcareProvider, provider_id)
            consultation = db.get(Consultation, consultation_id)
            if not provider or not provider.user or not consultation:
                logger.warning(f"Provider {provider_id} has no linked user; booking notification skipped")
                return False

            label = consultation_type_label(consultation.consultation_type)
            return await self._deliver(
                provider.user,
                subject="New consultation booking",
                html=f"<p>A patient confirmed a {label} with you.</p><p>Reference: {consultation_id}</p>",
                sms=f"HealthConnect: A patient confirmed a {label} with you. Ref {consultation_id}.",
            )
        except Exception as e:
            logger.error(f"Error sending provider booking notification for {consultation_id}: {e}")
            return False

    async def notify_patient_acceptance(self, db: Session, consultation_id: str, patient_id: str) -> bool:
        try:
            patient = db.get(User, patient_id)
            if not patient:
                return False
            return await self._deliver(
                patient,
                subject="Consultation confirmed",
                html=f"<p>Your consultation {consultation_id} is confirmed. Your provider will schedule it shortly.</p>",
                sms="HealthConnect: Your consultation is confirmed. Your provider will schedule it shortly.",
            )
        except Exception as e:
            logger.error(f"Error sending patient acceptance notification for {consultation_id}: {e}")
            return False


async def notify_safely(notification: Awaitable[bool], description: str) -> bool:
    """Await a notification; any failure is logged and reported as ``False``."""
    try:
        return bool(await notification)
    except Exception as e:
        logger.error(f"Notification '{description}' failed: {e}")
        return False


_dispatcher: Optional[NotificationDispatcher] = None


def get_notification_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
