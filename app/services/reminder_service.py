import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.consultation import Consultation, ConsultationStatus
from app.schemas.jobs import ReminderCounts, ReminderResult
from app.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)


class ReminderService:
    @staticmethod
    def upcoming_consultations(db: Session, now: datetime, window_minutes: int):
        return db.query(Consultation).filter(
            Consultation.status == ConsultationStatus.SCHEDULED,
            Consultation.scheduled_at >= now,
            Consultation.scheduled_at <= now + timedelta(minutes=window_minutes)
        ).order_by(Consultation.scheduled_at.asc()).all()

    @staticmethod
    async def _remind(
        db: Session,
        notifier: NotificationDispatcher,
        consultation: Consultation,
        user_id: Optional[str],
        recipient_type: str,
        counts: ReminderCounts,
        result: ReminderResult
    ):
        if not user_id:
            counts.skipped += 1
            return

        try:
            sent = await notifier.notify_consultation_reminder(db, consultation.id, user_id, recipient_type)
        except Exception as e:
            sent = False
            result.errors.append(f"{recipient_type.capitalize()} reminder error for consultation {consultation.id}: {e}")
            logger.error(f"Reminder to {recipient_type} for consultation {consultation.id} raised: {e}")
        else:
            if not sent:
                result.errors.append(f"Failed to send {recipient_type} reminder for consultation {consultation.id}")

        if sent:
            counts.sent += 1
        else:
            counts.failed += 1

    @staticmethod
    async def send_reminders(
        db: Session,
        notifier: NotificationDispatcher,
        now: Optional[datetime] = None,
        window_minutes: Optional[int] = None
    ) -> ReminderResult:
        """Remind both sides of every consultation starting within the window"""
        now = now or datetime.utcnow()
        window_minutes = window_minutes or get_settings().REMINDER_WINDOW_MINUTES

        consultations = ReminderService.upcoming_consultations(db, now, window_minutes)
        result = ReminderResult(consultations_found=len(consultations))
        logger.info(f"Found {len(consultations)} consultation(s) starting within {window_minutes} minutes")

        for consultation in consultations:
            await ReminderService._remind(
                db, notifier, consultation, consultation.user_id, "patient",
                result.patient_reminders, result
            )

            provider = consultation.provider
            provider_user_id = provider.user_id if provider else None
            await ReminderService._remind(
                db, notifier, consultation, provider_user_id, "provider",
                result.provider_reminders, result
            )

        logger.info(
            f"Reminders done: patients {result.patient_reminders.sent} sent / {result.patient_reminders.failed} failed, "
            f"providers {result.provider_reminders.sent} sent / {result.provider_reminders.failed} failed"
        )
        return result
