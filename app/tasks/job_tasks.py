import asyncio

from celery import Task
from sqlalchemy.orm import Session

from app.tasks.celery_app import celery_app
from app.core.database import SessionLocal
from app.services.notification_service import get_notification_dispatcher
from app.services.payment_gateway import get_payment_gateway
from app.services.reconciliation_service import ReconciliationService
from app.services.reminder_service import ReminderService


class DatabaseTask(Task):
    """Base task with database session"""
    _db = None

    @property
    def db(self) -> Session:
        if self._db is None:
            self._db = SessionLocal()
        return self._db

    def after_return(self, *args, **kwargs):
        if self._db is not None:
            self._db.close()
            self._db = None


@celery_app.task(base=DatabaseTask, bind=True)
def send_reminders_task(self):
    """Hourly consultation reminders"""
    result = asyncio.run(ReminderService.send_reminders(self.db, get_notification_dispatcher()))
    return result.model_dump()


@celery_app.task(base=DatabaseTask, bind=True)
def reconcile_payments_task(self, auto_fix: bool = False):
    """Daily gateway/database reconciliation; status drift is repaired only with ``auto_fix``"""
    report = asyncio.run(
        ReconciliationService.reconcile_payments(self.db, get_payment_gateway(), auto_fix=auto_fix)
    )
    return report.model_dump(mode="json")
