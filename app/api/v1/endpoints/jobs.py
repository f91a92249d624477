import logging
import time
from datetime import datetime

import httpx
from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Optional

from app.core.database import get_db
from app.core.security import verify_cron_secret
from app.schemas.jobs import JobTiming, ReconciliationJobResponse, ReminderJobResponse
from app.services.notification_service import NotificationDispatcher, get_notification_dispatcher
from app.services.payment_gateway import GatewayCallError, PaymentGatewayService, get_payment_gateway
from app.services.reconciliation_service import ReconciliationService
from app.services.reminder_service import ReminderService

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_cron_secret)])

TRUTHY = {"true", "1", "yes", "on"}


def _timing(started_at: datetime, started: float) -> JobTiming:
    return JobTiming(
        started_at=started_at.isoformat() + "Z",
        duration_ms=int((time.perf_counter() - started) * 1000)
    )


def _failure(message: str, started_at: datetime, started: float) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": message,
            "timing": _timing(started_at, started).model_dump(),
        }
    )


@router.get("/reconcile-payments", response_model=ReconciliationJobResponse)
async def reconcile_payments(
    x_auto_fix: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    gateway: PaymentGatewayService = Depends(get_payment_gateway)
):
    """Diff the gateway ledger against local payments; ``x-auto-fix: true`` repairs status drift"""
    started_at, started = datetime.utcnow(), time.perf_counter()
    auto_fix = (x_auto_fix or "").strip().lower() in TRUTHY

    try:
        report = await ReconciliationService.reconcile_payments(db, gateway, auto_fix=auto_fix)
    except (GatewayCallError, httpx.HTTPError, ValueError) as e:
        logger.error(f"Reconciliation aborted, gateway listing failed: {e}")
        return _failure(f"Failed to fetch gateway transactions: {e}", started_at, started)
    except SQLAlchemyError as e:
        logger.error(f"Reconciliation aborted, database error: {e}")
        return _failure("Failed to fetch database payments", started_at, started)

    return ReconciliationJobResponse(report=report, timing=_timing(started_at, started))


@router.get("/send-reminders", response_model=ReminderJobResponse)
async def send_reminders(
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher)
):
    """Remind patients and providers of consultations starting within the hour"""
    started_at, started = datetime.utcnow(), time.perf_counter()

    try:
        result = await ReminderService.send_reminders(db, notifier)
    except SQLAlchemyError as e:
        logger.error(f"Reminder job aborted, database error: {e}")
        return _failure("Failed to fetch consultations", started_at, started)

    return ReminderJobResponse(result=result, timing=_timing(started_at, started))
