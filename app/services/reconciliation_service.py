"""
Payment reconciliation.

Diffs the provider's transaction ledger against local payment rows over a
trailing window. Only status mismatches are ever repaired, and only when the
run asks for it; every other discrepancy is reported for a human.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.payment import Payment, PaymentProvider, PaymentStatus
from app.schemas.reconciliation import (
    AmountMismatch,
    MissingInDatabase,
    MissingInGateway,
    ReconciliationReport,
    StatusMismatch,
)
from app.services.payment_gateway import GatewayTransaction, PaymentGatewayService, map_gateway_status
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)


class ReconciliationService:
    @staticmethod
    async def reconcile_payments(
        db: Session,
        gateway: PaymentGatewayService,
        auto_fix: bool = False,
        window_days: Optional[int] = None,
        tolerance: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> ReconciliationReport:
        settings = get_settings()
        window_days = window_days or settings.RECONCILIATION_WINDOW_DAYS
        tolerance = settings.AMOUNT_TOLERANCE_LEONE if tolerance is None else tolerance

        window_end = now or datetime.utcnow()
        window_start = window_end - timedelta(days=window_days)
        report = ReconciliationReport(window_start=window_start, window_end=window_end, auto_fix=auto_fix)

        # A failed listing aborts the run
        transactions = await gateway.list_transactions(window_start, window_end)
        payments = db.query(Payment).filter(
            Payment.payment_provider == PaymentProvider.FLUTTERWAVE,
            Payment.created_at >= window_start
        ).all()

        report.total_gateway_transactions = len(transactions)
        report.total_database_payments = len(payments)

        gateway_by_ref: Dict[str, GatewayTransaction] = {}
        for transaction in transactions:
            if not transaction.reference:
                logger.warning(f"Gateway transaction {transaction.id} has no reference, skipping")
                continue
            gateway_by_ref[transaction.reference] = transaction

        payments_by_ref: Dict[str, Payment] = {p.transaction_id: p for p in payments if p.transaction_id}

        for reference, transaction in gateway_by_ref.items():
            payment = payments_by_ref.get(reference)
            if payment is None:
                report.discrepancies.missing_in_database.append(
                    MissingInDatabase(
                        reference=reference,
                        gateway_id=transaction.id,
                        amount=transaction.amount,
                        status=transaction.status,
                    )
                )
                continue

            report.matched += 1

            gateway_status = map_gateway_status(transaction.status)
            if gateway_status != payment.payment_status:
                report.discrepancies.status_mismatches.append(
                    StatusMismatch(
                        payment_id=payment.id,
                        transaction_id=reference,
                        database_status=payment.payment_status.value,
                        gateway_status=gateway_status.value,
                    )
                )

            if abs(float(transaction.amount) - payment.amount_leone) > tolerance:
                report.discrepancies.amount_mismatches.append(
                    AmountMismatch(
                        payment_id=payment.id,
                        transaction_id=reference,
                        database_amount=payment.amount_leone,
                        gateway_amount=transaction.amount,
                    )
                )

        for payment in payments:
            if not payment.transaction_id or payment.transaction_id not in gateway_by_ref:
                report.discrepancies.missing_in_gateway.append(
                    MissingInGateway(
                        payment_id=payment.id,
                        transaction_id=payment.transaction_id,
                        amount_leone=payment.amount_leone,
                        status=payment.payment_status.value,
                    )
                )

        if auto_fix:
            ReconciliationService._fix_status_mismatches(db, report, payments_by_ref)

        logger.info(
            f"Reconciliation {window_start:%Y-%m-%d}..{window_end:%Y-%m-%d}: "
            f"{report.matched} matched, {report.discrepancy_count} discrepancies, "
            f"{report.fixes.updated} fixed"
        )
        return report

    @staticmethod
    def _fix_status_mismatches(db: Session, report: ReconciliationReport, payments_by_ref: Dict[str, Payment]):
        for mismatch in report.discrepancies.status_mismatches:
            payment = payments_by_ref[mismatch.transaction_id]
            if payment.payment_status == PaymentStatus.REFUNDED:
                report.fixes.skipped += 1
                continue

            try:
                changed = PaymentService.apply_gateway_status(
                    db, payment, PaymentStatus(mismatch.gateway_status), source="reconciliation"
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to fix payment {payment.id}: {e}")
                report.fixes.errors.append(f"Failed to update payment {payment.id}: {e}")
                continue

            if changed:
                report.fixes.updated += 1
                logger.info(f"Fixed status mismatch for payment {payment.id}")
            else:
                report.fixes.skipped += 1
