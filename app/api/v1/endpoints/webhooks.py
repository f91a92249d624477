from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.services.notification_service import NotificationDispatcher, get_notification_dispatcher
from app.services.webhook_service import SIGNATURE_HEADER, process_webhook

router = APIRouter()


@router.post("/flutterwave")
async def flutterwave_webhook(
    request: Request,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher)
):
    """Payment status callback; acknowledged whenever the signature is valid"""
    raw_body = await request.body()

    try:
        result = await process_webhook(db, raw_body, request.headers.get(SIGNATURE_HEADER), notifier)
    except SQLAlchemyError:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": "Webhook processing failed", "status": "error"}
        )

    if not result.acknowledged:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content=result.to_response())

    return result.to_response()


@router.get("/flutterwave")
async def flutterwave_webhook_health():
    settings = get_settings()
    return {
        "message": "Flutterwave webhook endpoint is active",
        "status": "ok",
        "signature_verification": bool(settings.FLUTTERWAVE_WEBHOOK_SECRET),
    }
