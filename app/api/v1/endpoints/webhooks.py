import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.dependencies import get_payment_service
from app.models import WebhookLog
from app.services.mashreq import map_webhook_status, verify_mashreq_signature, webhook_reference
from app.services.payments import PaymentService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/mashreq")
async def mashreq_webhook(
    request: Request,
    db: Session = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    signature = request.headers.get("x-mashreq-signature")
    if not signature:
        raise HTTPException(status_code=401, detail="Missing signature")

    body = await request.body()
    if not verify_mashreq_signature(body, signature):
        logger.error("Invalid Mashreq webhook signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    event = payload.get("status")
    reference = webhook_reference(payload)
    log = WebhookLog(provider="mashreq", event=str(event) if event else None, reference=reference, payload=payload)
    db.add(log)
    db.commit()
    logger.info("Processing Mashreq webhook reference=%s event=%s", reference, event)

    target = map_webhook_status(event)
    try:
        if target is not None:
            if not reference:
                raise ValueError("Webhook payload has no transaction reference")
            service.apply_webhook_status(reference, target, payload)
        log.processed = True
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.error("Error processing Mashreq webhook reference=%s: %s", reference, exc)
        log.error = str(exc)
        db.commit()
        return {"status": "error"}

    return {"status": "ok"}
