import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.dependencies import get_payment_service, require_admin_key
from app.middlewares.rate_limit import limiter
from app.models import TransactionStatus
from app.schemas.payment import CreatePaymentRequest, PaymentCreatedOut, PaymentOut, RefundRequest, envelope
from app.services import sync_queue
from app.services.payments import PaymentRequest, PaymentService
from app.tasks.payment_sync import dispatch_sync

router = APIRouter()
logger = logging.getLogger(__name__)
settings = get_settings()


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _frontend_redirect(path: str, **params) -> RedirectResponse:
    base = settings.frontend_base_url.rstrip("/")
    query = urlencode({key: value for key, value in params.items() if value is not None})
    url = f"{base}{path}?{query}" if query else f"{base}{path}"
    return RedirectResponse(url, status_code=302)


@router.post("/create")
@limiter.limit(settings.rate_limit_payments)
def create_payment(
    request: Request,
    payload: CreatePaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    created = service.create_payment(
        PaymentRequest(
            order_info=payload.order_info,
            amount=payload.amount,
            currency=payload.currency,
            customer_email=payload.customer_email,
            customer_phone=payload.customer_phone,
            return_url=payload.return_url,
        ),
        client_ip=_client_ip(request),
    )
    tx = created.transaction
    data = PaymentCreatedOut(
        payment_id=tx.id,
        merchant_txn_ref=tx.merchant_txn_ref,
        payment_url=created.payment_url,
        amount=tx.amount,
        currency=tx.currency,
        status=tx.status,
    )
    return envelope(data.model_dump(mode="json"), "Payment created successfully")


@router.get("/callback")
def payment_callback(request: Request, service: PaymentService = Depends(get_payment_service)):
    params = dict(request.query_params)
    try:
        tx = service.process_callback(params)
    except Exception as exc:
        # The customer's browser lands here; never show gateway or database detail.
        logger.error("Payment callback failed merchant_txn_ref=%s: %s", params.get("vpc_MerchTxnRef"), exc)
        return _frontend_redirect("/payment/error")

    paths = {TransactionStatus.SUCCESS: "/payment/success", TransactionStatus.PENDING: "/payment/pending"}
    path = paths.get(tx.status_enum, "/payment/failure")
    return _frontend_redirect(path, ref=tx.merchant_txn_ref, id=tx.id)


@router.post("/cancel/{payment_id}")
def cancel_payment(payment_id: str, service: PaymentService = Depends(get_payment_service)):
    tx = service.cancel(payment_id)
    return envelope(PaymentOut.model_validate(tx).model_dump(mode="json"), "Payment cancelled successfully")


@router.post("/refund")
@limiter.limit(settings.rate_limit_payments)
def refund_payment(
    request: Request,
    payload: RefundRequest,
    service: PaymentService = Depends(get_payment_service),
):
    tx = service.refund(payload.payment_id, payload.amount)
    return envelope(PaymentOut.model_validate(tx).model_dump(mode="json"), "Refund processed successfully")


@router.get("/status/{payment_id}")
def payment_status(payment_id: str, service: PaymentService = Depends(get_payment_service)):
    tx = service.get_status(payment_id)
    return envelope(PaymentOut.model_validate(tx).model_dump(mode="json"), "Payment status retrieved")


@router.get("/query/{merchant_txn_ref}")
def query_payment(merchant_txn_ref: str, service: PaymentService = Depends(get_payment_service)):
    response = service.query_by_ref(merchant_txn_ref)
    return envelope(response, "Transaction query completed")


@router.post("/admin/sync-status", dependencies=[Depends(require_admin_key)])
def trigger_sync(
    batch_size: Optional[int] = Query(default=None, ge=1, le=500),
    db: Session = Depends(get_db),
):
    job = sync_queue.trigger_manual_sync(db, batch_size=batch_size)
    dispatch_sync()
    return envelope(
        {"job_id": job.id, "triggered_by": job.triggered_by, "priority": job.priority, "status": job.status},
        "Payment status sync triggered",
    )


@router.get("/admin/sync-status", dependencies=[Depends(require_admin_key)])
def sync_status(db: Session = Depends(get_db)):
    return envelope(sync_queue.get_queue_status(db), "Payment sync queue status")


@router.post("/admin/sync-status/pause", dependencies=[Depends(require_admin_key)])
def pause_sync(db: Session = Depends(get_db)):
    return envelope(sync_queue.pause_queue(db), "Payment sync queue paused")


@router.post("/admin/sync-status/resume", dependencies=[Depends(require_admin_key)])
def resume_sync(db: Session = Depends(get_db)):
    return envelope(sync_queue.resume_queue(db), "Payment sync queue resumed")
