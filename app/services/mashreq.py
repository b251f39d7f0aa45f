import hashlib
import hmac
from typing import Optional

from app.core.config import get_settings
from app.models import TransactionStatus


WEBHOOK_STATUSES = {
    "payment.succeeded": TransactionStatus.SUCCESS,
    "transfer.completed": TransactionStatus.SUCCESS,
    "bill.paid": TransactionStatus.SUCCESS,
    "payment.failed": TransactionStatus.FAILED,
    "transfer.failed": TransactionStatus.FAILED,
    "bill.failed": TransactionStatus.FAILED,
    "payment.cancelled": TransactionStatus.CANCELLED,
    "payment.refunded": TransactionStatus.REFUNDED,
}


def verify_mashreq_signature(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> bool:
    secret = secret if secret is not None else get_settings().mashreq_webhook_secret
    sig = (signature or "").strip().lower()
    if not secret or not sig:
        return False
    computed = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed.encode(), sig.encode())


def map_webhook_status(event_status) -> Optional[TransactionStatus]:
    return WEBHOOK_STATUSES.get(str(event_status or "").strip().lower())


def webhook_reference(payload: dict) -> Optional[str]:
    ref = payload.get("merchant_order_id") or payload.get("transaction_id")
    return str(ref).strip() if ref else None
