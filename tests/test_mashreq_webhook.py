import hashlib
import hmac
import json
from contextlib import contextmanager
from decimal import Decimal

from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.core.database import get_db
from app.main import app
from app.models import PaymentTransaction, TransactionStatus, WebhookLog
from app.services.mashreq import map_webhook_status, verify_mashreq_signature
from app.services.migs import MigsClient
from app.services.payments import PaymentRequest, PaymentService


@contextmanager
def _client(db):
    app.dependency_overrides.clear()

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _sign(body: bytes) -> str:
    secret = get_settings().mashreq_webhook_secret
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _pending(db, migs_config) -> PaymentTransaction:
    service = PaymentService(db, MigsClient(migs_config), migs_config)
    return service.create_payment(PaymentRequest(order_info="Order", amount=Decimal("10.00"))).transaction


def _post(client, payload: dict, signature=None):
    body = json.dumps(payload).encode()
    headers = {"Content-Type": "application/json"}
    if signature is not False:
        headers["X-Mashreq-Signature"] = signature or _sign(body)
    return client.post("/api/v1/webhooks/mashreq", content=body, headers=headers)


def test_mashreq_signature():
    body = json.dumps({"status": "payment.succeeded", "transaction_id": "ABC"}).encode()
    assert verify_mashreq_signature(body, _sign(body))
    assert verify_mashreq_signature(body, _sign(body).upper())
    assert not verify_mashreq_signature(body + b" ", _sign(body))
    assert not verify_mashreq_signature(body, "")
    assert not verify_mashreq_signature(body, _sign(body), secret="")


def test_map_webhook_status():
    assert map_webhook_status("payment.succeeded") == TransactionStatus.SUCCESS
    assert map_webhook_status("bill.failed") == TransactionStatus.FAILED
    assert map_webhook_status("payment.cancelled") == TransactionStatus.CANCELLED
    assert map_webhook_status("payment.refunded") == TransactionStatus.REFUNDED
    assert map_webhook_status("payment.created") is None
    assert map_webhook_status(None) is None


def test_webhook_rejects_missing_or_invalid_signature(db):
    with _client(db) as client:
        missing = _post(client, {"status": "payment.succeeded"}, signature=False)
        invalid = _post(client, {"status": "payment.succeeded"}, signature="deadbeef")

    assert missing.status_code == 401
    assert invalid.status_code == 401
    assert db.query(WebhookLog).count() == 0


def test_webhook_applies_status_and_logs(db, migs_config):
    tx = _pending(db, migs_config)
    with _client(db) as client:
        res = _post(client, {"status": "payment.succeeded", "merchant_order_id": tx.merchant_txn_ref})

    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
    db.expire_all()
    assert db.get(PaymentTransaction, tx.id).status == TransactionStatus.SUCCESS.value
    log = db.query(WebhookLog).one()
    assert log.provider == "mashreq"
    assert log.reference == tx.merchant_txn_ref
    assert log.processed is True


def test_webhook_processing_error_is_acknowledged(db, migs_config):
    tx = _pending(db, migs_config)
    with _client(db) as client:
        cancelled = _post(client, {"status": "payment.cancelled", "transaction_id": tx.merchant_txn_ref})
        late = _post(client, {"status": "payment.succeeded", "transaction_id": tx.merchant_txn_ref})

    assert cancelled.json() == {"status": "ok"}
    assert late.status_code == 200
    assert late.json() == {"status": "error"}
    db.expire_all()
    assert db.get(PaymentTransaction, tx.id).status == TransactionStatus.CANCELLED.value
    logs = db.query(WebhookLog).order_by(WebhookLog.id).all()
    assert [log.processed for log in logs] == [True, False]
    assert "Illegal status transition" in logs[1].error


def test_webhook_with_unknown_event_changes_nothing(db, migs_config):
    tx = _pending(db, migs_config)
    with _client(db) as client:
        res = _post(client, {"status": "payment.created", "merchant_order_id": tx.merchant_txn_ref})

    assert res.json() == {"status": "ok"}
    db.expire_all()
    assert db.get(PaymentTransaction, tx.id).status == TransactionStatus.PENDING.value
