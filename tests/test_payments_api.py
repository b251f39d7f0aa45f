from contextlib import contextmanager
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from app.api.v1.endpoints import payments as payments_endpoint
from app.core.database import get_db
from app.dependencies import get_gateway_client
from app.main import app
from app.models import PaymentTransaction, TransactionStatus

ADMIN_HEADERS = {"X-API-Key": "admin-key"}


@contextmanager
def _client(db, gateway=None):
    app.dependency_overrides.clear()

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    if gateway is not None:
        app.dependency_overrides[get_gateway_client] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _create(client, amount="100.00") -> dict:
    res = client.post("/api/v1/payments/create", json={"order_info": "Order 1", "amount": amount})
    assert res.status_code == 200, res.text
    return res.json()["data"]


def _approve(client, sign_response, data, code="0"):
    params = sign_response(
        {"vpc_MerchTxnRef": data["merchant_txn_ref"], "vpc_TxnResponseCode": code, "vpc_TransactionNo": "9001"}
    )
    return client.get("/api/v1/payments/callback", params=params, follow_redirects=False)


def _refund_gateway(gateway_factory, sign_response, code="0"):
    return gateway_factory(
        lambda form: (200, sign_response({"vpc_MerchTxnRef": form["vpc_MerchTxnRef"], "vpc_TxnResponseCode": code}))
    )


def test_create_payment_returns_redirect(db):
    with _client(db) as client:
        res = client.post(
            "/api/v1/payments/create",
            json={"order_info": "Order 1", "amount": "49.99", "customer_email": "buyer@example.com"},
        )

    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["timestamp"]
    data = body["data"]
    assert data["status"] == "pending"
    assert data["currency"] == "AED"
    assert data["merchant_txn_ref"].startswith("MIGS_")
    query = parse_qs(urlparse(data["payment_url"]).query)
    assert query["vpc_MerchTxnRef"] == [data["merchant_txn_ref"]]
    assert query["vpc_Amount"] == ["4999"]


def test_create_payment_validation(db):
    with _client(db) as client:
        res = client.post("/api/v1/payments/create", json={"order_info": "Order 1", "amount": "0"})
    assert res.status_code == 400
    assert res.json()["code"] == "VALIDATION_ERROR"


def test_callback_redirects_to_success(db, sign_response):
    with _client(db) as client:
        data = _create(client)
        res = _approve(client, sign_response, data)

    assert res.status_code == 302
    location = urlparse(res.headers["location"])
    assert location.netloc == "shop.example.com"
    assert location.path == "/payment/success"
    assert parse_qs(location.query) == {"ref": [data["merchant_txn_ref"]], "id": [data["payment_id"]]}


def test_callback_redirects_to_failure_on_decline(db, sign_response):
    with _client(db) as client:
        data = _create(client)
        res = _approve(client, sign_response, data, code="5")

    assert res.status_code == 302
    assert urlparse(res.headers["location"]).path == "/payment/failure"


def test_callback_with_in_progress_code_redirects_to_pending(db, sign_response):
    with _client(db) as client:
        data = _create(client)
        res = _approve(client, sign_response, data, code="P")
        status = client.get(f"/api/v1/payments/status/{data['payment_id']}")

    assert res.status_code == 302
    location = urlparse(res.headers["location"])
    assert location.path == "/payment/pending"
    assert parse_qs(location.query)["ref"] == [data["merchant_txn_ref"]]
    assert status.json()["data"]["status"] == "pending"


def test_callback_with_bad_hash_redirects_to_error_page(db, sign_response):
    with _client(db) as client:
        data = _create(client)
        params = sign_response({"vpc_MerchTxnRef": data["merchant_txn_ref"], "vpc_TxnResponseCode": "0"})
        params["vpc_SecureHash"] = "0" * 64
        res = client.get("/api/v1/payments/callback", params=params, follow_redirects=False)
        status = client.get(f"/api/v1/payments/status/{data['payment_id']}")

    assert res.status_code == 302
    assert res.headers["location"] == "https://shop.example.com/payment/error"
    assert status.json()["data"]["status"] == "pending"


def test_status_and_cancel(db):
    with _client(db) as client:
        data = _create(client)
        status = client.get(f"/api/v1/payments/status/{data['payment_id']}")
        cancelled = client.post(f"/api/v1/payments/cancel/{data['payment_id']}")
        again = client.post(f"/api/v1/payments/cancel/{data['payment_id']}")
        missing = client.get("/api/v1/payments/status/does-not-exist")

    assert status.status_code == 200
    assert status.json()["data"]["merchant_txn_ref"] == data["merchant_txn_ref"]
    assert cancelled.status_code == 200
    assert cancelled.json()["data"]["status"] == "cancelled"
    assert again.status_code == 409
    assert again.json()["code"] == "ILLEGAL_STATE"
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Payment not found: does-not-exist", "code": "NOT_FOUND"}


def test_refund_flow(db, sign_response, gateway_factory):
    gateway = _refund_gateway(gateway_factory, sign_response)
    with _client(db, gateway) as client:
        data = _create(client)
        _approve(client, sign_response, data)
        partial = client.post("/api/v1/payments/refund", json={"payment_id": data["payment_id"], "amount": "30.00"})
        too_much = client.post("/api/v1/payments/refund", json={"payment_id": data["payment_id"], "amount": "80.00"})
        rest = client.post("/api/v1/payments/refund", json={"payment_id": data["payment_id"], "amount": "70.00"})

    assert partial.status_code == 200
    assert partial.json()["data"]["status"] == "partially_refunded"
    assert too_much.status_code == 400
    assert rest.status_code == 200
    assert rest.json()["data"]["status"] == "refunded"
    assert rest.json()["data"]["refunded_amount"] == "100.00"


def test_refund_of_pending_payment_conflicts(db, sign_response, gateway_factory):
    gateway = _refund_gateway(gateway_factory, sign_response)
    with _client(db, gateway) as client:
        data = _create(client)
        res = client.post("/api/v1/payments/refund", json={"payment_id": data["payment_id"], "amount": "10.00"})

    assert res.status_code == 409
    assert gateway.calls == []


def test_refund_decline_maps_to_402(db, sign_response, gateway_factory):
    gateway = _refund_gateway(gateway_factory, sign_response, code="2")
    with _client(db, gateway) as client:
        data = _create(client)
        _approve(client, sign_response, data)
        res = client.post("/api/v1/payments/refund", json={"payment_id": data["payment_id"], "amount": "10.00"})

    assert res.status_code == 402
    assert res.json()["code"] == "GATEWAY_REJECTED"
    stored = db.get(PaymentTransaction, data["payment_id"])
    db.refresh(stored)
    assert stored.status == TransactionStatus.SUCCESS.value


def test_query_endpoint(db, sign_response, gateway_factory):
    gateway = gateway_factory(
        lambda form: (200, sign_response({"vpc_MerchTxnRef": form["vpc_MerchTxnRef"], "vpc_TxnResponseCode": "0"}))
    )
    with _client(db, gateway) as client:
        data = _create(client)
        found = client.get(f"/api/v1/payments/query/{data['merchant_txn_ref']}")
        unknown = client.get("/api/v1/payments/query/MIGS_0_UNKNOWN1")
        short = client.get("/api/v1/payments/query/abc")

    assert found.status_code == 200
    assert found.json()["data"]["vpc_TxnResponseCode"] == 0
    assert unknown.status_code == 404
    assert short.status_code == 400
    assert len(gateway.calls) == 1


def test_gateway_outage_maps_to_503(db, gateway_factory):
    gateway = gateway_factory(lambda form: (502, "Bad Gateway"))
    with _client(db, gateway) as client:
        data = _create(client)
        res = client.get(f"/api/v1/payments/query/{data['merchant_txn_ref']}")

    assert res.status_code == 503
    assert res.json()["code"] == "GATEWAY_SERVER_ERROR"


def test_admin_sync_endpoints_require_api_key(db):
    with _client(db) as client:
        assert client.get("/api/v1/payments/admin/sync-status").status_code == 401
        assert client.post("/api/v1/payments/admin/sync-status", headers={"X-API-Key": "wrong"}).status_code == 401


def test_admin_sync_trigger_and_status(db, monkeypatch):
    dispatched = []
    monkeypatch.setattr(payments_endpoint, "dispatch_sync", lambda: dispatched.append(True))

    with _client(db) as client:
        paused = client.post("/api/v1/payments/admin/sync-status/pause", headers=ADMIN_HEADERS)
        triggered = client.post("/api/v1/payments/admin/sync-status?batch_size=25", headers=ADMIN_HEADERS)
        status = client.get("/api/v1/payments/admin/sync-status", headers=ADMIN_HEADERS)
        resumed = client.post("/api/v1/payments/admin/sync-status/resume", headers=ADMIN_HEADERS)

    assert paused.json()["data"]["paused"] is True
    assert triggered.status_code == 200
    assert triggered.json()["data"]["triggered_by"] == "manual"
    assert triggered.json()["data"]["priority"] == 10
    assert dispatched == [True]
    assert status.json()["data"]["waiting"] == 1
    assert status.json()["data"]["queue_name"] == "payment-status-sync"
    assert resumed.json()["data"]["paused"] is False


def test_service_endpoints(db):
    with _client(db) as client:
        assert client.get("/").json() == {"status": "ok"}
        health = client.get("/healthz")
        ready = client.get("/readyz")

    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert ready.status_code == 200
    assert ready.json()["status"] == "ready"
