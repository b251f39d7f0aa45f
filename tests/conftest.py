import os
from urllib.parse import urlencode


def _set_test_env() -> None:
    defaults = {
        "APP_NAME": "MIGS Payments Test",
        "ENVIRONMENT": "test",
        "AUTO_CREATE_TABLES": "false",
        "DATABASE_URL": "sqlite:///:memory:",
        "REDIS_URL": "",
        "MIGS_MERCHANT_ID": "TESTMERCHANT01",
        "MIGS_ACCESS_CODE": "ACCESS1234",
        "MIGS_SECURE_SECRET": "A1B2C3D4E5F60718293A4B5C6D7E8F90",
        "MIGS_GATEWAY_URL": "https://migs.test/vpcpay",
        "MIGS_GATEWAY_QUERY_URL": "https://migs.test/vpcdps",
        "MIGS_RETURN_URL": "https://api.example.com/api/v1/payments/callback",
        "MIGS_CURRENCY": "AED",
        "MIGS_SECURE_HASH_TYPE": "SHA256",
        "MASHREQ_WEBHOOK_SECRET": "mashreq_webhook_secret",
        "FRONTEND_BASE_URL": "https://shop.example.com",
        "ADMIN_API_KEY": "admin-key",
        "RATE_LIMIT_ENABLED": "false",
        "SYNC_THROTTLE_MS": "0",
        "CORS_ORIGINS": "http://localhost:5173,http://localhost:3000",
    }
    for key, value in defaults.items():
        os.environ.setdefault(key, value)


_set_test_env()

import httpx  # noqa: E402
import pytest  # noqa: E402

from app.core.config import get_migs_config  # noqa: E402
from app.core.database import Base, SessionLocal, engine  # noqa: E402
from app import models  # noqa: E402,F401
from app.services.migs import MigsClient  # noqa: E402
from app.services.secure_hash import generate_secure_hash  # noqa: E402


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def migs_config():
    return get_migs_config()


@pytest.fixture
def sign_response(migs_config):
    """Signed gateway parameters, as the gateway would send them back."""

    def _sign(params: dict, *, hash_type=None) -> dict:
        hash_type = hash_type or migs_config.hash_type
        signed = dict(params)
        signed["vpc_SecureHash"] = generate_secure_hash(params, migs_config.secure_secret, hash_type)
        signed["vpc_SecureHashType"] = hash_type.value
        return signed

    return _sign


@pytest.fixture
def gateway_factory(migs_config):
    """MigsClient whose HTTP exchange is answered by ``handler(form) -> (status, body)``."""

    def _build(handler):
        calls = []

        def _respond(request: httpx.Request) -> httpx.Response:
            form = dict(httpx.QueryParams(request.content.decode()))
            calls.append(form)
            status, body = handler(form)
            if isinstance(body, dict):
                body = urlencode(body)
            return httpx.Response(status, text=body)

        client = MigsClient(migs_config, transport=httpx.MockTransport(_respond))
        client.calls = calls
        return client

    return _build
