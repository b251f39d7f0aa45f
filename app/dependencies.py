import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.core.config import get_migs_config, get_settings
from app.core.database import get_db
from app.services.gateway import GatewayClient
from app.services.migs import MigsClient
from app.services.payments import PaymentService


logger = logging.getLogger(__name__)


def get_gateway_client() -> GatewayClient:
    return MigsClient(get_migs_config())


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> PaymentService:
    return PaymentService(
        db,
        gateway,
        get_migs_config(),
        collapse_refund_errors=get_settings().refund_collapse_gateway_errors,
    )


def require_admin_key(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> None:
    expected = get_settings().admin_api_key
    if not expected:
        logger.warning("ADMIN_API_KEY is not configured; rejecting admin request")
        raise HTTPException(status_code=403, detail="Admin access is not configured")
    if not x_api_key or not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid API key")
