from dataclasses import dataclass
from functools import lru_cache
import json
import logging
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.errors import ConfigurationError
from app.services.secure_hash import SecureHashType, is_hex_secret, parse_hash_type


logger = logging.getLogger(__name__)


def parse_cors_origins(value: str) -> list[str]:
    if not value:
        return []

    parsed: list[str]
    raw = value.strip()
    if raw.startswith("["):
        try:
            items = json.loads(raw)
            parsed = [str(item).strip() for item in items if str(item).strip()]
        except (TypeError, ValueError):
            parsed = []
    else:
        parsed = [origin.strip() for origin in raw.split(",") if origin.strip()]

    # Preserve order and remove duplicates.
    return list(dict.fromkeys(parsed))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_name: str = "MIGS Payments"
    environment: str = "development"
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./payments.db"
    db_pool_size: int = 5
    db_max_overflow: int = 5
    db_pool_timeout: int = 15
    db_pool_recycle: int = 1200
    db_pool_pre_ping: bool = True

    # Celery broker/backend for the reconciliation schedule
    redis_url: Optional[str] = None

    # MIGS gateway
    migs_merchant_id: Optional[str] = None
    migs_access_code: Optional[str] = None
    migs_secure_secret: Optional[str] = None
    migs_gateway_url: Optional[str] = None
    migs_gateway_query_url: Optional[str] = None
    migs_return_url: Optional[str] = None
    migs_currency: str = "AED"
    migs_secure_hash_type: str = "SHA256"
    migs_timeout_seconds: float = 30.0

    # When set, every gateway failure during a refund is reported as a decline.
    refund_collapse_gateway_errors: bool = False

    # Mashreq webhooks
    mashreq_webhook_secret: Optional[str] = None

    # Reconciliation
    sync_stale_after_minutes: int = 5
    sync_batch_size: int = 50
    sync_throttle_ms: int = 100
    sync_interval_minutes: int = 5
    sync_fallback_interval_minutes: int = 10

    # Frontend URLs (callback redirects)
    frontend_base_url: str = "http://localhost:5173"

    # Admin operations (manual sync trigger, queue status)
    admin_api_key: Optional[str] = None

    rate_limit_enabled: bool = True
    rate_limit_payments: str = "10/minute"

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"
    auto_create_tables: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()


@dataclass(frozen=True)
class MigsConfig:
    merchant_id: str
    access_code: str
    secure_secret: str
    gateway_url: str
    gateway_query_url: str
    return_url: str
    currency: str = "AED"
    hash_type: SecureHashType = SecureHashType.SHA256
    timeout_seconds: float = 30.0

    REQUIRED_FIELDS = ("merchant_id", "access_code", "secure_secret", "gateway_url", "return_url")

    @classmethod
    def from_settings(cls, settings) -> "MigsConfig":
        values = {
            "merchant_id": (settings.migs_merchant_id or "").strip(),
            "access_code": (settings.migs_access_code or "").strip(),
            "secure_secret": (settings.migs_secure_secret or "").strip(),
            "gateway_url": (settings.migs_gateway_url or "").strip(),
            "return_url": (settings.migs_return_url or "").strip(),
        }
        missing = [name for name in cls.REQUIRED_FIELDS if not values[name]]
        if missing:
            names = ", ".join(f"MIGS_{name.upper()}" for name in missing)
            raise ConfigurationError(f"MIGS configuration missing: {names}")

        hash_type = parse_hash_type(settings.migs_secure_hash_type)
        if hash_type is None:
            raise ConfigurationError(f"Unsupported MIGS_SECURE_HASH_TYPE: {settings.migs_secure_hash_type}")

        if hash_type == SecureHashType.SHA256 and not is_hex_secret(values["secure_secret"]):
            logger.warning("MIGS secure secret might not be in hexadecimal format")

        query_url = (settings.migs_gateway_query_url or "").strip()
        if not query_url:
            logger.warning("MIGS_GATEWAY_QUERY_URL not set; using gateway URL for query and refund commands")
            query_url = values["gateway_url"]

        config = cls(
            gateway_query_url=query_url,
            currency=(settings.migs_currency or "AED").strip().upper(),
            hash_type=hash_type,
            timeout_seconds=float(settings.migs_timeout_seconds),
            **values,
        )
        logger.info(
            "MIGS configuration validated merchant_id=%s access_code=%s gateway_url=%s hash_type=%s",
            config.merchant_id,
            config.masked_access_code,
            config.gateway_url,
            config.hash_type.value,
        )
        return config

    @property
    def masked_access_code(self) -> str:
        return f"{self.access_code[:4]}****"


@lru_cache
def get_migs_config() -> MigsConfig:
    return MigsConfig.from_settings(get_settings())
