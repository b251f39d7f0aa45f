from sqlalchemy import Column, Integer, String, Boolean, Text, JSON, Index
from app.core.database import Base
from app.models.base import TimestampMixin


class WebhookLog(Base, TimestampMixin):
    __tablename__ = "webhook_logs"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(32), nullable=False)
    event = Column(String(64), nullable=True)
    reference = Column(String(64), nullable=True)
    payload = Column(JSON, nullable=False)
    processed = Column(Boolean, nullable=False, default=False)
    error = Column(Text, nullable=True)


Index("ix_webhook_logs_provider_reference", WebhookLog.provider, WebhookLog.reference)
