import enum
from sqlalchemy import Column, Integer, String, Boolean, Text, DateTime, JSON, Index
from app.core.database import Base
from app.models.base import TimestampMixin, utcnow


class SyncJobStatus(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncJob(Base, TimestampMixin):
    """One requested run of the payment status reconciliation."""

    __tablename__ = "sync_jobs"

    id = Column(Integer, primary_key=True, index=True)
    triggered_by = Column(String(32), nullable=False)  # scheduled|manual|fallback-cron
    priority = Column(Integer, nullable=False, default=0)  # higher runs first
    status = Column(String(16), nullable=False, default=SyncJobStatus.WAITING.value)
    batch_size = Column(Integer, nullable=True)
    run_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)


class SyncQueueState(Base, TimestampMixin):
    __tablename__ = "sync_queue_state"

    name = Column(String(64), primary_key=True)
    paused = Column(Boolean, nullable=False, default=False)


Index("ix_sync_jobs_status_priority", SyncJob.status, SyncJob.priority)
