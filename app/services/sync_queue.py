"""Durable run queue for payment status reconciliation.

Celery beat only decides *when* to ask for a run; the rows in ``sync_jobs``
decide *what* runs, in priority order, one at a time.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models import SyncJob, SyncJobStatus, SyncQueueState
from app.models.base import utcnow
from app.services.reconciliation import ReconciliationWorker


logger = logging.getLogger(__name__)

QUEUE_NAME = "payment-status-sync"

MANUAL_PRIORITY = 10
SCHEDULED_PRIORITY = 0

KEEP_COMPLETED = 10
KEEP_FAILED = 5
STALLED_AFTER = timedelta(minutes=30)


def _state(db: Session) -> SyncQueueState:
    state = db.get(SyncQueueState, QUEUE_NAME)
    if state is None:
        state = SyncQueueState(name=QUEUE_NAME, paused=False)
        db.add(state)
        db.flush()
    return state


def is_paused(db: Session) -> bool:
    state = db.get(SyncQueueState, QUEUE_NAME)
    return bool(state and state.paused)


def pause_queue(db: Session) -> dict:
    _state(db).paused = True
    db.commit()
    logger.info("Payment sync queue paused")
    return get_queue_status(db)


def resume_queue(db: Session) -> dict:
    _state(db).paused = False
    db.commit()
    logger.info("Payment sync queue resumed")
    return get_queue_status(db)


def enqueue(
    db: Session,
    triggered_by: str,
    *,
    priority: int = SCHEDULED_PRIORITY,
    batch_size: Optional[int] = None,
    run_at: Optional[datetime] = None,
) -> SyncJob:
    job = SyncJob(
        triggered_by=triggered_by,
        priority=priority,
        status=SyncJobStatus.WAITING.value,
        batch_size=batch_size,
        run_at=run_at or utcnow(),
    )
    db.add(job)
    db.commit()
    logger.info("Sync job queued id=%s triggered_by=%s priority=%s", job.id, triggered_by, priority)
    return job


def has_pending_or_active(db: Session) -> bool:
    count = (
        db.query(func.count(SyncJob.id))
        .filter(SyncJob.status.in_([SyncJobStatus.WAITING.value, SyncJobStatus.ACTIVE.value]))
        .scalar()
    )
    return bool(count)


def _fail_stalled(db: Session) -> None:
    cutoff = utcnow() - STALLED_AFTER
    stalled = (
        db.query(SyncJob)
        .filter(SyncJob.status == SyncJobStatus.ACTIVE.value, SyncJob.started_at < cutoff)
        .all()
    )
    for job in stalled:
        logger.warning("Sync job stalled id=%s started_at=%s", job.id, job.started_at)
        job.status = SyncJobStatus.FAILED.value
        job.finished_at = utcnow()
        job.error = "Job stalled"
    if stalled:
        db.flush()


def claim_next(db: Session) -> Optional[SyncJob]:
    _fail_stalled(db)
    active = db.query(func.count(SyncJob.id)).filter(SyncJob.status == SyncJobStatus.ACTIVE.value).scalar()
    if active:
        db.commit()
        return None
    job = (
        db.query(SyncJob)
        .filter(SyncJob.status == SyncJobStatus.WAITING.value, SyncJob.run_at <= utcnow())
        .order_by(SyncJob.priority.desc(), SyncJob.created_at.asc(), SyncJob.id.asc())
        .with_for_update(skip_locked=True)
        .first()
    )
    if job is not None:
        job.status = SyncJobStatus.ACTIVE.value
        job.started_at = utcnow()
    db.commit()
    return job


def complete(db: Session, job: SyncJob, result: dict) -> SyncJob:
    job.status = SyncJobStatus.COMPLETED.value
    job.finished_at = utcnow()
    job.result = result
    db.commit()
    return job


def fail(db: Session, job: SyncJob, error: str) -> SyncJob:
    job.status = SyncJobStatus.FAILED.value
    job.finished_at = utcnow()
    job.error = error
    db.commit()
    return job


def prune(db: Session) -> int:
    removed = 0
    for status, keep in ((SyncJobStatus.COMPLETED, KEEP_COMPLETED), (SyncJobStatus.FAILED, KEEP_FAILED)):
        stale = (
            db.query(SyncJob)
            .filter(SyncJob.status == status.value)
            .order_by(SyncJob.finished_at.desc(), SyncJob.id.desc())
            .offset(keep)
            .all()
        )
        for job in stale:
            db.delete(job)
            removed += 1
    db.commit()
    return removed


def get_queue_status(db: Session) -> dict:
    now = utcnow()

    def _count(*criteria) -> int:
        return db.query(func.count(SyncJob.id)).filter(*criteria).scalar() or 0

    waiting = SyncJob.status == SyncJobStatus.WAITING.value
    last = db.query(func.max(SyncJob.created_at)).scalar()
    return {
        "queue_name": QUEUE_NAME,
        "waiting": _count(waiting, SyncJob.run_at <= now),
        "active": _count(SyncJob.status == SyncJobStatus.ACTIVE.value),
        "completed": _count(SyncJob.status == SyncJobStatus.COMPLETED.value),
        "failed": _count(SyncJob.status == SyncJobStatus.FAILED.value),
        "delayed": _count(waiting, SyncJob.run_at > now),
        "paused": is_paused(db),
        "last_job_timestamp": last.isoformat() if last else None,
    }


def schedule_tick(db: Session) -> Optional[SyncJob]:
    if is_paused(db):
        logger.info("Payment sync queue paused; skipping scheduled run")
        return None
    return enqueue(db, "scheduled", priority=SCHEDULED_PRIORITY)


def fallback_tick(db: Session) -> Optional[SyncJob]:
    if is_paused(db):
        logger.info("Payment sync queue paused; skipping fallback run")
        return None
    if has_pending_or_active(db):
        return None
    logger.info("No payment sync job waiting or active; queueing fallback run")
    return enqueue(db, "fallback-cron", priority=SCHEDULED_PRIORITY)


def trigger_manual_sync(db: Session, batch_size: Optional[int] = None) -> SyncJob:
    return enqueue(db, "manual", priority=MANUAL_PRIORITY, batch_size=batch_size)


def run_next_job(db: Session, worker_factory: Callable[[Session], ReconciliationWorker]) -> Optional[SyncJob]:
    job = claim_next(db)
    if job is None:
        return None

    logger.info("Sync job started id=%s triggered_by=%s", job.id, job.triggered_by)
    try:
        result = worker_factory(db).run(batch_size=job.batch_size, triggered_by=job.triggered_by)
    except Exception as exc:
        db.rollback()
        logger.error("Sync job failed id=%s: %s", job.id, exc)
        fail(db, job, str(exc))
    else:
        complete(db, job, result.to_dict())
        logger.info("Sync job completed id=%s updated=%s", job.id, result.updated_count)
    prune(db)
    return job
