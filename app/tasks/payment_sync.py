"""Celery tasks driving the payment status sync queue."""

import logging

from app.core.celery_app import celery_app
from app.core.database import SessionLocal
from app.services import sync_queue
from app.services.payments import build_payment_service
from app.services.reconciliation import ReconciliationWorker


logger = logging.getLogger(__name__)

MAX_JOBS_PER_RUN = 5


def build_worker(db) -> ReconciliationWorker:
    return ReconciliationWorker(build_payment_service(db))


def dispatch_sync() -> None:
    run_sync_jobs.delay()


@celery_app.task(name="payment_sync.run")
def run_sync_jobs() -> dict:
    db = SessionLocal()
    try:
        ran = []
        for _ in range(MAX_JOBS_PER_RUN):
            job = sync_queue.run_next_job(db, build_worker)
            if job is None:
                break
            ran.append({"id": job.id, "status": job.status})
        return {"jobs": ran}
    finally:
        db.close()


@celery_app.task(name="payment_sync.schedule")
def schedule_sync() -> dict:
    db = SessionLocal()
    try:
        job = sync_queue.schedule_tick(db)
    finally:
        db.close()
    if job is None:
        return {"queued": False}
    dispatch_sync()
    return {"queued": True, "job_id": job.id}


@celery_app.task(name="payment_sync.fallback")
def fallback_sync() -> dict:
    db = SessionLocal()
    try:
        job = sync_queue.fallback_tick(db)
    finally:
        db.close()
    if job is None:
        return {"queued": False}
    logger.info("Fallback payment sync queued job_id=%s", job.id)
    dispatch_sync()
    return {"queued": True, "job_id": job.id}
