from app.core.celery_app import celery_app
from app.models import SyncJob, SyncJobStatus
from app.services import sync_queue
from app.services.reconciliation import SyncResult
from app.tasks import payment_sync


class _StubWorker:
    def run(self, batch_size=None, triggered_by="scheduled"):
        return SyncResult(processed_count=1, updated_count=1)


def test_beat_schedule_and_delivery_guarantees():
    schedule = celery_app.conf.beat_schedule
    assert schedule["payment-sync-schedule"]["task"] == "payment_sync.schedule"
    assert schedule["payment-sync-schedule"]["schedule"] == 300.0
    assert schedule["payment-sync-fallback"]["task"] == "payment_sync.fallback"
    assert schedule["payment-sync-fallback"]["schedule"] == 600.0
    assert celery_app.conf.task_acks_late is True
    assert celery_app.conf.task_reject_on_worker_lost is True


def test_schedule_task_queues_and_dispatches(db, monkeypatch):
    dispatched = []
    monkeypatch.setattr(payment_sync, "dispatch_sync", lambda: dispatched.append(True))

    first = payment_sync.schedule_sync()
    fallback = payment_sync.fallback_sync()

    assert first["queued"] is True
    assert fallback == {"queued": False}
    assert dispatched == [True]


def test_schedule_task_skips_while_paused(db, monkeypatch):
    dispatched = []
    monkeypatch.setattr(payment_sync, "dispatch_sync", lambda: dispatched.append(True))
    sync_queue.pause_queue(db)

    assert payment_sync.schedule_sync() == {"queued": False}
    assert payment_sync.fallback_sync() == {"queued": False}
    assert dispatched == []


def test_run_task_drains_queue(db, monkeypatch):
    monkeypatch.setattr(payment_sync, "build_worker", lambda session: _StubWorker())
    sync_queue.enqueue(db, "scheduled")
    sync_queue.trigger_manual_sync(db)

    result = payment_sync.run_sync_jobs()

    assert [job["status"] for job in result["jobs"]] == ["completed", "completed"]
    db.expire_all()
    assert db.query(SyncJob).filter(SyncJob.status == SyncJobStatus.COMPLETED.value).count() == 2
