import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Optional

from app.core.config import get_settings
from app.core.errors import is_retryable
from app.models.base import utcnow
from app.services.payments import PaymentService
from app.services.transaction_store import TransactionStore


logger = logging.getLogger(__name__)


@dataclass
class SyncError:
    merchant_txn_ref: str
    error: str
    retryable: bool = False


@dataclass
class SyncResult:
    processed_count: int = 0
    updated_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    processing_time_ms: int = 0
    errors: list[SyncError] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class ReconciliationWorker:
    """Re-queries the gateway for pending transactions the callback never settled."""

    def __init__(
        self,
        service: PaymentService,
        store: Optional[TransactionStore] = None,
        *,
        stale_after_minutes: Optional[int] = None,
        batch_size: Optional[int] = None,
        throttle_ms: Optional[int] = None,
    ):
        settings = get_settings()
        self.service = service
        self.store = store or service.store
        self.stale_after = timedelta(
            minutes=stale_after_minutes if stale_after_minutes is not None else settings.sync_stale_after_minutes
        )
        self.batch_size = batch_size or settings.sync_batch_size
        self.throttle_ms = throttle_ms if throttle_ms is not None else settings.sync_throttle_ms

    def run(self, batch_size: Optional[int] = None, triggered_by: str = "scheduled") -> SyncResult:
        start = time.time()
        limit = batch_size or self.batch_size
        result = SyncResult()

        cutoff = utcnow() - self.stale_after
        pending = self.store.find_stale_pending(older_than=cutoff, limit=limit)
        # The selection read must not stay open across gateway calls.
        self.store.db.commit()
        logger.info("Payment sync started triggered_by=%s candidates=%s", triggered_by, len(pending))

        for index, tx in enumerate(pending):
            if index and self.throttle_ms:
                time.sleep(self.throttle_ms / 1000)
            ref = tx.merchant_txn_ref
            result.processed_count += 1
            try:
                response = self.service.query_by_ref(ref, raw=True)
                if self.service.reconcile(tx, response):
                    result.updated_count += 1
                else:
                    result.skipped_count += 1
            except Exception as exc:
                self.store.db.rollback()
                result.error_count += 1
                result.errors.append(
                    SyncError(merchant_txn_ref=ref, error=str(exc), retryable=is_retryable(exc))
                )
                logger.warning("Payment sync failed merchant_txn_ref=%s: %s", ref, exc)

        result.processing_time_ms = int((time.time() - start) * 1000)
        logger.info(
            "Payment sync finished processed=%s updated=%s skipped=%s errors=%s duration=%sms",
            result.processed_count,
            result.updated_count,
            result.skipped_count,
            result.error_count,
            result.processing_time_ms,
        )
        return result
