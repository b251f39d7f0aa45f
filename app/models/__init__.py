from app.models.payment_transaction import PaymentTransaction, TransactionStatus, TERMINAL_STATUSES
from app.models.sync_job import SyncJob, SyncJobStatus, SyncQueueState
from app.models.webhook_log import WebhookLog

__all__ = [
    "PaymentTransaction",
    "TransactionStatus",
    "TERMINAL_STATUSES",
    "SyncJob",
    "SyncJobStatus",
    "SyncQueueState",
    "WebhookLog",
]
