import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy.orm import Session

from app.models import PaymentTransaction, TransactionStatus


logger = logging.getLogger(__name__)


class TransactionStore:
    """Persistence for payment transactions on a caller-owned session.

    Nothing here commits on its own: callers group several calls inside
    ``atomic()`` so they land in one database transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def atomic(self) -> Iterator[Session]:
        try:
            yield self.db
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def create(self, **fields) -> PaymentTransaction:
        tx = PaymentTransaction(**fields)
        self.db.add(tx)
        self.db.flush()
        return tx

    def _query(self, for_update: bool):
        query = self.db.query(PaymentTransaction)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query

    def find_by_ref(self, merchant_txn_ref: str, *, for_update: bool = False) -> Optional[PaymentTransaction]:
        return self._query(for_update).filter(PaymentTransaction.merchant_txn_ref == merchant_txn_ref).first()

    def find_by_id(self, payment_id: str, *, for_update: bool = False) -> Optional[PaymentTransaction]:
        return self._query(for_update).filter(PaymentTransaction.id == payment_id).first()

    def update(self, tx: PaymentTransaction, **patch) -> PaymentTransaction:
        for key, value in patch.items():
            if not hasattr(PaymentTransaction, key):
                raise AttributeError(f"PaymentTransaction has no field {key!r}")
            setattr(tx, key, value)
        self.db.flush()
        return tx

    def find_stale_pending(self, *, older_than: datetime, limit: int) -> list[PaymentTransaction]:
        return (
            self.db.query(PaymentTransaction)
            .filter(
                PaymentTransaction.status == TransactionStatus.PENDING.value,
                PaymentTransaction.created_at < older_than,
            )
            .order_by(PaymentTransaction.created_at.asc())
            .limit(limit)
            .all()
        )
