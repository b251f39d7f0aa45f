import enum
import uuid
from sqlalchemy import CheckConstraint, Column, String, Numeric, Text, DateTime, JSON, Index
from app.core.database import Base
from app.models.base import TimestampMixin


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


TERMINAL_STATUSES = {TransactionStatus.SUCCESS, TransactionStatus.FAILED, TransactionStatus.CANCELLED}


def _new_id() -> str:
    return str(uuid.uuid4())


class PaymentTransaction(Base, TimestampMixin):
    """
    One customer payment against the card gateway.

    Status is a plain string column (values of TransactionStatus) so new states
    do not need a Postgres ENUM migration.
    """

    __tablename__ = "payment_transactions"
    __table_args__ = (CheckConstraint("refunded_amount <= amount", name="ck_payment_transactions_refund_le_amount"),)

    id = Column(String(36), primary_key=True, default=_new_id)
    merchant_txn_ref = Column(String(64), unique=True, nullable=False)
    transaction_id = Column(String(64), nullable=True)

    order_info = Column(String(255), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="AED")
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(32), nullable=True)

    status = Column(String(24), nullable=False, default=TransactionStatus.PENDING.value)
    response_code = Column(String(8), nullable=True)
    response_message = Column(Text, nullable=True)
    auth_code = Column(String(64), nullable=True)
    receipt_no = Column(String(64), nullable=True)
    batch_no = Column(String(64), nullable=True)

    refunded_amount = Column(Numeric(12, 2), nullable=False, default=0)

    vpc_data = Column(JSON, nullable=True)  # signed outbound request, as sent
    gateway_response = Column(JSON, nullable=True)  # verified inbound response, as received

    return_url = Column(String(512), nullable=False)
    client_ip = Column(String(64), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def status_enum(self) -> TransactionStatus:
        return TransactionStatus(self.status)


Index("ix_payment_transactions_transaction_id", PaymentTransaction.transaction_id)
Index("ix_payment_transactions_status", PaymentTransaction.status)
Index("ix_payment_transactions_status_created", PaymentTransaction.status, PaymentTransaction.created_at)
