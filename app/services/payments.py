"""Payment transaction lifecycle.

    pending ──> success ──> partially_refunded ──> refunded
       │           └──────────────────────────────────┘
       ├──> failed
       └──> cancelled

Every status change happens inside one ``TransactionStore.atomic()`` block
together with the gateway fields that justify it. Gateway round trips for
refunds and queries run outside any open database transaction; the row is
re-read under lock afterwards and re-validated before it is written.
"""
import logging
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import MigsConfig, get_migs_config, get_settings
from app.core.errors import (
    GatewayError,
    GatewayRejectedError,
    IllegalStateError,
    IllegalTransitionError,
    IntegrityError,
    NotFoundError,
    ValidationError,
)
from app.models import PaymentTransaction, TransactionStatus, TERMINAL_STATUSES
from app.models.base import utcnow
from app.services.gateway import GatewayClient
from app.services.migs import MigsClient
from app.services.transaction_store import TransactionStore


logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    TransactionStatus.PENDING: {TransactionStatus.SUCCESS, TransactionStatus.FAILED, TransactionStatus.CANCELLED},
    TransactionStatus.SUCCESS: {TransactionStatus.PARTIALLY_REFUNDED, TransactionStatus.REFUNDED},
    TransactionStatus.PARTIALLY_REFUNDED: {TransactionStatus.PARTIALLY_REFUNDED, TransactionStatus.REFUNDED},
}
REFUNDABLE_STATUSES = {TransactionStatus.SUCCESS, TransactionStatus.PARTIALLY_REFUNDED}

MIN_REF_LENGTH = 5
MAX_REF_LENGTH = 50


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def ensure_transition(current: TransactionStatus, target: TransactionStatus) -> None:
    if not can_transition(current, target):
        raise IllegalTransitionError(current.value, target.value)


def new_reference(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4).upper()}"


def _as_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass
class PaymentRequest:
    order_info: str
    amount: Decimal
    currency: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    return_url: Optional[str] = None


@dataclass
class PaymentCreation:
    payment_url: str
    transaction: PaymentTransaction


class PaymentService:
    def __init__(
        self,
        db: Session,
        gateway: GatewayClient,
        config: MigsConfig,
        *,
        collapse_refund_errors: bool = False,
    ):
        self.store = TransactionStore(db)
        self.gateway = gateway
        self.config = config
        self.collapse_refund_errors = collapse_refund_errors

    def create_payment(self, request: PaymentRequest, client_ip: Optional[str] = None) -> PaymentCreation:
        order_info = (request.order_info or "").strip()
        if not order_info:
            raise ValidationError("order_info is required")
        amount = _as_amount(request.amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")

        merchant_txn_ref = new_reference("MIGS")
        try:
            with self.store.atomic():
                tx = self.store.create(
                    merchant_txn_ref=merchant_txn_ref,
                    order_info=order_info,
                    amount=amount,
                    currency=(request.currency or self.config.currency).strip().upper(),
                    customer_email=request.customer_email,
                    customer_phone=request.customer_phone,
                    return_url=request.return_url or self.config.return_url,
                    client_ip=client_ip,
                    status=TransactionStatus.PENDING.value,
                    refunded_amount=Decimal("0.00"),
                )
                signed = self.gateway.sign(
                    self.gateway.build_payment_request(
                        merchant_txn_ref=merchant_txn_ref,
                        order_info=order_info,
                        amount=amount,
                        return_url=self.config.return_url,
                    )
                )
                # The audit payload commits with the row or not at all.
                self.store.update(tx, vpc_data=signed)
        except Exception as exc:
            logger.error("Error creating payment merchant_txn_ref=%s: %s", merchant_txn_ref, exc)
            raise

        payment_url = self.gateway.build_redirect_url(signed)
        logger.info("Payment created id=%s merchant_txn_ref=%s amount=%s", tx.id, merchant_txn_ref, amount)
        return PaymentCreation(payment_url=payment_url, transaction=tx)

    def process_callback(self, params: dict) -> PaymentTransaction:
        params = dict(params)
        merchant_txn_ref = str(params.get("vpc_MerchTxnRef") or "").strip()

        if not self.gateway.verify_response(params):
            logger.error("Invalid secure hash on gateway callback merchant_txn_ref=%s", merchant_txn_ref)
            raise IntegrityError("Invalid secure hash - response integrity compromised")
        if not merchant_txn_ref:
            raise ValidationError("vpc_MerchTxnRef is required")

        code = self.gateway.response_code(params)
        target = self.gateway.map_status(code)
        patch = dict(self.gateway.extract_fields(params), gateway_response=params)

        try:
            with self.store.atomic():
                tx = self.store.find_by_ref(merchant_txn_ref, for_update=True)
                if tx is None:
                    raise NotFoundError(f"Transaction not found: {merchant_txn_ref}")
                current = tx.status_enum

                if target is None:
                    # In-progress or unknown code: record it, let reconciliation settle the status.
                    if current != TransactionStatus.PENDING:
                        raise IllegalTransitionError(current.value, TransactionStatus.PENDING.value)
                    self.store.update(tx, **patch)
                elif target == current:
                    self.store.update(tx, processed_at=utcnow(), **patch)
                else:
                    ensure_transition(current, target)
                    self.store.update(tx, status=target.value, processed_at=utcnow(), **patch)
        except Exception as exc:
            logger.error("Error processing payment response merchant_txn_ref=%s: %s", merchant_txn_ref, exc)
            raise

        logger.info(
            "Callback processed merchant_txn_ref=%s response_code=%s status=%s",
            merchant_txn_ref,
            code,
            tx.status,
        )
        return tx

    def cancel(self, payment_id: str) -> PaymentTransaction:
        with self.store.atomic():
            tx = self.store.find_by_id(payment_id, for_update=True)
            if tx is None:
                raise NotFoundError(f"Payment not found: {payment_id}")
            if tx.status_enum != TransactionStatus.PENDING:
                raise IllegalStateError(f"Payment cannot be cancelled - current status: {tx.status}")
            self.store.update(tx, status=TransactionStatus.CANCELLED.value, processed_at=utcnow())

        logger.info("Payment cancelled id=%s", payment_id)
        return tx

    def _check_refundable(self, tx: PaymentTransaction, requested: Decimal) -> None:
        if tx.status_enum not in REFUNDABLE_STATUSES:
            raise IllegalStateError(f"Payment not eligible for refund - current status: {tx.status}")
        available = Decimal(tx.amount) - Decimal(tx.refunded_amount or 0)
        if requested > available:
            raise ValidationError(f"Refund amount ({requested}) exceeds available amount ({available})")

    def refund(self, payment_id: str, amount) -> PaymentTransaction:
        requested = _as_amount(amount)
        if requested <= 0:
            raise ValidationError("Refund amount must be greater than zero")

        tx = self.store.find_by_id(payment_id)
        if tx is None:
            raise NotFoundError(f"Payment not found: {payment_id}")
        self._check_refundable(tx, requested)
        if not tx.transaction_id:
            raise IllegalStateError("Payment has no gateway transaction number to refund against")
        transaction_no = tx.transaction_id
        # Do not hold the read transaction open across the gateway call.
        self.store.db.commit()

        refund_ref = new_reference("REF")
        signed = self.gateway.sign(
            self.gateway.build_refund_request(refund_ref=refund_ref, transaction_no=transaction_no, amount=requested)
        )
        try:
            response = self.gateway.send_raw(signed)
            if not self.gateway.is_approved(response):
                code = self.gateway.response_code(response)
                message = self.gateway.extract_fields(response).get("response_message") or "declined"
                raise GatewayRejectedError(f"Refund declined by gateway: {message}", response_code=code)
        except (GatewayError, IntegrityError) as exc:
            logger.error("Refund processing failed payment_id=%s refund_ref=%s: %s", payment_id, refund_ref, exc)
            if self.collapse_refund_errors:
                raise GatewayRejectedError(
                    "Refund processing failed", response_code=getattr(exc, "response_code", None)
                ) from exc
            raise

        with self.store.atomic():
            tx = self.store.find_by_id(payment_id, for_update=True)
            try:
                self._check_refundable(tx, requested)
            except (IllegalStateError, ValidationError):
                # The gateway has already moved the money; a concurrent refund won the row.
                logger.critical(
                    "Refund approved by gateway but no longer applicable payment_id=%s refund_ref=%s amount=%s",
                    payment_id,
                    refund_ref,
                    requested,
                )
                raise
            new_total = Decimal(tx.refunded_amount or 0) + requested
            target = (
                TransactionStatus.REFUNDED if new_total >= Decimal(tx.amount) else TransactionStatus.PARTIALLY_REFUNDED
            )
            ensure_transition(tx.status_enum, target)
            self.store.update(tx, refunded_amount=new_total, status=target.value)

        logger.info(
            "Refund processed payment_id=%s refund_ref=%s amount=%s status=%s",
            payment_id,
            refund_ref,
            requested,
            target.value,
        )
        return tx

    def get_status(self, payment_id: str) -> PaymentTransaction:
        tx = self.store.find_by_id(payment_id)
        if tx is None:
            raise NotFoundError(f"Payment not found: {payment_id}")
        return tx

    def query_by_ref(self, merchant_txn_ref, *, raw: bool = False) -> dict:
        """Gateway status for a known reference.

        ``raw=True`` returns the verified parameters as strings, which is what
        gets persisted; the default coerces numeric values for display.
        """
        if not isinstance(merchant_txn_ref, str):
            raise ValidationError("Merchant Transaction Reference is required and must be a string")
        ref = merchant_txn_ref.strip()
        if not ref:
            raise ValidationError("Merchant Transaction Reference cannot be empty")
        if len(ref) < MIN_REF_LENGTH or len(ref) > MAX_REF_LENGTH:
            raise ValidationError("Merchant Transaction Reference has invalid length")

        tx = self.store.find_by_ref(ref)
        if tx is None:
            raise NotFoundError("Merchant Transaction Reference Id is Invalid")
        logger.info("Querying gateway merchant_txn_ref=%s id=%s status=%s", ref, tx.id, tx.status)
        self.store.db.commit()

        signed = self.gateway.sign(self.gateway.build_query_request(ref))
        if raw:
            return self.gateway.send_raw(signed)
        return self.gateway.send(signed)

    def reconcile(self, tx: PaymentTransaction, response: dict) -> bool:
        code = self.gateway.response_code(response)
        target = self.gateway.map_status(code)
        if target is None or target.value == tx.status:
            return False

        with self.store.atomic():
            locked = self.store.find_by_id(tx.id, for_update=True)
            if locked is None or locked.status_enum != TransactionStatus.PENDING:
                logger.info("Skipping reconciliation, status changed concurrently merchant_txn_ref=%s", tx.merchant_txn_ref)
                return False
            ensure_transition(TransactionStatus.PENDING, target)
            self.store.update(
                locked,
                status=target.value,
                processed_at=utcnow(),
                gateway_response=response,
                **self.gateway.extract_fields(response),
            )

        logger.info(
            "Transaction status updated merchant_txn_ref=%s old_status=%s new_status=%s",
            tx.merchant_txn_ref,
            TransactionStatus.PENDING.value,
            target.value,
        )
        return True

    def apply_webhook_status(self, merchant_txn_ref: str, target: TransactionStatus, payload: dict) -> PaymentTransaction:
        with self.store.atomic():
            tx = self.store.find_by_ref(merchant_txn_ref, for_update=True)
            if tx is None:
                raise NotFoundError(f"Transaction not found: {merchant_txn_ref}")
            current = tx.status_enum
            if current == target:
                return tx
            ensure_transition(current, target)
            patch = {"status": target.value, "gateway_response": payload}
            if target in TERMINAL_STATUSES:
                patch["processed_at"] = utcnow()
            if target == TransactionStatus.REFUNDED:
                patch["refunded_amount"] = tx.amount
            self.store.update(tx, **patch)

        logger.info("Webhook status applied merchant_txn_ref=%s %s -> %s", merchant_txn_ref, current.value, target.value)
        return tx


def build_payment_service(db: Session, gateway: Optional[GatewayClient] = None) -> PaymentService:
    config = get_migs_config()
    return PaymentService(
        db,
        gateway or MigsClient(config),
        config,
        collapse_refund_errors=get_settings().refund_collapse_gateway_errors,
    )
