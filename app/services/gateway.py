from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from app.models.payment_transaction import TransactionStatus


class GatewayClient(ABC):
    """Contract shared by the card gateway integrations.

    A client turns payment/refund/query intents into signed wire parameters,
    performs the HTTP exchange and verifies what comes back. The payment
    state machine only talks to this interface, so it is written once for
    every gateway variant.
    """

    name: str = "gateway"

    @abstractmethod
    def build_payment_request(
        self, *, merchant_txn_ref: str, order_info: str, amount: Decimal, return_url: str
    ) -> dict:
        """Unsigned parameters for sending the customer to the hosted payment page."""

    @abstractmethod
    def build_refund_request(self, *, refund_ref: str, transaction_no: str, amount: Decimal) -> dict:
        """Unsigned parameters for a refund command against a captured payment."""

    @abstractmethod
    def build_query_request(self, merchant_txn_ref: str) -> dict:
        """Unsigned parameters for a status query by merchant reference."""

    @abstractmethod
    def sign(self, params: dict) -> dict:
        """Return a copy of ``params`` carrying the signature fields."""

    @abstractmethod
    def build_redirect_url(self, signed_params: dict) -> str:
        """Customer-facing URL for a signed payment request."""

    @abstractmethod
    def send_raw(self, signed_params: dict) -> dict[str, str]:
        """Perform a server-to-server command and return the verified response exactly as received."""

    @abstractmethod
    def send(self, signed_params: dict) -> dict:
        """Like ``send_raw``, with numeric values coerced for display."""

    @abstractmethod
    def verify_response(self, params: dict) -> bool:
        """Check the signature of a response delivered through the customer's browser."""

    @abstractmethod
    def response_code(self, response: dict) -> Optional[str]:
        pass

    @abstractmethod
    def map_status(self, code: Optional[str]) -> Optional[TransactionStatus]:
        """Local status for a gateway result code, or None when the code settles nothing."""

    @abstractmethod
    def extract_fields(self, response: dict) -> dict:
        """Gateway identifiers to persist on the transaction record."""

    def is_approved(self, response: dict) -> bool:
        return self.response_code(response) == "0"
