import logging
import re
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from urllib.parse import parse_qsl, quote, urlencode

import httpx

from app.core.config import MigsConfig
from app.core.errors import (
    GatewayServerError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    IntegrityError,
    InvalidGatewayResponseError,
)
from app.models.payment_transaction import TransactionStatus
from app.services.gateway import GatewayClient
from app.services.secure_hash import (
    SECURE_HASH_FIELD,
    SECURE_HASH_TYPE_FIELD,
    generate_secure_hash,
    parse_hash_type,
    verify_secure_hash,
)


logger = logging.getLogger(__name__)

VPC_VERSION = "1"
RESPONSE_CODE_FIELD = "vpc_TxnResponseCode"

RESPONSE_CODES = {
    "0": "Transaction approved",
    "1": "Transaction could not be processed",
    "2": "Transaction declined by bank",
    "3": "No reply from bank",
    "4": "Expired card",
    "5": "Insufficient funds",
    "6": "Error communicating with bank",
    "7": "Payment server system error",
    "8": "Transaction type not supported",
    "9": "Bank declined transaction",
    "A": "Transaction aborted",
    "B": "Transaction blocked",
    "C": "Transaction cancelled",
    "D": "Deferred transaction received and awaiting processing",
    "E": "Transaction declined, refer to card issuer",
    "F": "3-D Secure authentication failed",
    "I": "Card security code verification failed",
    "L": "Shopping transaction locked, try again later",
    "N": "Cardholder not enrolled in authentication scheme",
    "P": "Transaction pending",
    "R": "Retry limits exceeded, transaction not processed",
    "S": "Duplicate session ID",
    "T": "Address verification failed",
    "U": "Card security code failed",
    "V": "Address verification and card security code failed",
    "?": "Transaction status unknown",
}
DECLINE_CODES = frozenset("123456789ABCEFINRSTUV")

_INT_VALUE = re.compile(r"^\d+$")
_FLOAT_VALUE = re.compile(r"^\d+\.\d+$")


def map_response_code(code) -> Optional[TransactionStatus]:
    value = str(code if code is not None else "").strip().upper()
    if value == "0":
        return TransactionStatus.SUCCESS
    if value in DECLINE_CODES:
        return TransactionStatus.FAILED
    return None


def describe_response_code(code) -> str:
    value = str(code if code is not None else "").strip().upper()
    return RESPONSE_CODES.get(value, "Unknown response code")


def to_minor_units(amount) -> str:
    minor = (Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return str(int(minor))


def parse_form_response(body: str) -> dict[str, str]:
    text = (body or "").strip()
    if not text:
        raise InvalidGatewayResponseError("Empty response received from gateway")
    if "=" not in text or ("&" not in text and " " in text):
        raise InvalidGatewayResponseError("Invalid response format from gateway", raw=text[:300])
    pairs = parse_qsl(text, keep_blank_values=True)
    if not any(key.startswith("vpc_") for key, _ in pairs):
        raise InvalidGatewayResponseError("Invalid response format from gateway", raw=text[:300])
    return dict(pairs)


def coerce_values(raw: dict[str, str]) -> dict:
    parsed = {}
    for key, value in raw.items():
        if _INT_VALUE.match(value):
            parsed[key] = int(value)
        elif _FLOAT_VALUE.match(value):
            parsed[key] = float(value)
        else:
            parsed[key] = value
    return parsed


def _text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class MigsClient(GatewayClient):
    name = "migs"

    def __init__(self, config: MigsConfig, *, transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self.timeout = config.timeout_seconds
        self._transport = transport

    def _base_params(self, command: str, merchant_txn_ref: str) -> dict:
        return {
            "vpc_Version": VPC_VERSION,
            "vpc_Command": command,
            "vpc_AccessCode": self.config.access_code,
            "vpc_MerchTxnRef": merchant_txn_ref,
            "vpc_Merchant": self.config.merchant_id,
        }

    def build_payment_request(self, *, merchant_txn_ref, order_info, amount, return_url) -> dict:
        params = self._base_params("pay", merchant_txn_ref)
        params.update(
            {
                "vpc_OrderInfo": order_info,
                "vpc_Amount": to_minor_units(amount),
                "vpc_ReturnURL": return_url or self.config.return_url,
                "vpc_Locale": "en",
                "vpc_Gateway": "ssl",
            }
        )
        return params

    def build_refund_request(self, *, refund_ref, transaction_no, amount) -> dict:
        params = self._base_params("refund", refund_ref)
        params.update(
            {
                "vpc_TransactionNo": transaction_no,
                "vpc_TransNo": transaction_no,
                "vpc_Amount": to_minor_units(amount),
            }
        )
        return params

    def build_query_request(self, merchant_txn_ref) -> dict:
        params = self._base_params("queryDR", merchant_txn_ref)
        params.update({"vpc_Locale": "en", "vpc_Gateway": "ssl"})
        return params

    def sign(self, params: dict) -> dict:
        signed = dict(params)
        signed[SECURE_HASH_FIELD] = generate_secure_hash(params, self.config.secure_secret, self.config.hash_type)
        signed[SECURE_HASH_TYPE_FIELD] = self.config.hash_type.value
        return signed

    def build_redirect_url(self, signed_params: dict) -> str:
        query = urlencode(
            [(key, str(value)) for key, value in signed_params.items() if value is not None],
            quote_via=quote,
        )
        separator = "&" if "?" in self.config.gateway_url else "?"
        return f"{self.config.gateway_url}{separator}{query}"

    def send_raw(self, signed_params: dict) -> dict[str, str]:
        form = {key: str(value) for key, value in signed_params.items() if value is not None and str(value) != ""}
        command = form.get("vpc_Command", "")
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "User-Agent": "MIGS-Client/1.0",
            "Accept": "application/x-www-form-urlencoded, text/plain",
        }
        start = time.time()
        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=False, transport=self._transport) as client:
                response = client.post(self.config.gateway_query_url, data=form, headers=headers)
        except httpx.TimeoutException as exc:
            logger.error("MIGS %s timed out after %ss", command, self.timeout)
            raise GatewayTimeoutError("Gateway request timed out", raw=str(exc)) from exc
        except httpx.ConnectError as exc:
            logger.error("MIGS %s connection failed: %s", command, exc)
            raise GatewayUnavailableError("Gateway service is not reachable", raw=str(exc)) from exc
        except httpx.TransportError as exc:
            logger.error("MIGS %s transport error: %s", command, exc)
            raise GatewayUnavailableError("Gateway communication failed", raw=str(exc)) from exc

        duration_ms = round((time.time() - start) * 1000, 2)
        logger.info("MIGS %s status=%s duration=%sms", command, response.status_code, duration_ms)

        if response.status_code >= 500:
            raise GatewayServerError(
                f"Gateway returned error status: {response.status_code}",
                http_status=response.status_code,
                raw=response.text[:300],
            )
        if response.status_code >= 400:
            # Some acquirers report command errors as 4xx with a form body.
            logger.warning("MIGS %s returned status=%s; parsing body as data", command, response.status_code)

        raw = parse_form_response(response.text)
        self._check_response_hash(raw, form.get("vpc_MerchTxnRef"))

        code = self.response_code(raw)
        if code is not None:
            logger.info(
                "MIGS %s merchant_txn_ref=%s response_code=%s message=%s",
                command,
                form.get("vpc_MerchTxnRef"),
                code,
                raw.get("vpc_Message") or describe_response_code(code),
            )
        return raw

    def send(self, signed_params: dict) -> dict:
        return coerce_values(self.send_raw(signed_params))

    query = send

    def _check_response_hash(self, raw: dict, merchant_txn_ref: Optional[str]) -> None:
        if not raw.get(SECURE_HASH_FIELD):
            return
        hash_type = parse_hash_type(raw.get(SECURE_HASH_TYPE_FIELD)) or self.config.hash_type
        if not verify_secure_hash(raw, self.config.secure_secret, hash_type):
            logger.error("Invalid secure hash in gateway response merchant_txn_ref=%s", merchant_txn_ref)
            raise IntegrityError("Gateway response failed secure hash verification")

    def verify_response(self, params: dict) -> bool:
        return verify_secure_hash(params, self.config.secure_secret, self.config.hash_type)

    def response_code(self, response: dict) -> Optional[str]:
        return _text(response.get(RESPONSE_CODE_FIELD))

    def map_status(self, code) -> Optional[TransactionStatus]:
        return map_response_code(code)

    def extract_fields(self, response: dict) -> dict:
        return {
            "transaction_id": _text(response.get("vpc_TransactionNo")),
            "response_code": self.response_code(response),
            "response_message": _text(response.get("vpc_Message")),
            "auth_code": _text(response.get("vpc_AuthorizeId")),
            "receipt_no": _text(response.get("vpc_ReceiptNo")),
            "batch_no": _text(response.get("vpc_BatchNo")),
        }
