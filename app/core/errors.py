class PaymentError(Exception):
    status_code = 400
    code = "PAYMENT_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(PaymentError):
    status_code = 500
    code = "CONFIGURATION_ERROR"


class ValidationError(PaymentError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(PaymentError):
    status_code = 404
    code = "NOT_FOUND"


class IllegalStateError(PaymentError):
    status_code = 409
    code = "ILLEGAL_STATE"


class IllegalTransitionError(IllegalStateError):
    code = "ILLEGAL_TRANSITION"

    def __init__(self, current: str, target: str):
        super().__init__(f"Illegal status transition: {current} -> {target}")
        self.current = current
        self.target = target


class IntegrityError(PaymentError):
    """Signature verification failed. Never auto-corrected."""

    status_code = 400
    code = "INTEGRITY_ERROR"


class GatewayError(PaymentError):
    status_code = 503
    code = "GATEWAY_ERROR"
    retryable = False

    def __init__(self, message: str, *, http_status: int | None = None, raw: str | None = None):
        super().__init__(message)
        self.http_status = http_status
        self.raw = raw


class GatewayUnavailableError(GatewayError):
    code = "GATEWAY_UNAVAILABLE"
    retryable = True


class GatewayTimeoutError(GatewayError):
    status_code = 504
    code = "GATEWAY_TIMEOUT"
    retryable = True


class GatewayServerError(GatewayError):
    code = "GATEWAY_SERVER_ERROR"
    retryable = True


class InvalidGatewayResponseError(GatewayError):
    status_code = 502
    code = "INVALID_GATEWAY_RESPONSE"


class GatewayRejectedError(GatewayError):
    """The gateway processed the command and declined it."""

    status_code = 402
    code = "GATEWAY_REJECTED"

    def __init__(self, message: str, *, response_code: str | None = None, raw: str | None = None):
        super().__init__(message, raw=raw)
        self.response_code = response_code


def is_retryable(exc: Exception) -> bool:
    return isinstance(exc, GatewayError) and exc.retryable
