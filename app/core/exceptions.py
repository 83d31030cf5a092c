from typing import Any, Optional


class ConfigurationError(Exception):
    """Required configuration is missing or invalid. Fatal at startup."""
    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class GatewayError(Exception):
    """The payment provider call failed or returned something we cannot use."""
    def __init__(self, detail: str, response_code: Optional[str] = None, payload: Optional[Any] = None):
        super().__init__(detail)
        self.detail = detail
        self.response_code = response_code
        self.payload = payload


class ValidationError(Exception):
    """Bad client input, rejected at the API boundary with a 400."""
    status_code = 400

    def __init__(self, detail: str, details: Optional[Any] = None):
        super().__init__(detail)
        self.detail = detail
        self.details = details


class NotFoundError(ValidationError):
    status_code = 404


class ReconciliationConflict(Exception):
    """A provider outcome could not be applied to local state."""
    def __init__(self, detail: str, checkout_request_id: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.checkout_request_id = checkout_request_id


class PaymentNotFoundError(ReconciliationConflict):
    def __init__(self, checkout_request_id: str):
        super().__init__(
            f"No payment attempt with CheckoutRequestID {checkout_request_id}",
            checkout_request_id=checkout_request_id,
        )
