"""
Payment Exception Hierarchy

Machine-readable error kinds for the payment mediator.
All errors use the paytm: prefix so clients can branch on error_code.
"""
from typing import Optional, Dict, Any


class PaymentError(Exception):
    """
    Base exception for all payment mediator errors.

    Each subclass fixes its error_code and the HTTP status the API layer
    maps it to.
    """

    http_status = 400

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


class ValidationError(PaymentError):
    """
    Caller input rejected. Never retried.

    Examples:
    - Missing customer email, phone, or name
    - Amount not a positive number
    """

    http_status = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("paytm:validation", message, details)


class NotFoundError(PaymentError):
    """No transaction exists for the given order id."""

    http_status = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("paytm:not_found", message, details)


class ConflictError(PaymentError):
    """
    Reported outcome cannot be applied.

    Examples:
    - Callback reports TXN_SUCCESS for an order already FAILED
    - Reported TXNAMOUNT differs from the stored amount
    - Unauthenticated callback under the strict authenticity policy
    """

    http_status = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("paytm:conflict", message, details)


class PersistenceError(PaymentError):
    """
    Transaction store unavailable or write failed after bounded retries.

    The caller may retry the whole operation.
    """

    http_status = 503

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("paytm:persistence", message, details)


class UpstreamError(PaymentError):
    """
    Gateway unreachable or answered with a non-success transport status.
    """

    http_status = 502

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: str = "paytm:upstream_error"
    ):
        super().__init__(error_code, message, details)


class UpstreamTimeout(UpstreamError):
    """Gateway did not answer within the configured deadline."""

    http_status = 504

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, error_code="paytm:upstream_timeout")


class SigningError(PaymentError):
    """Checksum could not be computed (merchant key not configured)."""

    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("paytm:signing", message, details)
