"""
STK Pay Exception Hierarchy

Every error the service surfaces carries a stable error code, a message and an
HTTP status. Input errors are raised before any outbound call; gateway errors
are translated into this taxonomy instead of crashing the request.
"""
from typing import Optional, Dict, Any


class StkPayError(Exception):
    """
    Base exception for all service errors.

    Subclasses fix the error code and HTTP status; the API layer renders
    them with to_dict().
    """

    status_code: int = 400

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }


# ============================================================================
# Client errors (no retry)
# ============================================================================

class InvalidInputError(StkPayError):
    """Malformed or missing request fields."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("invalid_input", message, details)


class InvalidPhoneError(StkPayError):
    """
    Phone number does not match an accepted shape.

    Accepted: 07XXXXXXXX, 7XXXXXXXX, 2547XXXXXXXX (with optional +, spaces, hyphens).
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("invalid_phone", message, details)


class InvalidAmountError(StkPayError):
    """Amount missing, non-numeric or not positive."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("invalid_amount", message, details)


class AmountExceedsLimitError(StkPayError):
    """Requested amount is above the configured ceiling."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("amount_exceeds_limit", message, details)


class InvalidCallbackError(StkPayError):
    """Callback payload is missing Body.stkCallback or its CheckoutRequestID."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("invalid_callback", message, details)


# ============================================================================
# Gateway errors (safe to retry later)
# ============================================================================

class CredentialsUnavailableError(StkPayError):
    """Daraja consumer key/secret are not configured."""

    status_code = 503

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("credentials_unavailable", message, details)


class UpstreamAuthFailureError(StkPayError):
    """
    OAuth credential exchange failed.

    Examples:
    - Network error or timeout talking to /oauth/v1/generate
    - Gateway rejected the consumer key/secret
    - Response body without access_token
    """

    status_code = 502

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("upstream_auth_failure", message, details)


class GatewaySubmissionError(StkPayError):
    """
    STK push submission failed.

    Examples:
    - Network error or timeout (status 504)
    - Gateway returned 4xx/5xx
    - Gateway accepted the HTTP call but ResponseCode != "0"
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        super().__init__("gateway_submission_failed", message, details, status_code)


# ============================================================================
# Ledger errors
# ============================================================================

class DuplicateCorrelationIdError(StkPayError):
    """Gateway issued a CheckoutRequestID that the ledger already holds."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("duplicate_correlation_id", message, details)


class TransactionNotFoundError(StkPayError):
    status_code = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("not_found", message, details)


class NoTransactionsError(StkPayError):
    status_code = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("no_transactions", message, details)
