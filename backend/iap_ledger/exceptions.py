"""
Billing Exception Hierarchy

Error codes shared by the providers, the purchase log and the reconciliation engine.
All errors use the billing: prefix.
"""
from typing import Optional, Dict, Any


class BillingError(Exception):
    """
    Base exception for all billing errors.

    None of these are fatal to the process: the engine maps each one onto a
    reported status and leaves the log reachable by a later reconciliation pass.
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


class ProviderSetupFailure(BillingError):
    """
    Billing provider could not be readied.

    Examples:
    - Store connection setup returned an error response
    - Service disconnected (modern client re-drives setup)
    """

    http_status = 503

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("billing:provider:setup_failed", message, details)


class PurchaseOutcomeFailure(BillingError):
    """
    Purchase flow ended without a transaction.

    Examples:
    - User cancelled the store flow
    - Store returned an error response
    - Item already owned (must be consumed first)
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("billing:purchase:failed", message, details)


class ConsumeFailure(BillingError):
    """
    Settlement's consume step did not succeed.

    The transaction stays in (or moves to) CONSUMING and is retried by resend.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("billing:settle:consume_failed", message, details)


class CommitFailure(BillingError):
    """
    Downstream commit/verification failed after a successful consume.

    The transaction stays in (or moves to) COMMITTING and is retried by resend.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("billing:settle:commit_failed", message, details)


class QueryFailure(BillingError):
    """
    Remote purchase query failed.

    Absorbed by the providers into an empty result.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("billing:query:failed", message, details)


class DuplicateOrderError(BillingError):
    """Insert of an order_id that is already in the log. Receipts are write-once."""

    http_status = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("billing:log:duplicate_order", message, details)


class TransactionNotFoundError(BillingError):
    """Status update or lookup for an order_id that is not in the log."""

    http_status = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("billing:log:not_found", message, details)


class InvalidTransitionError(BillingError):
    """
    Status change not present in the transition table.

    Examples:
    - COMPLETE -> STORED
    - COMMITTING -> PENDING
    """

    http_status = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("billing:state:invalid_transition", message, details)
