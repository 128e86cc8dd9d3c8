"""Error taxonomy for the payment driver layer.

Every error carries a stable ``code`` and an HTTP ``status_code`` so the API
layer can render it as a JSON error body without knowing each kind. The
optional ``operation`` and ``identifier`` say where the failure happened.
"""
from typing import Any, Optional


class PaymentError(Exception):
    """Base exception for payment driver errors."""

    code = "payment_error"
    status_code = 400

    def __init__(self, message: str, operation: Optional[str] = None, identifier: Any = None):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.identifier = identifier

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


# --- Registry ---

class DuplicateDriverError(PaymentError):
    code = "duplicate_driver"
    status_code = 500


class DriverNotFoundError(PaymentError):
    code = "driver_not_found"
    status_code = 500


# --- Registration / onboarding ---

class UserNotFoundError(PaymentError):
    code = "user_not_found"
    status_code = 404


class CustomerAlreadyBoundError(PaymentError):
    """The user already has a remote customer; no second one is created."""

    code = "customer_already_bound"
    status_code = 409


class UnboundCustomerError(PaymentError):
    code = "unbound_customer"
    status_code = 400


class InvalidZipError(PaymentError):
    code = "invalid_zip"
    status_code = 400


class RemoteServiceError(PaymentError):
    """The payment backend rejected a request. ``message`` is the decoded backend message."""

    code = "remote_service_error"
    status_code = 402


class MalformedRemoteErrorError(PaymentError):
    """The payment backend returned an error payload that could not be decoded."""

    code = "malformed_remote_error"
    status_code = 502

    def __init__(self, message: str, payload: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.payload = payload


# --- Charge / removal ---

class CardNotFoundError(PaymentError):
    code = "card_not_found"
    status_code = 404


class CustomerResolutionError(PaymentError):
    code = "customer_resolution_error"
    status_code = 409


class OwnershipMismatchError(PaymentError):
    code = "ownership_mismatch"
    status_code = 403


class RemoteCleanupError(PaymentError):
    """
    The local card record was deleted but the backend refused to delete its
    remote counterpart. Operators must reconcile ``remote_token`` by hand.
    """

    code = "remote_cleanup_error"
    status_code = 502

    def __init__(self, message: str, remote_token: Optional[str] = None,
                 customer_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.remote_token = remote_token
        self.customer_id = customer_id


class InvalidChargeError(PaymentError):
    code = "invalid_charge"
    status_code = 400


class OperationTimeoutError(PaymentError):
    code = "operation_timeout"
    status_code = 504
