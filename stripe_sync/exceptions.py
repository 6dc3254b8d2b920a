"""
Billing-related exceptions.

Every error raised by this package derives from BillingError and carries a
machine-readable code plus the HTTP-equivalent status used by the API layer.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    INVALID_CONFIG = "INVALID_CONFIG"
    INVALID_REQUEST = "INVALID_REQUEST"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    WEBHOOK_SIGNATURE_INVALID = "WEBHOOK_SIGNATURE_INVALID"
    WEBHOOK_SIGNATURE_MISSING = "WEBHOOK_SIGNATURE_MISSING"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    CACHE_STORE_FAILED = "CACHE_STORE_FAILED"
    NOT_FOUND = "NOT_FOUND"
    CUSTOMER_NOT_FOUND = "CUSTOMER_NOT_FOUND"
    SUBSCRIPTION_NOT_FOUND = "SUBSCRIPTION_NOT_FOUND"
    CHECKOUT_SESSION_NOT_FOUND = "CHECKOUT_SESSION_NOT_FOUND"


class BillingError(Exception):
    """Base exception for all billing errors."""

    default_code: ErrorCode = ErrorCode.PAYMENT_FAILED
    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        original_error: Exception | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.original_error = original_error
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to the JSON error body."""
        return {
            "error": self.code.value,
            "message": self.message,
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.message!r}, code={self.code.value}, "
            f"details={self.details})"
        )


class ConfigurationError(BillingError):
    """Missing or malformed configuration. Raised at construction time."""

    default_code = ErrorCode.INVALID_CONFIG
    status_code = 500


class ValidationError(BillingError):
    """Malformed inbound request."""

    default_code = ErrorCode.INVALID_REQUEST
    status_code = 400


class SignatureError(BillingError):
    """Webhook signature missing or invalid."""

    default_code = ErrorCode.WEBHOOK_SIGNATURE_INVALID
    status_code = 401


class UpstreamOperationError(BillingError):
    """An upstream provider or store operation failed."""

    default_code = ErrorCode.PAYMENT_FAILED
    status_code = 502


class CacheStoreError(UpstreamOperationError):
    """The remote KV store failed a get, set or delete."""

    default_code = ErrorCode.CACHE_STORE_FAILED

    def __init__(
        self,
        operation: str,
        key: str,
        original_error: Exception | None = None,
    ):
        super().__init__(
            f"Cache {operation} failed for key {key!r}: {original_error}",
            details={"operation": operation, "key": key},
            original_error=original_error,
        )
        self.operation = operation
        self.key = key


class NotFoundError(BillingError):
    """Requested resource does not exist."""

    default_code = ErrorCode.NOT_FOUND
    status_code = 404


class WebhookProcessingError(BillingError):
    """A verified webhook event failed at a processing stage."""

    def __init__(
        self,
        stage: str,
        event_id: str,
        event_type: str,
        original_error: Exception,
    ):
        code = (
            original_error.code
            if isinstance(original_error, BillingError)
            else ErrorCode.PAYMENT_FAILED
        )
        super().__init__(
            f"Webhook event {event_id} failed at stage {stage}: {original_error}",
            code=code,
            details={"stage": stage, "event_id": event_id, "event_type": event_type},
            original_error=original_error,
        )
        self.stage = stage
