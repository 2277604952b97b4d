"""
Verdant Store - Custom Exceptions
==================================
Business-level exceptions that can be caught and converted to HTTP responses.
"""

from fastapi import status


class StoreError(Exception):
    """Base exception for all business logic errors."""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "Something went wrong. Please try again."):
        self.message = message
        super().__init__(self.message)


class ValidationError(StoreError):
    """Bad input rejected before any write (address, totals, payment method)."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class CouponValidationError(ValidationError):
    """Raised when coupon validation fails. `reason` is a CouponRejection value."""
    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)


class NotFoundError(StoreError):
    """Raised when a requested resource doesn't exist."""
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(StoreError):
    """Requested transition conflicts with the current state."""
    status_code = status.HTTP_409_CONFLICT


class UnpaidOrderError(ConflictError):
    """Raised when a prepaid order is shipped before payment is confirmed."""
    def __init__(self):
        super().__init__("Cannot create shipment: prepaid order is unpaid")


class ExternalServiceError(StoreError):
    """Gateway or carrier unreachable, or returned an error payload."""
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str = "The service is unavailable right now. Please try again.", details=None):
        self.details = details
        super().__init__(message)


class ConfigurationError(ExternalServiceError):
    """Provider credentials are missing; raised before contacting the provider."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class SecurityError(StoreError):
    """Bad webhook signature. Never carries detail back to the caller."""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self):
        super().__init__("Invalid request")

