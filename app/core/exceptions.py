"""
Custom application exceptions
"""

from typing import Optional, Dict, Any


class ServicelyException(Exception):
    """Base exception for Servicely application"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(ServicelyException):
    """Authentication related errors"""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_ERROR",
            status_code=401,
            details=details
        )


class AuthorizationError(ServicelyException):
    """Authorization related errors"""

    def __init__(self, message: str = "Not authorized", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_FORBIDDEN",
            status_code=403,
            details=details
        )


class NotFoundError(ServicelyException):
    """Resource not found errors"""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id {identifier} not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404
        )


class ValidationError(ServicelyException):
    """Validation errors"""

    def __init__(self, message: str, field: Optional[str] = None, code: str = "VALIDATION_ERROR"):
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            code=code,
            status_code=400,
            details=details
        )


class OutOfHoursError(ValidationError):
    """Requested interval falls outside the provider's working hours"""

    def __init__(self, message: str = "Requested time is outside the provider's working hours"):
        super().__init__(message, field="scheduled_at", code="OUT_OF_HOURS")


class PastOrTooSoonError(ValidationError):
    """Requested start is in the past or inside the minimum lead time"""

    def __init__(self, lead_minutes: int):
        super().__init__(
            f"Bookings must start at least {lead_minutes} minutes from now",
            field="scheduled_at",
            code="PAST_OR_TOO_SOON",
        )


class InvalidCompletionCodeError(ValidationError):
    """Submitted completion code does not match"""

    def __init__(self):
        super().__init__("Invalid completion code", field="completion_code", code="INVALID_COMPLETION_CODE")


class ConflictError(ServicelyException):
    """Resource conflict errors"""

    def __init__(self, message: str, code: str = "CONFLICT", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code=code,
            status_code=409,
            details=details
        )


class SlotConflictError(ConflictError):
    """Padded interval overlaps an active hold or booking"""

    def __init__(self, conflicting_ids: Optional[list] = None):
        details = {"conflicts": [str(i) for i in conflicting_ids]} if conflicting_ids else {}
        super().__init__(
            "Provider already has a booking or pending reservation in this time slot",
            code="SLOT_CONFLICT",
            details=details,
        )


class InvalidTransitionError(ConflictError):
    """Booking is not in a status that allows the requested action"""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move booking from {current} to {target}",
            code="INVALID_STATE_TRANSITION",
            details={"current_status": current, "target_status": target},
        )


class AlreadyRatedError(ConflictError):
    """Booking has already been rated"""

    def __init__(self, booking_id: Any):
        super().__init__(
            "Booking has already been rated",
            code="ALREADY_RATED",
            details={"booking_id": str(booking_id)},
        )


class HoldNotFoundError(ServicelyException):
    """Hold expired or never existed"""

    def __init__(self, booking_id: Any):
        super().__init__(
            message="Reservation expired or not found",
            code="HOLD_NOT_FOUND",
            status_code=410,
            details={"booking_id": str(booking_id)}
        )


class RefundNotAllowedError(ServicelyException):
    """Booking is not eligible for a refund"""

    def __init__(self, message: str, code: str = "REFUND_NOT_ALLOWED", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code=code,
            status_code=400,
            details=details
        )


class RefundWindowExpiredError(RefundNotAllowedError):
    """Self-service refund window has elapsed"""

    def __init__(self, window_hours: int, hours_since_creation: float):
        super().__init__(
            f"Refund window of {window_hours} hours has expired",
            code="REFUND_WINDOW_EXPIRED",
            details={
                "refund_window_hours": window_hours,
                "hours_since_creation": round(hours_since_creation, 2),
            },
        )


class PaymentError(ServicelyException):
    """Payment related errors"""

    def __init__(self, message: str = "Payment processing failed", code: str = "PAYMENT_FAILED",
                 details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code=code,
            status_code=402,
            details=details
        )


class PayoutDestinationError(PaymentError):
    """Provider cannot receive payouts"""

    def __init__(self, provider_id: Any):
        super().__init__(
            "Provider has not completed payment setup",
            code="PAYOUT_NOT_CONFIGURED",
            details={"provider_id": str(provider_id)},
        )


class WebhookSignatureError(ServicelyException):
    """Webhook payload failed signature verification"""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(
            message=message,
            code="INVALID_SIGNATURE",
            status_code=400
        )


class RateLimitError(ServicelyException):
    """Rate limit exceeded error"""

    def __init__(self, limit: int, window: int):
        super().__init__(
            message=f"Rate limit exceeded. Max {limit} requests per {window} seconds",
            code="RATE_LIMIT_EXCEEDED",
            status_code=429,
            details={"limit": limit, "window": window}
        )


class ConcurrencyError(ServicelyException):
    """Concurrency conflict error"""

    def __init__(self, message: str = "Resource was modified by another process"):
        super().__init__(
            message=message,
            code="CONCURRENCY_ERROR",
            status_code=409
        )


class ExternalServiceError(ServicelyException):
    """External service error"""

    def __init__(self, service: str, message: str = None):
        super().__init__(
            message=message or f"External service {service} is unavailable",
            code="EXTERNAL_SERVICE_ERROR",
            status_code=503,
            details={"service": service}
        )
