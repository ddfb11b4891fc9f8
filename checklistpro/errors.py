"""
Application Errors

Error taxonomy shared by services and the HTTP layer. Services raise these;
the exception handlers registered in ``checklistpro.main`` render them as
``{"error": ..., "details": [...]}`` with the status code carried by the class.
"""

from typing import Any, Dict, List, Optional


class AppError(Exception):
    """Base class for errors with a user-safe message and HTTP status"""

    status_code: int = 500
    default_message: str = "Unexpected error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Error envelope body"""
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class InvalidCart(ValidationError):
    """Cart references a product that is missing, disabled, or malformed"""

    default_message = "Cart contains unavailable products"


class AuthError(AppError):
    status_code = 401
    default_message = "Could not validate credentials"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "You do not have permission to perform this action"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Resource conflict"


class InvalidTransition(ConflictError):
    default_message = "Invalid order status transition"


class PaymentError(AppError):
    """
    Payment declined or provider failure.

    Declines are the customer's problem (402); provider faults are ours (500).
    """

    status_code = 402
    default_message = "Payment failed"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[List[Dict[str, Any]]] = None,
        declined: bool = True,
    ):
        super().__init__(message, details)
        self.declined = declined
        self.status_code = 402 if declined else 500


class RateLimitedError(AppError):
    status_code = 429
    default_message = "Too many requests, please try again later"


class InternalError(AppError):
    status_code = 500
    default_message = "Internal server error"


class OrderCreationFailed(InternalError):
    default_message = "Order could not be created"
