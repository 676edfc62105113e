"""
Pantry error types.

Every error carries the HTTP status code it maps to, so service boundaries
can turn any failure into a structured JSON error body without guessing.
"""


class PantryError(Exception):
    """Base error for all Pantry operations."""

    status_code = 500
    title = "Internal error"

    def to_dict(self) -> dict:
        return {"error": self.title, "message": str(self)}


# Request errors (400)
class InvalidRequestError(PantryError):
    """Missing or malformed request fields."""
    status_code = 400
    title = "Invalid request"


class UnknownSkuError(InvalidRequestError):
    """Requested SKU is not in the vendor's catalog."""
    title = "Unknown SKU"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"Unknown SKU: {sku}")


# Lookup errors (404)
class NotFoundError(PantryError):
    """Base error for unknown entity IDs."""
    status_code = 404
    title = "Not found"
    entity = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"No {self.entity.lower()} found with ID: {entity_id}")


class QuoteNotFoundError(NotFoundError):
    title = "Quote not found"
    entity = "Quote"


class CartNotFoundError(NotFoundError):
    title = "Cart not found"
    entity = "Cart"


class MandateNotFoundError(NotFoundError):
    title = "Mandate not found"
    entity = "Mandate"


class PaymentNotFoundError(NotFoundError):
    title = "Payment not found"
    entity = "Payment"


# Business rule rejections (400)
class BusinessRuleError(PantryError):
    """Request was well-formed but violates a lifecycle or policy rule."""
    status_code = 400
    title = "Rejected"


class InvalidMandateStateError(BusinessRuleError):
    title = "Invalid mandate status"


class MandateExpiredError(BusinessRuleError):
    title = "Mandate expired"


class InvalidSignatureError(BusinessRuleError):
    title = "Invalid signature"


class QuoteExpiredError(BusinessRuleError):
    title = "Quote expired"


class CartExpiredError(BusinessRuleError):
    title = "Cart lock expired"


# Orchestration errors
class NoQuotesAvailableError(PantryError):
    """No vendor returned a usable quote."""
    title = "No quotes available"


class PaymentFailedError(PantryError):
    """Settlement resolved the payment to failed."""
    title = "Payment failed"

    def __init__(self, payment_id: str, reason: str):
        self.payment_id = payment_id
        self.reason = reason
        super().__init__(f"Payment failed: {reason}")


class PaymentTimeoutError(PantryError):
    """Payment did not reach a terminal state before the deadline."""
    title = "Payment confirmation timeout"


# Remote call errors
class ServiceRequestError(PantryError):
    """A vendor or settlement service answered with an error body."""
    title = "Service request failed"

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Request rejected ({status_code}): {message}")


class NetworkError(PantryError):
    """Network-level failures (DNS, connection refused, timeouts)."""
    status_code = 502
    title = "Network error"


class NotificationError(PantryError):
    """Notification could not be delivered and delivery was required."""
    title = "Notification failed"


class ConfigError(PantryError):
    """Invalid configuration value."""
    title = "Invalid configuration"


class InternalError(PantryError):
    """Unexpected fault, reported to callers with a generic message."""
