"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class HotspotBillingError(Exception):
    """Base exception for all hotspot billing errors."""

    pass


class PurchaseValidationError(HotspotBillingError):
    """Raised when a purchase request is rejected before any network call."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(message)


class TransportError(HotspotBillingError):
    """Raised when an outbound call fails at the network or HTTP layer."""

    def __init__(self, operation: str, message: str, status_code: int | None = None) -> None:
        self.operation = operation
        self.message = message
        self.status_code = status_code
        super().__init__(f"{operation} transport failure: {message}")


class ProviderRejectionError(HotspotBillingError):
    """Raised when the payment provider explicitly refuses a request."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class PaymentTimeoutError(HotspotBillingError):
    """Raised when the polling budget is exhausted without a terminal answer."""

    def __init__(self, correlation_token: str, attempts: int) -> None:
        self.correlation_token = correlation_token
        self.attempts = attempts
        super().__init__(f"Payment {correlation_token} not confirmed after {attempts} checks")


class GrantFailureError(HotspotBillingError):
    """Raised when payment was captured but the access grant failed."""

    def __init__(self, correlation_token: str, reason: str) -> None:
        self.correlation_token = correlation_token
        self.reason = reason
        super().__init__(f"Access grant failed after payment {correlation_token}: {reason}")


class InvalidTransitionError(HotspotBillingError):
    """Raised when a state machine is asked to make an illegal move."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Illegal transition: {current} -> {requested}")


class SessionNotFoundError(HotspotBillingError):
    """Raised when a purchase session id is unknown."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Purchase session not found: {session_id}")
