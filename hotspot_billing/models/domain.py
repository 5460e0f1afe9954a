"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed dataclasses.
Immutable everywhere except PaymentSession, whose state advances through
a fixed transition table.
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum

from hotspot_billing.exceptions import InvalidTransitionError, PurchaseValidationError
from hotspot_billing.models.api import PurchaseState, ReportKind

# Safaricom MSISDN: country code, no separators
PHONE_PATTERN = re.compile(r"^254[0-9]{9}$")

SECONDS_PER_HOUR = 3600

INVALID_PHONE_MESSAGE = "Please enter a valid M-Pesa phone number in the format 2547XXXXXXXX"


def is_valid_phone_number(phone: str) -> bool:
    """Check an M-Pesa phone number against the provider format."""
    return bool(PHONE_PATTERN.fullmatch(phone))


def account_number_for(duration_hours: int) -> str:
    """Account reference sent with the STK push, e.g. WIFI_2HRS."""
    return f"WIFI_{duration_hours}HRS"


class PaymentState(str, Enum):
    """Lifecycle of one provider-side payment."""

    INITIATING = "initiating"
    AWAITING_PROVIDER_ACTION = "awaiting_provider_action"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


PAYMENT_TRANSITIONS: dict[PaymentState, frozenset[PaymentState]] = {
    PaymentState.INITIATING: frozenset(
        {PaymentState.AWAITING_PROVIDER_ACTION, PaymentState.FAILED}
    ),
    PaymentState.AWAITING_PROVIDER_ACTION: frozenset({PaymentState.POLLING}),
    PaymentState.POLLING: frozenset(
        {PaymentState.SUCCEEDED, PaymentState.FAILED, PaymentState.TIMED_OUT}
    ),
    PaymentState.SUCCEEDED: frozenset(),
    PaymentState.FAILED: frozenset(),
    PaymentState.TIMED_OUT: frozenset(),
}


class PollStatus(str, Enum):
    """Classification of a verification response or of a finished poll loop."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class PurchaseRequest:
    """Immutable purchase submitted by a hotspot client."""

    client_identity: str
    amount: int
    package_duration: int

    def __post_init__(self) -> None:
        """Validate purchase fields before anything leaves the service."""
        if not is_valid_phone_number(self.client_identity):
            raise PurchaseValidationError("phone", INVALID_PHONE_MESSAGE)
        if isinstance(self.amount, bool) or not isinstance(self.amount, int) or self.amount <= 0:
            raise PurchaseValidationError(
                "amount", f"Amount must be a positive integer: {self.amount}"
            )
        if (
            isinstance(self.package_duration, bool)
            or not isinstance(self.package_duration, int)
            or self.package_duration <= 0
        ):
            raise PurchaseValidationError(
                "duration_hours",
                f"Package duration must be a positive number of hours: {self.package_duration}",
            )

    @property
    def package_label(self) -> str:
        return account_number_for(self.package_duration)

    @property
    def duration_seconds(self) -> int:
        return self.package_duration * SECONDS_PER_HOUR


@dataclass(frozen=True)
class NetworkIdentity:
    """Client address pair as seen by the hotspot."""

    address: str
    hardware_address: str
    is_placeholder: bool = False

    def __post_init__(self) -> None:
        if not self.address:
            raise PurchaseValidationError("ip", "Client IP address is required")
        if not self.hardware_address:
            raise PurchaseValidationError("mac", "Client MAC address is required")

    @property
    def client_key(self) -> str:
        """Key of the client context owning at most one active purchase."""
        return self.hardware_address.upper()


@dataclass
class PaymentSession:
    """One provider-side payment, created once the push was accepted."""

    correlation_token: str
    client_network_identity: NetworkIdentity
    state: PaymentState = PaymentState.AWAITING_PROVIDER_ACTION
    attempt_count: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return not PAYMENT_TRANSITIONS[self.state]

    def transition(self, new_state: PaymentState) -> None:
        """Advance the payment state, refusing anything off the table."""
        if new_state not in PAYMENT_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state.value, new_state.value)
        self.state = new_state


@dataclass(frozen=True)
class AccessGrant:
    """Authorization for a client to use the network until expires_at."""

    network_identity: NetworkIdentity
    granted_at: datetime
    expires_at: datetime
    package_label: str

    @classmethod
    def issue(
        cls,
        network_identity: NetworkIdentity,
        duration_hours: int,
        package_label: str,
        granted_at: datetime | None = None,
    ) -> "AccessGrant":
        granted_at = granted_at or datetime.now(UTC)
        return cls(
            network_identity=network_identity,
            granted_at=granted_at,
            expires_at=granted_at + timedelta(hours=duration_hours),
            package_label=package_label,
        )


@dataclass(frozen=True)
class InitiationResult:
    """Accepted STK push."""

    correlation_token: str
    message: str | None = None


@dataclass(frozen=True)
class TerminalResult:
    """How a poll loop ended."""

    status: PollStatus
    attempts: int
    result_code: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class GrantOutcome:
    """Result of one access-grant call; never an exception."""

    success: bool
    reason: str | None = None
    detail: str | None = None


@dataclass(frozen=True)
class StatusReport:
    """Externally observable progress of a purchase."""

    kind: ReportKind
    message: str
    state: PurchaseState
    attempt: int | None = None
    attempt_max: int | None = None
    error_type: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class SessionOutcome:
    """Final result of one orchestrated purchase."""

    state: PurchaseState
    report: StatusReport | None
    payment_session: PaymentSession | None = None
    access_grant: AccessGrant | None = None
    error: Exception | None = None
