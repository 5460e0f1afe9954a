"""
Session Orchestrator - the purchase state machine.

Drives one purchase through STK push, status polling and the access
grant, reporting every state change exactly once:

    IDLE -> INITIATING -> POLLING -> GRANTING -> COMPLETED
                 |            |           |
                 v            v           v
      INITIATION_FAILED  PAYMENT_FAILED  GRANT_FAILED
                         PAYMENT_TIMED_OUT

Any non-terminal state before GRANTING may also end in CANCELLED when the
purchaser closes the session or starts another purchase. Once payment is
confirmed the grant is always allowed to finish. A grant interrupted by task
cancellation ends in GRANT_FAILED.
"""

import asyncio
import time
from collections.abc import AsyncIterator
from uuid import uuid4

from structlog import get_logger

from hotspot_billing.exceptions import (
    GrantFailureError,
    InvalidTransitionError,
    PaymentTimeoutError,
    ProviderRejectionError,
    PurchaseValidationError,
    TransportError,
)
from hotspot_billing.models.api import TERMINAL_PURCHASE_STATES, PurchaseState, ReportKind
from hotspot_billing.models.domain import (
    AccessGrant,
    NetworkIdentity,
    PaymentSession,
    PaymentState,
    PollStatus,
    PurchaseRequest,
    SessionOutcome,
    StatusReport,
)
from hotspot_billing.observability.logging import log_context, mask_phone
from hotspot_billing.observability.metrics import metrics
from hotspot_billing.observability.tracing import trace_operation
from hotspot_billing.services.access_grant import AccessGrantClient
from hotspot_billing.services.initiator import PaymentInitiator
from hotspot_billing.services.poller import PaymentStatusPoller

logger = get_logger(__name__)

PURCHASE_TRANSITIONS: dict[PurchaseState, frozenset[PurchaseState]] = {
    PurchaseState.IDLE: frozenset({PurchaseState.INITIATING, PurchaseState.CANCELLED}),
    PurchaseState.INITIATING: frozenset(
        {PurchaseState.POLLING, PurchaseState.INITIATION_FAILED, PurchaseState.CANCELLED}
    ),
    PurchaseState.POLLING: frozenset(
        {
            PurchaseState.GRANTING,
            PurchaseState.PAYMENT_FAILED,
            PurchaseState.PAYMENT_TIMED_OUT,
            PurchaseState.CANCELLED,
        }
    ),
    PurchaseState.GRANTING: frozenset({PurchaseState.COMPLETED, PurchaseState.GRANT_FAILED}),
    **{state: frozenset() for state in TERMINAL_PURCHASE_STATES},
}

# Purchaser-facing messages
MSG_INITIATING = "Initiating payment..."
MSG_AWAITING_PIN = "Please enter your M-Pesa PIN on your phone"
MSG_CHECKING = "Checking payment status ({attempt}/{attempt_max})"
MSG_GRANTING = "Payment received. Activating your WiFi access..."
MSG_COMPLETED = "Payment successful! WiFi access granted."
MSG_INITIATION_FAILED = "Failed to initiate payment"
MSG_PAYMENT_SERVICE_DOWN = "Could not reach the payment service. Please try again."
MSG_PAYMENT_FAILED = "Payment failed. Please try again."
MSG_PAYMENT_TIMEOUT = "Payment timeout. Please try again."
MSG_GRANT_FAILED = "Payment succeeded but failed to grant access. Contact support."
MSG_CANCELLED = "Payment session closed."


def resolve_network_identity(
    address: str | None,
    hardware_address: str | None,
    placeholder: NetworkIdentity | None,
) -> NetworkIdentity:
    """
    Build the client identity forwarded by the hotspot redirect.

    Falls back to `placeholder` for whichever half is missing. The
    placeholder is a local-testing convenience: every use is logged as
    unsafe, and production settings refuse to enable it.

    Raises:
        PurchaseValidationError: Identity missing and no placeholder configured
    """
    if address and hardware_address:
        return NetworkIdentity(address=address, hardware_address=hardware_address)

    if placeholder is None:
        raise PurchaseValidationError(
            "mac", "Client IP and MAC address must be supplied by the hotspot"
        )

    logger.warning(
        "placeholder_network_identity_used",
        unsafe=True,
        supplied_ip=bool(address),
        supplied_mac=bool(hardware_address),
    )
    return NetworkIdentity(
        address=address or placeholder.address,
        hardware_address=hardware_address or placeholder.hardware_address,
        is_placeholder=True,
    )


class PurchaseSession:
    """
    All mutable state of one purchase attempt.

    Written only by the orchestrator task that owns it. Readers use
    `reports`, `stream()` and `wait()`.
    """

    def __init__(self, request: PurchaseRequest, network_identity: NetworkIdentity) -> None:
        self.session_id = str(uuid4())
        self.request = request
        self.network_identity = network_identity
        self.state = PurchaseState.IDLE
        self.payment: PaymentSession | None = None
        self.access_grant: AccessGrant | None = None
        self.error: Exception | None = None
        self.grant_attempted = False
        self.reports: list[StatusReport] = []
        self.started_at = time.monotonic()
        self.finished_at: float | None = None
        self.task: asyncio.Task[None] | None = None
        self._changed = asyncio.Condition()

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_PURCHASE_STATES

    @property
    def correlation_token(self) -> str | None:
        return self.payment.correlation_token if self.payment else None

    @property
    def last_report(self) -> StatusReport | None:
        return self.reports[-1] if self.reports else None

    @property
    def outcome(self) -> SessionOutcome:
        return SessionOutcome(
            state=self.state,
            report=self.last_report,
            payment_session=self.payment,
            access_grant=self.access_grant,
            error=self.error,
        )

    async def advance(
        self,
        new_state: PurchaseState,
        kind: ReportKind,
        message: str,
        error: Exception | None = None,
    ) -> StatusReport:
        """Move to `new_state` and publish its single status report."""
        if new_state not in PURCHASE_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state.value, new_state.value)

        self.state = new_state
        if error is not None:
            self.error = error
        if self.is_terminal:
            self.finished_at = time.monotonic()

        report = StatusReport(
            kind=kind,
            message=message,
            state=new_state,
            error_type=type(error).__name__ if error is not None else None,
        )
        await self._publish(report)
        logger.info(
            "purchase_state_changed",
            state=new_state.value,
            report_kind=kind.value,
            status_message=message,
        )
        return report

    async def report_progress(self, message: str, attempt: int, attempt_max: int) -> None:
        """Publish a polling progress report without changing state."""
        await self._publish(
            StatusReport(
                kind=ReportKind.INFO,
                message=message,
                state=self.state,
                attempt=attempt,
                attempt_max=attempt_max,
            )
        )

    async def _publish(self, report: StatusReport) -> None:
        async with self._changed:
            self.reports.append(report)
            self._changed.notify_all()

    async def stream(self) -> AsyncIterator[StatusReport]:
        """Yield every report, past and future, until the session is terminal."""
        index = 0
        while True:
            async with self._changed:
                await self._changed.wait_for(lambda: index < len(self.reports) or self.is_terminal)
            while index < len(self.reports):
                yield self.reports[index]
                index += 1
            if self.is_terminal and index >= len(self.reports):
                return

    def abandon_payment(self) -> None:
        """Fail a payment that will never be polled again."""
        if self.payment is not None and not self.payment.is_terminal:
            self.payment.transition(PaymentState.FAILED)

    async def wait(self) -> SessionOutcome:
        """Wait for the owning task to finish and return the outcome."""
        if self.task is not None:
            await asyncio.wait({self.task})
        return self.outcome


class SessionOrchestrator:
    """
    Runs purchases for one client context, at most one at a time.

    Submitting a new purchase retires the previous one first: its poll loop
    is cancelled and awaited, or, if payment is already confirmed, its grant
    is awaited. Each poll tick also checks that its session is still the
    current one before acting.
    """

    def __init__(
        self,
        initiator: PaymentInitiator,
        poller: PaymentStatusPoller,
        grant_client: AccessGrantClient,
        polling_interval: float = 5.0,
        max_polling_attempts: int = 12,
        placeholder_identity: NetworkIdentity | None = None,
        seen_tokens: set[str] | None = None,
    ) -> None:
        self.initiator = initiator
        self.poller = poller
        self.grant_client = grant_client
        self.polling_interval = polling_interval
        self.max_polling_attempts = max_polling_attempts
        self.placeholder_identity = placeholder_identity
        self._current: PurchaseSession | None = None
        # Shared across devices by the registry; a token is polled at most once
        self._seen_tokens: set[str] = seen_tokens if seen_tokens is not None else set()
        self._submit_lock = asyncio.Lock()

    @property
    def current(self) -> PurchaseSession | None:
        return self._current

    async def submit_purchase(
        self,
        client_identity: str,
        amount: int,
        package_duration_hours: int,
        client_network_identity: NetworkIdentity | None = None,
    ) -> PurchaseSession:
        """
        Validate and start a purchase.

        Validation happens before anything else: an invalid phone number,
        amount or duration raises PurchaseValidationError with no session
        created and no network call made.

        Returns:
            The running PurchaseSession; consume `stream()` or `wait()`
        """
        request = PurchaseRequest(
            client_identity=client_identity,
            amount=amount,
            package_duration=package_duration_hours,
        )
        network_identity = client_network_identity or resolve_network_identity(
            None, None, self.placeholder_identity
        )

        async with self._submit_lock:
            await self._retire_current()
            session = PurchaseSession(request, network_identity)
            self._current = session
            metrics.active_sessions.inc()
            session.task = asyncio.create_task(
                self._run(session), name=f"purchase-{session.session_id}"
            )

        logger.info(
            "purchase_submitted",
            session_id=session.session_id,
            phone=mask_phone(client_identity),
            amount=amount,
            duration_hours=package_duration_hours,
            client_mac=network_identity.hardware_address,
            placeholder_identity=network_identity.is_placeholder,
        )
        return session

    async def close(self) -> None:
        """User-initiated close: stop the current purchase if it is still pending."""
        async with self._submit_lock:
            await self._retire_current()

    async def _retire_current(self) -> None:
        session = self._current
        if session is None or session.task is None or session.task.done():
            return

        if session.state is PurchaseState.GRANTING:
            # Payment is captured; let the grant land instead of dropping it
            logger.info("waiting_for_pending_grant", session_id=session.session_id)
            await session.wait()
            return

        session.task.cancel()
        await asyncio.wait({session.task})
        if not session.is_terminal:
            # Cancelled before its first step, so _run never saw the cancellation
            await session.advance(PurchaseState.CANCELLED, ReportKind.INFO, MSG_CANCELLED)
            self._record_finished(session)

    @staticmethod
    def _record_finished(session: PurchaseSession) -> None:
        metrics.active_sessions.dec()
        duration = (session.finished_at or time.monotonic()) - session.started_at
        metrics.record_purchase(session.state.value, session.request.amount, duration)

    def _is_current(self, session: PurchaseSession) -> bool:
        return self._current is session and not session.is_terminal

    async def _run(self, session: PurchaseSession) -> None:
        with log_context(session_id=session.session_id):
            try:
                await self._drive(session)
            except asyncio.CancelledError:
                await self._end_cancelled(session)
                logger.info("purchase_cancelled", state=session.state.value)
                raise
            except Exception as exc:
                metrics.record_error(type(exc).__name__, "purchase_flow")
                logger.error("purchase_flow_crashed", error=str(exc), exc_info=True)
                await self._fail_unexpectedly(session, exc)
            finally:
                self._record_finished(session)

    async def _end_cancelled(self, session: PurchaseSession) -> None:
        """Close a session whose task was cancelled mid-flow."""
        session.abandon_payment()
        if session.state is PurchaseState.GRANTING:
            # Payment is captured but the controller never confirmed the grant
            await session.advance(
                PurchaseState.GRANT_FAILED,
                ReportKind.ERROR,
                MSG_GRANT_FAILED,
                error=GrantFailureError(
                    session.correlation_token or "", "cancelled before the grant completed"
                ),
            )
        elif PurchaseState.CANCELLED in PURCHASE_TRANSITIONS[session.state]:
            await session.advance(PurchaseState.CANCELLED, ReportKind.INFO, MSG_CANCELLED)

    async def _fail_unexpectedly(self, session: PurchaseSession, exc: Exception) -> None:
        """Close a session whose flow raised something unplanned."""
        session.abandon_payment()
        fallback = {
            PurchaseState.INITIATING: (PurchaseState.INITIATION_FAILED, MSG_INITIATION_FAILED),
            PurchaseState.POLLING: (PurchaseState.PAYMENT_FAILED, MSG_PAYMENT_FAILED),
            PurchaseState.GRANTING: (PurchaseState.GRANT_FAILED, MSG_GRANT_FAILED),
        }.get(session.state)
        if fallback is None:
            return
        state, message = fallback
        await session.advance(state, ReportKind.ERROR, message, error=exc)

    async def _drive(self, session: PurchaseSession) -> None:
        request = session.request

        # ---- Initiation -------------------------------------------------
        await session.advance(PurchaseState.INITIATING, ReportKind.INFO, MSG_INITIATING)
        try:
            initiation = await self.initiator.initiate(
                request.client_identity, request.amount, request.package_duration
            )
        except ProviderRejectionError as exc:
            await session.advance(
                PurchaseState.INITIATION_FAILED, ReportKind.ERROR, exc.reason, error=exc
            )
            return
        except TransportError as exc:
            await session.advance(
                PurchaseState.INITIATION_FAILED,
                ReportKind.ERROR,
                MSG_PAYMENT_SERVICE_DOWN,
                error=exc,
            )
            return

        token = initiation.correlation_token
        if token in self._seen_tokens:
            exc = ProviderRejectionError(f"Duplicate checkout request ID: {token}")
            logger.error("duplicate_checkout_request_id", checkout_request_id=token)
            await session.advance(
                PurchaseState.INITIATION_FAILED, ReportKind.ERROR, MSG_INITIATION_FAILED, error=exc
            )
            return
        self._seen_tokens.add(token)

        payment = PaymentSession(
            correlation_token=token, client_network_identity=session.network_identity
        )
        session.payment = payment

        # ---- Polling ----------------------------------------------------
        payment.transition(PaymentState.POLLING)
        await session.advance(PurchaseState.POLLING, ReportKind.INFO, MSG_AWAITING_PIN)

        async def on_attempt(attempt: int, attempt_max: int) -> None:
            payment.attempt_count = attempt
            await session.report_progress(
                MSG_CHECKING.format(attempt=attempt, attempt_max=attempt_max),
                attempt,
                attempt_max,
            )

        with trace_operation("payment_polling", checkout_request_id=token) as span:
            result = await self.poller.poll_until_terminal(
                token,
                self.polling_interval,
                self.max_polling_attempts,
                still_current=lambda: self._is_current(session),
                on_attempt=on_attempt,
            )
            span.set_attribute("poll_status", result.status.value)
            span.set_attribute("attempts", result.attempts)

        if result.status is PollStatus.SUPERSEDED:
            session.abandon_payment()
            await session.advance(PurchaseState.CANCELLED, ReportKind.INFO, MSG_CANCELLED)
            return

        if result.status is PollStatus.FAILED:
            payment.transition(PaymentState.FAILED)
            reason = result.reason or MSG_PAYMENT_FAILED
            await session.advance(
                PurchaseState.PAYMENT_FAILED,
                ReportKind.ERROR,
                reason,
                error=ProviderRejectionError(reason),
            )
            return

        if result.status is PollStatus.TIMED_OUT:
            payment.transition(PaymentState.TIMED_OUT)
            await session.advance(
                PurchaseState.PAYMENT_TIMED_OUT,
                ReportKind.ERROR,
                MSG_PAYMENT_TIMEOUT,
                error=PaymentTimeoutError(token, result.attempts),
            )
            return

        # ---- Granting ---------------------------------------------------
        payment.transition(PaymentState.SUCCEEDED)
        await session.advance(PurchaseState.GRANTING, ReportKind.INFO, MSG_GRANTING)
        await self._grant_access(session, payment)

    async def _grant_access(self, session: PurchaseSession, payment: PaymentSession) -> None:
        if session.grant_attempted:
            raise InvalidTransitionError(session.state.value, "second access grant")
        session.grant_attempted = True

        request = session.request
        with trace_operation(
            "access_grant",
            checkout_request_id=payment.correlation_token,
            duration_seconds=request.duration_seconds,
        ):
            outcome = await self.grant_client.grant(
                session.network_identity, request.duration_seconds, request.package_label
            )

        if not outcome.success:
            reason = outcome.reason or "unknown controller error"
            logger.error(
                "access_grant_failed_after_payment",
                checkout_request_id=payment.correlation_token,
                reason=reason,
            )
            await session.advance(
                PurchaseState.GRANT_FAILED,
                ReportKind.ERROR,
                MSG_GRANT_FAILED,
                error=GrantFailureError(payment.correlation_token, reason),
            )
            return

        session.access_grant = AccessGrant.issue(
            network_identity=session.network_identity,
            duration_hours=request.package_duration,
            package_label=request.package_label,
        )
        await session.advance(PurchaseState.COMPLETED, ReportKind.SUCCESS, MSG_COMPLETED)
