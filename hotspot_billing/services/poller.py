"""
Payment Status Poller - bounded verification loop for one STK push.

Each attempt waits one interval, then issues a single verification call.
The attempt counter is incremented before the budget check, so attempt
`max_attempts` is the last call ever made for a correlation token.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable

from structlog import get_logger

from hotspot_billing.exceptions import TransportError
from hotspot_billing.models.domain import PollStatus, TerminalResult
from hotspot_billing.models.mpesa import PaymentVerification
from hotspot_billing.observability.metrics import metrics
from hotspot_billing.services.payment_provider import PaymentProvider

logger = get_logger(__name__)

AttemptCallback = Callable[[int, int], Awaitable[None]]


def classify_verification(
    verification: PaymentVerification, pending_result_codes: Iterable[str] = ()
) -> PollStatus:
    """
    Map one verification answer onto PENDING, SUCCEEDED or FAILED.

    Success needs status == True AND ResultCode == "0". A true status with
    any other code is never success. Responses without a ResultCode, or
    with one of the provider's "still processing" codes, are pending.
    """
    if verification.is_success:
        return PollStatus.SUCCEEDED
    code = verification.result_code
    # "0" without the status flag: the backend has not committed yet
    if code is None or code == "0" or code in set(pending_result_codes):
        return PollStatus.PENDING
    return PollStatus.FAILED


class PaymentStatusPoller:
    """Polls a PaymentProvider until the payment is terminal or the budget runs out."""

    def __init__(
        self,
        provider: PaymentProvider,
        pending_result_codes: Iterable[str] = ("1",),
    ) -> None:
        self.provider = provider
        self.pending_result_codes = frozenset(pending_result_codes)

    async def poll_until_terminal(
        self,
        correlation_token: str,
        interval: float,
        max_attempts: int,
        *,
        still_current: Callable[[], bool] = lambda: True,
        on_attempt: AttemptCallback | None = None,
    ) -> TerminalResult:
        """
        Poll until SUCCEEDED, FAILED or TIMED_OUT.

        Args:
            correlation_token: checkoutRequestID being tracked
            interval: Seconds to wait before each verification call
            max_attempts: Maximum number of verification calls
            still_current: Guard checked before every call and before acting on
                every answer; once it returns False the loop stops with SUPERSEDED
            on_attempt: Called with (attempt, max_attempts) before each call

        Returns:
            TerminalResult; transport errors never end the loop on their own
        """
        if max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive: {max_attempts}")

        for attempts in range(1, max_attempts + 1):
            await asyncio.sleep(interval)
            if not still_current():
                return self._superseded(correlation_token, attempts - 1)

            if on_attempt is not None:
                await on_attempt(attempts, max_attempts)

            try:
                verification = await self.provider.verify_payment(correlation_token)
            except TransportError as exc:
                metrics.record_poll_attempt("transport_error")
                logger.warning(
                    "payment_status_check_failed",
                    checkout_request_id=correlation_token,
                    attempt=attempts,
                    max_attempts=max_attempts,
                    error=str(exc),
                )
                verification = None

            if not still_current():
                return self._superseded(correlation_token, attempts)

            if verification is not None:
                status = classify_verification(verification, self.pending_result_codes)
                metrics.record_poll_attempt(status.value)
                logger.info(
                    "payment_status_checked",
                    checkout_request_id=correlation_token,
                    attempt=attempts,
                    max_attempts=max_attempts,
                    status=status.value,
                    result_code=verification.result_code,
                )
                if status is not PollStatus.PENDING:
                    return TerminalResult(
                        status=status,
                        attempts=attempts,
                        result_code=verification.result_code,
                        reason=verification.result_desc,
                    )

        logger.warning(
            "payment_polling_exhausted",
            checkout_request_id=correlation_token,
            attempts=max_attempts,
        )
        return TerminalResult(status=PollStatus.TIMED_OUT, attempts=max_attempts)

    @staticmethod
    def _superseded(correlation_token: str, attempts: int) -> TerminalResult:
        logger.info(
            "payment_polling_superseded",
            checkout_request_id=correlation_token,
            attempts=attempts,
        )
        return TerminalResult(status=PollStatus.SUPERSEDED, attempts=attempts)
