"""
Payment Initiator - sends exactly one STK push per purchase attempt.

No retries at this layer: a transport failure surfaces immediately so the
purchaser is never prompted twice for the same package.
"""

import time

from structlog import get_logger

from hotspot_billing.exceptions import ProviderRejectionError, TransportError
from hotspot_billing.models.domain import InitiationResult, PurchaseRequest
from hotspot_billing.models.mpesa import StkPushRequest
from hotspot_billing.observability.metrics import metrics
from hotspot_billing.observability.tracing import trace_operation
from hotspot_billing.services.payment_provider import PaymentProvider

logger = get_logger(__name__)


class PaymentInitiator:
    """Starts push payments through a PaymentProvider."""

    def __init__(self, provider: PaymentProvider) -> None:
        self.provider = provider

    async def initiate(self, identity: str, amount: int, duration: int) -> InitiationResult:
        """
        Prompt the payer's phone for `amount`.

        Args:
            identity: M-Pesa phone number (2547XXXXXXXX)
            amount: Price in the smallest currency unit
            duration: Package duration in hours (used for the account reference)

        Returns:
            InitiationResult carrying the provider's checkoutRequestID

        Raises:
            PurchaseValidationError: Bad identity/amount/duration, before any call
            TransportError: The push could not be delivered
            ProviderRejectionError: The provider declined the push
        """
        purchase = PurchaseRequest(
            client_identity=identity, amount=amount, package_duration=duration
        )
        push = StkPushRequest(
            phone=purchase.client_identity,
            amount=purchase.amount,
            account_number=purchase.package_label,
        )

        start = time.perf_counter()
        with trace_operation("stk_push", amount=amount, account_number=push.account_number) as span:
            try:
                response = await self.provider.initiate_push(push)
                if not response.status:
                    raise ProviderRejectionError(response.message or "Failed to initiate payment")
                if not response.checkout_request_id:
                    raise ProviderRejectionError("Payment provider returned no checkout request ID")
            except (TransportError, ProviderRejectionError) as exc:
                metrics.record_initiation(
                    success=False,
                    duration=time.perf_counter() - start,
                    error_type=type(exc).__name__,
                )
                logger.warning(
                    "stk_push_failed",
                    account_number=push.account_number,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise

            span.set_attribute("checkout_request_id", response.checkout_request_id)

        metrics.record_initiation(success=True, duration=time.perf_counter() - start)
        logger.info(
            "stk_push_accepted",
            checkout_request_id=response.checkout_request_id,
            account_number=push.account_number,
        )
        return InitiationResult(
            correlation_token=response.checkout_request_id,
            message=response.message,
        )
