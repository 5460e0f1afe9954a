"""
Payment Provider Protocol - Interface the purchase flow depends on.

NO DICTIONARIES - All data uses strongly typed models.
"""

from typing import Protocol

from hotspot_billing.models.mpesa import PaymentVerification, StkPushRequest, StkPushResponse


class PaymentProvider(Protocol):
    """
    Push-payment provider protocol.

    The session orchestrator only ever talks to the provider through
    this interface, so tests and alternative gateways can stand in.
    """

    async def initiate_push(self, request: StkPushRequest) -> StkPushResponse:
        """
        Ask the provider to prompt the payer's phone.

        Args:
            request: STK push details

        Returns:
            Parsed provider answer (accepted or rejected)

        Raises:
            TransportError: If the call fails at the network/HTTP layer
            ProviderRejectionError: If the provider refuses the request outright
        """
        ...

    async def verify_payment(self, correlation_token: str) -> PaymentVerification:
        """
        Query the status of a pending push payment. Read-only and idempotent.

        Args:
            correlation_token: checkoutRequestID returned by initiate_push

        Returns:
            Parsed verification answer

        Raises:
            TransportError: If the call fails at the network/HTTP layer
        """
        ...
