"""
M-Pesa STK Push Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.

Talks to the payment backend that fronts Safaricom Daraja:
    POST {api_base_url}/stkpush          {phone, amount, accountNumber}
    GET  {api_base_url}/verify-payment   ?requestID=<checkoutRequestID>
"""

import httpx
from structlog import get_logger

from hotspot_billing.config import Settings
from hotspot_billing.exceptions import ProviderRejectionError, TransportError
from hotspot_billing.models.mpesa import PaymentVerification, StkPushRequest, StkPushResponse

logger = get_logger(__name__)


class MpesaProvider:
    """
    M-Pesa payment backend client.

    Implements the PaymentProvider protocol over httpx. Every call opens
    its own client bounded by request_timeout_seconds.
    """

    def __init__(
        self,
        stk_push_url: str,
        verify_payment_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            stk_push_url: Full URL of the STK push endpoint
            verify_payment_url: Full URL of the verification endpoint
            timeout: Connect/read timeout in seconds for each call
            transport: Optional httpx transport (tests, proxies)
        """
        self.stk_push_url = stk_push_url
        self.verify_payment_url = verify_payment_url
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "MpesaProvider":
        return cls(
            stk_push_url=settings.stk_push_url,
            verify_payment_url=settings.verify_payment_url,
            timeout=settings.request_timeout_seconds,
        )

    async def _make_request(
        self,
        operation: str,
        method: str,
        url: str,
        **kwargs: object,
    ) -> httpx.Response:
        """Send one request, mapping network failures to TransportError."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await client.request(method, url, **kwargs)  # type: ignore[arg-type]
        except httpx.TimeoutException as exc:
            logger.warning("mpesa_request_timeout", operation=operation, url=url)
            raise TransportError(operation, f"timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "mpesa_request_failed",
                operation=operation,
                url=url,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise TransportError(operation, str(exc) or type(exc).__name__) from exc

    @staticmethod
    def _json_body(operation: str, response: httpx.Response) -> dict[str, object]:
        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(
                operation, "response is not valid JSON", response.status_code
            ) from exc
        if not isinstance(data, dict):
            raise TransportError(operation, "response is not a JSON object", response.status_code)
        return data

    @staticmethod
    def _rejection_reason(response: httpx.Response) -> str | None:
        """Best-effort `msg` from a 4xx body; None when the body has none."""
        try:
            data = response.json()
        except ValueError:
            return None
        if isinstance(data, dict) and data.get("msg"):
            return str(data["msg"])
        return None

    async def initiate_push(self, request: StkPushRequest) -> StkPushResponse:
        """
        Send the STK push.

        Args:
            request: STK push details

        Returns:
            Parsed answer; status False means the backend declined

        Raises:
            TransportError: Network failure, 5xx or unreadable body
            ProviderRejectionError: 4xx answer from the backend
        """
        logger.info(
            "sending_stk_push",
            amount=request.amount,
            account_number=request.account_number,
        )

        response = await self._make_request(
            "stk_push", "POST", self.stk_push_url, json=request.to_payload()
        )

        status_code = response.status_code
        if status_code >= 500:
            logger.error("stk_push_server_error", status=status_code)
            raise TransportError("stk_push", f"HTTP error {status_code}", status_code)

        if status_code >= 400:
            reason = self._rejection_reason(response) or f"HTTP error {status_code}"
            logger.warning("stk_push_rejected_by_backend", status=status_code, reason=reason)
            raise ProviderRejectionError(reason)

        parsed = StkPushResponse.from_payload(self._json_body("stk_push", response))

        logger.info(
            "stk_push_response_received",
            accepted=parsed.status,
            checkout_request_id=parsed.checkout_request_id,
        )
        return parsed

    async def verify_payment(self, correlation_token: str) -> PaymentVerification:
        """
        Query the verification endpoint once.

        Args:
            correlation_token: checkoutRequestID from the STK push

        Returns:
            Parsed verification answer

        Raises:
            TransportError: Network failure, non-2xx or unreadable body
        """
        response = await self._make_request(
            "verify_payment",
            "GET",
            self.verify_payment_url,
            params={"requestID": correlation_token},
        )

        if response.status_code >= 400:
            raise TransportError(
                "verify_payment", f"HTTP error {response.status_code}", response.status_code
            )

        verification = PaymentVerification.from_payload(self._json_body("verify_payment", response))

        logger.debug(
            "payment_verification_received",
            checkout_request_id=correlation_token,
            status=verification.status,
            result_code=verification.result_code,
        )
        return verification
