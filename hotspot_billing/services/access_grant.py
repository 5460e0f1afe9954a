"""
Access Grant Client - authorizes a hotspot client on the access controller.

The controller credential is held by this service and sent only to the
controller proxy; it never reaches the captive portal page.
"""

import httpx
from structlog import get_logger

from hotspot_billing.config import Settings
from hotspot_billing.models.domain import GrantOutcome, NetworkIdentity
from hotspot_billing.models.mpesa import AccessGrantRequest
from hotspot_billing.observability.metrics import metrics

logger = get_logger(__name__)


class AccessGrantClient:
    """
    Grants time-boxed hotspot access.

    Failures are reported as GrantOutcome(success=False); nothing raises past
    grant(). Deduplication is the caller's job.
    """

    def __init__(
        self,
        controller_url: str,
        username: str = "",
        password: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.controller_url = controller_url
        self._auth = httpx.BasicAuth(username, password) if username else None
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "AccessGrantClient":
        return cls(
            controller_url=settings.access_controller_url,
            username=settings.access_controller_username,
            password=settings.access_controller_password,
            timeout=settings.request_timeout_seconds,
        )

    async def grant(
        self, network_identity: NetworkIdentity, duration_seconds: int, label: str
    ) -> GrantOutcome:
        """
        Authorize `network_identity` for `duration_seconds`.

        Args:
            network_identity: Client IP/MAC pair
            duration_seconds: Session length in seconds
            label: Package label stored as the controller comment (WIFI_2HRS)

        Returns:
            GrantOutcome describing success or the failure reason
        """
        payload = AccessGrantRequest(
            ip=network_identity.address,
            mac=network_identity.hardware_address,
            duration=duration_seconds,
            comment=label,
        ).to_payload()

        logger.info(
            "granting_hotspot_access",
            client_ip=network_identity.address,
            client_mac=network_identity.hardware_address,
            duration_seconds=duration_seconds,
            label=label,
        )

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport, auth=self._auth
            ) as client:
                response = await client.post(self.controller_url, json=payload)
        except httpx.HTTPError as exc:
            logger.error(
                "access_grant_transport_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return self._failed(f"Access controller unreachable: {type(exc).__name__}")

        if response.status_code >= 400:
            logger.error(
                "access_grant_rejected",
                status=response.status_code,
                error=response.text[:500],
            )
            return self._failed(f"Access controller returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            data = None

        # A JSON body may still carry an explicit refusal
        if isinstance(data, dict) and data.get("success") is False:
            reason = str(data.get("message") or data.get("error") or "Access controller refused")
            logger.error("access_grant_refused", reason=reason)
            return self._failed(reason)

        metrics.record_grant(success=True)
        logger.info(
            "hotspot_access_granted",
            client_mac=network_identity.hardware_address,
            duration_seconds=duration_seconds,
        )
        return GrantOutcome(success=True, detail=response.text[:500] or None)

    @staticmethod
    def _failed(reason: str) -> GrantOutcome:
        metrics.record_grant(success=False)
        return GrantOutcome(success=False, reason=reason)
