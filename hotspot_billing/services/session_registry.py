"""
Session Registry - one SessionOrchestrator per client context.

A client context is a device on the hotspot, keyed by its MAC address.
Each context runs at most one purchase at a time; different devices
never share an orchestrator, so they never wait on each other.
"""

import time
from collections.abc import Callable

from structlog import get_logger

from hotspot_billing.config import Settings
from hotspot_billing.exceptions import SessionNotFoundError
from hotspot_billing.models.domain import NetworkIdentity, PurchaseRequest
from hotspot_billing.services.access_grant import AccessGrantClient
from hotspot_billing.services.initiator import PaymentInitiator
from hotspot_billing.services.mpesa_provider import MpesaProvider
from hotspot_billing.services.orchestrator import (
    PurchaseSession,
    SessionOrchestrator,
    resolve_network_identity,
)
from hotspot_billing.services.poller import PaymentStatusPoller

logger = get_logger(__name__)

# Finished sessions stay readable for the portal page this long
SESSION_RETENTION_SECONDS = 15 * 60


def placeholder_identity_from(settings: Settings) -> NetworkIdentity | None:
    """The testing fallback identity, or None when it is disabled."""
    if not settings.placeholder_identity_enabled:
        return None
    return NetworkIdentity(
        address=settings.placeholder_ip,
        hardware_address=settings.placeholder_mac,
        is_placeholder=True,
    )


def build_orchestrator(
    settings: Settings, seen_tokens: set[str] | None = None
) -> SessionOrchestrator:
    """Wire the production collaborators from settings."""
    provider = MpesaProvider.from_settings(settings)
    return SessionOrchestrator(
        initiator=PaymentInitiator(provider),
        poller=PaymentStatusPoller(provider, pending_result_codes=settings.pending_result_codes),
        grant_client=AccessGrantClient.from_settings(settings),
        polling_interval=settings.polling_interval_seconds,
        max_polling_attempts=settings.max_polling_attempts,
        placeholder_identity=placeholder_identity_from(settings),
        seen_tokens=seen_tokens,
    )


class SessionRegistry:
    """
    Tracks orchestrators by client context and sessions by id.

    Every orchestrator shares the registry's set of correlation tokens, so a
    checkoutRequestID handed out twice is rejected whichever device gets it,
    and pruning an idle orchestrator does not forget its tokens.
    """

    def __init__(
        self,
        orchestrator_factory: Callable[..., SessionOrchestrator],
        placeholder_identity: NetworkIdentity | None = None,
        retention_seconds: float = SESSION_RETENTION_SECONDS,
    ) -> None:
        self._orchestrator_factory = orchestrator_factory
        self.placeholder_identity = placeholder_identity
        self.retention_seconds = retention_seconds
        self._orchestrators: dict[str, SessionOrchestrator] = {}
        self._sessions: dict[str, PurchaseSession] = {}
        self._seen_tokens: set[str] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionRegistry":
        return cls(
            orchestrator_factory=lambda seen_tokens: build_orchestrator(settings, seen_tokens),
            placeholder_identity=placeholder_identity_from(settings),
        )

    def orchestrator_for(self, network_identity: NetworkIdentity) -> SessionOrchestrator:
        key = network_identity.client_key
        orchestrator = self._orchestrators.get(key)
        if orchestrator is None:
            orchestrator = self._orchestrator_factory(seen_tokens=self._seen_tokens)
            self._orchestrators[key] = orchestrator
        return orchestrator

    async def submit(
        self,
        phone: str,
        amount: int,
        duration_hours: int,
        ip: str | None = None,
        mac: str | None = None,
    ) -> PurchaseSession:
        """
        Start a purchase for the device identified by ip/mac.

        Raises:
            PurchaseValidationError: Bad purchase fields or no usable identity
        """
        self.prune()
        # Purchase fields are reported ahead of a missing identity
        PurchaseRequest(client_identity=phone, amount=amount, package_duration=duration_hours)
        network_identity = resolve_network_identity(ip, mac, self.placeholder_identity)
        orchestrator = self.orchestrator_for(network_identity)
        session = await orchestrator.submit_purchase(
            phone, amount, duration_hours, network_identity
        )
        self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> PurchaseSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def close(self, session_id: str) -> PurchaseSession:
        """Close a session on behalf of the purchaser."""
        session = self.get(session_id)
        orchestrator = self._orchestrators.get(session.network_identity.client_key)
        if orchestrator is not None and orchestrator.current is session:
            await orchestrator.close()
        return session

    def active_count(self) -> int:
        return sum(1 for session in self._sessions.values() if not session.is_terminal)

    def prune(self) -> int:
        """Forget terminal sessions past the retention window."""
        now = time.monotonic()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if session.finished_at is not None
            and now - session.finished_at > self.retention_seconds
        ]
        for session_id in expired:
            del self._sessions[session_id]
        idle_keys = [
            key
            for key, orchestrator in self._orchestrators.items()
            if orchestrator.current is not None
            and orchestrator.current.is_terminal
            and orchestrator.current.session_id not in self._sessions
        ]
        for key in idle_keys:
            del self._orchestrators[key]
        if expired:
            logger.debug("purchase_sessions_pruned", count=len(expired))
        return len(expired)

    async def shutdown(self) -> None:
        """Close every orchestrator; used on application shutdown."""
        for orchestrator in list(self._orchestrators.values()):
            await orchestrator.close()
        logger.info("session_registry_shut_down", sessions=len(self._sessions))
