"""
Pytest Configuration and Centralized Fixtures.

Provides reusable mocks and fixtures for testing:
- Payment provider with scripted STK push / verification answers
- Access grant client
- Orchestrator wired with zero polling interval
- Session registry and API test client
"""

import asyncio
import os
from collections.abc import Awaitable, Callable, Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

# Set required environment variables BEFORE importing hotspot_billing modules
os.environ.setdefault("API_BASE_URL", "http://payments.test")
os.environ.setdefault("ACCESS_CONTROLLER_URL", "http://controller.test/grant")
os.environ.setdefault("ACCESS_CONTROLLER_USERNAME", "portal")
os.environ.setdefault("ACCESS_CONTROLLER_PASSWORD", "test-controller-password")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_FORMAT", "console")

from hotspot_billing.models.domain import GrantOutcome, NetworkIdentity
from hotspot_billing.models.mpesa import PaymentVerification, StkPushResponse
from hotspot_billing.services.initiator import PaymentInitiator
from hotspot_billing.services.orchestrator import SessionOrchestrator
from hotspot_billing.services.poller import PaymentStatusPoller
from hotspot_billing.services.session_registry import SessionRegistry

VALID_PHONE = "254712345678"


# ============================================================================
# Provider Answers
# ============================================================================


def accepted_push(token: str = "ws_CO_123") -> StkPushResponse:
    """STK push accepted by the backend."""
    return StkPushResponse(status=True, checkout_request_id=token, message="Success")


def rejected_push(message: str = "Insufficient funds") -> StkPushResponse:
    """STK push declined by the backend."""
    return StkPushResponse(status=False, checkout_request_id=None, message=message)


def pending() -> PaymentVerification:
    """Verification answer for a payment still awaiting the PIN."""
    return PaymentVerification(status=False, result_code=None, result_desc=None)


def paid() -> PaymentVerification:
    """Verification answer for a confirmed payment."""
    return PaymentVerification(
        status=True, result_code="0", result_desc="The service request is processed successfully."
    )


def declined(code: str = "1032", desc: str = "Request cancelled by user") -> PaymentVerification:
    """Verification answer for a payment the purchaser did not complete."""
    return PaymentVerification(status=False, result_code=code, result_desc=desc)


# ============================================================================
# Collaborator Fixtures
# ============================================================================


@pytest.fixture
def network_identity() -> NetworkIdentity:
    """Client identity as forwarded by the hotspot redirect."""
    return NetworkIdentity(address="10.5.50.23", hardware_address="3C:22:FB:11:22:33")


@pytest.fixture
def mock_provider() -> AsyncMock:
    """PaymentProvider whose push is accepted and whose payment is confirmed at once."""
    provider = AsyncMock()
    provider.initiate_push = AsyncMock(return_value=accepted_push())
    provider.verify_payment = AsyncMock(return_value=paid())
    return provider


@pytest.fixture
def mock_grant_client() -> AsyncMock:
    """AccessGrantClient that always succeeds."""
    client = AsyncMock()
    client.grant = AsyncMock(return_value=GrantOutcome(success=True, detail="ok"))
    return client


@pytest.fixture
def orchestrator_factory(
    mock_provider: AsyncMock, mock_grant_client: AsyncMock
) -> Callable[..., SessionOrchestrator]:
    """Build orchestrators sharing the mocked provider and grant client."""

    def _factory(
        max_polling_attempts: int = 12,
        placeholder_identity: NetworkIdentity | None = None,
        seen_tokens: set[str] | None = None,
    ) -> SessionOrchestrator:
        return SessionOrchestrator(
            initiator=PaymentInitiator(mock_provider),
            poller=PaymentStatusPoller(mock_provider),
            grant_client=mock_grant_client,
            polling_interval=0,
            max_polling_attempts=max_polling_attempts,
            placeholder_identity=placeholder_identity,
            seen_tokens=seen_tokens,
        )

    return _factory


@pytest.fixture
def orchestrator(orchestrator_factory: Callable[..., SessionOrchestrator]) -> SessionOrchestrator:
    """Orchestrator with the default 12-attempt budget and no polling delay."""
    return orchestrator_factory()


@pytest.fixture
def session_registry(
    orchestrator_factory: Callable[..., SessionOrchestrator],
) -> SessionRegistry:
    """Registry without a placeholder identity."""
    return SessionRegistry(orchestrator_factory=orchestrator_factory)


@pytest.fixture
def wait_until() -> Callable[[Callable[[], bool]], Awaitable[None]]:
    """Yield to the event loop until `predicate` holds."""

    async def _wait_until(predicate: Callable[[], bool], max_spins: int = 1000) -> None:
        for _ in range(max_spins):
            if predicate():
                return
            await asyncio.sleep(0)
        raise AssertionError("condition not reached")

    return _wait_until


# ============================================================================
# API Test Client
# ============================================================================


@pytest.fixture
def client(session_registry: SessionRegistry) -> Iterator[TestClient]:
    """Test client whose routes use the mocked registry."""
    from hotspot_billing.api.dependencies import get_session_registry, set_session_registry
    from hotspot_billing.main import app

    app.dependency_overrides[get_session_registry] = lambda: session_registry
    set_session_registry(session_registry)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    set_session_registry(None)
