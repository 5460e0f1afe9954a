"""
Tests for API Routes.

Exercises the captive portal endpoints through the FastAPI test client,
plus direct route calls for flows that need control of the event loop.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
from conftest import VALID_PHONE, pending, rejected_push
from fastapi import HTTPException

from hotspot_billing.api import routes
from hotspot_billing.api.routes import close_purchase, get_purchase, stream_purchase_events
from hotspot_billing.models.api import PurchaseState
from hotspot_billing.models.mpesa import PaymentVerification

PURCHASE_BODY = {
    "phone": VALID_PHONE,
    "amount": 50,
    "duration_hours": 2,
    "ip": "10.5.50.23",
    "mac": "3C:22:FB:11:22:33",
}


def parse_events(body: str) -> list[tuple[str, dict]]:
    """Split an SSE body into (event, data) pairs."""
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


class TestPackageRoutes:
    """Tests for GET /v1/packages."""

    def test_list_packages(self, client):
        """Catalog is listed in KES, ordered by duration."""
        response = client.get("/v1/packages")

        assert response.status_code == 200
        data = response.json()
        assert data["currency"] == "KES"
        assert [(p["duration_hours"], p["price"]) for p in data["packages"]] == [
            (1, 20),
            (2, 50),
            (6, 100),
            (24, 250),
        ]
        assert data["packages"][1]["account_number"] == "WIFI_2HRS"


class TestPurchaseRoutes:
    """Tests for the purchase endpoints through the test client."""

    def test_purchase_completes(self, client, mock_grant_client):
        """Submit, follow the event stream, then read the final state."""
        response = client.post("/v1/purchases", json=PURCHASE_BODY)

        assert response.status_code == 202
        session_id = response.json()["session_id"]

        events = client.get(f"/v1/purchases/{session_id}/events")
        assert events.status_code == 200
        assert events.headers["content-type"].startswith("text/event-stream")
        parsed = parse_events(events.text)
        assert parsed[-1] == ("end", {})
        assert parsed[-2][1]["state"] == "completed"
        assert parsed[-2][1]["kind"] == "success"

        final = client.get(f"/v1/purchases/{session_id}").json()
        assert final["state"] == "completed"
        assert final["is_terminal"] is True
        assert final["package_label"] == "WIFI_2HRS"
        assert final["correlation_token"] == "ws_CO_123"
        assert final["access_expires_at"] is not None
        mock_grant_client.grant.assert_awaited_once()

    def test_declined_purchase(self, client, mock_provider):
        """Provider refusal is reported through the session, not the POST."""
        mock_provider.initiate_push = AsyncMock(return_value=rejected_push("Insufficient funds"))

        response = client.post("/v1/purchases", json=PURCHASE_BODY)
        assert response.status_code == 202
        session_id = response.json()["session_id"]

        parsed = parse_events(client.get(f"/v1/purchases/{session_id}/events").text)
        assert parsed[-2][1]["state"] == "initiation_failed"
        assert parsed[-2][1]["message"] == "Insufficient funds"

    def test_invalid_phone(self, client, mock_provider):
        """Bad phone number is rejected with the portal message."""
        response = client.post("/v1/purchases", json={**PURCHASE_BODY, "phone": "0712345678"})

        assert response.status_code == 422
        assert "2547XXXXXXXX" in response.json()["detail"]
        mock_provider.initiate_push.assert_not_awaited()

    def test_price_mismatch(self, client, mock_provider):
        """Amount must match the catalog price."""
        response = client.post("/v1/purchases", json={**PURCHASE_BODY, "amount": 20})

        assert response.status_code == 422
        mock_provider.initiate_push.assert_not_awaited()

    def test_catalog_not_enforced(self, client):
        """Custom packages are allowed when enforcement is off."""
        with patch.object(routes.settings, "enforce_package_catalog", False):
            response = client.post(
                "/v1/purchases", json={**PURCHASE_BODY, "amount": 35, "duration_hours": 3}
            )

        assert response.status_code == 202
        assert response.json()["package_label"] == "WIFI_3HRS"

    def test_missing_fields(self, client):
        """Schema errors use the validation handler."""
        response = client.post("/v1/purchases", json={"phone": VALID_PHONE})

        assert response.status_code == 422
        data = response.json()
        assert isinstance(data["detail"], str)
        fields = [error["field"] for error in data["errors"]]
        assert "amount" in fields
        assert "duration_hours" in fields

    def test_missing_identity(self, client, mock_provider):
        """Without a placeholder, ip and mac are required."""
        body = {k: v for k, v in PURCHASE_BODY.items() if k not in ("ip", "mac")}
        response = client.post("/v1/purchases", json=body)

        assert response.status_code == 422
        mock_provider.initiate_push.assert_not_awaited()

    def test_unknown_session(self, client):
        """Unknown ids are 404 on every purchase route."""
        assert client.get("/v1/purchases/nope").status_code == 404
        assert client.get("/v1/purchases/nope/events").status_code == 404
        assert client.delete("/v1/purchases/nope").status_code == 404


class TestPurchaseRoutesDirect:
    """Route functions called directly on the test's event loop."""

    @pytest.mark.asyncio
    async def test_close_purchase(self, session_registry, mock_provider, wait_until):
        """DELETE cancels a purchase that is still polling."""
        gate = asyncio.Event()

        async def blocked_verify(token: str) -> PaymentVerification:
            await gate.wait()
            return pending()

        mock_provider.verify_payment = AsyncMock(side_effect=blocked_verify)
        session = await session_registry.submit(VALID_PHONE, 50, 2, "10.5.50.23", "3C:22:FB:1")
        await wait_until(lambda: session.state == PurchaseState.POLLING)

        response = await close_purchase(session.session_id, registry=session_registry)

        assert response.state == PurchaseState.CANCELLED
        assert response.is_terminal
        assert response.reports[-1].message == "Payment session closed."

    @pytest.mark.asyncio
    async def test_event_stream(self, session_registry):
        """Stream yields one status event per report, then end."""
        session = await session_registry.submit(VALID_PHONE, 50, 2, "10.5.50.23", "3C:22:FB:2")

        response = await stream_purchase_events(session.session_id, registry=session_registry)
        chunks = [chunk async for chunk in response.body_iterator]

        assert chunks[-1] == "event: end\ndata: {}\n\n"
        assert len(chunks) == len(session.reports) + 1
        assert all(chunk.startswith("event: status\n") for chunk in chunks[:-1])

    @pytest.mark.asyncio
    async def test_get_unknown_purchase(self, session_registry):
        """Unknown id raises a 404."""
        with pytest.raises(HTTPException) as exc_info:
            await get_purchase("missing", registry=session_registry)
        assert exc_info.value.status_code == 404


class TestServiceRoutes:
    """Tests for health, root and metrics."""

    def test_health(self, client):
        """Health reports version and active sessions."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["active_sessions"] == 0

    def test_root(self, client):
        """Root names the service."""
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_metrics(self, client):
        """Prometheus exposition includes purchase metrics."""
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "hotspot_purchases_total" in response.text
