"""
Tests for AccessGrantClient.

Uses httpx.MockTransport to stand in for the access controller proxy.
"""

import base64
import json

import httpx
import pytest

from hotspot_billing.config import Settings
from hotspot_billing.models.domain import NetworkIdentity
from hotspot_billing.services.access_grant import AccessGrantClient

CONTROLLER_URL = "http://controller.test/grant"


def make_client(handler, username: str = "portal", password: str = "secret") -> AccessGrantClient:
    return AccessGrantClient(
        controller_url=CONTROLLER_URL,
        username=username,
        password=password,
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


class TestGrant:
    """Tests for AccessGrantClient.grant."""

    @pytest.mark.asyncio
    async def test_success(self, network_identity):
        """POST carries ip, mac, duration in seconds and the label."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "message": "user added"})

        outcome = await make_client(handler).grant(network_identity, 7200, "WIFI_2HRS")

        assert outcome.success is True
        assert outcome.reason is None
        assert "user added" in outcome.detail
        assert len(seen) == 1
        assert seen[0].method == "POST"
        assert str(seen[0].url) == CONTROLLER_URL
        assert json.loads(seen[0].content) == {
            "ip": "10.5.50.23",
            "mac": "3C:22:FB:11:22:33",
            "duration": 7200,
            "comment": "WIFI_2HRS",
        }

    @pytest.mark.asyncio
    async def test_sends_basic_auth(self, network_identity):
        """Controller credential travels as HTTP basic auth."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="ok")

        await make_client(handler).grant(network_identity, 3600, "WIFI_1HRS")

        expected = base64.b64encode(b"portal:secret").decode()
        assert seen[0].headers["Authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_no_auth_without_username(self, network_identity):
        """No credential configured, no Authorization header."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="ok")

        outcome = await make_client(handler, username="").grant(network_identity, 3600, "L")

        assert outcome.success is True
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_http_error_status(self, network_identity):
        """Non-2xx answers are failures, not exceptions."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="router unreachable")

        outcome = await make_client(handler).grant(network_identity, 3600, "WIFI_1HRS")

        assert outcome.success is False
        assert outcome.reason == "Access controller returned HTTP 500"

    @pytest.mark.asyncio
    async def test_connection_error(self, network_identity):
        """Network failures are failures, not exceptions."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        outcome = await make_client(handler).grant(network_identity, 3600, "WIFI_1HRS")

        assert outcome.success is False
        assert outcome.reason == "Access controller unreachable: ConnectError"

    @pytest.mark.asyncio
    async def test_explicit_refusal_in_body(self, network_identity):
        """A 200 with success false is still a failure."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": False, "error": "MAC already bound"})

        outcome = await make_client(handler).grant(network_identity, 3600, "WIFI_1HRS")

        assert outcome.success is False
        assert outcome.reason == "MAC already bound"

    @pytest.mark.asyncio
    async def test_plain_text_success(self, network_identity):
        """Non-JSON 2xx bodies count as success."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="done")

        outcome = await make_client(handler).grant(network_identity, 3600, "WIFI_1HRS")

        assert outcome.success is True
        assert outcome.detail == "done"

    @pytest.mark.asyncio
    async def test_placeholder_identity_is_sent_as_is(self):
        """Placeholder pairs go out unchanged."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="ok")

        identity = NetworkIdentity(
            address="192.168.1.100", hardware_address="AA:BB:CC:DD:EE:FF", is_placeholder=True
        )
        await make_client(handler).grant(identity, 3600, "WIFI_1HRS")

        assert json.loads(seen[0].content)["mac"] == "AA:BB:CC:DD:EE:FF"


class TestFromSettings:
    """Tests for wiring from settings."""

    def test_from_settings(self):
        """URL, credential and timeout come from settings."""
        settings = Settings(
            api_base_url="http://payments.test",
            access_controller_url="http://controller.test/grant",
            access_controller_username="portal",
            access_controller_password="pw",
            request_timeout_seconds=4.0,
        )
        client = AccessGrantClient.from_settings(settings)
        assert client.controller_url == "http://controller.test/grant"
        assert client.timeout == 4.0
        assert client._auth is not None
