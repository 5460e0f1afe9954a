"""
Status API routes - reachability of the upstreams a purchase depends on.

A purchase needs two services: the payment backend (STK push and
verification) and the access controller proxy. GET /v1/status probes both
concurrently and grades each as operational, degraded or outage. Public,
with a short cache so status-page polling never floods the upstreams.
"""

import asyncio
import time
from datetime import UTC, datetime
from enum import Enum

import httpx
from fastapi import APIRouter
from pydantic import BaseModel, Field
from structlog import get_logger

from hotspot_billing.config import settings

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

PROBE_TIMEOUT_SECONDS = 5.0
SLOW_PROBE_MS = 1000
STATUS_CACHE_SECONDS = 10

# The verify endpoint answers 400 when requestID is missing
PAYMENT_API_REACHABLE = frozenset({200, 400, 404})
# GET on the grant URL is usually 401/405; both prove the proxy is up
CONTROLLER_REACHABLE = frozenset({200, 401, 404, 405})

# (checked_at, response) of the last aggregate check
_last_status: "tuple[datetime, ServiceStatusResponse] | None" = None


class StatusLevel(str, Enum):
    """Health grade of one upstream or of the whole service."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"


class ProviderStatus(BaseModel):
    """Result of probing one upstream."""

    status: StatusLevel
    latency_ms: int | None = None
    last_check: str = Field(..., description="ISO 8601 timestamp")
    message: str | None = None


class ServiceStatusResponse(BaseModel):
    """Response for /v1/status."""

    service: str = "hotspot-billing"
    status: StatusLevel
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str
    providers: dict[str, ProviderStatus]


def _grade(status_code: int, latency_ms: int, reachable_codes: frozenset[int]) -> StatusLevel:
    if status_code not in reachable_codes:
        return StatusLevel.DEGRADED
    if latency_ms > SLOW_PROBE_MS:
        return StatusLevel.DEGRADED
    return StatusLevel.OPERATIONAL


async def check_endpoint(url: str, reachable_codes: frozenset[int]) -> ProviderStatus:
    """
    GET `url` once and grade the answer.

    Any code in `reachable_codes` counts as up (a 400 or 401 still proves the
    service answers); other codes or a slow answer are degraded; a timeout or
    connection failure is an outage.
    """
    checked_at = datetime.now(UTC).isoformat()
    started = time.perf_counter()

    try:
        async with httpx.AsyncClient(timeout=PROBE_TIMEOUT_SECONDS) as client:
            response = await client.get(url)
    except httpx.TimeoutException:
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=int(PROBE_TIMEOUT_SECONDS * 1000),
            last_check=checked_at,
            message="Timeout",
        )
    except httpx.HTTPError as e:
        logger.warning("upstream_probe_failed", url=url, error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE, last_check=checked_at, message="Connection failed"
        )

    latency_ms = int((time.perf_counter() - started) * 1000)
    level = _grade(response.status_code, latency_ms, reachable_codes)

    message = None
    if response.status_code not in reachable_codes:
        message = f"Unexpected status: {response.status_code}"
    elif level is StatusLevel.DEGRADED:
        message = "High latency"

    return ProviderStatus(
        status=level, latency_ms=latency_ms, last_check=checked_at, message=message
    )


async def check_payment_api() -> ProviderStatus:
    return await check_endpoint(settings.verify_payment_url, PAYMENT_API_REACHABLE)


async def check_access_controller() -> ProviderStatus:
    return await check_endpoint(settings.access_controller_url, CONTROLLER_REACHABLE)


def calculate_overall_status(providers: dict[str, ProviderStatus]) -> StatusLevel:
    """The service is only as healthy as its worst upstream."""
    levels = {provider.status for provider in providers.values()}
    for level in (StatusLevel.OUTAGE, StatusLevel.DEGRADED):
        if level in levels:
            return level
    return StatusLevel.OPERATIONAL


@router.get("/v1/status", response_model=ServiceStatusResponse)
async def get_status() -> ServiceStatusResponse:
    """Reachability of the payment backend and the access controller."""
    global _last_status
    now = datetime.now(UTC)

    if _last_status is not None:
        checked_at, cached = _last_status
        if (now - checked_at).total_seconds() < STATUS_CACHE_SECONDS:
            return cached

    payment_api, access_controller = await asyncio.gather(
        check_payment_api(), check_access_controller()
    )
    providers = {"payment_api": payment_api, "access_controller": access_controller}

    response = ServiceStatusResponse(
        status=calculate_overall_status(providers),
        timestamp=now.isoformat(),
        version=settings.api_version,
        providers=providers,
    )
    if response.status is not StatusLevel.OPERATIONAL:
        logger.warning(
            "upstream_status_degraded",
            status=response.status.value,
            payment_api=payment_api.status.value,
            access_controller=access_controller.status.value,
        )

    _last_status = (now, response)
    return response


def clear_status_cache() -> None:
    """Forget the cached aggregate (tests, manual refresh)."""
    global _last_status
    _last_status = None
