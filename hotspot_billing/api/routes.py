"""
API Routes - FastAPI endpoints for the captive portal.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from structlog import get_logger

from hotspot_billing.api.dependencies import get_session_registry
from hotspot_billing.config import settings
from hotspot_billing.exceptions import PurchaseValidationError, SessionNotFoundError
from hotspot_billing.models.api import (
    HealthResponse,
    PackageListResponse,
    PackageResponse,
    PurchaseSessionResponse,
    PurchaseSubmitRequest,
    StatusReportResponse,
)
from hotspot_billing.models.domain import StatusReport
from hotspot_billing.services.orchestrator import PurchaseSession
from hotspot_billing.services.packages import ensure_catalog_price, list_packages
from hotspot_billing.services.session_registry import SessionRegistry

logger = get_logger(__name__)
router = APIRouter()


def _report_response(report: StatusReport) -> StatusReportResponse:
    return StatusReportResponse.model_validate(report, from_attributes=True)


def _session_response(session: PurchaseSession) -> PurchaseSessionResponse:
    return PurchaseSessionResponse(
        session_id=session.session_id,
        state=session.state,
        is_terminal=session.is_terminal,
        correlation_token=session.correlation_token,
        package_label=session.request.package_label,
        reports=[_report_response(report) for report in session.reports],
        access_expires_at=session.access_grant.expires_at if session.access_grant else None,
    )


def _get_session(registry: SessionRegistry, session_id: str) -> PurchaseSession:
    try:
        return registry.get(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.get("/v1/packages", response_model=PackageListResponse)
async def get_packages() -> PackageListResponse:
    """List the hotspot packages offered on the portal."""
    return PackageListResponse(
        packages=[
            PackageResponse(
                duration_hours=package.duration_hours,
                price=package.price,
                account_number=package.account_number,
                display_name=package.display_name,
            )
            for package in list_packages()
        ]
    )


@router.post(
    "/v1/purchases",
    response_model=PurchaseSessionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_purchase(
    request: PurchaseSubmitRequest,
    registry: SessionRegistry = Depends(get_session_registry),
) -> PurchaseSessionResponse:
    """
    Start a purchase: STK push, payment polling, then access grant.

    Returns immediately with the session id; follow progress through
    GET /v1/purchases/{session_id} or its /events stream. Starting a new
    purchase from the same device closes the previous one.
    """
    try:
        if settings.enforce_package_catalog:
            ensure_catalog_price(request.duration_hours, request.amount)
        session = await registry.submit(
            phone=request.phone,
            amount=request.amount,
            duration_hours=request.duration_hours,
            ip=request.ip,
            mac=request.mac,
        )
    except PurchaseValidationError as exc:
        logger.info("purchase_rejected", field=exc.field, reason=exc.message)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.message,
        ) from exc

    return _session_response(session)


@router.get("/v1/purchases/{session_id}", response_model=PurchaseSessionResponse)
async def get_purchase(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> PurchaseSessionResponse:
    """Current state and every status report of a purchase."""
    return _session_response(_get_session(registry, session_id))


@router.get("/v1/purchases/{session_id}/events")
async def stream_purchase_events(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> StreamingResponse:
    """Server-sent events: one `status` event per report until the purchase ends."""
    session = _get_session(registry, session_id)

    async def event_stream() -> AsyncIterator[str]:
        async for report in session.stream():
            yield f"event: status\ndata: {_report_response(report).model_dump_json()}\n\n"
        yield "event: end\ndata: {}\n\n"

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.delete("/v1/purchases/{session_id}", response_model=PurchaseSessionResponse)
async def close_purchase(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> PurchaseSessionResponse:
    """Close the payment dialog: stops polling if payment is not yet confirmed."""
    _get_session(registry, session_id)
    session = await registry.close(session_id)
    return _session_response(session)


@router.get("/health", response_model=HealthResponse)
async def health_check(
    registry: SessionRegistry = Depends(get_session_registry),
) -> HealthResponse:
    """Liveness check."""
    return HealthResponse(
        status="healthy",
        version=settings.api_version,
        environment=settings.environment,
        active_sessions=registry.active_count(),
    )
