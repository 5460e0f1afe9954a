"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class ReportKind(str, Enum):
    """Severity of a status report shown to the purchaser."""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class PurchaseState(str, Enum):
    """Purchase flow state driven by the session orchestrator."""

    IDLE = "idle"
    INITIATING = "initiating"
    POLLING = "polling"
    GRANTING = "granting"
    COMPLETED = "completed"
    INITIATION_FAILED = "initiation_failed"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_TIMED_OUT = "payment_timed_out"
    GRANT_FAILED = "grant_failed"
    CANCELLED = "cancelled"


TERMINAL_PURCHASE_STATES = frozenset(
    {
        PurchaseState.COMPLETED,
        PurchaseState.INITIATION_FAILED,
        PurchaseState.PAYMENT_FAILED,
        PurchaseState.PAYMENT_TIMED_OUT,
        PurchaseState.GRANT_FAILED,
        PurchaseState.CANCELLED,
    }
)


# ============================================================================
# Package Models
# ============================================================================


class PackageResponse(BaseModel):
    """Single entry of GET /v1/packages."""

    duration_hours: int
    price: int
    account_number: str
    display_name: str


class PackageListResponse(BaseModel):
    """GET /v1/packages response."""

    packages: list[PackageResponse]
    currency: str = "KES"


# ============================================================================
# Purchase Models
# ============================================================================


class PurchaseSubmitRequest(BaseModel):
    """POST /v1/purchases request body."""

    phone: str = Field(..., min_length=1, max_length=32, description="M-Pesa number, 2547XXXXXXXX")
    amount: int = Field(..., gt=0, description="Price in the smallest currency unit")
    duration_hours: int = Field(..., gt=0, description="Package duration in whole hours")

    # Forwarded by the hotspot login page redirect
    ip: str | None = Field(None, max_length=64)
    mac: str | None = Field(None, max_length=64)

    @field_validator("phone")
    @classmethod
    def strip_phone(cls, v: str) -> str:
        """Trim surrounding whitespace the way the portal form did."""
        return v.strip()


class StatusReportResponse(BaseModel):
    """One status report in a purchase session."""

    kind: ReportKind
    message: str
    state: PurchaseState
    attempt: int | None = None
    attempt_max: int | None = None
    error_type: str | None = None
    created_at: datetime


class PurchaseSessionResponse(BaseModel):
    """Purchase session snapshot returned by the purchase endpoints."""

    session_id: str
    state: PurchaseState
    is_terminal: bool
    correlation_token: str | None = None
    package_label: str
    reports: list[StatusReportResponse]
    access_expires_at: datetime | None = None


class ErrorResponse(BaseModel):
    """Error body for rejected requests."""

    detail: str
    field: str | None = None


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    version: str
    environment: str
    active_sessions: int
