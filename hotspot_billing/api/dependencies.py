"""
FastAPI Dependencies - shared service objects for the routes.

NO DICTIONARIES - All dependencies return typed objects.
"""

from structlog import get_logger

from hotspot_billing.config import settings
from hotspot_billing.services.session_registry import SessionRegistry

logger = get_logger(__name__)

# Process-wide registry; created lazily so importing the routes has no side effects
_session_registry: SessionRegistry | None = None


def get_session_registry() -> SessionRegistry:
    """Return the process-wide session registry, creating it on first use."""
    global _session_registry
    if _session_registry is None:
        _session_registry = SessionRegistry.from_settings(settings)
        logger.info(
            "session_registry_created",
            polling_interval_ms=settings.polling_interval_ms,
            max_polling_attempts=settings.max_polling_attempts,
            placeholder_identity_enabled=settings.placeholder_identity_enabled,
        )
    return _session_registry


def set_session_registry(registry: SessionRegistry | None) -> None:
    """Replace the registry (application shutdown, tests)."""
    global _session_registry
    _session_registry = registry
