"""API package exports."""

from agency_crm.api.auth import router as auth_router
from agency_crm.api.middleware import CorrelationIdMiddleware
from agency_crm.api.routes import router

__all__ = ["auth_router", "router", "CorrelationIdMiddleware"]
