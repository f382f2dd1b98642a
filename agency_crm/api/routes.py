"""Service-level routes."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from agency_crm import __version__
from agency_crm.api.dependencies import get_session_manager
from agency_crm.services.session_manager import SessionManager

router = APIRouter()


@router.get("/health")
async def health_check(
    session_manager: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Health check endpoint.

    Returns:
        200 with status and timestamp when the credential store answers,
        503 otherwise
    """
    store_healthy = await session_manager.store.health_check()

    return JSONResponse(
        status_code=200 if store_healthy else 503,
        content={
            "status": "healthy" if store_healthy else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "database": "healthy" if store_healthy else "unhealthy",
        },
    )
