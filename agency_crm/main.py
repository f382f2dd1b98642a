"""FastAPI application initialization.

Run with ``uvicorn agency_crm.main:create_app --factory``.
"""

from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agency_crm import __version__
from agency_crm.api.auth import router as auth_router
from agency_crm.api.errors import register_exception_handlers
from agency_crm.api.middleware import CorrelationIdMiddleware
from agency_crm.api.routes import router
from agency_crm.config import get_settings
from agency_crm.database import close_database, init_database, run_migrations
from agency_crm.services.logging_service import configure_logging, get_logger
from agency_crm.services.session_manager import SessionManager, create_credential_store


def create_app(session_manager: Optional[SessionManager] = None) -> FastAPI:
    """Build the application.

    Settings are validated here, so weak secrets or unparseable token
    durations stop the process before it serves a request.

    Args:
        session_manager: Prebuilt manager (tests); when omitted one is built
            at startup over the configured storage backend
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup/shutdown events."""
        configure_logging(settings.log_level)
        logger = get_logger("main")

        manager = session_manager
        owns_database = manager is None and settings.storage_backend == "postgres"

        if owns_database:
            await init_database(settings)
            await run_migrations()
            logger.info("database_initialized")

        if manager is None:
            manager = SessionManager(create_credential_store(settings), settings=settings)

        app.state.session_manager = manager

        logger.info(
            "application_started",
            storage_backend=settings.storage_backend,
            refresh_token_rotation=settings.refresh_token_rotation,
            log_level=settings.log_level,
        )

        yield

        if owns_database:
            await close_database()

        logger.info("application_shutdown")

    app = FastAPI(
        title="Agency CRM - Auth API",
        description="Authentication and session lifecycle for the agency CRM",
        version=__version__,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware for request tracking and observability
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(auth_router)
    app.include_router(router)

    return app
