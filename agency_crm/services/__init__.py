"""Services package exports."""

from agency_crm.services.logging_service import configure_logging, get_logger
from agency_crm.services.session_manager import SessionManager

__all__ = [
    "SessionManager",
    "configure_logging",
    "get_logger",
]
