"""Insurance agency CRM authentication and session service."""

__version__ = "1.0.0"
