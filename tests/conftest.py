"""Pytest configuration and fixtures."""

import os
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment variables before importing the app
TEST_JWT_SECRET = "test-access-secret-0123456789abcdef0123"
TEST_JWT_REFRESH_SECRET = "test-refresh-secret-0123456789abcdef012"

os.environ.setdefault("JWT_SECRET", TEST_JWT_SECRET)
os.environ.setdefault("JWT_REFRESH_SECRET", TEST_JWT_REFRESH_SECRET)
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RESET_EMAIL_ENABLED", "false")

from agency_crm.config import Settings  # noqa: E402
from agency_crm.services.session_manager import SessionManager  # noqa: E402
from agency_crm.storage.memory import MemoryCredentialStore  # noqa: E402


def build_settings(**overrides) -> Settings:
    """Settings with fast hashing and deterministic secrets."""
    values = {
        "jwt_secret": TEST_JWT_SECRET,
        "jwt_refresh_secret": TEST_JWT_REFRESH_SECRET,
        "bcrypt_rounds": 4,
        "storage_backend": "memory",
        "reset_email_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def make_settings():
    """Factory for Settings with per-test overrides."""
    return build_settings


@pytest.fixture
def settings() -> Settings:
    return build_settings()


@pytest.fixture
def store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def notifier() -> MagicMock:
    """Reset notifier that records the raw tokens it was handed."""
    mock = MagicMock()
    mock.send_reset_email = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def session_manager(store, notifier, settings) -> SessionManager:
    return SessionManager(store, notifier=notifier, settings=settings)


@pytest.fixture
def client(session_manager) -> Generator:
    """TestClient over an app wired to the in-memory session manager."""
    from fastapi.testclient import TestClient

    from agency_crm.main import create_app

    app = create_app(session_manager=session_manager)
    with TestClient(app) as tc:
        yield tc
