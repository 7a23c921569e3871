"""Pytest configuration and fixtures for arena tests.

Test isolation strategy:
- No live backend calls: HTTP is mocked with respx, or adapters are scripted
- ARENA_ENV=test so safe_kv raises on forbidden log keys
- Settings cache is cleared around every test so env overrides apply
"""

import os
from collections.abc import Generator

os.environ.setdefault("ARENA_ENV", "test")

import httpx
import pytest
from fastapi.testclient import TestClient

from arena.app import create_app
from arena.config import Settings, clear_settings_cache
from tests.helpers import make_settings


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings() -> Settings:
    """Settings with test defaults and no .env file."""
    return make_settings()


@pytest.fixture
def httpx_client():
    """Create an httpx AsyncClient for testing."""
    return httpx.AsyncClient()


@pytest.fixture
def app():
    """A fresh application instance per test."""
    return create_app()


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Provide a FastAPI test client.

    Entering the client runs the lifespan, so app.state holds a real
    orchestrator; tests that need scripted backends override get_orchestrator.
    """
    with TestClient(app) as client:
        yield client
