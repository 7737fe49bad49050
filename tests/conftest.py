"""
Pytest configuration and shared fixtures.

Provides settings, an in-memory connector store, a scriptable deployment
driver, the lifecycle orchestrator, a token issuer, sample configurations
and an HTTP test client.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from connector_studio.core.config import Settings
from connector_studio.db.connector_store import InMemoryConnectorStore
from connector_studio.main import create_app
from connector_studio.models.connector import ConnectorConfig
from connector_studio.services.auth_service import IdentityClient, Session
from connector_studio.services.lifecycle_service import LifecycleOrchestrator

from tests.doubles import StubDriver, TokenIssuer


# =============================================================================
# Components
# =============================================================================

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        store_backend="memory",
        operation_timeout=5,
        watchdog_grace=1,
        probe_timeout=2,
        runtime_path=tmp_path / "runtime",
        tenant_id="tenant",
        client_id="client",
        client_secret="secret",
        log_level="DEBUG",
    )


@pytest.fixture
def store() -> InMemoryConnectorStore:
    return InMemoryConnectorStore()


@pytest.fixture
def driver() -> StubDriver:
    return StubDriver()


@pytest.fixture
def orchestrator(store, driver, settings) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(store, driver, settings)


@pytest.fixture
def session() -> Session:
    return Session(access_token="token", expires_at=datetime.now(timezone.utc) + timedelta(hours=1))


@pytest.fixture(scope="session")
def issuer() -> TokenIssuer:
    return TokenIssuer()


@pytest.fixture
def auth_headers(issuer) -> dict:
    return issuer.headers()


# =============================================================================
# Data
# =============================================================================

@pytest.fixture
def stdio_config() -> ConnectorConfig:
    return ConnectorConfig(
        name="x",
        display_name="X",
        description="d",
        transport="stdio",
        server_command="node",
        server_args=["server.js"],
    )


@pytest.fixture
def sse_config() -> ConnectorConfig:
    return ConnectorConfig(
        name="weather",
        display_name="Weather",
        description="Weather MCP server",
        transport="sse",
        server_url="https://mcp.example.com/sse",
    )


@pytest.fixture
def sse_payload() -> dict:
    return {
        "name": "weather",
        "displayName": "Weather",
        "description": "Weather MCP server",
        "transport": "sse",
        "serverUrl": "https://mcp.example.com/sse",
    }


# =============================================================================
# HTTP client
# =============================================================================

@pytest.fixture
def client(settings, store, driver, issuer):
    app = create_app(settings, store=store, driver=driver)
    app.state.identity_client = IdentityClient(settings, transport=issuer.transport)
    with TestClient(app) as test_client:
        yield test_client
