"""
Connector Studio Backend: FastAPI application entry point.

This module initializes the FastAPI application that manages MCP
connectors for the Power Platform. It configures CORS and logging, wires
the connector store, the process runner, the `pac` CLI bridge, the
deployment driver and the lifecycle orchestrator from explicit settings,
and registers all API routes.

Run with:
    uvicorn connector_studio.main:app
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from connector_studio.core.config import Settings
from connector_studio.core.log_config import configure_logging
from connector_studio.db.client import ensure_indexes, init_mongo
from connector_studio.db.connector_store import ConnectorStore, InMemoryConnectorStore, MongoConnectorStore
from connector_studio.routes import auth_routes, connectors_routes, platform_routes
from connector_studio.services.auth_service import IdentityClient
from connector_studio.services.deployment_driver import DeploymentDriver
from connector_studio.services.lifecycle_service import LifecycleOrchestrator
from connector_studio.services.pac_cli import PacCli
from connector_studio.services.platform_api import PlatformApiClient
from connector_studio.services.process_runner import ProcessRunner

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, store: Optional[ConnectorStore] = None,
               driver: Optional[DeploymentDriver] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings (Settings): Configuration (default: `Settings.from_env()`).
        store (ConnectorStore): Store to use instead of the configured backend.
        driver (DeploymentDriver): Driver to use instead of the `pac`-based one.
    """

    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="MCP Connector Studio",
        description="API to define, test and deploy MCP connectors to the Power Platform",
        version="0.1.0",
    )

    # ------------------------------------------------------------------------------
    # Middleware configuration
    # ------------------------------------------------------------------------------

    # Adjust 'allow_origins' for production deployment.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------------------

    runner = ProcessRunner(settings.operation_timeout, settings.max_output_bytes)
    pac_cli = PacCli(runner, settings.pac_cli_path, settings.environment_url, settings.operation_timeout)
    if driver is None:
        platform_api = PlatformApiClient(settings) if settings.deploy_backend == "api" else None
        driver = DeploymentDriver(settings, pac_cli, runner, platform_api)

    app.state.settings = settings
    app.state.pac_cli = pac_cli
    app.state.identity_client = IdentityClient(settings)
    app.state.driver = driver
    app.state.store = store
    app.state.mongo_client = None
    app.state.orchestrator = None

    # ------------------------------------------------------------------------------
    # Application lifecycle events
    # ------------------------------------------------------------------------------

    @app.on_event("startup")
    async def startup():
        """
        Open the connector store and settle connectors interrupted by a previous run.
        """

        connector_store = app.state.store
        if connector_store is None:
            if settings.store_backend == "memory":
                connector_store = InMemoryConnectorStore()
            else:
                client, db = init_mongo(settings)
                await ensure_indexes(db, settings.connectors_collection)
                app.state.mongo_client = client
                connector_store = MongoConnectorStore(db, settings.connectors_collection)
            app.state.store = connector_store

        orchestrator = LifecycleOrchestrator(connector_store, app.state.driver, settings)
        app.state.orchestrator = orchestrator
        await orchestrator.recover_interrupted()
        logger.info("Connector Studio ready (store=%s, deploy=%s)",
                    type(connector_store).__name__, settings.deploy_backend)

    @app.on_event("shutdown")
    async def shutdown():
        if app.state.orchestrator is not None:
            await app.state.orchestrator.shutdown()
        if app.state.mongo_client is not None:
            app.state.mongo_client.close()

    # ------------------------------------------------------------------------------
    # API routes registration
    # ------------------------------------------------------------------------------

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    app.include_router(connectors_routes.router, prefix="/connectors", tags=["Connectors"])
    app.include_router(auth_routes.router, prefix="/auth", tags=["Auth"])
    app.include_router(platform_routes.router, prefix="/platform", tags=["Platform"])

    return app


app = create_app()
