"""
Application settings.

This module defines the configuration value consumed by every component of
the Connector Studio backend. Settings are read once from the environment
(and an optional `.env` file) and then passed explicitly to the store, the
process runner, the deployment driver and the lifecycle orchestrator.

Environment variables:
    - MONGODB_URI: MongoDB connection string (default: mongodb://localhost:27017)
    - MONGODB_DB: Database name (default: connector_studio)
    - CONNECTORS_COLLECTION: Collection holding connector records (default: connectors)
    - STORE_BACKEND: `mongo` or `memory` (default: mongo)
    - PAC_CLI_PATH: Path to the Power Platform CLI (default: pac)
    - PAC_ENVIRONMENT_URL: Target environment URL passed to `pac`
    - OPERATION_TIMEOUT: Seconds allowed for a single test/deploy command (default: 30)
    - WATCHDOG_GRACE: Extra seconds before an unresponsive operation is failed (default: 5)
    - PROBE_TIMEOUT: Seconds allowed for an HTTP reachability probe (default: 10)
    - MAX_OUTPUT_BYTES: Cap on captured stdout/stderr per stream (default: 1 MiB)
    - RUNTIME_PATH: Folder for generated connector artifacts (default: runtime)
    - DEPLOY_BACKEND: `cli` or `api` (default: cli)
    - PLATFORM_API_URL, PLATFORM_ENVIRONMENT_ID, PLATFORM_API_VERSION
    - AZURE_TENANT_ID, AZURE_CLIENT_ID, AZURE_CLIENT_SECRET, AZURE_AUTHORITY, AZURE_SCOPES
    - AZURE_TOKEN_AUDIENCES: Audiences accepted on caller tokens (default: derived
      from AZURE_CLIENT_ID and AZURE_SCOPES)
    - LOG_LEVEL: Root log level (default: INFO)
"""

import os
from pathlib import Path
from typing import List, Literal, Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

DEFAULT_SCOPES = [
    "https://graph.microsoft.com/.default",
    "https://api.powerplatform.com/user_impersonation",
]


class Settings(BaseModel):
    """
    Immutable configuration value for the backend.

    Example:
        >>> settings = Settings(store_backend="memory", operation_timeout=5)
        >>> settings.watchdog_timeout
        10.0
    """

    model_config = {"frozen": True}

    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "connector_studio"
    connectors_collection: str = "connectors"
    store_backend: Literal["mongo", "memory"] = "mongo"

    pac_cli_path: str = "pac"
    environment_url: Optional[str] = None
    operation_timeout: float = 30.0
    """Timeout, in seconds, for every external command or remote call."""

    watchdog_grace: float = 5.0
    """Extra time granted to the driver before the orchestrator gives up on it."""

    probe_timeout: float = 10.0
    max_output_bytes: int = 1024 * 1024
    runtime_path: Path = Path("runtime")

    deploy_backend: Literal["cli", "api"] = "cli"
    platform_api_url: str = "https://api.powerapps.com"
    platform_environment_id: Optional[str] = None
    platform_api_version: str = "2016-11-01"

    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    authority: str = "https://login.microsoftonline.com"
    scopes: List[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    token_audiences: List[str] = Field(default_factory=list)
    """Audiences accepted on caller tokens; empty means derived from the client id and scopes."""

    log_level: str = "INFO"

    @property
    def watchdog_timeout(self) -> float:
        return self.operation_timeout + self.watchdog_grace

    @property
    def accepted_audiences(self) -> List[str]:
        if self.token_audiences:
            return list(self.token_audiences)
        audiences = [self.client_id, f"api://{self.client_id}"] if self.client_id else []
        for scope in self.scopes:
            resource = scope.rsplit("/", 1)[0] if "://" in scope else scope
            audiences.extend([resource, resource + "/"])
        return list(dict.fromkeys(audiences))

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build the settings from environment variables.

        A `.env` file in the working directory is loaded first, without
        overriding variables already present in the process environment.
        """

        load_dotenv(find_dotenv(usecwd=True))

        scopes = os.getenv("AZURE_SCOPES")
        audiences = os.getenv("AZURE_TOKEN_AUDIENCES")
        return cls(
            mongodb_uri=os.getenv("MONGODB_URI", "mongodb://localhost:27017"),
            mongodb_db=os.getenv("MONGODB_DB", "connector_studio"),
            connectors_collection=os.getenv("CONNECTORS_COLLECTION", "connectors"),
            store_backend=os.getenv("STORE_BACKEND", "mongo"),
            pac_cli_path=os.getenv("PAC_CLI_PATH", "pac"),
            environment_url=os.getenv("PAC_ENVIRONMENT_URL") or None,
            operation_timeout=float(os.getenv("OPERATION_TIMEOUT", 30)),
            watchdog_grace=float(os.getenv("WATCHDOG_GRACE", 5)),
            probe_timeout=float(os.getenv("PROBE_TIMEOUT", 10)),
            max_output_bytes=int(os.getenv("MAX_OUTPUT_BYTES", 1024 * 1024)),
            runtime_path=Path(os.getenv("RUNTIME_PATH", "runtime")),
            deploy_backend=os.getenv("DEPLOY_BACKEND", "cli"),
            platform_api_url=os.getenv("PLATFORM_API_URL", "https://api.powerapps.com"),
            platform_environment_id=os.getenv("PLATFORM_ENVIRONMENT_ID") or None,
            platform_api_version=os.getenv("PLATFORM_API_VERSION", "2016-11-01"),
            tenant_id=os.getenv("AZURE_TENANT_ID", ""),
            client_id=os.getenv("AZURE_CLIENT_ID", ""),
            client_secret=os.getenv("AZURE_CLIENT_SECRET", ""),
            authority=os.getenv("AZURE_AUTHORITY", "https://login.microsoftonline.com"),
            scopes=scopes.split() if scopes else list(DEFAULT_SCOPES),
            token_audiences=audiences.split() if audiences else [],
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
