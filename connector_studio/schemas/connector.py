"""
Connector schemas.

This module defines the Pydantic schemas used in API requests and
responses for connectors.

Schemas:
    - ConnectorResponse: Returned by the API when retrieving connector details.
    - ConnectorUpdate: Full replacement of a connector configuration.
    - DeleteResponse / OperationResponse: Results of lifecycle operations.
"""

from datetime import datetime
from typing import Dict, List, Optional

from connector_studio.models.connector import (
    CamelModel,
    ConnectorConfig,
    ConnectorRecord,
    ConnectorStatus,
    Operation,
    Transport,
)


class ConnectorUpdate(ConnectorConfig):
    """
    Represents the schema used to replace a connector configuration.

    Every edit is a whole-configuration replace and sends the connector back
    to `draft`.

    Example:
        >>> update = ConnectorUpdate(
        ...     name="weather",
        ...     display_name="Weather",
        ...     description="Updated description",
        ...     transport="sse",
        ...     server_url="https://mcp.example.com/sse",
        ... )
    """


class ConnectorResponse(CamelModel):
    """
    Represents a connector object returned by the API.

    Example:
        >>> response = ConnectorResponse.from_record(record)
        >>> response.status
        'draft'
    """

    id: str
    name: str
    display_name: str
    description: str
    version: str
    transport: Transport
    server_url: Optional[str] = None
    server_command: Optional[str] = None
    server_args: List[str] = []
    environment: Dict[str, str] = {}
    icon_path: Optional[str] = None

    status: ConnectorStatus
    """Lifecycle status (`draft`, `testing`, `deployed` or `error`)."""

    diagnostic: Optional[str] = None
    """Output or error text of the last test/deploy."""

    error_kind: Optional[str] = None
    last_operation: Optional[Operation] = None
    platform_connector_id: Optional[str] = None
    revision: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: ConnectorRecord) -> "ConnectorResponse":
        return cls.model_validate(record.model_dump())


class OperationResponse(CamelModel):
    """Result of a test or deploy request."""

    action: Operation
    completed: bool
    """False when the operation was accepted and is still running."""

    connector: ConnectorResponse


class DeleteResponse(CamelModel):
    message: str
