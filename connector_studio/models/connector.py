"""
Connector model definition.

This module defines the data models related to MCP connectors.
A connector binds an external server speaking the Model Context Protocol
(over `stdio`, `sse` or `streamable-http`) to a custom connector published
in the Power Platform. Each record carries the operator-supplied
configuration, the connection details that match its transport, and the
lifecycle status driven by the orchestrator.

The models are implemented using Pydantic for data validation, type
hinting, and JSON serialization. Field names are snake_case in Python and
camelCase on the wire.
"""

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Transport = Literal["stdio", "sse", "streamable-http"]
ConnectorStatus = Literal["draft", "testing", "deployed", "error"]
Operation = Literal["test", "deploy"]

TRANSPORTS = ("stdio", "sse", "streamable-http")
URL_TRANSPORTS = ("sse", "streamable-http")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_connector_id() -> str:
    return f"conn_{uuid4().hex}"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConnectorConfig(CamelModel):
    """
    Operator-supplied connector configuration, as submitted by a form.

    The model is lenient: text fields default to empty strings,
    `transport` is any string, and `server_args` / `environment` accept raw
    text. Business rules are enforced by
    `connector_studio.services.validator.validate`, which reports every
    violation at once instead of failing on the first one.

    Example:
        >>> config = ConnectorConfig(
        ...     name="x",
        ...     display_name="X",
        ...     description="d",
        ...     transport="stdio",
        ...     server_command="node",
        ...     server_args=["server.js"],
        ... )
        >>> config.transport
        'stdio'
    """

    name: str = ""
    """Unique technical name of the connector."""

    display_name: str = ""
    """Name shown to makers in the Power Platform."""

    description: str = ""

    version: str = "1.0.0"

    transport: str = "sse"
    """One of `stdio`, `sse`, `streamable-http`."""

    server_url: Optional[str] = ""
    """Absolute URL of the MCP server (URL transports only)."""

    server_command: Optional[str] = ""
    """Executable launching the MCP server (`stdio` only)."""

    server_args: Optional[Union[List[str], str]] = None
    """Ordered arguments, as a list or as shell-quoted text."""

    environment: Optional[Union[Dict[str, object], str]] = None
    """Environment variables, as a mapping or as JSON text."""

    icon_path: Optional[str] = None


class ConnectorRecord(CamelModel):
    """
    A persisted connector.

    `revision` is the compare-and-swap stamp used by the store: every write
    must name the revision it was derived from, and the store increments it.

    Example:
        >>> record = ConnectorRecord(
        ...     name="weather",
        ...     display_name="Weather",
        ...     description="Weather MCP server",
        ...     transport="sse",
        ...     server_url="https://mcp.example.com/sse",
        ... )
        >>> record.status
        'draft'
    """

    id: str = Field(default_factory=new_connector_id)
    """Opaque identifier, assigned at creation and never changed."""

    name: str
    display_name: str
    description: str
    version: str = "1.0.0"
    transport: Transport

    server_url: Optional[str] = None
    server_command: Optional[str] = None
    server_args: List[str] = Field(default_factory=list)
    environment: Dict[str, str] = Field(default_factory=dict)
    icon_path: Optional[str] = None

    status: ConnectorStatus = "draft"
    """Lifecycle status (`draft`, `testing`, `deployed` or `error`)."""

    diagnostic: Optional[str] = None
    """Captured output or error text of the last settled test/deploy."""

    error_kind: Optional[str] = None
    """Kind of the last failure (`Timeout`, `CommandFailed`, `LaunchError`, `Cancelled`, ...)."""

    last_operation: Optional[Operation] = None

    platform_connector_id: Optional[str] = None
    """Identifier assigned by the Power Platform on the first deploy."""

    revision: int = 0

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_config(self) -> ConnectorConfig:
        """Configuration view of the record, used to re-validate before test/deploy."""

        return ConnectorConfig(
            name=self.name,
            display_name=self.display_name,
            description=self.description,
            version=self.version,
            transport=self.transport,
            server_url=self.server_url or "",
            server_command=self.server_command or "",
            server_args=list(self.server_args),
            environment=dict(self.environment),
            icon_path=self.icon_path,
        )

    def to_document(self) -> dict:
        """MongoDB document for this record (`_id` holds the connector id)."""

        document = self.model_dump(by_alias=True)
        document["_id"] = document.pop("id")
        return document

    @classmethod
    def from_document(cls, document: dict) -> "ConnectorRecord":
        data = dict(document)
        data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)
