"""
Connector definition helpers.

Utility functions that build the files the Power Platform needs to publish
a custom connector for an MCP server:

    - `apiDefinition.swagger.json`: an OpenAPI 2.0 document whose single
      `/mcp` operation forwards Model Context Protocol calls;
    - `apiProperties.json`: connector metadata (icon colour, capabilities).

Responsibilities:
    - Derive host, base path and scheme from the server URL.
    - Mark `streamable-http` servers with the MCP agentic protocol extension.
    - Write both files into the connector's runtime folder.
"""

import json
from pathlib import Path
from typing import Tuple
from urllib.parse import urlparse

from connector_studio.models.connector import ConnectorRecord

DEFINITION_FILE = "apiDefinition.swagger.json"
PROPERTIES_FILE = "apiProperties.json"

MCP_STREAMABLE_PROTOCOL = "mcp-streamable-1.0"
DEFAULT_ICON_BRAND_COLOR = "#007ee5"


def build_definition(connector: ConnectorRecord) -> dict:
    """
    Builds the OpenAPI 2.0 definition of the connector.

    For URL transports the host, base path and scheme come from `serverUrl`.
    A `stdio` server has no network address of its own, so its definition
    targets `localhost` and records the launch command in `x-mcp-server`.

    Args:
        connector (ConnectorRecord): Connector to describe.

    Returns:
        dict: The Swagger document.
    """

    if connector.server_url:
        url = urlparse(connector.server_url)
        host = url.netloc
        base_path = url.path or "/"
        schemes = [url.scheme]
    else:
        host, base_path, schemes = "localhost", "/", ["https"]

    operation = {
        "summary": "Execute MCP Method",
        "description": "Execute a Model Context Protocol method",
        "operationId": "ExecuteMCPMethod",
        "parameters": [
            {
                "name": "method",
                "in": "body",
                "required": True,
                "schema": {
                    "type": "object",
                    "properties": {
                        "method": {"type": "string"},
                        "params": {"type": "object"},
                    },
                },
            }
        ],
        "responses": {
            "200": {
                "description": "MCP method response",
                "schema": {"type": "object"},
            }
        },
    }
    if connector.transport == "streamable-http":
        operation["x-ms-agentic-protocol"] = MCP_STREAMABLE_PROTOCOL

    definition = {
        "swagger": "2.0",
        "info": {
            "title": connector.display_name,
            "description": connector.description,
            "version": connector.version,
        },
        "host": host,
        "basePath": base_path,
        "schemes": schemes,
        "consumes": ["application/json"],
        "produces": ["application/json"],
        "paths": {"/mcp": {"post": operation}},
        "x-mcp-transport": connector.transport,
    }

    if connector.transport == "stdio":
        definition["x-mcp-server"] = {
            "command": connector.server_command,
            "args": list(connector.server_args),
        }

    return definition


def build_properties(connector: ConnectorRecord) -> dict:
    properties = {
        "properties": {
            "iconBrandColor": DEFAULT_ICON_BRAND_COLOR,
            "capabilities": ["actions"],
            "publisher": connector.name,
            "stackOwner": connector.name,
        }
    }
    if connector.icon_path:
        properties["properties"]["iconUri"] = connector.icon_path
    return properties


def write_definition_files(connector: ConnectorRecord, base_path: Path) -> Tuple[Path, Path]:
    """
    Writes the definition and properties files for a connector.

    Args:
        connector (ConnectorRecord): Connector to publish.
        base_path (Path): Runtime folder of the connector (created if missing).

    Returns:
        tuple[Path, Path]: Paths of the definition and properties files.
    """

    base_path.mkdir(parents=True, exist_ok=True)

    definition_file = base_path / DEFINITION_FILE
    properties_file = base_path / PROPERTIES_FILE
    definition_file.write_text(json.dumps(build_definition(connector), indent=2))
    properties_file.write_text(json.dumps(build_properties(connector), indent=2))

    return definition_file, properties_file
