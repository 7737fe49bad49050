import json

from connector_studio.models.connector import ConnectorRecord
from connector_studio.util.connector_definition import (
    MCP_STREAMABLE_PROTOCOL,
    build_definition,
    build_properties,
    write_definition_files,
)


def test_url_connector_definition():
    record = ConnectorRecord(
        name="weather", display_name="Weather", description="Forecasts", version="2.1.0",
        transport="streamable-http", server_url="http://localhost:8080/api/mcp",
    )

    definition = build_definition(record)

    assert definition["info"] == {"title": "Weather", "description": "Forecasts", "version": "2.1.0"}
    assert definition["host"] == "localhost:8080"
    assert definition["basePath"] == "/api/mcp"
    assert definition["schemes"] == ["http"]
    operation = definition["paths"]["/mcp"]["post"]
    assert operation["operationId"] == "ExecuteMCPMethod"
    assert operation["x-ms-agentic-protocol"] == MCP_STREAMABLE_PROTOCOL


def test_sse_connector_has_no_agentic_extension():
    record = ConnectorRecord(name="w", display_name="W", description="d", transport="sse",
                             server_url="https://mcp.example.com")

    definition = build_definition(record)

    assert definition["basePath"] == "/"
    assert "x-ms-agentic-protocol" not in definition["paths"]["/mcp"]["post"]
    assert definition["x-mcp-transport"] == "sse"


def test_stdio_connector_records_launch_command():
    record = ConnectorRecord(name="x", display_name="X", description="d", transport="stdio",
                             server_command="node", server_args=["server.js", "--stdio"])

    definition = build_definition(record)

    assert definition["host"] == "localhost"
    assert definition["x-mcp-server"] == {"command": "node", "args": ["server.js", "--stdio"]}


def test_properties():
    record = ConnectorRecord(name="x", display_name="X", description="d", transport="stdio",
                             server_command="node", icon_path="https://cdn.example.com/icon.png")

    properties = build_properties(record)["properties"]

    assert properties["iconBrandColor"] == "#007ee5"
    assert properties["iconUri"] == "https://cdn.example.com/icon.png"
    assert properties["publisher"] == "x"


def test_write_definition_files(tmp_path):
    record = ConnectorRecord(name="x", display_name="X", description="d", transport="stdio", server_command="node")

    definition_file, properties_file = write_definition_files(record, tmp_path / record.id)

    assert json.loads(definition_file.read_text()) == build_definition(record)
    assert json.loads(properties_file.read_text()) == build_properties(record)
