import json
import sys

import httpx
import pytest

from connector_studio.core.errors import CommandFailed, LaunchError, ProcessTimeout
from connector_studio.models.connector import ConnectorRecord
from connector_studio.services.deployment_driver import DeploymentDriver, find_initialize_response
from connector_studio.services.pac_cli import PacCli
from connector_studio.services.platform_api import PlatformApiClient
from connector_studio.services.process_runner import ProcessRunner
from connector_studio.util.connector_definition import DEFINITION_FILE, PROPERTIES_FILE

from tests.doubles import PLATFORM_ID, FakeRunner

ECHO_SERVER = """
import json, os, sys
request = json.loads(sys.stdin.readline())
print("server starting")
print(json.dumps({
    "jsonrpc": "2.0",
    "id": request["id"],
    "result": {"serverInfo": {"name": os.environ.get("SERVER_NAME", "unnamed"), "version": "1.2"}},
}))
"""


def sse_record(**overrides) -> ConnectorRecord:
    fields = {
        "name": "weather",
        "display_name": "Weather",
        "description": "Weather MCP server",
        "transport": "sse",
        "server_url": "https://mcp.example.com/sse",
    }
    fields.update(overrides)
    return ConnectorRecord(**fields)


def stdio_record(**overrides) -> ConnectorRecord:
    fields = {
        "name": "x",
        "display_name": "X",
        "description": "d",
        "transport": "stdio",
        "server_command": "node",
        "server_args": ["server.js"],
    }
    fields.update(overrides)
    return ConnectorRecord(**fields)


def make_driver(settings, runner, **kwargs) -> DeploymentDriver:
    return DeploymentDriver(settings, PacCli(runner, timeout=settings.operation_timeout), runner, **kwargs)


# =============================================================================
# Deploy through the pac CLI
# =============================================================================

async def test_first_deploy_creates_connector(settings, session):
    runner = FakeRunner(lambda command, args: f"Connector created.\nConnector Id: {PLATFORM_ID}")
    driver = make_driver(settings, runner)
    record = sse_record()

    result = await driver.deploy(record, session)

    assert result.success
    assert result.platform_connector_id == PLATFORM_ID
    args = runner.calls[0]["args"]
    assert args[:2] == ["connector", "create"]

    definition_file = settings.runtime_path / record.id / DEFINITION_FILE
    assert args[args.index("--api-definition-file") + 1] == str(definition_file)
    definition = json.loads(definition_file.read_text())
    assert definition["host"] == "mcp.example.com"
    assert definition["basePath"] == "/sse"
    assert (settings.runtime_path / record.id / PROPERTIES_FILE).exists()


async def test_redeploy_updates_existing_connector(settings, session):
    runner = FakeRunner(lambda command, args: "Connector updated.")
    driver = make_driver(settings, runner)

    result = await driver.deploy(sse_record(platform_connector_id=PLATFORM_ID), session)

    assert result.success
    assert result.platform_connector_id == PLATFORM_ID
    assert runner.calls[0]["args"][:4] == ["connector", "update", "--connector-id", PLATFORM_ID]


async def test_deploy_failure_keeps_cli_output(settings, session):
    runner = FakeRunner(lambda command, args: CommandFailed("pac connector create", 1, stderr="bad config\n"))
    driver = make_driver(settings, runner)

    result = await driver.deploy(sse_record(), session)

    assert not result.success
    assert result.kind == "CommandFailed"
    assert result.diagnostic == "bad config"


@pytest.mark.parametrize(
    "error, kind",
    [
        (ProcessTimeout("pac connector create", 30, stdout="Uploading..."), "Timeout"),
        (LaunchError("Cannot launch pac: No such file or directory"), "LaunchError"),
    ],
)
async def test_deploy_process_errors_are_reported(settings, session, error, kind):
    driver = make_driver(settings, FakeRunner(lambda command, args: error))

    result = await driver.deploy(sse_record(), session)

    assert not result.success
    assert result.kind == kind
    assert result.diagnostic


# =============================================================================
# Deploy through the platform API
# =============================================================================

async def test_api_deploy_puts_definition(settings, session):
    settings = settings.model_copy(update={"deploy_backend": "api", "platform_environment_id": "env-1"})
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, json={"name": "shared_weather-5f"})

    platform_api = PlatformApiClient(settings, transport=httpx.MockTransport(handler))
    driver = make_driver(settings, FakeRunner(), platform_api=platform_api)

    result = await driver.deploy(sse_record(), session)

    assert result.success
    assert result.platform_connector_id == "shared_weather-5f"
    request = requests[0]
    assert request.method == "PUT"
    assert request.url.path == "/providers/Microsoft.PowerApps/apis/weather"
    assert request.headers["Authorization"] == "Bearer token"
    body = json.loads(request.content)
    assert body["properties"]["openApiDefinition"]["paths"]["/mcp"]["post"]["operationId"] == "ExecuteMCPMethod"


async def test_api_deploy_failure(settings, session):
    settings = settings.model_copy(update={"deploy_backend": "api"})
    transport = httpx.MockTransport(lambda request: httpx.Response(400, json={"error": {"message": "Invalid swagger"}}))
    driver = make_driver(settings, FakeRunner(), platform_api=PlatformApiClient(settings, transport=transport))

    result = await driver.deploy(sse_record(), session)

    assert not result.success
    assert result.diagnostic == "HTTP 400: Invalid swagger"


# =============================================================================
# Connectivity test
# =============================================================================

async def test_url_probe_success(settings):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="event: endpoint"))
    driver = make_driver(settings, FakeRunner(), http_transport=transport)

    result = await driver.test(sse_record())

    assert result.success
    assert result.diagnostic == "https://mcp.example.com/sse answered HTTP 200"


async def test_url_probe_server_error(settings):
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    driver = make_driver(settings, FakeRunner(), http_transport=transport)

    result = await driver.test(sse_record())

    assert not result.success
    assert result.kind == "CommandFailed"


async def test_url_probe_unreachable(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    driver = make_driver(settings, FakeRunner(), http_transport=httpx.MockTransport(handler))

    result = await driver.test(sse_record())

    assert not result.success
    assert result.kind == "Unreachable"


async def test_url_probe_timeout(settings):
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    driver = make_driver(settings, FakeRunner(), http_transport=httpx.MockTransport(handler))

    result = await driver.test(sse_record())

    assert result.kind == "Timeout"


async def test_stdio_server_answers_initialize(settings):
    runner = ProcessRunner(default_timeout=10)
    driver = make_driver(settings, runner)
    record = stdio_record(server_command=sys.executable, server_args=["-c", ECHO_SERVER],
                          environment={"SERVER_NAME": "echo"})

    result = await driver.test(record)

    assert result.success, result.diagnostic
    assert result.diagnostic == "echo 1.2 answered initialize"


async def test_stdio_server_without_answer(settings):
    driver = make_driver(settings, ProcessRunner(default_timeout=10))
    record = stdio_record(server_command=sys.executable, server_args=["-c", "print('hello')"])

    result = await driver.test(record)

    assert not result.success
    assert result.kind == "CommandFailed"


async def test_stdio_server_cannot_launch(settings):
    driver = make_driver(settings, ProcessRunner(default_timeout=10))

    result = await driver.test(stdio_record(server_command="/nonexistent/mcp-server"))

    assert not result.success
    assert result.kind == "LaunchError"


def test_find_initialize_response_skips_noise():
    stdout = 'log line\n{"broken json\n{"jsonrpc": "2.0", "id": 1, "result": {}}'

    assert find_initialize_response(stdout) == {"jsonrpc": "2.0", "id": 1, "result": {}}
    assert find_initialize_response('{"jsonrpc": "2.0", "id": 1, "error": {}}') is None


# =============================================================================
# Remove
# =============================================================================

async def test_remove_deletes_published_connector_and_artifacts(settings, session):
    runner = FakeRunner(lambda command, args: "Connector deleted.")
    driver = make_driver(settings, runner)
    record = sse_record(platform_connector_id=PLATFORM_ID)
    driver.runtime_dir(record).mkdir(parents=True)

    result = await driver.remove(record, session)

    assert result.success
    assert runner.calls[0]["args"][:4] == ["connector", "delete", "--connector-id", PLATFORM_ID]
    assert not driver.runtime_dir(record).exists()


async def test_remove_unpublished_connector_runs_nothing(settings, session):
    runner = FakeRunner()
    driver = make_driver(settings, runner)

    result = await driver.remove(sse_record(), session)

    assert result.success
    assert runner.calls == []


async def test_remove_failure_keeps_artifacts(settings, session):
    runner = FakeRunner(lambda command, args: CommandFailed("pac connector delete", 1, stderr="forbidden"))
    driver = make_driver(settings, runner)
    record = sse_record(platform_connector_id=PLATFORM_ID)
    driver.runtime_dir(record).mkdir(parents=True)

    result = await driver.remove(record, session)

    assert not result.success
    assert result.diagnostic == "forbidden"
    assert driver.runtime_dir(record).exists()
