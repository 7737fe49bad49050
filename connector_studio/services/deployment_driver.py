"""
Deployment driver.

Translates a connector record into calls on the outside world and reports
each outcome as a `DriverResult`:

    - deploy: generate the connector definition files in the runtime folder
      and publish them with `pac connector create` / `pac connector update`
      (or the PowerApps REST API when `DEPLOY_BACKEND=api`);
    - test: probe URL-based servers over HTTP, or launch a stdio server and
      run the MCP `initialize` handshake through its stdin/stdout;
    - remove: delete the published connector and its runtime folder.

Failures of the external process or API are never raised: they are mapped
to an unsuccessful result carrying the error kind and a diagnostic text.
The driver keeps no state between calls.
"""

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from connector_studio.core.config import Settings
from connector_studio.core.errors import ProcessError
from connector_studio.models.connector import ConnectorRecord
from connector_studio.services.auth_service import Session
from connector_studio.services.pac_cli import PacCli, parse_connector_id
from connector_studio.services.platform_api import PlatformApiClient
from connector_studio.services.process_runner import ProcessRunner
from connector_studio.util.connector_definition import build_definition, write_definition_files

logger = logging.getLogger(__name__)

MCP_PROTOCOL_VERSION = "2025-06-18"


@dataclass
class DriverResult:
    success: bool
    diagnostic: Optional[str] = None
    kind: Optional[str] = None
    """Error kind on failure (`Timeout`, `CommandFailed`, `LaunchError`, ...)."""

    platform_connector_id: Optional[str] = None

    @classmethod
    def ok(cls, diagnostic: Optional[str] = None, platform_connector_id: Optional[str] = None) -> "DriverResult":
        return cls(success=True, diagnostic=diagnostic or None, platform_connector_id=platform_connector_id)

    @classmethod
    def failed(cls, kind: str, diagnostic: str) -> "DriverResult":
        return cls(success=False, kind=kind, diagnostic=diagnostic)

    @classmethod
    def from_error(cls, error: ProcessError) -> "DriverResult":
        return cls.failed(error.kind, error.diagnostic)


def initialize_request() -> bytes:
    """JSON-RPC `initialize` message sent to stdio servers under test."""

    message = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "initialize",
        "params": {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": "connector-studio", "version": "1.0.0"},
        },
    }
    return (json.dumps(message) + "\n").encode()


def find_initialize_response(stdout: str) -> Optional[dict]:
    for line in stdout.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(message, dict) and message.get("id") == 1 and "result" in message:
            return message
    return None


class DeploymentDriver:
    """
    Example:
        >>> runner = ProcessRunner(settings.operation_timeout, settings.max_output_bytes)
        >>> driver = DeploymentDriver(settings, PacCli(runner, settings.pac_cli_path), runner)
        >>> result = await driver.test(record)
        >>> result.success
        True
    """

    def __init__(self, settings: Settings, cli: PacCli, runner: ProcessRunner,
                 platform_api: Optional[PlatformApiClient] = None,
                 http_transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.cli = cli
        self.runner = runner
        self.platform_api = platform_api
        self._http_transport = http_transport

    def runtime_dir(self, connector: ConnectorRecord) -> Path:
        return Path(self.settings.runtime_path) / connector.id

    def definition(self, connector: ConnectorRecord) -> dict:
        return build_definition(connector)

    async def deploy(self, connector: ConnectorRecord, session: Session) -> DriverResult:
        """
        Publishes the connector, creating it on first deploy and updating it afterwards.

        Args:
            connector (ConnectorRecord): Record to publish.
            session (Session): Authenticated session (bearer for the API backend).
        """

        if self.settings.deploy_backend == "api":
            return await self._deploy_with_api(connector, session)

        try:
            definition_file, properties_file = write_definition_files(connector, self.runtime_dir(connector))
        except OSError as e:
            return DriverResult.failed("LaunchError", f"Cannot write connector definition: {e}")

        try:
            if connector.platform_connector_id:
                output = await self.cli.update_connector(connector.platform_connector_id, definition_file, properties_file)
            else:
                output = await self.cli.create_connector(definition_file, properties_file)
        except ProcessError as e:
            logger.info("Deploy of %s failed: %s", connector.id, e)
            return DriverResult.from_error(e)

        platform_id = parse_connector_id(output) or connector.platform_connector_id
        return DriverResult.ok(output, platform_connector_id=platform_id)

    async def _deploy_with_api(self, connector: ConnectorRecord, session: Session) -> DriverResult:
        if self.platform_api is None:
            return DriverResult.failed("LaunchError", "Platform API client is not configured")

        result = await self.platform_api.create_or_update_connector(connector, self.definition(connector), session)
        if not result.success:
            return DriverResult.failed("CommandFailed", f"HTTP {result.status_code}: {result.message}")

        platform_id = connector.platform_connector_id
        if isinstance(result.body, dict) and result.body.get("name"):
            platform_id = result.body["name"]
        return DriverResult.ok(platform_connector_id=platform_id)

    async def test(self, connector: ConnectorRecord) -> DriverResult:
        """Checks that the MCP server behind the connector answers."""

        if connector.transport == "stdio":
            return await self._test_stdio(connector)
        return await self._probe_url(connector.server_url)

    async def _probe_url(self, url: str) -> DriverResult:
        headers = {"Accept": "application/json, text/event-stream"}
        try:
            async with httpx.AsyncClient(transport=self._http_transport, timeout=self.settings.probe_timeout) as client:
                async with client.stream("GET", url, headers=headers) as response:
                    status = response.status_code
        except httpx.TimeoutException as e:
            return DriverResult.failed("Timeout", f"{url} did not answer within {self.settings.probe_timeout:g}s: {e}")
        except httpx.RequestError as e:
            return DriverResult.failed("Unreachable", f"{url} is unreachable: {e}")

        if status >= 500:
            return DriverResult.failed("CommandFailed", f"{url} answered HTTP {status}")
        return DriverResult.ok(f"{url} answered HTTP {status}")

    async def _test_stdio(self, connector: ConnectorRecord) -> DriverResult:
        try:
            result = await self.runner.run(
                connector.server_command,
                connector.server_args,
                timeout=self.settings.operation_timeout,
                input=initialize_request(),
                env=connector.environment or None,
            )
        except ProcessError as e:
            logger.info("Test of %s failed: %s", connector.id, e)
            return DriverResult.from_error(e)

        response = find_initialize_response(result.stdout)
        if response is None:
            return DriverResult.failed("CommandFailed", "Server exited without answering the initialize request")

        payload = response["result"] if isinstance(response["result"], dict) else {}
        server_info = payload.get("serverInfo") or {}
        name = server_info.get("name", "server")
        version = server_info.get("version", "")
        return DriverResult.ok(f"{name} {version}".strip() + " answered initialize")

    async def remove(self, connector: ConnectorRecord, session: Session) -> DriverResult:
        """Deletes the published connector (if any) and its runtime folder."""

        result = DriverResult.ok("Connector was never published")
        if connector.platform_connector_id:
            if self.settings.deploy_backend == "api" and self.platform_api is not None:
                api_result = await self.platform_api.delete_connector(connector.platform_connector_id, session)
                if api_result.success or api_result.status_code == 404:
                    result = DriverResult.ok()
                else:
                    result = DriverResult.failed("CommandFailed", f"HTTP {api_result.status_code}: {api_result.message}")
            else:
                try:
                    result = DriverResult.ok(await self.cli.delete_connector(connector.platform_connector_id))
                except ProcessError as e:
                    result = DriverResult.from_error(e)

        if result.success:
            self.discard_artifacts(connector)
        return result

    def discard_artifacts(self, connector: ConnectorRecord) -> None:
        base_path = self.runtime_dir(connector)
        if base_path.exists():
            shutil.rmtree(base_path)
