"""
Power Platform CLI bridge.

Thin wrapper that turns `pac` subcommands into `ProcessRunner` invocations
(`<cli_path> <subcommand> [args...]`). Exit code 0 means success and the
trimmed stdout is returned; any other outcome raises the corresponding
`ProcessError` from the runner.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional

from connector_studio.core.errors import ProcessError
from connector_studio.services.process_runner import ProcessRunner

logger = logging.getLogger(__name__)

GUID_PATTERN = re.compile(r"[0-9a-fA-F]{8}-(?:[0-9a-fA-F]{4}-){3}[0-9a-fA-F]{12}")


def parse_connector_id(output: str) -> Optional[str]:
    """Returns the last GUID printed by `pac connector create/update`, if any."""

    matches = GUID_PATTERN.findall(output or "")
    return matches[-1] if matches else None


class PacCli:
    """
    Example:
        >>> cli = PacCli(ProcessRunner(), cli_path="pac", timeout=30)
        >>> print(await cli.list_connectors())
    """

    def __init__(self, runner: ProcessRunner, cli_path: str = "pac",
                 environment_url: Optional[str] = None, timeout: float = 30.0):
        self.runner = runner
        self.cli_path = cli_path
        self.environment_url = environment_url
        self.timeout = timeout

    async def execute(self, subcommand: str, args: Optional[List[str]] = None) -> str:
        result = await self.runner.run(self.cli_path, [subcommand, *(args or [])], timeout=self.timeout)
        return result.stdout

    async def check_installation(self) -> bool:
        try:
            await self.execute("help")
            return True
        except ProcessError as e:
            logger.info("pac CLI unavailable: %s", e)
            return False

    async def login(self, environment_url: Optional[str] = None) -> str:
        args = ["create"]
        environment_url = environment_url or self.environment_url
        if environment_url:
            args += ["--environment", environment_url]
        return await self.execute("auth", args)

    async def logout(self) -> str:
        return await self.execute("auth", ["clear"])

    async def list_environments(self) -> str:
        return await self.execute("admin", ["list"])

    async def list_connectors(self) -> str:
        return await self.execute("connector", ["list", *self._environment_args()])

    async def create_connector(self, definition_file: Path, properties_file: Path) -> str:
        return await self.execute("connector", [
            "create",
            "--api-definition-file", str(definition_file),
            "--api-properties-file", str(properties_file),
            *self._environment_args(),
        ])

    async def update_connector(self, connector_id: str, definition_file: Path, properties_file: Path) -> str:
        return await self.execute("connector", [
            "update",
            "--connector-id", connector_id,
            "--api-definition-file", str(definition_file),
            "--api-properties-file", str(properties_file),
            *self._environment_args(),
        ])

    async def delete_connector(self, connector_id: str) -> str:
        return await self.execute("connector", [
            "delete",
            "--connector-id", connector_id,
            *self._environment_args(),
        ])

    async def export_connector(self, connector_id: str, output_dir: Path) -> str:
        return await self.execute("connector", [
            "export",
            "--connector-id", connector_id,
            "--output-directory", str(output_dir),
        ])

    def _environment_args(self) -> List[str]:
        return ["--environment", self.environment_url] if self.environment_url else []
