"""
Error taxonomy.

Every failure the service reports is a subclass of
`ConnectorStudioError`. Each class carries the HTTP status code the routes
answer with, so the web layer can translate errors without knowing their
details.

Process errors (`LaunchError`, `ProcessTimeout`, `CommandFailed`,
`ProcessCancelled`) also carry a `kind` and whatever output was captured.
During test/deploy these never reach the caller: the orchestrator writes them
into the connector record as `status="error"` plus a diagnostic.
"""

from typing import List


class ConnectorStudioError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ConnectorStudioError):
    """The submitted connector configuration breaks one or more rules."""

    status_code = 422

    def __init__(self, violations: List[str]):
        super().__init__("; ".join(violations))
        self.violations = list(violations)


class NotFound(ConnectorStudioError):
    status_code = 404

    def __init__(self, connector_id: str):
        super().__init__(f"Connector {connector_id} not found")
        self.connector_id = connector_id


class ConnectorExists(ConnectorStudioError):
    status_code = 409

    def __init__(self, connector_id: str):
        super().__init__(f"Connector {connector_id} already exists")
        self.connector_id = connector_id


class StaleRecord(ConnectorStudioError):
    """A compare-and-swap write lost against a concurrent writer."""

    status_code = 409

    def __init__(self, connector_id: str, expected_revision: int):
        super().__init__(
            f"Connector {connector_id} changed since revision {expected_revision}"
        )
        self.connector_id = connector_id
        self.expected_revision = expected_revision


class OperationInProgress(ConnectorStudioError):
    status_code = 409

    def __init__(self, connector_id: str):
        super().__init__(f"A test or deploy is already running for connector {connector_id}")
        self.connector_id = connector_id


class AuthRequired(ConnectorStudioError):
    status_code = 401

    def __init__(self, message: str = "Please authenticate with Microsoft first"):
        super().__init__(message)


class DeploymentFailed(ConnectorStudioError):
    """A remote platform call outside the test/deploy flow failed."""

    status_code = 502

    def __init__(self, kind: str, diagnostic: str):
        super().__init__(f"{kind}: {diagnostic}" if diagnostic else kind)
        self.kind = kind
        self.diagnostic = diagnostic


class ProcessError(ConnectorStudioError):
    status_code = 502
    kind = "ProcessError"

    def __init__(self, message: str, stdout: str = "", stderr: str = ""):
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr

    @property
    def diagnostic(self) -> str:
        """Most useful text to show an operator: stderr, else stdout, else the message."""

        return self.stderr.strip() or self.stdout.strip() or self.message


class LaunchError(ProcessError):
    kind = "LaunchError"


class ProcessTimeout(ProcessError):
    kind = "Timeout"

    def __init__(self, command: str, timeout: float, stdout: str = "", stderr: str = ""):
        super().__init__(f"Command timed out after {timeout:g}s: {command}", stdout, stderr)
        self.timeout = timeout

    @property
    def diagnostic(self) -> str:
        captured = self.stderr.strip() or self.stdout.strip()
        return f"{self.message}\n{captured}" if captured else self.message


class CommandFailed(ProcessError):
    kind = "CommandFailed"

    def __init__(self, command: str, exit_code: int, stdout: str = "", stderr: str = ""):
        super().__init__(f"Command failed with code {exit_code}: {command}", stdout, stderr)
        self.exit_code = exit_code


class ProcessCancelled(ProcessError):
    kind = "Cancelled"

    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(f"Command cancelled: {command}", stdout, stderr)

    @property
    def diagnostic(self) -> str:
        return self.message
