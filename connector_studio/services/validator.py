"""
Connector validator.

Pure functions that check a `ConnectorConfig` before anything is persisted
or sent to the Power Platform, and that turn a valid configuration into the
fields of a `ConnectorRecord`.

Rules (all of them are evaluated, violations are collected in this order):
    1. `name`, `displayName` and `description` are required.
    2. `transport` is one of `stdio`, `sse`, `streamable-http`.
    3. URL transports need an absolute server URL (scheme and host).
    4. `stdio` needs a server command; textual arguments must split cleanly.
    5. `environment` must be a JSON object of string values.
"""

import json
import shlex
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from connector_studio.models.connector import TRANSPORTS, URL_TRANSPORTS, ConnectorConfig


def validate(config: ConnectorConfig) -> List[str]:
    """
    Checks a connector configuration.

    Args:
        config (ConnectorConfig): Configuration submitted by the operator.

    Returns:
        list[str]: Human-readable violations; empty when the configuration is valid.
    """

    violations = []

    if not config.name.strip():
        violations.append("Connector name is required")
    if not config.display_name.strip():
        violations.append("Display name is required")
    if not config.description.strip():
        violations.append("Description is required")

    if config.transport not in TRANSPORTS:
        violations.append(f"Transport must be one of: {', '.join(TRANSPORTS)}")

    if config.transport in URL_TRANSPORTS:
        server_url = (config.server_url or "").strip()
        if not server_url:
            violations.append("Server URL is required for SSE and HTTP transports")
        elif not is_absolute_url(server_url):
            violations.append("Server URL must be a valid URL")

    if config.transport == "stdio":
        if not (config.server_command or "").strip():
            violations.append("Server command is required for stdio transport")
        _, args_error = _split_args(config.server_args)
        if args_error:
            violations.append(args_error)

    _, env_error = _parse_environment(config.environment)
    if env_error:
        violations.append(env_error)

    return violations


def normalize(config: ConnectorConfig) -> dict:
    """
    Converts a valid configuration into `ConnectorRecord` fields.

    Only the connection shape matching the transport is kept: URL transports
    never carry a command, `stdio` never carries a URL.

    Raises:
        ValueError: If the configuration does not pass `validate`.
    """

    violations = validate(config)
    if violations:
        raise ValueError("; ".join(violations))

    args, _ = _split_args(config.server_args)
    environment, _ = _parse_environment(config.environment)
    stdio = config.transport == "stdio"

    return {
        "name": config.name.strip(),
        "display_name": config.display_name.strip(),
        "description": config.description.strip(),
        "version": config.version.strip() or "1.0.0",
        "transport": config.transport,
        "server_url": None if stdio else config.server_url.strip(),
        "server_command": config.server_command.strip() if stdio else None,
        "server_args": args if stdio else [],
        "environment": environment,
        "icon_path": config.icon_path or None,
    }


def is_absolute_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc) and bool(parsed.hostname)


def _split_args(raw) -> Tuple[List[str], Optional[str]]:
    if raw is None:
        return [], None
    if isinstance(raw, list):
        return [str(arg) for arg in raw], None
    try:
        return shlex.split(raw), None
    except ValueError as e:
        return [], f"Server arguments could not be parsed: {e}"


def _parse_environment(raw) -> Tuple[Dict[str, str], Optional[str]]:
    if raw is None:
        return {}, None

    if isinstance(raw, str):
        if not raw.strip():
            return {}, None
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return {}, "Environment variables must be valid JSON"

    if not isinstance(raw, dict):
        return {}, "Environment variables must be a JSON object"
    if not all(isinstance(value, str) for value in raw.values()):
        return {}, "Environment variable values must be strings"

    return {str(key): value for key, value in raw.items()}, None
