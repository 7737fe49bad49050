"""
Route dependencies.

FastAPI dependencies that hand the application components (kept on
`app.state` by `connector_studio.main`) to the routes, build and verify the
caller's session from the `Authorization` header, and translate service
errors into HTTP errors.
"""

from pathlib import Path
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from connector_studio.core.config import Settings
from connector_studio.core.errors import ConnectorStudioError, ProcessError, ValidationError
from connector_studio.services.auth_service import IdentityClient, Session
from connector_studio.services.lifecycle_service import LifecycleOrchestrator
from connector_studio.services.pac_cli import PacCli


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> LifecycleOrchestrator:
    return request.app.state.orchestrator


def get_pac_cli(request: Request) -> PacCli:
    return request.app.state.pac_cli


def get_identity_client(request: Request) -> IdentityClient:
    return request.app.state.identity_client


def get_session(authorization: Optional[str] = Header(default=None)) -> Optional[Session]:
    """Unverified session carried by `Authorization: Bearer <token>`, or None."""

    return Session.from_bearer(authorization)


async def get_verified_session(session: Optional[Session] = Depends(get_session),
                               identity: IdentityClient = Depends(get_identity_client)) -> Session:
    """
    Session whose token passed `IdentityClient.validate_token`.

    Raises:
        HTTPException: 401 if the token is missing, expired or not issued for this tenant.
    """

    try:
        return await identity.validate_token(session)
    except ConnectorStudioError as e:
        raise http_error(e)


def confine_path(base: Path, requested: str) -> Path:
    """
    Resolves `requested` inside `base`.

    Raises:
        ValidationError: The path escapes `base`.
    """

    root = base.resolve()
    target = (root / requested).resolve()
    if target != root and root not in target.parents:
        raise ValidationError([f"Output directory must stay inside {base}"])
    return target


def http_error(error: ConnectorStudioError) -> HTTPException:
    """
    Maps a service error to the HTTP error returned to the client.

    Validation errors carry the full list of violations in `detail`, process
    errors the captured CLI output.
    """

    if isinstance(error, ValidationError):
        return HTTPException(status_code=error.status_code, detail=error.violations)
    if isinstance(error, ProcessError):
        return HTTPException(status_code=error.status_code, detail=error.diagnostic)
    return HTTPException(status_code=error.status_code, detail=error.message)
