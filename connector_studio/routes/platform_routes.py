"""
Platform routes.

Pass-through endpoints for the Power Platform CLI: installation check,
CLI authentication profiles, environments and published connectors.
CLI failures are reported as 502 with the CLI diagnostic. Routes that
change the server's CLI state or write files require a verified bearer token,
and exports are confined to the `exports` folder under the runtime path.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from connector_studio.core.config import Settings
from connector_studio.core.errors import ConnectorStudioError, ProcessError
from connector_studio.models.connector import CamelModel
from connector_studio.routes.dependencies import (
    confine_path,
    get_pac_cli,
    get_settings,
    get_verified_session,
    http_error,
)
from connector_studio.services.pac_cli import PacCli

router = APIRouter()

EXPORTS_FOLDER = "exports"


class LoginRequest(CamelModel):
    environment_url: Optional[str] = None


class ExportRequest(CamelModel):
    output_directory: str


@router.get("/status")
async def platform_status(cli: PacCli = Depends(get_pac_cli)):
    """
    Reports whether the `pac` CLI can be launched.

    Example:
        >>> GET /platform/status
        {"cliPath": "pac", "installed": true, "environmentUrl": null}
    """

    return {
        "cliPath": cli.cli_path,
        "installed": await cli.check_installation(),
        "environmentUrl": cli.environment_url,
    }


@router.post("/login", dependencies=[Depends(get_verified_session)])
async def platform_login(request: Optional[LoginRequest] = None, cli: PacCli = Depends(get_pac_cli)):
    try:
        output = await cli.login(request.environment_url if request else None)
    except ProcessError as e:
        raise http_error(e)
    return {"message": "Authentication profile created", "output": output}


@router.post("/logout", dependencies=[Depends(get_verified_session)])
async def platform_logout(cli: PacCli = Depends(get_pac_cli)):
    try:
        output = await cli.logout()
    except ProcessError as e:
        raise http_error(e)
    return {"message": "Authentication profiles cleared", "output": output}


@router.get("/environments")
async def list_environments(cli: PacCli = Depends(get_pac_cli)):
    try:
        return {"output": await cli.list_environments()}
    except ProcessError as e:
        raise http_error(e)


@router.get("/connectors")
async def list_platform_connectors(cli: PacCli = Depends(get_pac_cli)):
    try:
        return {"output": await cli.list_connectors()}
    except ProcessError as e:
        raise http_error(e)


@router.post("/connectors/{platform_connector_id}/export", dependencies=[Depends(get_verified_session)])
async def export_platform_connector(platform_connector_id: str, request: ExportRequest,
                                    cli: PacCli = Depends(get_pac_cli),
                                    settings: Settings = Depends(get_settings)):
    """
    Downloads a published connector's definition files with `pac connector export`.

    Args:
        platform_connector_id (str): Identifier assigned by the Power Platform.
        request (ExportRequest): Folder receiving the exported files, relative
            to `<runtime>/exports`.

    Raises:
        HTTPException:
            - 401: If no valid token is provided.
            - 422: If the folder resolves outside `<runtime>/exports`.
            - 502: If `pac` fails.

    Example:
        >>> POST /platform/connectors/3fa85f64-5717-4562-b3fc-2c963f66afa6/export
        {"outputDirectory": "weather"}
    """

    try:
        target = confine_path(settings.runtime_path / EXPORTS_FOLDER, request.output_directory)
        output = await cli.export_connector(platform_connector_id, target)
    except ConnectorStudioError as e:
        raise http_error(e)
    return {"message": "Connector exported", "outputDirectory": str(target), "output": output}
