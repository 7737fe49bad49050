"""
Connector routes.

This module defines the API endpoints used to manage MCP connectors.
Each connector supports lifecycle operations such as creation, update,
connectivity test, deployment to the Power Platform, and deletion.

All routes delegate to the lifecycle orchestrator
(`connector_studio.services.lifecycle_service`) and use Pydantic models for
validation.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response

from connector_studio.core.errors import ConnectorStudioError
from connector_studio.models.connector import ConnectorConfig
from connector_studio.routes.dependencies import (
    get_identity_client,
    get_orchestrator,
    get_session,
    get_verified_session,
    http_error,
)
from connector_studio.schemas.connector import ConnectorResponse, ConnectorUpdate, DeleteResponse, OperationResponse
from connector_studio.services.auth_service import IdentityClient, Session
from connector_studio.services.lifecycle_service import LifecycleOrchestrator, OperationHandle

router = APIRouter()


@router.post("", status_code=201, response_model=ConnectorResponse)
async def create_connector_route(data: ConnectorConfig,
                                 orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)):
    """
    Create a new MCP connector.

    Validates the configuration and registers the connector in `draft`.
    It can later be tested and deployed through its lifecycle endpoints.

    Args:
        data (ConnectorConfig): The connector configuration.

    Returns:
        ConnectorResponse: The stored connector.

    Raises:
        HTTPException: 422 with the list of violations if the configuration is invalid.

    Example:
        >>> POST /connectors
        {
            "name": "weather",
            "displayName": "Weather",
            "description": "Weather MCP server",
            "transport": "sse",
            "serverUrl": "https://mcp.example.com/sse"
        }
    """

    try:
        record = await orchestrator.create(data)
    except ConnectorStudioError as e:
        raise http_error(e)
    return ConnectorResponse.from_record(record)


@router.get("", response_model=List[ConnectorResponse])
async def list_connectors(orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)):
    """
    Retrieve all registered connectors, oldest first.

    Example:
        >>> GET /connectors
    """

    return [ConnectorResponse.from_record(r) for r in await orchestrator.list()]


@router.get("/{id}", response_model=ConnectorResponse)
async def get_connector(id: str, orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)):
    """
    Retrieve a specific connector by its identifier.

    Raises:
        HTTPException: 404 if the connector is not found.
    """

    try:
        return ConnectorResponse.from_record(await orchestrator.get(id))
    except ConnectorStudioError as e:
        raise http_error(e)


@router.put("/{id}", response_model=ConnectorResponse)
async def update_connector_route(id: str, data: ConnectorUpdate,
                                 orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)):
    """
    Replace a connector's configuration.

    The connector goes back to `draft` and must be tested or deployed again.
    A test or deploy still running keeps going and settles the status, but
    never overwrites the new configuration.

    Raises:
        HTTPException:
            - 404: If the connector does not exist.
            - 422: If the configuration is invalid.

    Example:
        >>> PUT /connectors/conn_1f0c...
        {
            "name": "weather",
            "displayName": "Weather",
            "description": "Updated description",
            "transport": "sse",
            "serverUrl": "https://mcp.example.com/sse"
        }
    """

    try:
        return ConnectorResponse.from_record(await orchestrator.update(id, data))
    except ConnectorStudioError as e:
        raise http_error(e)


@router.delete("/{id}", response_model=DeleteResponse)
async def delete_connector_route(
    id: str,
    remove_remote: bool = Query(default=False, alias="removeRemote"),
    session: Optional[Session] = Depends(get_session),
    identity: IdentityClient = Depends(get_identity_client),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
):
    """
    Delete a connector from the system.

    Any running test or deploy is cancelled first. With `removeRemote=true`
    the published connector is also deleted from the Power Platform, which
    requires a verified bearer token.

    Raises:
        HTTPException:
            - 401: `removeRemote` without a valid token.
            - 404: If the connector does not exist.
            - 502: If the platform refused the deletion.

    Example:
        >>> DELETE /connectors/conn_1f0c...?removeRemote=true
    """

    try:
        if remove_remote:
            session = await identity.validate_token(session)
        await orchestrator.delete(id, session=session, remove_remote=remove_remote)
    except ConnectorStudioError as e:
        raise http_error(e)
    return DeleteResponse(message="Connector deleted successfully")


@router.post("/{id}/test", response_model=OperationResponse)
async def test_connector(
    id: str,
    response: Response,
    wait: bool = Query(default=True),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
):
    """
    Test the MCP server behind a connector.

    The connector moves to `testing` immediately, then to `deployed` if the
    server answers or `error` otherwise. With `wait=false` the request returns
    202 as soon as the test has started.

    Raises:
        HTTPException:
            - 404: If the connector does not exist.
            - 409: If a test or deploy is already running.
            - 422: If the stored configuration is invalid.

    Example:
        >>> POST /connectors/conn_1f0c.../test?wait=false
    """

    try:
        handle = await orchestrator.start_test(id)
        return await _operation_response(orchestrator, handle, wait, response)
    except ConnectorStudioError as e:
        raise http_error(e)


@router.post("/{id}/deploy", response_model=OperationResponse)
async def deploy_connector(
    id: str,
    response: Response,
    wait: bool = Query(default=True),
    session: Session = Depends(get_verified_session),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
):
    """
    Deploy a connector to the Power Platform.

    Requires `Authorization: Bearer <token>` with an Entra ID access token
    for this tenant; the token is verified before anything else happens.
    The connector moves to `testing`, then to `deployed` or `error`; a
    failure keeps the CLI output in `diagnostic`.

    Raises:
        HTTPException:
            - 401: If no valid token is provided (the connector is not touched).
            - 404: If the connector does not exist.
            - 409: If a test or deploy is already running.
            - 422: If the stored configuration is invalid.

    Example:
        >>> POST /connectors/conn_1f0c.../deploy
    """

    try:
        handle = await orchestrator.start_deploy(id, session)
        return await _operation_response(orchestrator, handle, wait, response)
    except ConnectorStudioError as e:
        raise http_error(e)


@router.get("/{id}/definition")
async def get_connector_definition(id: str, orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)):
    """
    Preview the OpenAPI definition that a deploy would publish.

    Raises:
        HTTPException: 404 if the connector is not found.
    """

    try:
        record = await orchestrator.get(id)
    except ConnectorStudioError as e:
        raise http_error(e)
    return orchestrator.driver.definition(record)


async def _operation_response(orchestrator: LifecycleOrchestrator, handle: OperationHandle,
                              wait: bool, response: Response) -> OperationResponse:
    if not wait:
        response.status_code = 202
        return OperationResponse(action=handle.action, completed=False,
                                 connector=ConnectorResponse.from_record(handle.record))

    record = await orchestrator.wait(handle)
    return OperationResponse(action=handle.action, completed=True,
                             connector=ConnectorResponse.from_record(record))
