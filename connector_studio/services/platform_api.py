"""
Power Platform connectors API client.

Alternative to the `pac` CLI for publishing connectors: creates, updates
and deletes custom connectors through the PowerApps REST API, authenticated
with the caller's session token. Calls never raise on HTTP failures; the
outcome is reported as an `ApiResult` with the status code.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from connector_studio.core.config import Settings
from connector_studio.models.connector import ConnectorRecord
from connector_studio.services.auth_service import Session

logger = logging.getLogger(__name__)


@dataclass
class ApiResult:
    success: bool
    status_code: int
    body: Any = None

    @property
    def message(self) -> str:
        if isinstance(self.body, dict):
            error = self.body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return error["message"]
        return str(self.body) if self.body else f"HTTP {self.status_code}"


class PlatformApiClient:

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    def _url(self, api_name: str) -> str:
        return f"{self.settings.platform_api_url.rstrip('/')}/providers/Microsoft.PowerApps/apis/{api_name}"

    def _params(self) -> dict:
        params = {"api-version": self.settings.platform_api_version}
        if self.settings.platform_environment_id:
            params["$filter"] = f"environment eq '{self.settings.platform_environment_id}'"
        return params

    async def create_or_update_connector(self, connector: ConnectorRecord, definition: dict,
                                         session: Session) -> ApiResult:
        """
        Publishes `definition` as the custom connector of `connector`.

        The connector's platform id is reused when it has one, otherwise its
        technical name becomes the API name.
        """

        api_name = connector.platform_connector_id or connector.name
        payload = {
            "properties": {
                "displayName": connector.display_name,
                "description": connector.description,
                "iconUri": connector.icon_path,
                "openApiDefinition": definition,
                "environment": {"name": self.settings.platform_environment_id},
            }
        }
        return await self._request("PUT", api_name, session, json=payload)

    async def delete_connector(self, connector_id: str, session: Session) -> ApiResult:
        return await self._request("DELETE", connector_id, session)

    async def _request(self, method: str, api_name: str, session: Session, **kwargs) -> ApiResult:
        headers = {"Authorization": f"Bearer {session.access_token}"}
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.settings.operation_timeout) as client:
                response = await client.request(method, self._url(api_name), params=self._params(),
                                                headers=headers, **kwargs)
        except httpx.RequestError as e:
            logger.warning("%s %s failed: %s", method, api_name, e)
            return ApiResult(success=False, status_code=0, body=str(e))

        try:
            body = response.json()
        except ValueError:
            body = response.text

        logger.info("%s connector %s -> HTTP %s", method, api_name, response.status_code)
        return ApiResult(success=response.is_success, status_code=response.status_code, body=body)
