from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends

from connector_studio.core.errors import ConnectorStudioError
from connector_studio.models.connector import CamelModel
from connector_studio.routes.dependencies import get_identity_client, get_verified_session, http_error
from connector_studio.services.auth_service import IdentityClient, Session

router = APIRouter()


class TokenRequest(CamelModel):
    scopes: Optional[List[str]] = None


class TokenResponse(CamelModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: Optional[datetime] = None
    scopes: List[str] = []


@router.get("/session", response_model=TokenResponse)
async def current_session(session: Session = Depends(get_verified_session)):
    """
    Reports whether the caller's bearer token is accepted, and until when.

    Example:
        >>> GET /auth/session
        Authorization: Bearer eyJ0eXAiOiJKV1Qi...
    """

    return TokenResponse(access_token=session.access_token, expires_at=session.expires_at, scopes=session.scopes)


@router.post("/token", response_model=TokenResponse, dependencies=[Depends(get_verified_session)])
async def acquire_token(request: Optional[TokenRequest] = None,
                        identity: IdentityClient = Depends(get_identity_client)):
    """
    Exchanges a verified caller token for an application token (client credentials).

    Raises:
        HTTPException: 401 if the caller's token is not accepted or the
            application credentials are refused.
    """

    try:
        if request and request.scopes:
            session = await identity.acquire_token(request.scopes)
        else:
            session = await identity.authenticate()
    except ConnectorStudioError as e:
        raise http_error(e)
    return TokenResponse(access_token=session.access_token, expires_at=session.expires_at, scopes=session.scopes)
