"""
Authentication service.

Acquires access tokens from Microsoft Entra ID with the OAuth 2.0 client
credentials grant and wraps them in explicit `Session` values. Sessions are
returned to the caller and passed to the operations that need them
(deploying and removing connectors).

Tokens presented by callers are never trusted as-is: `validate_token`
checks their signature against the tenant's published signing keys, their
expiry, audience, issuer and tenant before they become a `Session`.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import jwt

from connector_studio.core.config import Settings
from connector_studio.core.errors import AuthRequired

logger = logging.getLogger(__name__)

EXPIRY_MARGIN = timedelta(seconds=60)


@dataclass(frozen=True)
class Session:
    """An access token plus the moment it stops being usable."""

    access_token: str
    expires_at: Optional[datetime] = None
    scopes: List[str] = field(default_factory=list)

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.access_token:
            return False
        if self.expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now < self.expires_at - EXPIRY_MARGIN

    @classmethod
    def from_bearer(cls, authorization: Optional[str]) -> Optional["Session"]:
        """Session for an `Authorization: Bearer <token>` header value (None if absent)."""

        if not authorization:
            return None
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return cls(access_token=token.strip())


def require_session(session: Optional[Session]) -> Session:
    """
    Raises:
        AuthRequired: If there is no session or it has expired.
    """

    if session is None or not session.is_valid():
        raise AuthRequired()
    return session


class IdentityClient:
    """
    Example:
        >>> client = IdentityClient(Settings.from_env())
        >>> session = await client.authenticate()
        >>> session.is_valid()
        True
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport
        self._signing_keys: Optional[Dict[str, Any]] = None

    @property
    def token_url(self) -> str:
        return f"{self.settings.authority.rstrip('/')}/{self.settings.tenant_id}/oauth2/v2.0/token"

    @property
    def jwks_url(self) -> str:
        return f"{self.settings.authority.rstrip('/')}/{self.settings.tenant_id}/discovery/v2.0/keys"

    @property
    def issuers(self) -> List[str]:
        tenant = self.settings.tenant_id
        return [f"https://sts.windows.net/{tenant}/", f"{self.settings.authority.rstrip('/')}/{tenant}/v2.0"]

    async def validate_token(self, session: Optional[Session]) -> Session:
        """
        Verifies a caller's bearer token and returns the session it grants.

        The token must be an RS256 JWT signed by one of the tenant's keys,
        unexpired, issued by the configured tenant and addressed to one of
        `settings.accepted_audiences`.

        Args:
            session (Session): Session built from the `Authorization` header.

        Returns:
            Session: The same token with its expiry and scopes read from the claims.

        Raises:
            AuthRequired: No token, or the token failed any check.
        """

        if session is None or not session.access_token:
            raise AuthRequired()
        if not self.settings.tenant_id:
            raise AuthRequired("Microsoft credentials are not configured")

        token = session.access_token
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError:
            raise AuthRequired("Access token is not a valid JWT")

        key = await self._signing_key(header.get("kid"))
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=["RS256"],
                audience=self.settings.accepted_audiences,
                options={"require": ["exp", "iss", "aud"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthRequired("Access token has expired")
        except jwt.PyJWTError as e:
            logger.info("Rejected bearer token: %s", e)
            raise AuthRequired(f"Access token rejected: {e}")

        if claims.get("tid") != self.settings.tenant_id or claims["iss"] not in self.issuers:
            raise AuthRequired("Access token was not issued by the configured tenant")

        scopes = claims.get("scp", "").split() or list(claims.get("roles", []))
        return Session(
            access_token=token,
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
            scopes=scopes,
        )

    async def _signing_key(self, kid: Optional[str]) -> Any:
        if not kid:
            raise AuthRequired("Access token has no key id")
        # Keys rotate: refetch once when the id is unknown.
        if self._signing_keys is None or kid not in self._signing_keys:
            self._signing_keys = await self._fetch_signing_keys()
        if kid not in self._signing_keys:
            raise AuthRequired("Access token is signed with an unknown key")
        return self._signing_keys[kid]

    async def _fetch_signing_keys(self) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.settings.operation_timeout) as client:
                response = await client.get(self.jwks_url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Cannot fetch signing keys from %s: %s", self.jwks_url, e)
            raise AuthRequired("Cannot verify access token: signing keys unavailable")

        keys = {}
        for entry in response.json().get("keys", []):
            try:
                keys[entry["kid"]] = jwt.PyJWK(entry, algorithm="RS256").key
            except (KeyError, jwt.PyJWTError):
                logger.debug("Skipping unusable signing key %s", entry.get("kid"))
        logger.info("Loaded %d signing key(s) for tenant %s", len(keys), self.settings.tenant_id)
        return keys

    async def authenticate(self) -> Session:
        return await self.acquire_token(self.settings.scopes)

    async def acquire_token(self, scopes: List[str]) -> Session:
        """
        Requests an access token for `scopes`.

        Raises:
            AuthRequired: Credentials are not configured, or the identity
                provider refused or could not be reached.
        """

        if not (self.settings.tenant_id and self.settings.client_id and self.settings.client_secret):
            raise AuthRequired("Microsoft credentials are not configured")

        form = {
            "grant_type": "client_credentials",
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
            "scope": " ".join(scopes),
        }

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.settings.operation_timeout) as client:
                response = await client.post(self.token_url, data=form)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("Token request rejected: %s %s", e.response.status_code, e.response.text)
            raise AuthRequired(f"Failed to acquire access token: HTTP {e.response.status_code}")
        except httpx.RequestError as e:
            logger.warning("Token request failed: %s", e)
            raise AuthRequired(f"Failed to acquire access token: {e}")

        payload = response.json()
        token = payload.get("access_token")
        if not token:
            raise AuthRequired("Failed to acquire access token")

        expires_in = int(payload.get("expires_in", 3600))
        logger.info("Acquired access token for %d scope(s), expires in %ss", len(scopes), expires_in)
        return Session(
            access_token=token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            scopes=list(scopes),
        )
