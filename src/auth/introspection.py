"""Opaque token verification through RFC 7662 token introspection."""

import logging
import time
from collections.abc import Iterable
from typing import Any

import httpx

from src.auth.http import http_client
from src.auth.tokens import AccessToken, parse_scopes
from src.auth.verifier import TokenVerifier

logger = logging.getLogger(__name__)


class IntrospectionTokenVerifier(TokenVerifier):
    """Ask the authorization server whether a token is active.

    The request is authenticated with HTTP Basic auth using a client
    registered with the authorization server. Every field of the
    introspection response is surfaced as a claim.

    Args:
        introspection_endpoint: RFC 7662 endpoint URL
        client_id: Client id for Basic auth
        client_secret: Client secret for Basic auth
        required_scopes: Scopes every token must carry
        timeout: HTTP timeout in seconds
        http: Shared httpx client
    """

    def __init__(
        self,
        *,
        introspection_endpoint: str,
        client_id: str,
        client_secret: str,
        required_scopes: Iterable[str] | None = None,
        timeout: float = 10.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(required_scopes)
        self.introspection_endpoint = introspection_endpoint
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._http = http

    async def _introspect(self, token: str) -> dict[str, Any] | None:
        try:
            async with http_client(self._http, self.timeout) as client:
                response = await client.post(
                    self.introspection_endpoint,
                    data={"token": token, "token_type_hint": "access_token"},
                    auth=(self.client_id, self.client_secret),
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.warning("Introspection request failed: %s", e.__class__.__name__)
            return None

        if response.status_code != 200:
            logger.warning("Introspection endpoint returned %s", response.status_code)
            return None
        try:
            data = response.json()
        except ValueError:
            logger.warning("Introspection endpoint returned invalid JSON")
            return None
        return data if isinstance(data, dict) else None

    async def verify_token(self, token: str) -> AccessToken | None:
        data = await self._introspect(token)
        if data is None:
            return None

        if data.get("active") is not True:
            logger.debug("Token reported inactive")
            return None

        expires_at = data.get("exp")
        if expires_at is not None:
            try:
                expires_at = int(expires_at)
            except (TypeError, ValueError):
                logger.info("Introspection response has non-numeric exp")
                return None
            # Re-checked locally even though active should already cover it
            if expires_at <= time.time():
                logger.info("Token reported active but exp is in the past")
                return None

        access_token = AccessToken(
            token=token,
            client_id=str(data.get("client_id") or data.get("sub") or "unknown"),
            scopes=parse_scopes(data.get("scope", data.get("scopes"))),
            expires_at=expires_at,
            claims=data,
        )
        if not self._passes_scope_check(access_token):
            return None
        return access_token
