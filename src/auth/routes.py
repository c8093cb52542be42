"""
OAuth proxy endpoints for the MCP server using Starlette.

Implements:
- Authorization Server Metadata (RFC 8414) and OpenID discovery
- Protected Resource Metadata (RFC 9728)
- Dynamic Client Registration (RFC 7591)
- Authorization endpoint (redirects to the upstream provider)
- Upstream callback
- Token endpoint (authorization_code and refresh_token grants)
- Userinfo and token revocation (RFC 7009)

Errors use the standard OAuth body ``{"error": ..., "error_description": ...}``.
"""

import base64
import binascii
import logging
from typing import List, Optional
from urllib.parse import unquote

from pydantic import BaseModel, ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from src.auth.proxy import OAuthProxy, ProxyErrorKind, ProxyResult
from src.auth.verifier import TokenVerifier

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


# Pydantic models for request/response validation
class ClientRegistrationRequest(BaseModel):
    """Dynamic Client Registration request (RFC 7591)."""

    redirect_uris: List[str] = []
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    client_name: Optional[str] = None
    grant_types: Optional[List[str]] = None
    response_types: Optional[List[str]] = None
    scope: Optional[str] = None
    token_endpoint_auth_method: Optional[str] = None


class ClientRegistrationResponse(BaseModel):
    """Dynamic Client Registration response."""

    client_id: str
    client_secret: Optional[str] = None
    client_id_issued_at: int
    redirect_uris: List[str]
    grant_types: List[str]
    response_types: List[str]
    scope: Optional[str] = None
    token_endpoint_auth_method: str
    client_name: Optional[str] = None


def oauth_error(
    error: str,
    description: str,
    status_code: int = 400,
    headers: Optional[dict] = None,
) -> JSONResponse:
    return JSONResponse(
        {"error": error, "error_description": description},
        status_code=status_code,
        headers=headers,
    )


def _token_error(result: ProxyResult) -> JSONResponse:
    """Map a failed proxy result onto a token endpoint error response."""
    if result.error is ProxyErrorKind.INVALID_CLIENT:
        return oauth_error("invalid_client", result.description, status_code=401)
    if result.error is ProxyErrorKind.UPSTREAM_UNAVAILABLE:
        return oauth_error("server_error", result.description, status_code=502)
    if result.error is ProxyErrorKind.INVALID_REQUEST:
        return oauth_error("invalid_request", result.description)
    return oauth_error("invalid_grant", result.description)


def _client_credentials(request: Request, form) -> tuple[Optional[str], Optional[str]]:
    """Read client credentials from HTTP Basic auth or the form body."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("basic "):
        try:
            decoded = base64.b64decode(auth_header[6:].strip()).decode()
            client_id, _, client_secret = decoded.partition(":")
            return unquote(client_id), unquote(client_secret) or None
        except (binascii.Error, UnicodeDecodeError):
            logger.debug("Ignoring malformed Basic authorization header")
    return form.get("client_id"), form.get("client_secret")


# ========== Metadata ==========


async def authorization_server_metadata(request: Request, proxy: OAuthProxy):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    return JSONResponse(proxy.authorization_server_metadata())


async def openid_configuration(request: Request, proxy: OAuthProxy):
    """OpenID Connect discovery document."""
    return JSONResponse(proxy.openid_configuration())


async def protected_resource_metadata(request: Request, proxy: OAuthProxy, resource_url: str):
    """Protected Resource Metadata (RFC 9728)."""
    return JSONResponse(proxy.protected_resource_metadata(resource_url))


# ========== Registration ==========


async def register_client(request: Request, proxy: OAuthProxy):
    """Dynamic Client Registration (RFC 7591)."""
    try:
        body = await request.json()
    except ValueError:
        return oauth_error("invalid_client_metadata", "Request body must be JSON")
    if not isinstance(body, dict):
        return oauth_error("invalid_client_metadata", "Request body must be a JSON object")

    try:
        req = ClientRegistrationRequest(**body)
    except ValidationError as e:
        return oauth_error("invalid_client_metadata", str(e.errors()[0]["msg"]))

    result = await proxy.register_client(
        redirect_uris=req.redirect_uris,
        client_id=req.client_id,
        client_secret=req.client_secret,
        grant_types=req.grant_types,
        response_types=req.response_types,
        scope=req.scope,
        token_endpoint_auth_method=req.token_endpoint_auth_method,
        client_name=req.client_name,
    )
    if not result.ok:
        return oauth_error("invalid_client_metadata", result.description)

    client = result.value
    response = ClientRegistrationResponse(
        client_id=client.client_id,
        client_secret=client.client_secret,
        client_id_issued_at=int(client.registered_at),
        redirect_uris=client.redirect_uris,
        grant_types=client.grant_types,
        response_types=client.response_types,
        scope=client.scope,
        token_endpoint_auth_method=client.token_endpoint_auth_method,
        client_name=client.client_name,
    )
    return JSONResponse(response.model_dump(exclude_none=True), status_code=201)


# ========== Authorization ==========


async def authorize(request: Request, proxy: OAuthProxy):
    """Authorization endpoint: record the transaction and redirect upstream."""
    params = request.query_params
    client_id = params.get("client_id")
    redirect_uri = params.get("redirect_uri")
    state = params.get("state")
    response_type = params.get("response_type", "code")

    if not client_id or not redirect_uri or not state:
        return oauth_error(
            "invalid_request",
            "client_id, redirect_uri and state are required",
        )
    if response_type != "code":
        return oauth_error("unsupported_response_type", "Only response_type=code is supported")

    result = await proxy.authorize(
        client_id=client_id,
        redirect_uri=redirect_uri,
        state=state,
        code_challenge=params.get("code_challenge"),
        code_challenge_method=params.get("code_challenge_method"),
        scopes=params.get("scope", "").split(),
    )
    if not result.ok:
        if result.error is ProxyErrorKind.INVALID_CLIENT:
            return oauth_error("invalid_client", result.description)
        return oauth_error("invalid_request", result.description)

    return RedirectResponse(url=result.value, status_code=302)


async def oauth_callback(request: Request, proxy: OAuthProxy):
    """Upstream redirect target: exchange the upstream code and bounce to the client."""
    params = request.query_params
    upstream_error = params.get("error")
    if upstream_error:
        logger.info("Upstream authorization failed: %s", upstream_error)
        return oauth_error(
            upstream_error,
            params.get("error_description") or "Authorization was denied upstream",
        )

    code = params.get("code")
    state = params.get("state")
    if not code or not state:
        return oauth_error("invalid_request", "code and state are required")

    result = await proxy.handle_callback(code=code, state=state)
    if not result.ok:
        if result.error in (ProxyErrorKind.UPSTREAM_REJECTED, ProxyErrorKind.UPSTREAM_UNAVAILABLE):
            return oauth_error("server_error", result.description, status_code=502)
        return oauth_error("invalid_request", result.description)

    return RedirectResponse(url=result.value, status_code=302)


# ========== Token Endpoint ==========


async def token_endpoint(request: Request, proxy: OAuthProxy):
    """Token endpoint: authorization_code and refresh_token grants."""
    form = await request.form()
    grant_type = form.get("grant_type")

    client_id, client_secret = _client_credentials(request, form)
    authenticated = await proxy.authenticate_client(client_id, client_secret)
    if not authenticated.ok:
        return oauth_error("invalid_client", authenticated.description, status_code=401)

    if grant_type == "authorization_code":
        code = form.get("code")
        if not code:
            return oauth_error("invalid_request", "code is required")
        result = await proxy.exchange_code(
            code=code,
            client_id=client_id,
            redirect_uri=form.get("redirect_uri"),
            code_verifier=form.get("code_verifier"),
        )
    elif grant_type == "refresh_token":
        refresh_token = form.get("refresh_token")
        if not refresh_token:
            return oauth_error("invalid_request", "refresh_token is required")
        result = await proxy.refresh(
            refresh_token=refresh_token,
            scopes=(form.get("scope") or "").split(),
        )
    else:
        return oauth_error("unsupported_grant_type", f"Unsupported grant_type: {grant_type}")

    if not result.ok:
        return _token_error(result)
    return JSONResponse(result.value, headers=NO_STORE_HEADERS)


# ========== Userinfo / Revocation ==========


async def userinfo(request: Request, verifier: Optional[TokenVerifier]):
    """Claims of the presented bearer token."""
    challenge = {"WWW-Authenticate": 'Bearer error="invalid_token"'}
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer ") or verifier is None:
        return oauth_error("invalid_token", "Bearer token required", 401, challenge)

    access_token = await verifier.verify_token(auth_header[7:].strip())
    if access_token is None:
        return oauth_error("invalid_token", "Token is invalid or expired", 401, challenge)

    claims = dict(access_token.claims)
    claims.setdefault("sub", access_token.client_id)
    return JSONResponse(claims)


async def revoke_token(request: Request, proxy: OAuthProxy):
    """Token revocation (RFC 7009). Unknown tokens are not an error."""
    form = await request.form()
    token = form.get("token")
    if not token:
        return oauth_error("invalid_request", "token is required")
    await proxy.revoke(token=token, token_type_hint=form.get("token_type_hint"))
    return Response(status_code=200)
