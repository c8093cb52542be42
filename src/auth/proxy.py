"""OAuth proxy bridging Dynamic Client Registration to a fixed upstream IdP.

Downstream clients register here (DCR) and run a normal PKCE authorization
code flow against this server. The proxy performs the real flow upstream
with one pre-registered client and relays the result:

1. ``authorize`` records a transaction and redirects upstream with the
   transaction id as ``state``.
2. ``handle_callback`` pops the transaction, exchanges the upstream code
   server-to-server and mints a short-lived one-time client code.
3. ``exchange_code`` checks redirect URI and PKCE, consumes the client code
   and hands back the wrapped upstream tokens.

Failures are returned as :class:`ProxyResult` values with a
:class:`ProxyErrorKind` rather than raised.
"""

import asyncio
import base64
import hashlib
import hmac
import logging
import secrets
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, Field

from src.auth.client_store import (
    ClientStore,
    InMemoryClientStore,
    OAuthClientRegistration,
    validate_redirect_uri,
)
from src.auth.http import http_client
from src.auth.verifier import TokenVerifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSACTION_TTL_SECONDS = 10 * 60
CLIENT_CODE_TTL_SECONDS = 5 * 60
SUPPORTED_CHALLENGE_METHODS = ("S256", "plain")


class OAuthProxyOptions(BaseModel):
    """Upstream provider and proxy configuration."""

    upstream_authorization_endpoint: str
    upstream_token_endpoint: str
    upstream_client_id: str
    upstream_client_secret: str | None = None
    upstream_revocation_endpoint: str | None = None
    upstream_token_endpoint_auth_method: str = "client_secret_post"
    base_url: str
    redirect_path: str = "/auth/callback"
    issuer_url: str | None = None
    allowed_client_redirect_uris: list[str] | None = None
    valid_scopes: list[str] | None = None
    forward_pkce: bool = True
    transaction_ttl_seconds: int = Field(default=TRANSACTION_TTL_SECONDS, gt=0)
    client_code_ttl_seconds: int = Field(default=CLIENT_CODE_TTL_SECONDS, gt=0)
    http_timeout_seconds: float = Field(default=10.0, gt=0)

    @property
    def redirect_uri(self) -> str:
        """Fixed callback URL registered with the upstream provider."""
        path = self.redirect_path if self.redirect_path.startswith("/") else f"/{self.redirect_path}"
        return f"{self.base_url.rstrip('/')}{path}"

    @property
    def issuer(self) -> str:
        return (self.issuer_url or self.base_url).rstrip("/")


# ========== Result Types ==========


class ProxyErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    REDIRECT_MISMATCH = "redirect_mismatch"
    INVALID_VERIFIER = "invalid_verifier"
    INVALID_CLIENT = "invalid_client"
    INVALID_REQUEST = "invalid_request"
    UPSTREAM_REJECTED = "upstream_rejected"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"


@dataclass(frozen=True)
class ProxyResult(Generic[T]):
    value: T | None = None
    error: ProxyErrorKind | None = None
    description: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "ProxyResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ProxyErrorKind, description: str) -> "ProxyResult[T]":
        return cls(error=error, description=description)


# ========== State Records ==========


@dataclass
class OAuthTransaction:
    """Pending upstream authorization round-trip."""

    txn_id: str
    client_id: str
    client_redirect_uri: str
    client_state: str | None
    code_challenge: str | None
    code_challenge_method: str | None
    scopes: list[str]
    created_at: float

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.created_at > ttl


@dataclass
class ClientCode:
    """One-time code standing in for the upstream tokens."""

    code: str
    client_id: str
    redirect_uri: str
    code_challenge: str | None
    code_challenge_method: str | None
    scopes: list[str]
    upstream_tokens: dict[str, Any] = field(repr=False)
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


def compute_s256_challenge(code_verifier: str) -> str:
    """PKCE S256: base64url(SHA-256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def verify_pkce(code_verifier: str | None, challenge: str, method: str | None) -> bool:
    if not code_verifier:
        return False
    if (method or "plain") == "S256":
        expected = compute_s256_challenge(code_verifier)
    else:
        expected = code_verifier
    return hmac.compare_digest(expected.encode(), challenge.encode())


def _append_query(url: str, params: dict[str, Any]) -> str:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    if not query:
        return url
    return f"{url}{'&' if '?' in url else '?'}{query}"


class OAuthProxy:
    """DCR-compliant facade in front of one upstream authorization server.

    Args:
        options: Upstream and proxy configuration
        client_store: Registered client storage (in-memory if None)
        token_verifier: Verifier for tokens issued by the upstream provider
        http: Shared httpx client for upstream calls
        clock: Time source returning epoch seconds
    """

    def __init__(
        self,
        options: OAuthProxyOptions,
        client_store: ClientStore | None = None,
        token_verifier: TokenVerifier | None = None,
        http: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.options = options
        self.client_store = client_store or InMemoryClientStore()
        self.token_verifier = token_verifier
        self._http = http
        self._clock = clock
        self._transactions: dict[str, OAuthTransaction] = {}
        self._client_codes: dict[str, ClientCode] = {}
        self._lock = asyncio.Lock()
        self._reaper: asyncio.Task | None = None

        if not options.allowed_client_redirect_uris:
            logger.warning(
                "OAuth proxy has no allowed client redirect URI patterns; clients "
                "without their own patterns may redirect anywhere (insecure)",
            )

    @property
    def redirect_uri(self) -> str:
        return self.options.redirect_uri

    @property
    def required_scopes(self) -> list[str]:
        return list(self.token_verifier.required_scopes) if self.token_verifier else []

    # ========== Client Registration ==========

    async def register_client(
        self,
        *,
        redirect_uris: Iterable[str] = (),
        client_id: str | None = None,
        client_secret: str | None = None,
        grant_types: Iterable[str] | None = None,
        response_types: Iterable[str] | None = None,
        scope: str | None = None,
        token_endpoint_auth_method: str | None = None,
        client_name: str | None = None,
    ) -> ProxyResult[OAuthClientRegistration]:
        """Register a downstream client (RFC 7591)."""
        valid_scopes = self.options.valid_scopes
        if scope and valid_scopes:
            unknown = [s for s in scope.split() if s not in valid_scopes]
            if unknown:
                return ProxyResult.failure(
                    ProxyErrorKind.INVALID_REQUEST,
                    f"Unsupported scope(s): {' '.join(unknown)}",
                )

        registration = OAuthClientRegistration(
            client_id=client_id or uuid.uuid4().hex,
            client_secret=client_secret or secrets.token_urlsafe(32),
            redirect_uris=list(redirect_uris),
            allowed_redirect_uri_patterns=(
                list(self.options.allowed_client_redirect_uris)
                if self.options.allowed_client_redirect_uris
                else None
            ),
            grant_types=list(grant_types or ["authorization_code", "refresh_token"]),
            response_types=list(response_types or ["code"]),
            scope=scope,
            token_endpoint_auth_method=token_endpoint_auth_method or "none",
            client_name=client_name,
            registered_at=self._clock(),
        )
        await self.client_store.store(registration)
        logger.info("Registered client %s (%s)", registration.client_id, client_name or "unnamed")
        return ProxyResult.success(registration)

    async def get_client(self, client_id: str) -> OAuthClientRegistration | None:
        return await self.client_store.get(client_id)

    async def authenticate_client(
        self,
        client_id: str | None,
        client_secret: str | None,
    ) -> ProxyResult[OAuthClientRegistration]:
        """Check token endpoint client credentials."""
        if not client_id:
            return ProxyResult.failure(ProxyErrorKind.INVALID_CLIENT, "Missing client_id")
        client = await self.client_store.get(client_id)
        if client is None:
            return ProxyResult.failure(ProxyErrorKind.INVALID_CLIENT, "Unknown client")
        if client.token_endpoint_auth_method != "none" and client.client_secret:
            if not client_secret or not hmac.compare_digest(
                client_secret.encode(),
                client.client_secret.encode(),
            ):
                return ProxyResult.failure(
                    ProxyErrorKind.INVALID_CLIENT,
                    "Client authentication failed",
                )
        return ProxyResult.success(client)

    # ========== Authorization ==========

    async def authorize(
        self,
        *,
        client_id: str,
        redirect_uri: str,
        state: str | None,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        scopes: Iterable[str] | None = None,
    ) -> ProxyResult[str]:
        """Start a flow. Returns the upstream authorization URL on success."""
        client = await self.client_store.get(client_id)
        if client is None:
            return ProxyResult.failure(ProxyErrorKind.INVALID_CLIENT, "Unknown client_id")

        if not validate_redirect_uri(
            client,
            redirect_uri,
            self.options.allowed_client_redirect_uris,
        ):
            return ProxyResult.failure(
                ProxyErrorKind.REDIRECT_MISMATCH,
                "redirect_uri is not registered for this client",
            )

        if code_challenge:
            code_challenge_method = code_challenge_method or "plain"
            if code_challenge_method not in SUPPORTED_CHALLENGE_METHODS:
                return ProxyResult.failure(
                    ProxyErrorKind.INVALID_REQUEST,
                    f"Unsupported code_challenge_method {code_challenge_method!r}",
                )

        requested = [s for s in (scopes or []) if s]
        effective_scopes = requested or self.required_scopes

        transaction = OAuthTransaction(
            txn_id=secrets.token_urlsafe(32),
            client_id=client_id,
            client_redirect_uri=redirect_uri,
            client_state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method if code_challenge else None,
            scopes=effective_scopes,
            created_at=self._clock(),
        )
        async with self._lock:
            self._transactions[transaction.txn_id] = transaction

        params: dict[str, Any] = {
            "response_type": "code",
            "client_id": self.options.upstream_client_id,
            "redirect_uri": self.redirect_uri,
            "state": transaction.txn_id,
            "scope": " ".join(effective_scopes) if effective_scopes else None,
        }
        if self.options.forward_pkce and code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = code_challenge_method

        logger.info("Started authorization transaction for client %s", client_id)
        return ProxyResult.success(
            _append_query(self.options.upstream_authorization_endpoint, params),
        )

    async def _pop_transaction(self, txn_id: str) -> OAuthTransaction | None:
        async with self._lock:
            return self._transactions.pop(txn_id, None)

    async def handle_callback(
        self,
        *,
        code: str,
        state: str,
        code_verifier: str | None = None,
    ) -> ProxyResult[str]:
        """Finish the upstream leg. Returns the client redirect URL on success."""
        transaction = await self._pop_transaction(state)
        if transaction is None:
            return ProxyResult.failure(
                ProxyErrorKind.NOT_FOUND,
                "Unknown or already used authorization transaction",
            )
        if transaction.is_expired(self._clock(), self.options.transaction_ttl_seconds):
            logger.info("Rejected expired transaction for client %s", transaction.client_id)
            return ProxyResult.failure(
                ProxyErrorKind.EXPIRED,
                "Authorization transaction expired",
            )

        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        if code_verifier and self.options.forward_pkce:
            form["code_verifier"] = code_verifier
        exchanged = await self._upstream_token_request(form)
        if not exchanged.ok:
            return ProxyResult.failure(exchanged.error, exchanged.description)

        now = self._clock()
        client_code = ClientCode(
            code=secrets.token_urlsafe(32),
            client_id=transaction.client_id,
            redirect_uri=transaction.client_redirect_uri,
            code_challenge=transaction.code_challenge,
            code_challenge_method=transaction.code_challenge_method,
            scopes=transaction.scopes,
            upstream_tokens=exchanged.value,
            created_at=now,
            expires_at=now + self.options.client_code_ttl_seconds,
        )
        async with self._lock:
            self._client_codes[client_code.code] = client_code

        redirect = _append_query(
            transaction.client_redirect_uri,
            {"code": client_code.code, "state": transaction.client_state},
        )
        return ProxyResult.success(redirect)

    # ========== Token Endpoint ==========

    async def exchange_code(
        self,
        *,
        code: str,
        client_id: str,
        redirect_uri: str | None,
        code_verifier: str | None = None,
    ) -> ProxyResult[dict[str, Any]]:
        """Redeem a client code for the wrapped upstream tokens (single use)."""
        async with self._lock:
            client_code = self._client_codes.get(code)
            if client_code is None:
                return ProxyResult.failure(
                    ProxyErrorKind.NOT_FOUND,
                    "Invalid or already used authorization code",
                )
            if client_code.client_id != client_id:
                return ProxyResult.failure(
                    ProxyErrorKind.INVALID_CLIENT,
                    "Authorization code was issued to another client",
                )
            if redirect_uri != client_code.redirect_uri:
                return ProxyResult.failure(
                    ProxyErrorKind.REDIRECT_MISMATCH,
                    "redirect_uri does not match the authorization request",
                )
            if client_code.code_challenge and not verify_pkce(
                code_verifier,
                client_code.code_challenge,
                client_code.code_challenge_method,
            ):
                return ProxyResult.failure(
                    ProxyErrorKind.INVALID_VERIFIER,
                    "PKCE verification failed",
                )
            del self._client_codes[code]
            if client_code.is_expired(self._clock()):
                return ProxyResult.failure(
                    ProxyErrorKind.EXPIRED,
                    "Authorization code expired",
                )

        logger.info("Issued tokens to client %s", client_id)
        return ProxyResult.success(self._token_response(client_code))

    def _token_response(self, client_code: ClientCode) -> dict[str, Any]:
        upstream = client_code.upstream_tokens
        response = {
            "access_token": upstream.get("access_token"),
            "token_type": upstream.get("token_type") or "Bearer",
            "expires_in": upstream.get("expires_in"),
            "refresh_token": upstream.get("refresh_token"),
            "scope": " ".join(client_code.scopes) or upstream.get("scope"),
            "id_token": upstream.get("id_token"),
        }
        return {k: v for k, v in response.items() if v is not None}

    async def refresh(
        self,
        *,
        refresh_token: str,
        scopes: Iterable[str] | None = None,
    ) -> ProxyResult[dict[str, Any]]:
        """Forward a refresh_token grant upstream."""
        form = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        scope = " ".join(s for s in (scopes or []) if s)
        if scope:
            form["scope"] = scope
        result = await self._upstream_token_request(form)
        if not result.ok:
            return result

        upstream = result.value
        response = {
            "access_token": upstream.get("access_token"),
            "token_type": upstream.get("token_type") or "Bearer",
            "expires_in": upstream.get("expires_in"),
            "refresh_token": upstream.get("refresh_token") or refresh_token,
            "scope": upstream.get("scope") or scope or None,
            "id_token": upstream.get("id_token"),
        }
        return ProxyResult.success({k: v for k, v in response.items() if v is not None})

    async def revoke(self, *, token: str, token_type_hint: str | None = None) -> ProxyResult[None]:
        """Forward revocation upstream. Always reports success (RFC 7009)."""
        endpoint = self.options.upstream_revocation_endpoint
        if not endpoint:
            logger.debug("No upstream revocation endpoint configured")
            return ProxyResult.success(None)

        form = {"token": token, "token_type_hint": token_type_hint}
        try:
            async with http_client(self._http, self.options.http_timeout_seconds) as client:
                response = await client.post(
                    endpoint,
                    **self._upstream_auth({k: v for k, v in form.items() if v}),
                )
            if response.status_code >= 400:
                logger.warning("Upstream revocation returned %s", response.status_code)
        except httpx.HTTPError as e:
            logger.warning("Upstream revocation failed: %s", e.__class__.__name__)
        return ProxyResult.success(None)

    # ========== Upstream ==========

    def _upstream_auth(self, form: dict[str, str]) -> dict[str, Any]:
        """Attach upstream client credentials to a form request."""
        options = self.options
        if options.upstream_token_endpoint_auth_method == "client_secret_basic":
            return {
                "data": form,
                "auth": (options.upstream_client_id, options.upstream_client_secret or ""),
            }
        data = dict(form, client_id=options.upstream_client_id)
        if options.upstream_client_secret:
            data["client_secret"] = options.upstream_client_secret
        return {"data": data}

    async def _upstream_token_request(self, form: dict[str, str]) -> ProxyResult[dict[str, Any]]:
        try:
            async with http_client(self._http, self.options.http_timeout_seconds) as client:
                response = await client.post(
                    self.options.upstream_token_endpoint,
                    headers={"Accept": "application/json"},
                    **self._upstream_auth(form),
                )
        except httpx.HTTPError as e:
            logger.error("Upstream token request failed: %s", e.__class__.__name__)
            return ProxyResult.failure(
                ProxyErrorKind.UPSTREAM_UNAVAILABLE,
                "Upstream authorization server is unavailable",
            )

        if response.status_code >= 500:
            logger.error("Upstream token endpoint returned %s", response.status_code)
            return ProxyResult.failure(
                ProxyErrorKind.UPSTREAM_UNAVAILABLE,
                "Upstream authorization server is unavailable",
            )
        if response.status_code != 200:
            # Upstream bodies may echo credentials; only the status is logged
            logger.error("Upstream token endpoint returned %s", response.status_code)
            return ProxyResult.failure(
                ProxyErrorKind.UPSTREAM_REJECTED,
                "Upstream token request was rejected",
            )
        try:
            tokens = response.json()
        except ValueError:
            logger.error("Upstream token endpoint returned invalid JSON")
            return ProxyResult.failure(
                ProxyErrorKind.UPSTREAM_UNAVAILABLE,
                "Upstream token response was malformed",
            )
        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            logger.error("Upstream token response has no access_token")
            return ProxyResult.failure(
                ProxyErrorKind.UPSTREAM_UNAVAILABLE,
                "Upstream token response was malformed",
            )
        return ProxyResult.success(tokens)

    # ========== Housekeeping ==========

    async def reap_expired(self) -> int:
        """Evict expired transactions and client codes. Returns the count removed."""
        now = self._clock()
        ttl = self.options.transaction_ttl_seconds
        async with self._lock:
            stale_txns = [k for k, t in self._transactions.items() if t.is_expired(now, ttl)]
            stale_codes = [k for k, c in self._client_codes.items() if c.is_expired(now)]
            for key in stale_txns:
                del self._transactions[key]
            for key in stale_codes:
                del self._client_codes[key]
        removed = len(stale_txns) + len(stale_codes)
        if removed:
            logger.debug(
                "Reaped %d transaction(s) and %d client code(s)",
                len(stale_txns),
                len(stale_codes),
            )
        return removed

    async def _reap_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.reap_expired()
            except Exception:
                logger.exception("Reaper pass failed")

    def start(self, interval: float = 60.0) -> None:
        """Start the background reaper on the running event loop."""
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.get_running_loop().create_task(self._reap_forever(interval))
            logger.info("OAuth proxy reaper started (every %ss)", interval)

    async def stop(self) -> None:
        if self._reaper is not None:
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
            self._reaper = None

    async def pending_counts(self) -> tuple[int, int]:
        async with self._lock:
            return len(self._transactions), len(self._client_codes)

    # ========== Metadata ==========

    def authorization_server_metadata(self) -> dict[str, Any]:
        """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
        issuer = self.options.issuer
        metadata: dict[str, Any] = {
            "issuer": issuer,
            "authorization_endpoint": f"{issuer}/oauth/authorize",
            "token_endpoint": f"{issuer}/oauth/token",
            "registration_endpoint": f"{issuer}/oauth/register",
            "revocation_endpoint": f"{issuer}/oauth/revoke",
            "userinfo_endpoint": f"{issuer}/oauth/userinfo",
            "scopes_supported": self.options.valid_scopes or self.required_scopes,
            "response_types_supported": ["code"],
            "grant_types_supported": ["authorization_code", "refresh_token"],
            "token_endpoint_auth_methods_supported": [
                "none",
                "client_secret_post",
                "client_secret_basic",
            ],
            "code_challenge_methods_supported": list(SUPPORTED_CHALLENGE_METHODS),
        }
        return metadata

    def openid_configuration(self) -> dict[str, Any]:
        metadata = self.authorization_server_metadata()
        metadata.update(
            {
                "subject_types_supported": ["public"],
                "id_token_signing_alg_values_supported": ["RS256"],
            },
        )
        return metadata

    def protected_resource_metadata(self, resource_url: str) -> dict[str, Any]:
        """Protected Resource Metadata (RFC 9728)."""
        return {
            "resource": resource_url,
            "authorization_servers": [self.options.issuer],
            "scopes_supported": self.options.valid_scopes or self.required_scopes,
            "bearer_methods_supported": ["header"],
        }
