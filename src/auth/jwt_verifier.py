"""JWT bearer token verification against a JWKS endpoint.

Signing keys come from the issuer's JWKS document, located either directly
(``jwks_uri``) or through ``{issuer}/.well-known/openid-configuration``.
Keys are cached for ``cache_ttl`` seconds and refreshed early when a token
names a key id that is not in the cache.
"""

import asyncio
import logging
import time
from collections.abc import Iterable
from typing import Any

import httpx
from jose import jwt
from jose.exceptions import JOSEError

from src.auth.http import http_client
from src.auth.tokens import AccessToken, parse_scopes
from src.auth.verifier import TokenVerifier
from src.core.exceptions import TokenVerificationError

logger = logging.getLogger(__name__)

DEFAULT_CLOCK_SKEW_SECONDS = 300


class JWKSCache:
    """Cache for JWKS (JSON Web Key Set) to avoid repeated fetches."""

    def __init__(
        self,
        jwks_uri: str | None = None,
        issuer: str | None = None,
        cache_ttl: int = 3600,
        min_refresh_interval: float = 30.0,
        timeout: float = 10.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize JWKS cache.

        Args:
            jwks_uri: URL to fetch JWKS from (discovered from issuer if None)
            issuer: Issuer URL used for discovery
            cache_ttl: Time to live for cache in seconds (default: 1 hour)
            min_refresh_interval: Minimum seconds between forced refreshes
            timeout: HTTP timeout in seconds
            http: Shared httpx client (a short-lived one is used if None)
        """
        if not jwks_uri and not issuer:
            msg = "JWKSCache needs a jwks_uri or an issuer for discovery"
            raise ValueError(msg)
        self.jwks_uri = jwks_uri
        self.issuer = issuer
        self.cache_ttl = cache_ttl
        self.min_refresh_interval = min_refresh_interval
        self.timeout = timeout
        self._http = http
        self._keys: dict[str, dict[str, Any]] = {}
        self._last_fetch: float = 0.0
        self._lock = asyncio.Lock()

    async def _discover_jwks_uri(self, client: httpx.AsyncClient) -> str:
        discovery_url = f"{self.issuer.rstrip('/')}/.well-known/openid-configuration"
        logger.info("Discovering JWKS URI from %s", discovery_url)
        response = await client.get(discovery_url)
        response.raise_for_status()
        document = response.json()
        jwks_uri = document.get("jwks_uri") if isinstance(document, dict) else None
        if not isinstance(jwks_uri, str) or not jwks_uri:
            msg = "Discovery document has no jwks_uri"
            raise TokenVerificationError(msg)
        return jwks_uri

    async def _fetch(self) -> None:
        async with http_client(self._http, self.timeout) as client:
            if not self.jwks_uri:
                self.jwks_uri = await self._discover_jwks_uri(client)
            logger.info("Fetching JWKS from %s", self.jwks_uri)
            response = await client.get(self.jwks_uri)
            response.raise_for_status()
            document = response.json()

        entries = document.get("keys") if isinstance(document, dict) else None
        if not isinstance(entries, list) or not all(isinstance(key, dict) for key in entries):
            msg = "JWKS document has no valid \"keys\" list"
            raise TokenVerificationError(msg)

        keys: dict[str, dict[str, Any]] = {}
        for index, key in enumerate(entries):
            kid = key.get("kid")
            keys[kid if isinstance(kid, str) and kid else f"__key{index}"] = key
        self._keys = keys
        self._last_fetch = time.time()
        logger.debug("Cached %d signing keys", len(keys))

    async def get_key(self, kid: str | None) -> dict[str, Any] | None:
        """
        Get the signing key for ``kid``, refreshing the cache if stale or missing.

        A token without a key id matches only when the set holds exactly one key.
        """
        async with self._lock:
            now = time.time()
            if not self._keys or now - self._last_fetch >= self.cache_ttl:
                await self._fetch()
            elif kid is not None and kid not in self._keys:
                if now - self._last_fetch >= self.min_refresh_interval:
                    logger.info("Unknown key id %s, refreshing JWKS", kid)
                    await self._fetch()

            if kid is None:
                return next(iter(self._keys.values())) if len(self._keys) == 1 else None
            return self._keys.get(kid)


class JWTTokenVerifier(TokenVerifier):
    """Verify JWTs: signature, issuer, audience and lifetime.

    Args:
        issuer: Expected ``iss`` claim (also used for JWKS discovery)
        audience: Expected ``aud`` claim (not checked when None)
        jwks_uri: JWKS URL (skips discovery)
        algorithms: Accepted signing algorithms
        required_scopes: Scopes every token must carry
        clock_skew_seconds: Leeway for ``exp``/``nbf``
        cache_ttl: JWKS cache lifetime in seconds
        timeout: HTTP timeout for discovery/JWKS requests
        http: Shared httpx client
    """

    def __init__(
        self,
        *,
        issuer: str | None = None,
        audience: str | None = None,
        jwks_uri: str | None = None,
        algorithms: Iterable[str] = ("RS256",),
        required_scopes: Iterable[str] | None = None,
        clock_skew_seconds: int = DEFAULT_CLOCK_SKEW_SECONDS,
        cache_ttl: int = 3600,
        timeout: float = 10.0,
        http: httpx.AsyncClient | None = None,
        jwks_cache: JWKSCache | None = None,
    ) -> None:
        super().__init__(required_scopes)
        self.issuer = issuer
        self.audience = audience
        self.algorithms = list(algorithms)
        self.clock_skew_seconds = clock_skew_seconds
        self.jwks = jwks_cache or JWKSCache(
            jwks_uri=jwks_uri,
            issuer=issuer,
            cache_ttl=cache_ttl,
            timeout=timeout,
            http=http,
        )

    async def verify_token(self, token: str) -> AccessToken | None:
        try:
            claims = await self._decode(token)
        except (JOSEError, TokenVerificationError) as e:
            logger.info("JWT rejected: %s", e)
            return None
        except httpx.HTTPError as e:
            logger.warning("Could not load signing keys: %s", e.__class__.__name__)
            return None
        except ValueError as e:
            logger.warning("Malformed signing key document: %s", e)
            return None

        access_token = AccessToken(
            token=token,
            client_id=_client_id_from_claims(claims),
            scopes=parse_scopes(claims.get("scope", claims.get("scopes"))),
            expires_at=int(claims["exp"]) if "exp" in claims else None,
            claims=claims,
        )
        if not self._passes_scope_check(access_token):
            return None
        return access_token

    async def _decode(self, token: str) -> dict[str, Any]:
        header = jwt.get_unverified_header(token)
        algorithm = header.get("alg")
        if algorithm not in self.algorithms:
            msg = f"Algorithm {algorithm!r} not accepted"
            raise TokenVerificationError(msg)

        kid = header.get("kid")
        if kid is not None and not isinstance(kid, str):
            msg = "Key id must be a string"
            raise TokenVerificationError(msg)

        key = await self.jwks.get_key(kid)
        if key is None:
            msg = f"No signing key for kid {kid!r}"
            raise TokenVerificationError(msg)

        return jwt.decode(
            token,
            key,
            algorithms=self.algorithms,
            audience=self.audience,
            issuer=self.issuer,
            options={
                "verify_aud": self.audience is not None,
                "verify_iss": self.issuer is not None,
                "leeway": self.clock_skew_seconds,
            },
        )


def _client_id_from_claims(claims: dict[str, Any]) -> str:
    if claims.get("sub"):
        return str(claims["sub"])
    if claims.get("client_id"):
        return str(claims["client_id"])
    audience = claims.get("aud")
    if isinstance(audience, list) and audience:
        return str(audience[0])
    if isinstance(audience, str) and audience:
        return audience
    return "unknown"
