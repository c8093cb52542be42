"""Store of dynamically registered OAuth clients.

Redirect URIs are accepted when they exactly match a registered URI, or
otherwise when they match one of the client's allowed glob patterns
(``*`` = any run of characters, ``?`` = exactly one character, compared
case-insensitively). A client without patterns falls back to the proxy's
global patterns; when neither exists every URI is accepted.
"""

import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class OAuthClientRegistration(BaseModel):
    """A client registered through Dynamic Client Registration (RFC 7591)."""

    client_id: str
    client_secret: str | None = None
    redirect_uris: list[str] = Field(default_factory=list)
    allowed_redirect_uri_patterns: list[str] | None = None
    grant_types: list[str] = Field(
        default_factory=lambda: ["authorization_code", "refresh_token"],
    )
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    scope: str | None = None
    token_endpoint_auth_method: str = "none"
    client_name: str | None = None
    registered_at: float = Field(default_factory=time.time)


def pattern_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a redirect glob pattern into an anchored case-insensitive regex."""
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE)


def matches_redirect_pattern(uri: str, pattern: str) -> bool:
    return pattern_to_regex(pattern).match(uri) is not None


def validate_redirect_uri(
    client: OAuthClientRegistration,
    redirect_uri: str,
    default_patterns: Iterable[str] | None = None,
) -> bool:
    """Decide whether ``redirect_uri`` is acceptable for ``client``."""
    if redirect_uri in client.redirect_uris:
        return True

    patterns = client.allowed_redirect_uri_patterns
    if not patterns:
        patterns = list(default_patterns or [])

    if not patterns:
        logger.warning(
            "No redirect URI patterns configured; accepting %s for client %s "
            "(insecure, set ALLOWED_CLIENT_REDIRECT_URIS)",
            redirect_uri,
            client.client_id,
        )
        return True

    return any(matches_redirect_pattern(redirect_uri, p) for p in patterns)


class ClientStore(ABC):
    """Persistent map of registered clients keyed by client id."""

    @abstractmethod
    async def get(self, client_id: str) -> OAuthClientRegistration | None: ...

    @abstractmethod
    async def store(self, client: OAuthClientRegistration) -> None: ...

    @abstractmethod
    async def remove(self, client_id: str) -> bool: ...


class InMemoryClientStore(ClientStore):
    """Lock-protected in-process client store. Registrations never expire."""

    def __init__(self) -> None:
        self._clients: dict[str, OAuthClientRegistration] = {}
        self._lock = asyncio.Lock()

    async def get(self, client_id: str) -> OAuthClientRegistration | None:
        async with self._lock:
            return self._clients.get(client_id)

    async def store(self, client: OAuthClientRegistration) -> None:
        async with self._lock:
            self._clients[client.client_id] = client
        logger.info("Stored client registration %s", client.client_id)

    async def remove(self, client_id: str) -> bool:
        async with self._lock:
            return self._clients.pop(client_id, None) is not None

    async def count(self) -> int:
        async with self._lock:
            return len(self._clients)


class FileClientStore(ClientStore):
    """Client store persisted as one JSON file per client.

    Registrations survive restarts. Suitable for a single server process.
    """

    def __init__(self, storage_dir: str | Path) -> None:
        self._storage_dir = Path(storage_dir)
        self._storage_dir.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        logger.info("Initialized FileClientStore with storage at %s", self._storage_dir)

    def _get_file_path(self, client_id: str) -> Path:
        """Get file path for a client id (sanitized)."""
        # Sanitize key to prevent path traversal
        safe_key = client_id.replace("/", "_").replace("\\", "_").replace("..", "_")
        return self._storage_dir / f"{safe_key}.json"

    async def get(self, client_id: str) -> OAuthClientRegistration | None:
        file_path = self._get_file_path(client_id)
        async with self._lock:
            if not file_path.exists():
                return None
            try:
                return OAuthClientRegistration.model_validate_json(file_path.read_text())
            except (OSError, ValueError) as e:
                logger.warning("Failed to read client %s: %s", client_id, e)
                return None

    async def store(self, client: OAuthClientRegistration) -> None:
        file_path = self._get_file_path(client.client_id)
        async with self._lock:
            file_path.write_text(client.model_dump_json(indent=2))
        logger.info("Stored client registration %s", client.client_id)

    async def remove(self, client_id: str) -> bool:
        file_path = self._get_file_path(client_id)
        async with self._lock:
            if not file_path.exists():
                return False
            file_path.unlink()
            return True
