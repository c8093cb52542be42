"""
Shared pytest fixtures and configuration for all tests.

Fixtures:
- server: McpServer with a small set of capabilities
- rsa_signing_key / jwks_document / make_jwt: RSA key material for test JWTs
- mock_http: factory for httpx.AsyncClient backed by httpx.MockTransport
- settings: Settings built from explicit values (no environment lookups)
"""

import time
from typing import Any, Callable

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt

from src.config import Settings, reset_settings
from src.core.context import McpContext
from src.server import AuthorizationRequirement, CallerIdentity, McpServer

TEST_ISSUER = "https://idp.example.com"
TEST_AUDIENCE = "mcp-test"
TEST_KID = "test-key"


@pytest.fixture(autouse=True)
def _reset_settings():
    """Drop the cached settings singleton around every test."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the process environment."""
    return Settings(
        _env_file=None,
        server_name="Test Server",
        server_version="9.9.9",
        host="127.0.0.1",
        port=8051,
        base_url="http://testserver",
    )


@pytest.fixture
def server() -> McpServer:
    """McpServer with add/echo tools, a resource, a prompt and a protected tool."""
    server = McpServer("Test Server", "1.2.3")

    @server.tool()
    def add(a: int, b: int) -> int:
        """Add two integers."""
        return a + b

    @server.tool()
    async def echo(message: str, times: int = 1) -> str:
        """Repeat a message."""
        return " ".join([message] * times)

    @server.tool()
    async def notify(ctx: McpContext, text: str) -> str:
        """Emit a log notification and a progress update."""
        await ctx.info(text)
        await ctx.report_progress(1, 2)
        return text

    @server.tool()
    def explode() -> None:
        """Always fails with a chained error."""
        try:
            raise KeyError("inner cause")
        except KeyError as e:
            raise RuntimeError("outer wrapper") from e

    @server.tool(authorization=AuthorizationRequirement())
    def secret(identity: CallerIdentity) -> str:
        """Only for authenticated callers."""
        return f"hello {identity.subject}"

    @server.tool(authorization=AuthorizationRequirement.of(roles="admin"))
    def admin_only() -> str:
        return "admin"

    @server.resource("config://app", name="app_config", mime_type="application/json")
    def app_config() -> dict:
        return {"debug": False}

    @server.prompt()
    def greet(name: str, excited: bool = False) -> str:
        """Greeting prompt."""
        return f"Hello {name}{'!' if excited else '.'}"

    return server


class RecordingSink:
    """Notification sink that keeps everything it is sent."""

    def __init__(self) -> None:
        self.notifications: list[tuple[str, Any]] = []

    async def send_notification(self, method: str, params: dict | None = None) -> None:
        self.notifications.append((method, params))


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


# ========================================
# JWT key material
# ========================================


@pytest.fixture(scope="session")
def rsa_signing_key() -> bytes:
    """PEM-encoded RSA private key."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def jwks_document(rsa_signing_key: bytes) -> dict:
    """JWKS containing the public half of ``rsa_signing_key``."""
    private_key = serialization.load_pem_private_key(rsa_signing_key, password=None)
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    public_jwk = jwk.construct(public_pem, "RS256").to_dict()
    public_jwk["kid"] = TEST_KID
    public_jwk["use"] = "sig"
    return {"keys": [public_jwk]}


@pytest.fixture(scope="session")
def make_jwt(rsa_signing_key: bytes) -> Callable[..., str]:
    """Factory signing claims with the test key. Standard claims are pre-filled."""

    def _make(kid: str = TEST_KID, **overrides: Any) -> str:
        now = int(time.time())
        claims = {
            "iss": TEST_ISSUER,
            "aud": TEST_AUDIENCE,
            "sub": "user-123",
            "iat": now,
            "exp": now + 3600,
            "scope": "openid email profile",
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, rsa_signing_key, algorithm="RS256", headers={"kid": kid})

    return _make


# ========================================
# HTTP fakes
# ========================================


@pytest.fixture
def mock_http() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Factory wrapping a request handler in an AsyncClient with MockTransport."""
    clients: list[httpx.AsyncClient] = []

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    return _make
