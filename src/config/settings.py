"""Configuration settings for the MCP server using Pydantic Settings.

This module provides type-safe configuration management with automatic validation,
environment variable loading, and documentation generation.
"""

import logging
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Central configuration management with Pydantic validation.

    All settings are loaded from environment variables with automatic type conversion
    and validation. Default values are provided for non-critical settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
        validate_default=True,
        populate_by_name=True,
    )

    # ========================================
    # Debug Settings
    # ========================================
    debug: bool = Field(
        default=False,
        alias="MCP_DEBUG",
        description="Enable debug mode with verbose logging",
    )

    # ========================================
    # Server Settings
    # ========================================
    server_name: str = Field(
        default="MCP Server",
        description="Server name reported by initialize",
    )

    server_version: str = Field(
        default="0.1.0",
        description="Server version reported by initialize",
    )

    host: str = Field(
        default="0.0.0.0",
        description="Server host address",
    )

    port: int = Field(
        default=8051,
        ge=1024,
        le=65535,
        description="Server port number",
    )

    # ========================================
    # Transport Settings
    # ========================================
    transport: str = Field(
        default="http",
        description="Transport mode (http or stdio)",
    )

    mcp_path: str = Field(
        default="/mcp",
        description="HTTP path of the JSON-RPC endpoint",
    )

    # ========================================
    # Authorization Settings
    # ========================================
    allow_anonymous_transport: bool = Field(
        default=True,
        description=(
            "Let stdio calls, which carry no caller identity, pass "
            "authorization requirements (HTTP calls are always identified)"
        ),
    )

    require_bearer_token: bool = Field(
        default=False,
        description="Reject HTTP requests without a valid bearer token with 401",
    )

    mcp_api_key: str | None = Field(
        default=None,
        description="Static API key accepted as a bearer token",
    )

    # ========================================
    # Token Verification Settings
    # ========================================
    auth_mode: str = Field(
        default="none",
        description="Token verification strategy (none, jwt or introspection)",
    )

    jwt_issuer: str | None = Field(
        default=None,
        description="Expected JWT issuer; also the discovery document base",
    )

    jwt_audience: str | None = Field(
        default=None,
        description="Expected JWT audience",
    )

    jwt_jwks_uri: str | None = Field(
        default=None,
        description="JWKS URL (skips discovery when set)",
    )

    jwt_algorithms: str = Field(
        default="RS256",
        description="Comma-separated list of accepted JWT algorithms",
    )

    jwt_clock_skew_seconds: int = Field(
        default=300,
        ge=0,
        le=3600,
        description="Clock skew allowance for exp/nbf checks",
    )

    jwks_cache_ttl_seconds: int = Field(
        default=3600,
        ge=0,
        le=86400,
        description="How long fetched signing keys stay cached",
    )

    introspection_endpoint: str | None = Field(
        default=None,
        description="RFC 7662 token introspection endpoint",
    )

    introspection_client_id: str | None = Field(
        default=None,
        description="Client id used for HTTP Basic auth against introspection",
    )

    introspection_client_secret: str | None = Field(
        default=None,
        description="Client secret used for HTTP Basic auth against introspection",
    )

    required_scopes: str = Field(
        default="",
        description="Comma-separated list of scopes every token must carry",
    )

    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Timeout in seconds for identity provider requests",
    )

    # ========================================
    # OAuth Proxy Settings
    # ========================================
    oauth_proxy_enabled: bool = Field(
        default=False,
        description="Enable the DCR-compliant OAuth proxy endpoints",
    )

    upstream_authorization_endpoint: str | None = Field(
        default=None,
        description="Upstream identity provider authorization endpoint",
    )

    upstream_token_endpoint: str | None = Field(
        default=None,
        description="Upstream identity provider token endpoint",
    )

    upstream_revocation_endpoint: str | None = Field(
        default=None,
        description="Upstream identity provider revocation endpoint",
    )

    upstream_client_id: str | None = Field(
        default=None,
        description="Client id pre-registered with the upstream provider",
    )

    upstream_client_secret: str | None = Field(
        default=None,
        description="Client secret pre-registered with the upstream provider",
    )

    base_url: str | None = Field(
        default=None,
        description="Public base URL of this server",
    )

    redirect_path: str = Field(
        default="/auth/callback",
        description="Callback path registered with the upstream provider",
    )

    allowed_client_redirect_uris: str = Field(
        default="",
        description=(
            "Comma-separated glob patterns for client redirect URIs "
            "(empty accepts any URI)"
        ),
    )

    valid_scopes: str = Field(
        default="",
        description="Comma-separated list of scopes advertised to clients",
    )

    forward_pkce: bool = Field(
        default=True,
        description="Forward client PKCE challenges to the upstream provider",
    )

    oauth_storage_dir: str | None = Field(
        default=None,
        description="Directory for persisted client registrations (in-memory if unset)",
    )

    oauth_reaper_interval_seconds: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="Interval between sweeps of expired transactions and codes",
    )

    # ========================================
    # Validators
    # ========================================
    @field_validator("transport", "auth_mode", mode="before")
    @classmethod
    def normalize_choice(cls, v: str) -> str:
        """Lower-case enumerated string settings."""
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("base_url", mode="before")
    @classmethod
    def set_base_url(cls, v: str | None, info: Any) -> str:
        """Set base URL default from host and port if not provided."""
        if v:
            return v.rstrip("/")
        host = info.data.get("host", "0.0.0.0")
        port = info.data.get("port", 8051)
        if host == "0.0.0.0":
            host = "localhost"
        return f"http://{host}:{port}"

    # ========================================
    # Helper Methods
    # ========================================
    def get_jwt_algorithms_list(self) -> list[str]:
        """Get accepted JWT algorithms as a list."""
        return _split_csv(self.jwt_algorithms)

    def get_required_scopes_list(self) -> list[str]:
        """Get required scopes as a list."""
        return _split_csv(self.required_scopes)

    def get_allowed_redirect_patterns_list(self) -> list[str]:
        """Get allowed client redirect URI patterns as a list."""
        return _split_csv(self.allowed_client_redirect_uris)

    def get_valid_scopes_list(self) -> list[str]:
        """Get advertised scopes as a list."""
        return _split_csv(self.valid_scopes)

    def has_upstream_config(self) -> bool:
        """Check if the upstream OAuth provider is fully configured."""
        return all(
            [
                self.upstream_authorization_endpoint,
                self.upstream_token_endpoint,
                self.upstream_client_id,
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        """Export settings as a dictionary (safe version without secrets)."""
        return {
            "debug": self.debug,
            "server_name": self.server_name,
            "server_version": self.server_version,
            "host": self.host,
            "port": self.port,
            "transport": self.transport,
            "mcp_path": self.mcp_path,
            "auth_mode": self.auth_mode,
            "allow_anonymous_transport": self.allow_anonymous_transport,
            "require_bearer_token": self.require_bearer_token,
            "required_scopes": self.get_required_scopes_list(),
            "oauth_proxy_enabled": self.oauth_proxy_enabled,
            "has_upstream": self.has_upstream_config(),
            "base_url": self.base_url,
            "redirect_path": self.redirect_path,
            "forward_pkce": self.forward_pkce,
        }


# Singleton pattern with proper typing
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance (singleton pattern)."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
        logger.info("Settings initialized from environment")
        logger.debug("Auth mode: %s", _settings_instance.auth_mode)
        if _settings_instance.allow_anonymous_transport and _settings_instance.transport == "stdio":
            logger.warning(
                "ALLOW_ANONYMOUS_TRANSPORT is enabled. Stdio calls carry no caller "
                "identity and bypass authorization requirements.",
            )
    return _settings_instance


def reset_settings() -> None:
    """Reset settings instance (useful for testing)."""
    global _settings_instance
    _settings_instance = None
