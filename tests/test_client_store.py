"""
Tests for the registered client store and redirect URI validation.

Tests:
- Glob pattern matching (*, ?, case-insensitivity)
- validate_redirect_uri precedence (exact, client patterns, defaults, none)
- InMemoryClientStore and FileClientStore persistence
"""

import logging

import pytest

from src.auth.client_store import (
    FileClientStore,
    InMemoryClientStore,
    OAuthClientRegistration,
    matches_redirect_pattern,
    validate_redirect_uri,
)


def client(**kwargs):
    kwargs.setdefault("client_id", "client-1")
    return OAuthClientRegistration(**kwargs)


class TestPatternMatching:
    """Test matches_redirect_pattern()."""

    def test_port_wildcard(self):
        """'*' matches any run of characters."""
        assert matches_redirect_pattern("http://localhost:54321/cb", "http://localhost:*")
        assert not matches_redirect_pattern("http://evil.example/cb", "http://localhost:*")

    def test_single_character_wildcard(self):
        """'?' matches exactly one character."""
        assert matches_redirect_pattern("https://app1.example.com/cb", "https://app?.example.com/cb")
        assert not matches_redirect_pattern("https://app12.example.com/cb", "https://app?.example.com/cb")

    def test_case_insensitive(self):
        """Matching ignores case."""
        assert matches_redirect_pattern("HTTPS://Example.com/CB", "https://example.com/cb")

    def test_regex_characters_are_literal(self):
        """Dots and other regex metacharacters match only themselves."""
        assert not matches_redirect_pattern("https://exampleXcom/cb", "https://example.com/cb")

    def test_pattern_is_anchored(self):
        """Patterns must match the whole URI."""
        assert not matches_redirect_pattern(
            "https://example.com/cb?next=http://localhost:1",
            "http://localhost:*",
        )


class TestValidateRedirectUri:
    """Test validate_redirect_uri()."""

    def test_exact_registered_uri(self):
        """Registered URIs are always accepted."""
        registered = client(
            redirect_uris=["https://app.example.com/cb"],
            allowed_redirect_uri_patterns=["http://localhost:*"],
        )

        assert validate_redirect_uri(registered, "https://app.example.com/cb")

    def test_client_patterns(self):
        """Client patterns accept matching URIs and reject others."""
        registered = client(allowed_redirect_uri_patterns=["http://localhost:*"])

        assert validate_redirect_uri(registered, "http://localhost:54321/cb")
        assert not validate_redirect_uri(registered, "http://evil.example/cb")

    def test_client_patterns_take_precedence_over_defaults(self):
        """Defaults are only used when the client has no patterns."""
        registered = client(allowed_redirect_uri_patterns=["http://localhost:*"])

        assert not validate_redirect_uri(
            registered,
            "https://trusted.example.com/cb",
            default_patterns=["https://trusted.example.com/*"],
        )

    def test_default_patterns(self):
        """Proxy-wide patterns apply to clients without their own."""
        registered = client()

        assert validate_redirect_uri(
            registered,
            "https://trusted.example.com/cb",
            default_patterns=["https://trusted.example.com/*"],
        )
        assert not validate_redirect_uri(
            registered,
            "https://other.example.com/cb",
            default_patterns=["https://trusted.example.com/*"],
        )

    def test_no_patterns_accepts_with_warning(self, caplog):
        """Without any pattern every URI is accepted, loudly."""
        with caplog.at_level(logging.WARNING):
            assert validate_redirect_uri(client(), "https://anything.example/cb")

        assert "insecure" in caplog.text


class TestInMemoryClientStore:
    """Test InMemoryClientStore."""

    @pytest.mark.asyncio
    async def test_store_get_remove(self):
        """Clients round-trip through the store."""
        store = InMemoryClientStore()
        registered = client(client_name="Demo")

        await store.store(registered)

        assert (await store.get("client-1")).client_name == "Demo"
        assert await store.count() == 1
        assert await store.remove("client-1") is True
        assert await store.get("client-1") is None
        assert await store.remove("client-1") is False


class TestFileClientStore:
    """Test FileClientStore."""

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        """Registrations survive a new store instance over the same directory."""
        await FileClientStore(tmp_path).store(
            client(client_secret="s3cret", redirect_uris=["https://a.example/cb"]),
        )

        loaded = await FileClientStore(tmp_path).get("client-1")

        assert loaded.client_secret == "s3cret"
        assert loaded.redirect_uris == ["https://a.example/cb"]

    @pytest.mark.asyncio
    async def test_client_id_cannot_escape_directory(self, tmp_path):
        """Path separators in client ids are neutralized."""
        store = FileClientStore(tmp_path / "clients")

        await store.store(client(client_id="../../etc/passwd"))

        assert not (tmp_path / "etc").exists()
        assert len(list((tmp_path / "clients").iterdir())) == 1
        assert await store.get("../../etc/passwd") is not None

    @pytest.mark.asyncio
    async def test_missing_client(self, tmp_path):
        """Unknown ids return None and removal reports False."""
        store = FileClientStore(tmp_path)

        assert await store.get("nope") is None
        assert await store.remove("nope") is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
