"""Proxy configuration, read from environment variables."""

import os
from dataclasses import dataclass, field


DEFAULT_SCOPE = "openid profile email"


@dataclass
class ProxySettings:
    """Centralised OAuth proxy configuration read from env vars at import time."""

    # Lifetime of an in-flight authorize -> callback round trip
    session_ttl_seconds: int = field(
        default_factory=lambda: int(os.getenv("OAUTH_SESSION_TTL", "600"))  # 10 min
    )
    # Lifetime of a proxy-issued authorization code
    code_ttl_seconds: int = field(
        default_factory=lambda: int(os.getenv("OAUTH_CODE_TTL", "600"))  # 10 min
    )
    # Lifetime of a proxy access token
    access_token_ttl_seconds: int = field(
        default_factory=lambda: int(os.getenv("OAUTH_ACCESS_TOKEN_TTL", "3600"))  # 1 h
    )

    default_scope: str = field(
        default_factory=lambda: os.getenv("OAUTH_DEFAULT_SCOPE", DEFAULT_SCOPE)
    )

    # Per-request timeout for calls to upstream providers
    upstream_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("OAUTH_UPSTREAM_TIMEOUT", "10"))
    )

    # How long a fetched discovery document is reused. 0 disables caching.
    metadata_cache_ttl_seconds: int = field(
        default_factory=lambda: int(os.getenv("OAUTH_METADATA_CACHE_TTL", "300"))
    )

    # Force the scheme used for URLs built from the Host header ("http"/"https").
    # Empty means: http for localhost, https otherwise.
    public_scheme: str = field(
        default_factory=lambda: os.getenv("PROXY_PUBLIC_SCHEME", "").strip().lower()
    )

    def validate(self) -> None:
        """Raise if settings are inconsistent."""
        for name in ("session_ttl_seconds", "code_ttl_seconds", "access_token_ttl_seconds"):
            if getattr(self, name) <= 0:
                raise RuntimeError(f"{name} must be a positive number of seconds")
        if self.metadata_cache_ttl_seconds < 0:
            raise RuntimeError("OAUTH_METADATA_CACHE_TTL must be >= 0")
        if self.upstream_timeout_seconds <= 0:
            raise RuntimeError("OAUTH_UPSTREAM_TIMEOUT must be > 0")
        if self.public_scheme not in ("", "http", "https"):
            raise RuntimeError(
                f"PROXY_PUBLIC_SCHEME must be 'http' or 'https', got {self.public_scheme!r}"
            )


# Singleton, imported everywhere.
proxy_settings = ProxySettings()
