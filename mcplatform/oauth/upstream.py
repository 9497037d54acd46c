"""HTTP client for upstream OAuth2/OIDC providers.

Covers discovery (with a Redis cache), authorization URL construction,
the authorization_code exchange and the userinfo call. No retries: the
callers decide what a failure means.
"""

import json
from typing import Optional

import httpx

from mcplatform import dependencies
from mcplatform.config import proxy_settings
from mcplatform.crypto import decrypt_secret
from mcplatform.logging_config import get_logger
from mcplatform.models import CustomOAuthConfig
from mcplatform.utils import append_query

logger = get_logger(__name__)

METADATA_CACHE_PREFIX = "oauth:metadata:"


class UpstreamTokenError(Exception):
    """The upstream token endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"Upstream token endpoint returned {status_code}")
        self.status_code = status_code
        self.body = body


class UpstreamOAuthClient:
    """Talks to one upstream provider on behalf of a CustomOAuthConfig."""

    def __init__(
        self,
        *,
        authorization_url: str,
        client_id: str,
        client_secret: Optional[str] = None,
        scopes: Optional[str] = None,
        token_url: Optional[str] = None,
        metadata_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.authorization_url = authorization_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes
        self.token_url = token_url
        self.metadata_url = metadata_url
        self.timeout = timeout or proxy_settings.upstream_timeout_seconds
        self._metadata: Optional[dict] = None

    @classmethod
    def from_config(
        cls, config: CustomOAuthConfig, with_secret: bool = True
    ) -> "UpstreamOAuthClient":
        """Client for *config*. The stored secret is only decrypted when needed."""
        return cls(
            authorization_url=config.authorization_url,
            client_id=config.client_id,
            client_secret=decrypt_secret(config.client_secret) if with_secret else None,
            scopes=config.scopes,
            token_url=config.token_url,
            metadata_url=config.metadata_url,
        )

    # ─── Discovery ────────────────────────────────────────────────────────────

    async def _cached_metadata(self) -> Optional[dict]:
        redis = dependencies.redis_client
        if not redis or proxy_settings.metadata_cache_ttl_seconds <= 0:
            return None
        try:
            raw = await redis.get(f"{METADATA_CACHE_PREFIX}{self.metadata_url}")
        except Exception as e:
            logger.warning(f"Metadata cache read failed: {e}")
            return None
        if not raw:
            return None
        try:
            document = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Ignoring corrupt cached metadata for {self.metadata_url}: {e}")
            return None
        return document if isinstance(document, dict) else None

    async def _store_metadata(self, document: dict) -> None:
        redis = dependencies.redis_client
        if not redis or proxy_settings.metadata_cache_ttl_seconds <= 0:
            return
        try:
            await redis.setex(
                f"{METADATA_CACHE_PREFIX}{self.metadata_url}",
                proxy_settings.metadata_cache_ttl_seconds,
                json.dumps(document),
            )
        except Exception as e:
            logger.warning(f"Metadata cache write failed: {e}")

    async def discover(self) -> dict:
        """Return the provider's discovery document, or ``{}``.

        Failures are logged and yield an empty document; callers treat a
        missing endpoint as "not available".
        """
        if self._metadata is not None:
            return self._metadata
        if not self.metadata_url:
            self._metadata = {}
            return self._metadata

        cached = await self._cached_metadata()
        if cached is not None:
            self._metadata = cached
            return cached

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(
                    self.metadata_url, headers={"Accept": "application/json"}
                )
                resp.raise_for_status()
                document = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to fetch OAuth metadata from {self.metadata_url}: {e}")
            return {}

        if not isinstance(document, dict):
            logger.warning(f"OAuth metadata at {self.metadata_url} is not a JSON object")
            return {}

        self._metadata = document
        await self._store_metadata(document)
        return document

    async def resolve_token_endpoint(self) -> Optional[str]:
        if self.token_url:
            return self.token_url
        return (await self.discover()).get("token_endpoint")

    async def resolve_userinfo_endpoint(self) -> Optional[str]:
        return (await self.discover()).get("userinfo_endpoint")

    # ─── Flow ─────────────────────────────────────────────────────────────────

    def get_authorization_url(self, redirect_uri: str, state: str, scope: str) -> str:
        """Build the upstream authorization URL.

        Query parameters already present on the configured URL are kept.
        """
        return append_query(
            self.authorization_url,
            {
                "response_type": "code",
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "state": state,
                "scope": scope,
            },
        )

    async def exchange_code(self, token_endpoint: str, code: str, redirect_uri: str) -> dict:
        """Exchange an upstream authorization code, authenticating with HTTP Basic.

        Raises UpstreamTokenError on a non-2xx answer.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                token_endpoint,
                data=data,
                auth=httpx.BasicAuth(self.client_id, self.client_secret or ""),
                headers={"Accept": "application/json"},
            )
        if not resp.is_success:
            raise UpstreamTokenError(resp.status_code, resp.text)
        return resp.json()

    async def fetch_userinfo(self, userinfo_endpoint: str, access_token: str) -> dict:
        """GET the userinfo endpoint with the upstream bearer token."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(
                userinfo_endpoint,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
            resp.raise_for_status()
            return resp.json()
