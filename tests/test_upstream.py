"""Tests for the upstream OAuth client."""
import json
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from mcplatform import dependencies
from mcplatform.oauth.upstream import (
    METADATA_CACHE_PREFIX,
    UpstreamOAuthClient,
    UpstreamTokenError,
)
from tests.conftest import (
    AUTHORIZATION_URL,
    METADATA_URL,
    SAMPLE_DISCOVERY,
    TOKEN_URL,
    USERINFO_URL,
)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the discovery cache."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl


def make_client(**overrides) -> UpstreamOAuthClient:
    values = dict(
        authorization_url=AUTHORIZATION_URL,
        client_id="upstream-client",
        client_secret="upstream-secret",
        scopes="openid",
        metadata_url=METADATA_URL,
    )
    values.update(overrides)
    return UpstreamOAuthClient(**values)


@pytest.fixture
def fake_redis(monkeypatch):
    cache = FakeRedis()
    monkeypatch.setattr(dependencies, "redis_client", cache)
    return cache


def test_authorization_url():
    url = make_client().get_authorization_url(
        "https://acme.mcplatform.test/oauth/callback", "s1", "openid email"
    )

    parts = urlsplit(url)
    query = {k: v[0] for k, v in parse_qs(parts.query).items()}
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == AUTHORIZATION_URL
    assert query == {
        "response_type": "code",
        "client_id": "upstream-client",
        "redirect_uri": "https://acme.mcplatform.test/oauth/callback",
        "state": "s1",
        "scope": "openid email",
    }


@pytest.mark.asyncio
async def test_discovery_is_cached(mock_upstream, fake_redis):
    """A fetched document is stored in Redis and reused by later clients."""
    route = mock_upstream.get(METADATA_URL).mock(
        return_value=httpx.Response(200, json=SAMPLE_DISCOVERY)
    )

    assert await make_client().resolve_userinfo_endpoint() == USERINFO_URL
    assert await make_client().resolve_token_endpoint() == TOKEN_URL

    assert route.call_count == 1
    key = f"{METADATA_CACHE_PREFIX}{METADATA_URL}"
    assert json.loads(fake_redis.store[key]) == SAMPLE_DISCOVERY
    assert fake_redis.ttls[key] == 300


@pytest.mark.asyncio
async def test_discovery_failure_is_not_cached(mock_upstream, fake_redis):
    mock_upstream.get(METADATA_URL).mock(return_value=httpx.Response(500))

    assert await make_client().discover() == {}
    assert fake_redis.store == {}


@pytest.mark.asyncio
@pytest.mark.parametrize("cached", ["{not json", "[1, 2]"])
async def test_corrupt_cache_entry_is_refetched(mock_upstream, fake_redis, cached):
    """An unreadable cached document counts as a miss and is replaced."""
    key = f"{METADATA_CACHE_PREFIX}{METADATA_URL}"
    fake_redis.store[key] = cached
    route = mock_upstream.get(METADATA_URL).mock(
        return_value=httpx.Response(200, json=SAMPLE_DISCOVERY)
    )

    assert await make_client().resolve_userinfo_endpoint() == USERINFO_URL
    assert route.call_count == 1
    assert json.loads(fake_redis.store[key]) == SAMPLE_DISCOVERY


@pytest.mark.asyncio
async def test_explicit_token_url_skips_discovery(mock_upstream):
    route = mock_upstream.get(METADATA_URL)

    endpoint = await make_client(token_url="https://idp.test/explicit").resolve_token_endpoint()

    assert endpoint == "https://idp.test/explicit"
    assert not route.called


@pytest.mark.asyncio
async def test_without_metadata_url_nothing_is_discovered():
    client = make_client(metadata_url=None)

    assert await client.resolve_userinfo_endpoint() is None
    assert await client.resolve_token_endpoint() is None


@pytest.mark.asyncio
async def test_exchange_code(mock_upstream):
    route = mock_upstream.post(TOKEN_URL).mock(
        return_value=httpx.Response(200, json={"access_token": "at"})
    )

    body = await make_client().exchange_code(TOKEN_URL, "c1", "https://cb.test/")

    assert body == {"access_token": "at"}
    request = route.calls.last.request
    assert request.headers["authorization"].startswith("Basic ")
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"


@pytest.mark.asyncio
async def test_exchange_code_error(mock_upstream):
    mock_upstream.post(TOKEN_URL).mock(
        return_value=httpx.Response(400, text='{"error":"invalid_grant"}')
    )

    with pytest.raises(UpstreamTokenError) as exc_info:
        await make_client().exchange_code(TOKEN_URL, "c1", "https://cb.test/")

    assert exc_info.value.status_code == 400
    assert "invalid_grant" in exc_info.value.body


@pytest.mark.asyncio
async def test_fetch_userinfo_raises_on_error(mock_upstream):
    mock_upstream.get(USERINFO_URL).mock(return_value=httpx.Response(401))

    with pytest.raises(httpx.HTTPStatusError):
        await make_client().fetch_userinfo(USERINFO_URL, "at")
