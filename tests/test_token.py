"""Integration tests for POST /oauth/token."""
import pytest
import pytest_asyncio
from httpx import AsyncClient

from mcplatform.models import McpAuthorizationCode, McpProxyToken
from mcplatform.oauth.pkce import compute_s256_challenge
from tests.conftest import (
    CLIENT_ID,
    CLIENT_REDIRECT,
    CLIENT_SECRET,
    DEFAULT_SCOPES,
    PROXY_CODE,
)

CODE_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
CLIENT_AUTH = (CLIENT_ID, CLIENT_SECRET)


async def issue_code(seed, tenant, code_challenge=None, code_expires_in=600):
    auth_session = await seed.authorization_session(tenant, code_challenge=code_challenge)
    user = await seed.user()
    upstream_token = await seed.upstream_token(user, tenant.config)
    await seed.authorization_code(tenant, auth_session, upstream_token, expires_in=code_expires_in)
    return upstream_token


def code_grant(**overrides) -> dict:
    data = {
        "grant_type": "authorization_code",
        "code": PROXY_CODE,
        "redirect_uri": CLIENT_REDIRECT,
    }
    data.update(overrides)
    return {k: v for k, v in data.items() if v is not None}


@pytest_asyncio.fixture
async def upstream_token(seed, tenant):
    return await issue_code(seed, tenant)


@pytest.mark.asyncio
async def test_exchange_code_with_basic_auth(client: AsyncClient, upstream_token, seed):
    """A valid code exchanged with HTTP Basic credentials yields proxy tokens."""
    response = await client.post("/oauth/token", data=code_grant(), auth=CLIENT_AUTH)

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    data = response.json()
    assert data["access_token"].startswith("mcp_at_")
    assert data["refresh_token"].startswith("mcp_rt_")
    assert data["token_type"] == "Bearer"
    assert data["expires_in"] == 3600
    assert data["scope"] == DEFAULT_SCOPES

    tokens = await seed.rows(McpProxyToken)
    assert len(tokens) == 1
    assert tokens[0].access_token == data["access_token"]
    assert tokens[0].upstream_token_id == upstream_token.id

    codes = await seed.rows(McpAuthorizationCode)
    assert codes[0].used is True


@pytest.mark.asyncio
async def test_exchange_code_with_client_secret_post(client: AsyncClient, upstream_token):
    """Credentials may be sent in the form body instead."""
    response = await client.post(
        "/oauth/token",
        data=code_grant(client_id=CLIENT_ID, client_secret=CLIENT_SECRET),
    )

    assert response.status_code == 200
    assert response.json()["access_token"].startswith("mcp_at_")


@pytest.mark.asyncio
async def test_exchange_code_with_json_body(client: AsyncClient, upstream_token):
    """JSON request bodies are accepted."""
    response = await client.post(
        "/oauth/token",
        json=code_grant(client_id=CLIENT_ID, client_secret=CLIENT_SECRET),
    )

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_code_is_single_use(client: AsyncClient, upstream_token, seed):
    """A second exchange of the same code fails."""
    first = await client.post("/oauth/token", data=code_grant(), auth=CLIENT_AUTH)
    second = await client.post("/oauth/token", data=code_grant(), auth=CLIENT_AUTH)

    assert first.status_code == 200
    assert second.status_code == 400
    assert second.json()["error"] == "invalid_grant"
    assert len(await seed.rows(McpProxyToken)) == 1


@pytest.mark.asyncio
async def test_exchange_with_wrong_secret(client: AsyncClient, upstream_token, seed):
    """Bad client credentials are a 401 with a Basic challenge; the code stays usable."""
    response = await client.post(
        "/oauth/token", data=code_grant(), auth=(CLIENT_ID, "mcp_secret_wrong")
    )

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_client"
    assert response.headers["www-authenticate"] == 'Basic realm="oauth"'
    assert (await seed.rows(McpAuthorizationCode))[0].used is False


@pytest.mark.asyncio
async def test_exchange_without_credentials(client: AsyncClient, upstream_token):
    """Client credentials are required."""
    response = await client.post("/oauth/token", data=code_grant())

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


@pytest.mark.asyncio
async def test_exchange_expired_code(client: AsyncClient, seed, tenant):
    """Codes past their lifetime are invalid_grant."""
    await issue_code(seed, tenant, code_expires_in=-1)

    response = await client.post("/oauth/token", data=code_grant(), auth=CLIENT_AUTH)

    assert response.status_code == 400
    assert response.json() == {
        "error": "invalid_grant",
        "error_description": "Authorization code has expired",
    }


@pytest.mark.asyncio
async def test_exchange_unknown_code(client: AsyncClient, upstream_token):
    response = await client.post(
        "/oauth/token", data=code_grant(code="mcp_code_unknown"), auth=CLIENT_AUTH
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_grant"


@pytest.mark.asyncio
async def test_exchange_redirect_uri_mismatch(client: AsyncClient, upstream_token):
    """The redirect_uri must equal the one used at authorize."""
    response = await client.post(
        "/oauth/token",
        data=code_grant(redirect_uri="https://client.test/other"),
        auth=CLIENT_AUTH,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_grant"


@pytest.mark.asyncio
async def test_exchange_with_pkce(client: AsyncClient, seed, tenant):
    """A PKCE-bound code needs the matching code_verifier."""
    await issue_code(seed, tenant, code_challenge=compute_s256_challenge(CODE_VERIFIER))

    missing = await client.post("/oauth/token", data=code_grant(), auth=CLIENT_AUTH)
    assert missing.status_code == 400
    assert missing.json()["error_description"] == "code_verifier is required"

    wrong = await client.post(
        "/oauth/token", data=code_grant(code_verifier="x" * 43), auth=CLIENT_AUTH
    )
    assert wrong.status_code == 400
    assert wrong.json()["error_description"] == "Invalid code_verifier"

    ok = await client.post(
        "/oauth/token", data=code_grant(code_verifier=CODE_VERIFIER), auth=CLIENT_AUTH
    )
    assert ok.status_code == 200


@pytest.mark.asyncio
async def test_refresh_token_rotation(client: AsyncClient, upstream_token, seed):
    """Refreshing issues a new pair and retires the old refresh token."""
    issued = (await client.post("/oauth/token", data=code_grant(), auth=CLIENT_AUTH)).json()

    refreshed = await client.post(
        "/oauth/token",
        data={"grant_type": "refresh_token", "refresh_token": issued["refresh_token"]},
        auth=CLIENT_AUTH,
    )

    assert refreshed.status_code == 200
    data = refreshed.json()
    assert data["access_token"] != issued["access_token"]
    assert data["refresh_token"] != issued["refresh_token"]
    assert data["scope"] == DEFAULT_SCOPES

    tokens = await seed.rows(McpProxyToken)
    assert [t.access_token for t in tokens] == [data["access_token"]]
    assert tokens[0].upstream_token_id == upstream_token.id

    reused = await client.post(
        "/oauth/token",
        data={"grant_type": "refresh_token", "refresh_token": issued["refresh_token"]},
        auth=CLIENT_AUTH,
    )
    assert reused.status_code == 400
    assert reused.json()["error"] == "invalid_grant"


@pytest.mark.asyncio
async def test_refresh_with_other_client(client: AsyncClient, seed, tenant, upstream_token):
    """A refresh token only works for the client it was issued to."""
    await seed.proxy_token(tenant, upstream_token.id)

    response = await client.post(
        "/oauth/token",
        data={"grant_type": "refresh_token", "refresh_token": "mcp_rt_test"},
        auth=("mcp_client_other", CLIENT_SECRET),
    )

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_client"


@pytest.mark.asyncio
async def test_unsupported_grant_type(client: AsyncClient):
    response = await client.post(
        "/oauth/token", data={"grant_type": "client_credentials"}, auth=CLIENT_AUTH
    )

    assert response.status_code == 400
    assert response.json()["error"] == "unsupported_grant_type"


@pytest.mark.asyncio
async def test_missing_grant_type(client: AsyncClient):
    response = await client.post("/oauth/token", data={"code": PROXY_CODE}, auth=CLIENT_AUTH)

    assert response.status_code == 400
    assert response.json() == {
        "error": "invalid_request",
        "error_description": "grant_type is required",
    }


@pytest.mark.asyncio
async def test_unsupported_content_type(client: AsyncClient):
    """Only form and JSON bodies are understood."""
    response = await client.post(
        "/oauth/token",
        content=b"grant_type=authorization_code",
        headers={"Content-Type": "text/plain"},
    )

    assert response.status_code == 400
    assert response.json()["error_description"] == "Unsupported content type"


@pytest.mark.asyncio
async def test_token_preflight(client: AsyncClient):
    """OPTIONS answers 204 with the CORS headers."""
    response = await client.options("/oauth/token")

    assert response.status_code == 204
    assert response.headers["access-control-allow-headers"] == "Content-Type, Authorization"
