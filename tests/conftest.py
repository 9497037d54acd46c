"""Pytest configuration and fixtures for the OAuth proxy tests."""
import json
import os
import sys
from dataclasses import dataclass

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment before importing app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_ENCRYPTION_KEY"] = "00" * 32
os.environ["AUTO_MIGRATE"] = "false"

import pytest
import pytest_asyncio
import respx
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mcplatform import dependencies
from mcplatform.crypto import encrypt_secret
from mcplatform.database import get_async_session
from mcplatform.main import app
from mcplatform.models import (
    AUTH_TYPE_CUSTOM_OAUTH,
    Base,
    CustomOAuthConfig,
    McpAuthorizationCode,
    McpAuthorizationSession,
    McpClientRegistration,
    McpProxyToken,
    McpServer,
    McpServerSession,
    McpServerUser,
    UpstreamOAuthToken,
    now_ms,
)
from mcplatform.utils import gen_id, nanoid

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ── Upstream provider and MCP client used across the suite ──────────

ORG_ID = "org_acme"
OTHER_ORG_ID = "org_globex"

PROXY_ORIGIN = "https://acme.mcplatform.test"
CALLBACK_URL = f"{PROXY_ORIGIN}/oauth/callback"

AUTHORIZATION_URL = "https://idp.test/authorize"
TOKEN_URL = "https://idp.test/token"
METADATA_URL = "https://idp.test/.well-known/openid-configuration"
USERINFO_URL = "https://idp.test/userinfo"
UPSTREAM_CLIENT_ID = "upstream-client"
UPSTREAM_CLIENT_SECRET = "upstream-secret"
DEFAULT_SCOPES = "openid profile email"

CLIENT_ID = "mcp_client_test"
CLIENT_SECRET = "mcp_secret_test"
CLIENT_REDIRECT = "https://client.test/cb"

UPSTREAM_STATE = "upstream-state-0123456789abcdef0123"
PROXY_CODE = "mcp_code_test"
PROXY_ACCESS_TOKEN = "mcp_at_test"
PROXY_REFRESH_TOKEN = "mcp_rt_test"

SAMPLE_DISCOVERY = {
    "issuer": "https://idp.test",
    "authorization_endpoint": AUTHORIZATION_URL,
    "token_endpoint": TOKEN_URL,
    "userinfo_endpoint": USERINFO_URL,
}

SAMPLE_TOKEN_RESPONSE = {
    "access_token": "upstream-at",
    "refresh_token": "upstream-rt",
    "token_type": "Bearer",
    "expires_in": 3600,
}

SAMPLE_PROFILE = {
    "sub": "user-1",
    "email": "ada@example.com",
    "name": "Ada Lovelace",
}


def _expiry(seconds: int) -> int:
    return now_ms() + seconds * 1000


@dataclass
class Tenant:
    """A custom-OAuth MCP server with one registered client."""
    config: CustomOAuthConfig
    server: McpServer
    registration: McpClientRegistration


class Seeder:
    """Writes fixture rows in their own committed sessions."""

    def __init__(self, factory: async_sessionmaker):
        self.factory = factory

    async def add(self, row):
        async with self.factory() as session:
            session.add(row)
            await session.commit()
        return row

    async def rows(self, model, *criteria) -> list:
        stmt = select(model)
        if criteria:
            stmt = stmt.where(*criteria)
        async with self.factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars())

    async def get(self, model, ident):
        async with self.factory() as session:
            return await session.get(model, ident)

    async def oauth_config(self, organization_id: str = ORG_ID, **overrides) -> CustomOAuthConfig:
        values = dict(
            id=gen_id("coac_", 16),
            organization_id=organization_id,
            name=f"idp-{nanoid(6)}",
            authorization_url=AUTHORIZATION_URL,
            token_url=TOKEN_URL,
            metadata_url=None,
            client_id=UPSTREAM_CLIENT_ID,
            client_secret=encrypt_secret(UPSTREAM_CLIENT_SECRET),
            scopes=DEFAULT_SCOPES,
            created_at=now_ms(),
        )
        values.update(overrides)
        return await self.add(CustomOAuthConfig(**values))

    async def server(
        self,
        slug: str = "acme",
        organization_id: str = ORG_ID,
        config: CustomOAuthConfig | None = None,
        auth_type: str = AUTH_TYPE_CUSTOM_OAUTH,
        name: str = "Acme MCP",
    ) -> McpServer:
        return await self.add(
            McpServer(
                id=gen_id("mcps_", 16),
                organization_id=organization_id,
                name=name,
                slug=slug,
                auth_type=auth_type,
                custom_oauth_config_id=config.id if config else None,
                created_at=now_ms(),
            )
        )

    async def registration(
        self,
        server: McpServer,
        client_id: str = CLIENT_ID,
        client_secret: str = CLIENT_SECRET,
        redirect_uris: tuple[str, ...] = (CLIENT_REDIRECT,),
        scope: str = DEFAULT_SCOPES,
    ) -> McpClientRegistration:
        return await self.add(
            McpClientRegistration(
                id=gen_id("mcr_", 16),
                mcp_server_id=server.id,
                client_id=client_id,
                client_secret=client_secret,
                redirect_uris=json.dumps(list(redirect_uris)),
                client_metadata=json.dumps(
                    {
                        "token_endpoint_auth_method": "client_secret_basic",
                        "grant_types": ["authorization_code", "refresh_token"],
                        "response_types": ["code"],
                        "scope": scope,
                    }
                ),
                created_at=now_ms(),
            )
        )

    async def tenant(self, slug: str = "acme", organization_id: str = ORG_ID, **config_overrides) -> Tenant:
        config = await self.oauth_config(organization_id, **config_overrides)
        server = await self.server(slug, organization_id, config)
        registration = await self.registration(server)
        return Tenant(config=config, server=server, registration=registration)

    async def authorization_session(
        self,
        tenant: Tenant,
        state: str = UPSTREAM_STATE,
        client_state: str | None = "xyz",
        redirect_uri: str = CLIENT_REDIRECT,
        scope: str = DEFAULT_SCOPES,
        code_challenge: str | None = None,
        expires_in: int = 600,
    ) -> McpAuthorizationSession:
        now = now_ms()
        return await self.add(
            McpAuthorizationSession(
                id=gen_id("mas_", 16),
                mcp_client_registration_id=tenant.registration.id,
                custom_oauth_config_id=tenant.config.id,
                state=state,
                client_state=client_state,
                redirect_uri=redirect_uri,
                scope=scope,
                code_challenge=code_challenge,
                code_challenge_method="S256" if code_challenge else None,
                created_at=now,
                expires_at=now + expires_in * 1000,
            )
        )

    async def user(
        self,
        email: str | None = None,
        upstream_sub: str | None = None,
        first_seen_at: int | None = None,
    ) -> McpServerUser:
        now = now_ms()
        return await self.add(
            McpServerUser(
                id=gen_id("mcpu_", 16),
                email=email,
                upstream_sub=upstream_sub,
                first_seen_at=first_seen_at or now,
                updated_at=now,
            )
        )

    async def mcp_session(self, server: McpServer, user: McpServerUser) -> McpServerSession:
        return await self.add(
            McpServerSession(
                mcp_server_session_id=gen_id("sess_", 16),
                mcp_server_slug=server.slug,
                mcp_server_user_id=user.id,
                connection_timestamp=now_ms(),
            )
        )

    async def upstream_token(
        self,
        user: McpServerUser,
        config: CustomOAuthConfig,
        access_token: str = "upstream-at",
        expires_in: int | None = None,
    ) -> UpstreamOAuthToken:
        return await self.add(
            UpstreamOAuthToken(
                id=gen_id("uoat_", 16),
                mcp_server_user_id=user.id,
                oauth_config_id=config.id,
                access_token=encrypt_secret(access_token),
                refresh_token=None,
                expires_at=_expiry(expires_in) if expires_in is not None else None,
                created_at=now_ms(),
            )
        )

    async def authorization_code(
        self,
        tenant: Tenant,
        auth_session: McpAuthorizationSession,
        upstream_token: UpstreamOAuthToken,
        code: str = PROXY_CODE,
        expires_in: int = 600,
    ) -> McpAuthorizationCode:
        return await self.add(
            McpAuthorizationCode(
                id=gen_id("mac_", 16),
                mcp_client_registration_id=tenant.registration.id,
                authorization_session_id=auth_session.id,
                upstream_token_id=upstream_token.id,
                code=code,
                expires_at=_expiry(expires_in),
                used=False,
                created_at=now_ms(),
            )
        )

    async def proxy_token(
        self,
        tenant: Tenant,
        upstream_token_id: str,
        access_token: str = PROXY_ACCESS_TOKEN,
        refresh_token: str = PROXY_REFRESH_TOKEN,
        expires_in: int = 3600,
    ) -> McpProxyToken:
        return await self.add(
            McpProxyToken(
                id=gen_id("mpt_", 16),
                mcp_client_registration_id=tenant.registration.id,
                upstream_token_id=upstream_token_id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=_expiry(expires_in),
                created_at=now_ms(),
            )
        )


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def test_session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest_asyncio.fixture
async def tenant(seed):
    """The ``acme`` custom-OAuth server with client ``mcp_client_test``."""
    return await seed.tenant()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory):
    """Create test client with overridden database."""

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_async_session] = override_get_session

    # No discovery cache in tests unless a test installs one
    dependencies.redis_client = None

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url=PROXY_ORIGIN,
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def mock_upstream():
    """respx router standing in for the upstream provider."""
    with respx.mock(assert_all_called=False) as router:
        yield router
