"""Discovery documents for custom-OAuth MCP servers.

RFC 8414 authorization server metadata and RFC 9728 protected resource
metadata, both naming this host (the proxy) as the authorization server.
Servers without custom OAuth get a 404 so that MCP clients fall back to
their own behaviour.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from mcplatform.config import proxy_settings
from mcplatform.models import McpServer
from mcplatform.oauth.context import RequestContext
from mcplatform.oauth.pkce import S256
from mcplatform.oauth.queries import get_server_by_slug
from mcplatform.oauth.results import DirectError, HandlerResult, JsonResult
from mcplatform.schemas import TOKEN_AUTH_METHODS

JWKS_CACHE_HEADERS = {"Cache-Control": "public, max-age=3600"}


async def _custom_oauth_server(
    ctx: RequestContext, session: AsyncSession
) -> McpServer | DirectError:
    if not ctx.host:
        return DirectError(404, "invalid_request", "Invalid host; host not found")
    slug = ctx.subdomain
    if not slug:
        return DirectError(404, "invalid_request", "Invalid host; subdomain not found or not valid")
    server = await get_server_by_slug(session, slug)
    if not server:
        return DirectError(404, "invalid_request", "Invalid host; subdomain not found")
    if not server.uses_custom_oauth:
        return DirectError(404, "invalid_request", "Not an OAuth protected resource")
    return server


def authorization_server_metadata(origin: str) -> dict:
    return {
        "issuer": origin,
        "authorization_endpoint": f"{origin}/oauth/authorize",
        "token_endpoint": f"{origin}/oauth/token",
        "userinfo_endpoint": f"{origin}/oauth/userinfo",
        "jwks_uri": f"{origin}/oauth/jwks",
        "registration_endpoint": f"{origin}/oauth/register",
        "scopes_supported": proxy_settings.default_scope.split(),
        "response_types_supported": ["code"],
        "response_modes_supported": ["query"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": list(TOKEN_AUTH_METHODS),
        "code_challenge_methods_supported": [S256],
        "subject_types_supported": ["public"],
    }


async def handle_authorization_server_metadata(
    ctx: RequestContext, session: AsyncSession
) -> HandlerResult:
    server = await _custom_oauth_server(ctx, session)
    if isinstance(server, DirectError):
        return server
    return JsonResult(200, authorization_server_metadata(ctx.origin))


async def handle_protected_resource_metadata(
    ctx: RequestContext, session: AsyncSession
) -> HandlerResult:
    server = await _custom_oauth_server(ctx, session)
    if isinstance(server, DirectError):
        return server
    return JsonResult(
        200,
        {
            "resource": ctx.origin,
            "authorization_servers": [ctx.origin],
            "bearer_methods_supported": ["header"],
            "resource_name": server.name,
        },
    )


def jwks() -> JsonResult:
    """Empty key set: proxy tokens are opaque and nothing is signed."""
    return JsonResult(200, {"keys": []}, dict(JWKS_CACHE_HEADERS))
