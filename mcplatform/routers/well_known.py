"""/.well-known discovery documents for custom-OAuth MCP servers."""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from mcplatform.database import get_async_session
from mcplatform.oauth import (
    RequestContext,
    handle_authorization_server_metadata,
    handle_protected_resource_metadata,
    render,
)
from mcplatform.routers.oauth import cors_headers

router = APIRouter()

DISCOVERY_CORS = cors_headers("GET, OPTIONS", "*")


@router.get("/oauth-authorization-server")
async def oauth_authorization_server(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
):
    """RFC 8414 metadata pointing at this proxy's endpoints."""
    ctx = await RequestContext.from_request(request)
    return render(await handle_authorization_server_metadata(ctx, session), DISCOVERY_CORS)


@router.get("/oauth-protected-resource")
async def oauth_protected_resource(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
):
    """RFC 9728 metadata naming this host as the authorization server."""
    ctx = await RequestContext.from_request(request)
    return render(await handle_protected_resource_metadata(ctx, session), DISCOVERY_CORS)


@router.options("/oauth-authorization-server")
@router.options("/oauth-protected-resource")
async def discovery_preflight():
    return Response(status_code=204, headers=DISCOVERY_CORS)
