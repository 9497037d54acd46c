"""OAuth proxy routes.

Routes:
  - GET  /oauth/authorize     start a round trip to the upstream provider
  - GET  /oauth/callback      upstream redirect target
  - POST /oauth/register      RFC 7591 dynamic client registration
  - POST /oauth/token         proxy code / refresh token exchange
  - GET  /oauth/userinfo      profile for a proxy access token
  - GET  /oauth/jwks          empty key set

The MCP server is selected by the subdomain of the Host header.
"""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from mcplatform.database import get_async_session
from mcplatform.oauth import (
    RequestContext,
    handle_authorize,
    handle_callback,
    handle_register,
    handle_token,
    handle_userinfo,
    jwks,
    render,
)

router = APIRouter()


def cors_headers(methods: str, allow_headers: str) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": methods,
        "Access-Control-Allow-Headers": allow_headers,
        "Access-Control-Max-Age": "86400",
    }


REGISTER_CORS = cors_headers("POST, OPTIONS", "Content-Type")
TOKEN_CORS = cors_headers("POST, OPTIONS", "Content-Type, Authorization")
USERINFO_CORS = cors_headers("GET, OPTIONS", "Authorization")
JWKS_CORS = cors_headers("GET, OPTIONS", "Content-Type")


@router.get("/authorize")
async def authorize(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
):
    """Validate an MCP client's authorization request and redirect upstream."""
    ctx = await RequestContext.from_request(request)
    result = await handle_authorize(ctx, session)
    await session.commit()
    return render(result)


@router.get("/callback")
async def callback(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
):
    """Exchange the upstream code and redirect back to the MCP client."""
    ctx = await RequestContext.from_request(request)
    result = await handle_callback(ctx, session)
    await session.commit()
    return render(result)


@router.post("/register")
async def register(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
):
    """Register a new MCP client for this server."""
    ctx = await RequestContext.from_request(request, read_body=True)
    result = await handle_register(ctx, session)
    await session.commit()
    return render(result, REGISTER_CORS)


@router.options("/register")
async def register_preflight():
    return Response(status_code=204, headers=REGISTER_CORS)


@router.post("/token")
async def token(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
):
    """Issue proxy tokens for a code or a refresh token."""
    ctx = await RequestContext.from_request(request, read_body=True)
    result = await handle_token(ctx, session)
    await session.commit()
    return render(result, TOKEN_CORS)


@router.options("/token")
async def token_preflight():
    return Response(status_code=204, headers=TOKEN_CORS)


@router.get("/userinfo")
async def userinfo(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
):
    """Return the upstream profile behind a proxy access token."""
    ctx = await RequestContext.from_request(request)
    result = await handle_userinfo(ctx, session)
    await session.commit()
    return render(result, USERINFO_CORS)


@router.options("/userinfo")
async def userinfo_preflight():
    return Response(status_code=204, headers=USERINFO_CORS)


@router.get("/jwks")
async def get_jwks():
    return render(jwks(), JWKS_CORS)


@router.options("/jwks")
async def jwks_preflight():
    return Response(status_code=204, headers=JWKS_CORS)
