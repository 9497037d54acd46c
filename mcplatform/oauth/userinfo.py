"""GET /oauth/userinfo: resolve a proxy access token to the upstream profile."""

from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mcplatform.crypto import decrypt_secret
from mcplatform.logging_config import get_logger
from mcplatform.models import McpProxyToken, McpServerUser, UpstreamOAuthToken, now_ms
from mcplatform.oauth.context import RequestContext
from mcplatform.oauth.identity import resolve_user
from mcplatform.oauth.queries import get_oauth_config
from mcplatform.oauth.results import DirectError, HandlerResult, JsonResult
from mcplatform.oauth.upstream import UpstreamOAuthClient

logger = get_logger(__name__)

INVALID_TOKEN_CHALLENGE = {"WWW-Authenticate": 'Bearer error="invalid_token"'}


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


async def _correct_subject(
    session: AsyncSession,
    upstream_token: UpstreamOAuthToken,
    organization_id: str,
    profile: dict,
) -> None:
    """Re-link *upstream_token* when the provider reports a different subject."""
    sub = profile.get("sub")
    if sub is None or sub == "":
        return
    user = await session.get(McpServerUser, upstream_token.mcp_server_user_id)
    if user and user.upstream_sub == str(sub):
        return
    if user and user.upstream_sub is None:
        # first time this user's subject is known
        user.upstream_sub = str(sub)
        user.updated_at = now_ms()
        await session.flush()
        return

    resolved = await resolve_user(session, organization_id, profile)
    if resolved.id != upstream_token.mcp_server_user_id:
        logger.info(
            f"Upstream subject changed for token {upstream_token.id}: "
            f"{upstream_token.mcp_server_user_id} -> {resolved.id}"
        )
        upstream_token.mcp_server_user_id = resolved.id
    await session.flush()


async def handle_userinfo(ctx: RequestContext, session: AsyncSession) -> HandlerResult:
    access_token = bearer_token(ctx.authorization)
    if not access_token:
        return DirectError(
            401,
            "invalid_request",
            "Missing or invalid Authorization header",
            {"WWW-Authenticate": "Bearer"},
        )

    now = now_ms()
    result = await session.execute(
        select(McpProxyToken).where(
            McpProxyToken.access_token == access_token,
            McpProxyToken.expires_at > now,
        )
    )
    proxy_token = result.scalar_one_or_none()
    if not proxy_token:
        return DirectError(
            401, "invalid_token", "Invalid or expired access token", dict(INVALID_TOKEN_CHALLENGE)
        )

    upstream_token = await session.get(UpstreamOAuthToken, proxy_token.upstream_token_id)
    if not upstream_token:
        logger.error(f"Proxy token {proxy_token.id} points at a missing upstream token")
        return DirectError(500, "server_error", "Upstream token not found")

    # TODO: refresh the upstream token with its refresh_token instead of failing
    if upstream_token.expires_at is not None and upstream_token.expires_at < now:
        return DirectError(
            401, "token_expired", "Upstream token has expired", dict(INVALID_TOKEN_CHALLENGE)
        )

    minimal = JsonResult(200, {"sub": upstream_token.mcp_server_user_id})

    config = await get_oauth_config(session, upstream_token.oauth_config_id)
    if not config:
        logger.error(f"OAuth config {upstream_token.oauth_config_id} not found")
        return DirectError(500, "server_error", "OAuth configuration not found")

    upstream = UpstreamOAuthClient.from_config(config, with_secret=False)
    endpoint = await upstream.resolve_userinfo_endpoint()
    if not endpoint:
        return minimal

    try:
        profile = await upstream.fetch_userinfo(endpoint, decrypt_secret(upstream_token.access_token))
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Upstream userinfo failed for token {upstream_token.id}: {e}")
        return minimal
    if not isinstance(profile, dict):
        return minimal

    await _correct_subject(session, upstream_token, config.organization_id, profile)
    return JsonResult(200, profile)
