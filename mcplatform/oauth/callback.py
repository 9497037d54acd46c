"""GET /oauth/callback: finish the upstream leg and hand a code to the MCP client.

The session is looked up by the internal state. From there every outcome
is a redirect to the client's registered redirect_uri, carrying either a
``mcp_code_`` authorization code or an OAuth error, plus the client's own
state. Anything unexpected during the exchange rolls the transaction back
and becomes a single ``server_error`` redirect.

Sessions are not consumed here. A second callback with the same state
inside the session lifetime resolves the same session again and can mint
another code if the upstream accepts the code a second time.
"""

from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mcplatform.config import proxy_settings
from mcplatform.crypto import encrypt_secret, mask_secret
from mcplatform.logging_config import get_logger
from mcplatform.models import (
    CustomOAuthConfig,
    McpAuthorizationCode,
    McpAuthorizationSession,
    UpstreamOAuthToken,
    now_ms,
)
from mcplatform.oauth.context import RequestContext
from mcplatform.oauth.identity import resolve_user
from mcplatform.oauth.queries import get_oauth_config
from mcplatform.oauth.results import DirectError, HandlerResult, Redirect, RedirectError
from mcplatform.oauth.upstream import UpstreamOAuthClient, UpstreamTokenError
from mcplatform.utils import ROW_ID_LENGTH, TOKEN_LENGTH, append_query, gen_id, nanoid

logger = get_logger(__name__)


async def find_active_session(
    session: AsyncSession, state: Optional[str]
) -> Optional[McpAuthorizationSession]:
    """Unexpired authorization session for *state*."""
    if not state:
        return None
    result = await session.execute(
        select(McpAuthorizationSession).where(
            McpAuthorizationSession.state == state,
            McpAuthorizationSession.expires_at > now_ms(),
        )
    )
    return result.scalar_one_or_none()


async def fetch_profile(upstream: UpstreamOAuthClient, access_token: str) -> Optional[dict]:
    """Upstream userinfo document, or None when unavailable."""
    endpoint = await upstream.resolve_userinfo_endpoint()
    if not endpoint:
        return None
    try:
        profile = await upstream.fetch_userinfo(endpoint, access_token)
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Userinfo fetch failed, continuing without profile: {e}")
        return None
    if not isinstance(profile, dict):
        logger.warning("Userinfo response is not a JSON object, ignoring it")
        return None
    return profile


def _expires_at(token_response: dict, now: int) -> Optional[int]:
    expires_in = token_response.get("expires_in")
    if expires_in is None:
        return None
    return now + int(expires_in) * 1000


async def _complete_flow(
    ctx: RequestContext,
    session: AsyncSession,
    auth_session: McpAuthorizationSession,
    config: CustomOAuthConfig,
    code: str,
) -> HandlerResult:
    redirect_uri = auth_session.redirect_uri
    client_state = auth_session.client_state

    upstream = UpstreamOAuthClient.from_config(config)
    token_endpoint = await upstream.resolve_token_endpoint()
    if not token_endpoint:
        logger.error(f"No token endpoint for OAuth config {config.id}")
        return RedirectError(
            redirect_uri, "server_error", "Token endpoint not configured", client_state
        )

    try:
        token_response = await upstream.exchange_code(token_endpoint, code, ctx.callback_url)
    except UpstreamTokenError as e:
        logger.warning(f"Token exchange rejected for config {config.id}: {e} {e.body[:200]}")
        return RedirectError(
            redirect_uri, "access_denied", "Failed to exchange authorization code", client_state
        )

    access_token = token_response.get("access_token")
    if not access_token:
        logger.error(f"Token response from config {config.id} has no access_token")
        return RedirectError(
            redirect_uri, "server_error", "Token exchange failed", client_state
        )

    now = now_ms()
    profile = await fetch_profile(upstream, access_token)
    user = await resolve_user(session, config.organization_id, profile)

    refresh_token = token_response.get("refresh_token")
    upstream_token = UpstreamOAuthToken(
        id=gen_id("uoat_", ROW_ID_LENGTH),
        mcp_server_user_id=user.id,
        oauth_config_id=config.id,
        access_token=encrypt_secret(access_token),
        refresh_token=encrypt_secret(refresh_token) if refresh_token else None,
        expires_at=_expires_at(token_response, now),
        created_at=now,
    )
    session.add(upstream_token)
    await session.flush()

    proxy_code = f"mcp_code_{nanoid(TOKEN_LENGTH)}"
    session.add(
        McpAuthorizationCode(
            id=gen_id("mac_", ROW_ID_LENGTH),
            mcp_client_registration_id=auth_session.mcp_client_registration_id,
            authorization_session_id=auth_session.id,
            upstream_token_id=upstream_token.id,
            code=proxy_code,
            expires_at=now + proxy_settings.code_ttl_seconds * 1000,
            used=False,
            created_at=now,
        )
    )
    await session.flush()

    logger.info(
        f"Issued code {mask_secret(proxy_code)} for session {auth_session.id} (user {user.id})"
    )
    return Redirect(append_query(redirect_uri, {"code": proxy_code, "state": client_state}))


async def handle_callback(ctx: RequestContext, session: AsyncSession) -> HandlerResult:
    code = ctx.query.get("code")
    state = ctx.query.get("state")
    error = ctx.query.get("error")

    if error:
        logger.warning(f"Upstream returned error {error}: {ctx.query.get('error_description')}")
        auth_session = await find_active_session(session, state)
        if not auth_session:
            return DirectError(400, "invalid_request", "OAuth authorization failed")
        return RedirectError(
            auth_session.redirect_uri,
            error,
            ctx.query.get("error_description") or "Authorization failed",
            auth_session.client_state,
        )

    if not code or not state:
        return DirectError(400, "invalid_request", "Missing authorization code or state")

    auth_session = await find_active_session(session, state)
    if not auth_session:
        logger.warning(f"No active authorization session for state {mask_secret(state)}")
        return DirectError(400, "invalid_request", "Invalid or expired authorization session")

    # Rollback expires ORM instances, keep plain copies for the error path.
    session_id = auth_session.id
    redirect_uri = auth_session.redirect_uri
    client_state = auth_session.client_state

    config = await get_oauth_config(session, auth_session.custom_oauth_config_id)
    if not config:
        logger.error(f"OAuth config {auth_session.custom_oauth_config_id} not found")
        return RedirectError(
            redirect_uri, "server_error", "OAuth configuration not found", client_state
        )

    try:
        return await _complete_flow(ctx, session, auth_session, config, code)
    except Exception as e:
        logger.error(f"Callback failed for session {session_id}: {e}", exc_info=True)
        await session.rollback()
        return RedirectError(redirect_uri, "server_error", "Token exchange failed", client_state)
