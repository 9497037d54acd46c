"""GET /oauth/authorize: start an authorization round trip.

Validates the MCP client's request against its registration, records an
McpAuthorizationSession under a freshly generated state and sends the
user-agent to the upstream provider.

Errors before the client and its redirect_uri are known go back as a
redirect carrying ``error``; an unregistered redirect_uri is always a
direct 400 so that we never redirect to an unverified target once the
client is identified.
"""

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from mcplatform.config import proxy_settings
from mcplatform.crypto import mask_secret
from mcplatform.logging_config import get_logger
from mcplatform.models import McpAuthorizationSession, now_ms
from mcplatform.oauth.context import RequestContext
from mcplatform.oauth.pkce import S256
from mcplatform.oauth.queries import get_client_registration, get_oauth_config, get_server_by_slug
from mcplatform.oauth.results import DirectError, HandlerResult, Redirect, RedirectError
from mcplatform.oauth.upstream import UpstreamOAuthClient
from mcplatform.schemas import AuthorizationRequest, check_absolute_url, describe_validation_error
from mcplatform.utils import ROW_ID_LENGTH, TOKEN_LENGTH, gen_id, nanoid

logger = get_logger(__name__)


def _fallback_redirect_uri(query) -> str | None:
    """The raw redirect_uri, if it is at least an absolute URL."""
    raw = query.get("redirect_uri")
    if not raw:
        return None
    try:
        return check_absolute_url(raw)
    except ValueError:
        return None


async def handle_authorize(ctx: RequestContext, session: AsyncSession) -> HandlerResult:
    if not ctx.host:
        return DirectError(400, "invalid_request", "Host header not found")

    try:
        params = AuthorizationRequest.model_validate(dict(ctx.query))
    except ValidationError as e:
        description = describe_validation_error(e)
        logger.info(f"Rejected authorization request: {description}")
        redirect_uri = _fallback_redirect_uri(ctx.query)
        if redirect_uri:
            return RedirectError(
                redirect_uri, "invalid_request", description, ctx.query.get("state")
            )
        return DirectError(400, "invalid_request", description)

    def fail(error: str, description: str) -> RedirectError:
        return RedirectError(params.redirect_uri, error, description, params.state)

    slug = ctx.subdomain
    if not slug:
        return fail("invalid_request", "Invalid host; subdomain not found")

    server = await get_server_by_slug(session, slug)
    if not server:
        return fail("invalid_request", "MCP server not found")
    if not server.uses_custom_oauth:
        return fail("invalid_request", "Custom OAuth not configured for this server")

    registration = await get_client_registration(session, server.id, params.client_id)
    if not registration:
        logger.info(f"Unknown client {params.client_id} for server {slug}")
        return fail("invalid_client", "Client not registered")

    if params.redirect_uri not in registration.redirect_uri_list:
        logger.warning(
            f"Redirect URI {params.redirect_uri!r} not registered for client {registration.client_id}"
        )
        return DirectError(400, "invalid_request", "Redirect URI not registered")

    config = await get_oauth_config(session, server.custom_oauth_config_id)
    if not config:
        logger.error(f"OAuth config {server.custom_oauth_config_id} missing for server {slug}")
        return fail("server_error", "OAuth configuration not found")

    code_challenge_method = None
    if params.code_challenge:
        code_challenge_method = params.code_challenge_method or S256

    scope = params.scope or config.scopes or proxy_settings.default_scope
    state = nanoid(TOKEN_LENGTH)
    now = now_ms()
    auth_session = McpAuthorizationSession(
        id=gen_id("mas_", ROW_ID_LENGTH),
        mcp_client_registration_id=registration.id,
        custom_oauth_config_id=config.id,
        state=state,
        client_state=params.state,
        redirect_uri=params.redirect_uri,
        scope=scope,
        code_challenge=params.code_challenge,
        code_challenge_method=code_challenge_method,
        created_at=now,
        expires_at=now + proxy_settings.session_ttl_seconds * 1000,
    )
    session.add(auth_session)
    await session.flush()

    upstream = UpstreamOAuthClient.from_config(config, with_secret=False)
    location = upstream.get_authorization_url(ctx.callback_url, state, scope)
    logger.info(
        f"Authorization session {auth_session.id} started for client "
        f"{registration.client_id} (state {mask_secret(state)})"
    )
    return Redirect(location)
