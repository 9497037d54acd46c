"""POST /oauth/register: RFC 7591 dynamic client registration."""

import json

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from mcplatform.config import proxy_settings
from mcplatform.logging_config import get_logger
from mcplatform.models import McpClientRegistration, now_ms
from mcplatform.oauth.context import RequestContext
from mcplatform.oauth.queries import get_server_by_slug
from mcplatform.oauth.results import DirectError, HandlerResult, JsonResult
from mcplatform.schemas import ClientRegistrationRequest, describe_validation_error
from mcplatform.utils import ROW_ID_LENGTH, TOKEN_LENGTH, gen_id, nanoid

logger = get_logger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def client_metadata(request: ClientRegistrationRequest) -> dict:
    """RFC 7591 metadata with the proxy's defaults filled in."""
    data = request.model_dump(mode="json", exclude={"redirect_uris"}, exclude_none=True)
    data.setdefault("token_endpoint_auth_method", "client_secret_basic")
    data.setdefault("grant_types", ["authorization_code"])
    data.setdefault("response_types", ["code"])
    data.setdefault("scope", proxy_settings.default_scope)
    return data


async def handle_register(ctx: RequestContext, session: AsyncSession) -> HandlerResult:
    if not ctx.host:
        return DirectError(400, "invalid_request", "Host header not found")

    try:
        payload = json.loads(ctx.body or b"")
    except ValueError:
        return DirectError(400, "invalid_request", "Invalid JSON in request body")

    try:
        request = ClientRegistrationRequest.model_validate(payload)
    except ValidationError as e:
        description = describe_validation_error(e)
        logger.info(f"Rejected client metadata: {description}")
        return DirectError(400, "invalid_client_metadata", description)

    slug = ctx.subdomain
    if not slug:
        return DirectError(400, "invalid_request", "Invalid host; subdomain not found")

    server = await get_server_by_slug(session, slug)
    if not server:
        return DirectError(404, "invalid_request", "MCP server not found")
    if not server.uses_custom_oauth:
        return DirectError(
            400,
            "invalid_request",
            "Dynamic client registration not supported for this server",
        )

    metadata = client_metadata(request)
    registration = McpClientRegistration(
        id=gen_id("mcr_", ROW_ID_LENGTH),
        mcp_server_id=server.id,
        client_id=gen_id("mcp_client_", ROW_ID_LENGTH),
        client_secret=f"mcp_secret_{nanoid(TOKEN_LENGTH)}",
        redirect_uris=json.dumps(request.redirect_uris),
        client_metadata=json.dumps(metadata),
        created_at=now_ms(),
    )
    session.add(registration)
    await session.flush()

    logger.info(
        f"Registered client {registration.client_id} for server {slug} "
        f"({len(request.redirect_uris)} redirect URIs)"
    )

    body = {
        "client_id": registration.client_id,
        "client_id_issued_at": registration.created_at // 1000,
        "client_secret": registration.client_secret,
        "client_secret_expires_at": 0,
        "redirect_uris": request.redirect_uris,
        **metadata,
    }
    return JsonResult(201, body, dict(NO_STORE_HEADERS))
