"""POST /oauth/token: exchange proxy codes and refresh tokens for proxy tokens.

Supports the authorization_code grant (single-use ``mcp_code_`` codes,
optional PKCE) and the refresh_token grant with rotation. Client
credentials come from HTTP Basic or the request body.
"""

import base64
import binascii
import hmac
import json
from typing import Optional
from urllib.parse import parse_qsl

from pydantic import ValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mcplatform.config import proxy_settings
from mcplatform.crypto import mask_secret
from mcplatform.logging_config import get_logger
from mcplatform.models import (
    McpAuthorizationCode,
    McpAuthorizationSession,
    McpClientRegistration,
    McpProxyToken,
    now_ms,
)
from mcplatform.oauth.context import RequestContext
from mcplatform.oauth.pkce import S256, verify_code_verifier
from mcplatform.oauth.results import DirectError, HandlerResult, JsonResult
from mcplatform.oauth.registration import NO_STORE_HEADERS
from mcplatform.schemas import TokenRequest, describe_validation_error
from mcplatform.utils import ROW_ID_LENGTH, TOKEN_LENGTH, gen_id, nanoid

logger = get_logger(__name__)

SUPPORTED_GRANT_TYPES = ("authorization_code", "refresh_token")


class BadTokenRequest(Exception):
    def __init__(self, description: str):
        super().__init__(description)
        self.description = description


def _error(status_code: int, error: str, description: str) -> DirectError:
    headers = dict(NO_STORE_HEADERS)
    if status_code == 401:
        headers["WWW-Authenticate"] = 'Basic realm="oauth"'
    return DirectError(status_code, error, description, headers)


def parse_body(ctx: RequestContext) -> dict:
    """Form or JSON request body as a flat dict."""
    content_type = (ctx.content_type or "").lower()
    try:
        if "application/x-www-form-urlencoded" in content_type:
            return dict(parse_qsl(ctx.body.decode("utf-8"), keep_blank_values=True))
        if "application/json" in content_type:
            data = json.loads(ctx.body or b"")
            if not isinstance(data, dict):
                raise BadTokenRequest("Invalid request body")
            return data
    except ValueError:
        raise BadTokenRequest("Invalid request body")
    raise BadTokenRequest("Unsupported content type")


def basic_credentials(authorization: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    if not authorization or not authorization.startswith("Basic "):
        return None, None
    try:
        decoded = base64.b64decode(authorization[len("Basic "):].strip()).decode("utf-8")
    except (binascii.Error, ValueError):
        return None, None
    client_id, _, client_secret = decoded.partition(":")
    return client_id or None, client_secret or None


async def _authenticate(
    session: AsyncSession,
    registration_id: str,
    client_id: str,
    client_secret: str,
) -> Optional[McpClientRegistration]:
    registration = await session.get(McpClientRegistration, registration_id)
    if not registration or registration.client_id != client_id:
        return None
    if not hmac.compare_digest(
        registration.client_secret.encode("utf-8"), client_secret.encode("utf-8")
    ):
        return None
    return registration


async def issue_proxy_tokens(
    session: AsyncSession,
    registration_id: str,
    upstream_token_id: str,
    scope: str,
) -> dict:
    """Persist a fresh access/refresh pair and return the RFC 6749 response body."""
    now = now_ms()
    access_token = f"mcp_at_{nanoid(TOKEN_LENGTH)}"
    refresh_token = f"mcp_rt_{nanoid(TOKEN_LENGTH)}"
    expires_in = proxy_settings.access_token_ttl_seconds
    session.add(
        McpProxyToken(
            id=gen_id("mpt_", ROW_ID_LENGTH),
            mcp_client_registration_id=registration_id,
            upstream_token_id=upstream_token_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=now + expires_in * 1000,
            created_at=now,
        )
    )
    await session.flush()
    return {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": expires_in,
        "refresh_token": refresh_token,
        "scope": scope,
    }


async def _authorization_code_grant(session: AsyncSession, request: TokenRequest) -> HandlerResult:
    if not request.code or not request.client_id or not request.client_secret:
        return _error(400, "invalid_request", "Missing required parameters for authorization_code grant")

    result = await session.execute(
        select(McpAuthorizationCode).where(
            McpAuthorizationCode.code == request.code,
            McpAuthorizationCode.used.is_(False),
        )
    )
    auth_code = result.scalar_one_or_none()
    if not auth_code:
        return _error(400, "invalid_grant", "Invalid or expired authorization code")
    if auth_code.expires_at < now_ms():
        return _error(400, "invalid_grant", "Authorization code has expired")

    registration = await _authenticate(
        session, auth_code.mcp_client_registration_id, request.client_id, request.client_secret
    )
    if not registration:
        return _error(401, "invalid_client", "Invalid client credentials")

    auth_session = await session.get(McpAuthorizationSession, auth_code.authorization_session_id)
    if auth_session is None:
        return _error(400, "invalid_grant", "Authorization session not found")
    if request.redirect_uri is not None and request.redirect_uri != auth_session.redirect_uri:
        return _error(400, "invalid_grant", "redirect_uri does not match the authorization request")
    if auth_session.code_challenge:
        if not request.code_verifier:
            return _error(400, "invalid_grant", "code_verifier is required")
        if not verify_code_verifier(
            request.code_verifier,
            auth_session.code_challenge,
            auth_session.code_challenge_method or S256,
        ):
            return _error(400, "invalid_grant", "Invalid code_verifier")

    marked = await session.execute(
        update(McpAuthorizationCode)
        .where(McpAuthorizationCode.id == auth_code.id, McpAuthorizationCode.used.is_(False))
        .values(used=True)
        .execution_options(synchronize_session=False)
    )
    if marked.rowcount != 1:
        return _error(400, "invalid_grant", "Invalid or expired authorization code")

    body = await issue_proxy_tokens(
        session, registration.id, auth_code.upstream_token_id, auth_session.scope
    )
    logger.info(f"Exchanged code {mask_secret(request.code)} for client {registration.client_id}")
    return JsonResult(200, body, dict(NO_STORE_HEADERS))


async def _refresh_token_grant(session: AsyncSession, request: TokenRequest) -> HandlerResult:
    if not request.refresh_token or not request.client_id or not request.client_secret:
        return _error(400, "invalid_request", "Missing required parameters for refresh_token grant")

    result = await session.execute(
        select(McpProxyToken).where(McpProxyToken.refresh_token == request.refresh_token)
    )
    proxy_token = result.scalar_one_or_none()
    if not proxy_token:
        return _error(400, "invalid_grant", "Invalid refresh token")

    registration = await _authenticate(
        session, proxy_token.mcp_client_registration_id, request.client_id, request.client_secret
    )
    if not registration:
        return _error(401, "invalid_client", "Invalid client credentials")

    upstream_token_id = proxy_token.upstream_token_id
    await session.execute(delete(McpProxyToken).where(McpProxyToken.id == proxy_token.id))

    scope = registration.metadata_dict.get("scope") or proxy_settings.default_scope
    body = await issue_proxy_tokens(session, registration.id, upstream_token_id, scope)
    logger.info(f"Rotated refresh token for client {registration.client_id}")
    return JsonResult(200, body, dict(NO_STORE_HEADERS))


async def handle_token(ctx: RequestContext, session: AsyncSession) -> HandlerResult:
    try:
        data = parse_body(ctx)
    except BadTokenRequest as e:
        return _error(400, "invalid_request", e.description)

    basic_id, basic_secret = basic_credentials(ctx.authorization)
    data["client_id"] = data.get("client_id") or basic_id
    data["client_secret"] = data.get("client_secret") or basic_secret

    grant_type = data.get("grant_type")
    if not grant_type:
        return _error(400, "invalid_request", "grant_type is required")
    if grant_type not in SUPPORTED_GRANT_TYPES:
        return _error(400, "unsupported_grant_type", "Grant type not supported")

    try:
        request = TokenRequest.model_validate(data)
    except ValidationError as e:
        return _error(400, "invalid_request", describe_validation_error(e))

    if request.grant_type == "authorization_code":
        return await _authorization_code_grant(session, request)
    return await _refresh_token_grant(session, request)
