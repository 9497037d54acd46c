"""Organization-scoped end-user deduplication.

A McpServerUser belongs to an organization when it has an MCP session
against one of the organization's servers, or holds an upstream token
issued under one of the organization's OAuth configs. Lookups match on
e-mail (case-insensitive) or upstream ``sub`` inside that set only, so the
same person signing in to two organizations gets two rows.
"""

import json
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mcplatform.logging_config import get_logger
from mcplatform.models import (
    CustomOAuthConfig,
    McpServer,
    McpServerSession,
    McpServerUser,
    UpstreamOAuthToken,
    now_ms,
)
from mcplatform.utils import ROW_ID_LENGTH, gen_id

logger = get_logger(__name__)


def normalize_email(email: Any) -> Optional[str]:
    if not isinstance(email, str):
        return None
    email = email.strip().lower()
    return email or None


def _subject(profile: Optional[dict]) -> Optional[str]:
    if not profile:
        return None
    sub = profile.get("sub")
    if sub is None or sub == "":
        return None
    return str(sub)


async def find_organization_user(
    session: AsyncSession,
    organization_id: str,
    email: Optional[str],
    upstream_sub: Optional[str],
) -> Optional[McpServerUser]:
    """Oldest user of *organization_id* matching *email* or *upstream_sub*."""
    matchers = []
    if email:
        matchers.append(func.lower(McpServerUser.email) == email)
    if upstream_sub:
        matchers.append(McpServerUser.upstream_sub == upstream_sub)
    if not matchers:
        return None

    via_sessions = (
        select(McpServerSession.mcp_server_user_id)
        .join(McpServer, McpServer.slug == McpServerSession.mcp_server_slug)
        .where(
            McpServer.organization_id == organization_id,
            McpServerSession.mcp_server_user_id.is_not(None),
        )
    )
    via_tokens = (
        select(UpstreamOAuthToken.mcp_server_user_id)
        .join(CustomOAuthConfig, CustomOAuthConfig.id == UpstreamOAuthToken.oauth_config_id)
        .where(CustomOAuthConfig.organization_id == organization_id)
    )

    result = await session.execute(
        select(McpServerUser)
        .where(
            or_(*matchers),
            or_(
                McpServerUser.id.in_(via_sessions),
                McpServerUser.id.in_(via_tokens),
            ),
        )
        .order_by(McpServerUser.first_seen_at, McpServerUser.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_user(
    session: AsyncSession,
    organization_id: str,
    profile: Optional[dict],
) -> McpServerUser:
    """Find or create the McpServerUser for an upstream *profile*.

    An existing match has its e-mail, subject and profile refreshed with
    whatever the provider returned this time. Without any profile data a
    new anonymous user is created.
    """
    email = normalize_email(profile.get("email")) if profile else None
    upstream_sub = _subject(profile)
    now = now_ms()

    user = await find_organization_user(session, organization_id, email, upstream_sub)
    if user:
        if email:
            user.email = email
        if upstream_sub:
            user.upstream_sub = upstream_sub
        if profile:
            user.profile_data = json.dumps(profile)
        user.updated_at = now
        logger.info(f"Matched existing user {user.id} in organization {organization_id}")
        return user

    user = McpServerUser(
        id=gen_id("mcpu_", ROW_ID_LENGTH),
        email=email,
        upstream_sub=upstream_sub,
        profile_data=json.dumps(profile) if profile else None,
        first_seen_at=now,
        updated_at=now,
    )
    session.add(user)
    await session.flush()
    logger.info(f"Created user {user.id} in organization {organization_id}")
    return user
