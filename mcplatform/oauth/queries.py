"""Lookups shared by the proxy handlers."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mcplatform.models import CustomOAuthConfig, McpClientRegistration, McpServer


async def get_server_by_slug(session: AsyncSession, slug: str) -> Optional[McpServer]:
    result = await session.execute(select(McpServer).where(McpServer.slug == slug))
    return result.scalar_one_or_none()


async def get_oauth_config(
    session: AsyncSession, config_id: Optional[str]
) -> Optional[CustomOAuthConfig]:
    if not config_id:
        return None
    return await session.get(CustomOAuthConfig, config_id)


async def get_client_registration(
    session: AsyncSession, mcp_server_id: str, client_id: str
) -> Optional[McpClientRegistration]:
    result = await session.execute(
        select(McpClientRegistration).where(
            McpClientRegistration.mcp_server_id == mcp_server_id,
            McpClientRegistration.client_id == client_id,
        )
    )
    return result.scalar_one_or_none()
