"""Tenant-side models: MCP servers, their upstream OAuth configs, end users.

Four tables:
  custom_oauth_configs: upstream provider settings owned by an organization
  mcp_servers: one row per tenant-exposed MCP server (subdomain = slug)
  mcp_server_user: deduplicated end-user identities
  mcp_server_session: MCP connections, linking users to servers
"""

import json
from typing import Any, Optional

from sqlalchemy import (
    BigInteger,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from mcplatform.models.base import Base

AUTH_TYPE_NONE = "none"
AUTH_TYPE_PLATFORM_OAUTH = "platform_oauth"
AUTH_TYPE_CUSTOM_OAUTH = "custom_oauth"
AUTH_TYPE_COLLECT_EMAIL = "collect_email"

AUTH_TYPES = (
    AUTH_TYPE_NONE,
    AUTH_TYPE_PLATFORM_OAUTH,
    AUTH_TYPE_CUSTOM_OAUTH,
    AUTH_TYPE_COLLECT_EMAIL,
)


class CustomOAuthConfig(Base):
    """Upstream OAuth2/OIDC provider settings for an organization.

    ``client_secret`` is AES-GCM ciphertext produced by
    ``mcplatform.crypto.encrypt_secret``. Either ``token_url`` is set or it
    is discovered from the document at ``metadata_url``.
    """

    __tablename__ = "custom_oauth_configs"
    __table_args__ = (
        Index("custom_oauth_configs_organization_id_idx", "organization_id"),
        UniqueConstraint(
            "organization_id", "name", name="custom_oauth_configs_org_name_unique"
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    authorization_url: Mapped[str] = mapped_column(Text, nullable=False)
    token_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    client_id: Mapped[str] = mapped_column(Text, nullable=False)
    client_secret: Mapped[str] = mapped_column(Text, nullable=False)
    scopes: Mapped[Optional[str]] = mapped_column(
        String(512), nullable=True, default="openid profile email"
    )
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)


class McpServer(Base):
    """A tenant-exposed MCP server, addressed by subdomain ``slug``.

    auth_type is one of AUTH_TYPES. Only ``custom_oauth`` servers with a
    ``custom_oauth_config_id`` are served by the OAuth proxy.
    """

    __tablename__ = "mcp_servers"
    __table_args__ = (Index("mcp_server_slug_idx", "slug"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    slug: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    auth_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default=AUTH_TYPE_NONE
    )
    custom_oauth_config_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("custom_oauth_configs.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    @property
    def uses_custom_oauth(self) -> bool:
        return (
            self.auth_type == AUTH_TYPE_CUSTOM_OAUTH
            and self.custom_oauth_config_id is not None
        )


class McpServerUser(Base):
    """A deduplicated end user, scoped to an organization through its
    sessions and upstream tokens."""

    __tablename__ = "mcp_server_user"
    __table_args__ = (
        Index("mcp_server_user_email_idx", "email"),
        Index("mcp_server_user_upstream_sub_idx", "upstream_sub"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # Anonymous tracking id assigned by the MCP server runtime
    tracking_id: Mapped[Optional[str]] = mapped_column(
        "distinct_id", String(128), nullable=True, unique=True
    )
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    upstream_sub: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    # JSON object: last userinfo document received from the upstream provider
    profile_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    first_seen_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    @property
    def profile(self) -> Optional[dict[str, Any]]:
        if not self.profile_data:
            return None
        return json.loads(self.profile_data)


class McpServerSession(Base):
    """An MCP connection to a server. Written by the MCP runtime."""

    __tablename__ = "mcp_server_session"
    __table_args__ = (
        Index("mcp_server_session_user_id_idx", "mcp_server_user_id"),
        Index("mcp_server_session_mcp_server_slug_idx", "mcp_server_slug"),
    )

    mcp_server_session_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    mcp_server_slug: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("mcp_servers.slug", ondelete="CASCADE"),
        nullable=False,
    )
    mcp_server_user_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("mcp_server_user.id", ondelete="CASCADE"),
        nullable=True,
    )
    connection_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
