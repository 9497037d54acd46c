"""OAuth proxy state.

Five tables:
  mcp_client_registrations: RFC 7591 credentials issued to MCP clients
  mcp_authorization_sessions: in-flight authorize -> callback round trips
  upstream_oauth_tokens: tokens obtained from the upstream provider
  mcp_authorization_codes: single-use codes issued back to MCP clients
  mcp_proxy_tokens: access/refresh tokens held by MCP clients
"""

import json
from typing import Any, Optional

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mcplatform.models.base import Base


class McpClientRegistration(Base):
    """Proxy-issued client credentials for one MCP client of one server.

    Never mutated after creation; the secret does not expire.
    """

    __tablename__ = "mcp_client_registrations"
    __table_args__ = (
        Index("mcp_client_registrations_mcp_server_id_idx", "mcp_server_id"),
        Index("mcp_client_registrations_client_id_idx", "client_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    mcp_server_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("mcp_servers.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    client_secret: Mapped[str] = mapped_column(String(128), nullable=False)
    # JSON array of absolute URIs, compared by exact string match
    redirect_uris: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    # JSON object of RFC 7591 metadata with defaults filled in
    client_metadata: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    @property
    def redirect_uri_list(self) -> list[str]:
        return json.loads(self.redirect_uris or "[]")

    @property
    def metadata_dict(self) -> dict[str, Any]:
        return json.loads(self.client_metadata or "{}")


class McpAuthorizationSession(Base):
    """Correlates an upstream callback with the MCP client's original request.

    ``state`` is the correlation key sent upstream; ``client_state`` is the
    MCP client's own opaque state, echoed back verbatim. Rows are kept after
    a successful callback and expire on their own.
    """

    __tablename__ = "mcp_authorization_sessions"
    __table_args__ = (
        Index("mcp_authorization_sessions_state_idx", "state"),
        Index("mcp_authorization_sessions_expires_at_idx", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    mcp_client_registration_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("mcp_client_registrations.id", ondelete="CASCADE"),
        nullable=False,
    )
    custom_oauth_config_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("custom_oauth_configs.id", ondelete="CASCADE"),
        nullable=False,
    )
    state: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    client_state: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    redirect_uri: Mapped[str] = mapped_column(Text, nullable=False)
    scope: Mapped[str] = mapped_column(Text, nullable=False)
    # PKCE (S256 only); NULL when the client did not send a challenge
    code_challenge: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    code_challenge_method: Mapped[Optional[str]] = mapped_column(
        String(16), nullable=True
    )
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)


class UpstreamOAuthToken(Base):
    """Token set obtained from the upstream provider.

    ``access_token`` and ``refresh_token`` are AES-GCM ciphertext. A NULL
    ``expires_at`` means the upstream token does not expire.
    """

    __tablename__ = "upstream_oauth_tokens"
    __table_args__ = (
        Index("upstream_oauth_tokens_mcp_server_user_id_idx", "mcp_server_user_id"),
        Index("upstream_oauth_tokens_oauth_config_id_idx", "oauth_config_id"),
        Index("upstream_oauth_tokens_expires_at_idx", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    mcp_server_user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("mcp_server_user.id", ondelete="CASCADE"),
        nullable=False,
    )
    oauth_config_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("custom_oauth_configs.id", ondelete="CASCADE"),
        nullable=False,
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)


class McpAuthorizationCode(Base):
    """Single-use ``mcp_code_`` authorization code issued to an MCP client."""

    __tablename__ = "mcp_authorization_codes"
    __table_args__ = (
        Index("mcp_authorization_codes_code_idx", "code"),
        Index("mcp_authorization_codes_expires_at_idx", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    mcp_client_registration_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("mcp_client_registrations.id", ondelete="CASCADE"),
        nullable=False,
    )
    authorization_session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("mcp_authorization_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    upstream_token_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("upstream_oauth_tokens.id", ondelete="CASCADE"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)


class McpProxyToken(Base):
    """The credential an MCP client ultimately holds (``mcp_at_`` / ``mcp_rt_``)."""

    __tablename__ = "mcp_proxy_tokens"
    __table_args__ = (
        Index("mcp_proxy_tokens_access_token_idx", "access_token"),
        Index("mcp_proxy_tokens_refresh_token_idx", "refresh_token"),
        Index("mcp_proxy_tokens_expires_at_idx", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    mcp_client_registration_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("mcp_client_registrations.id", ondelete="CASCADE"),
        nullable=False,
    )
    upstream_token_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("upstream_oauth_tokens.id", ondelete="CASCADE"),
        nullable=False,
    )
    access_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    refresh_token: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True, unique=True
    )
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
