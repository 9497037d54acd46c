"""SQLAlchemy ORM models for the MCPlatform OAuth proxy."""

from mcplatform.models.base import Base, now_ms
from mcplatform.models.tenancy import (
    AUTH_TYPES,
    AUTH_TYPE_COLLECT_EMAIL,
    AUTH_TYPE_CUSTOM_OAUTH,
    AUTH_TYPE_NONE,
    AUTH_TYPE_PLATFORM_OAUTH,
    CustomOAuthConfig,
    McpServer,
    McpServerSession,
    McpServerUser,
)
from mcplatform.models.oauth import (
    McpAuthorizationCode,
    McpAuthorizationSession,
    McpClientRegistration,
    McpProxyToken,
    UpstreamOAuthToken,
)

__all__ = [
    "Base",
    "now_ms",
    "AUTH_TYPES",
    "AUTH_TYPE_COLLECT_EMAIL",
    "AUTH_TYPE_CUSTOM_OAUTH",
    "AUTH_TYPE_NONE",
    "AUTH_TYPE_PLATFORM_OAUTH",
    "CustomOAuthConfig",
    "McpServer",
    "McpServerSession",
    "McpServerUser",
    "McpAuthorizationCode",
    "McpAuthorizationSession",
    "McpClientRegistration",
    "McpProxyToken",
    "UpstreamOAuthToken",
]
