"""MCP-server-scoped OAuth 2.0 authorization proxy.

Each handler takes a RequestContext and an AsyncSession and returns a
HandlerResult; the routers render it.
"""

from mcplatform.oauth.authorize import handle_authorize
from mcplatform.oauth.callback import handle_callback
from mcplatform.oauth.context import RequestContext
from mcplatform.oauth.metadata import (
    handle_authorization_server_metadata,
    handle_protected_resource_metadata,
    jwks,
)
from mcplatform.oauth.registration import handle_register
from mcplatform.oauth.results import (
    DirectError,
    HandlerResult,
    JsonResult,
    Redirect,
    RedirectError,
    render,
)
from mcplatform.oauth.token import handle_token
from mcplatform.oauth.userinfo import handle_userinfo

__all__ = [
    "RequestContext",
    "DirectError",
    "HandlerResult",
    "JsonResult",
    "Redirect",
    "RedirectError",
    "render",
    "handle_authorize",
    "handle_callback",
    "handle_register",
    "handle_token",
    "handle_userinfo",
    "handle_authorization_server_metadata",
    "handle_protected_resource_metadata",
    "jwks",
]
