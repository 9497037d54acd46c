"""Explicit request input for the OAuth proxy handlers.

Handlers never touch the Starlette request; the router builds a
RequestContext and passes it in, which keeps the handlers testable with
plain values.
"""

from dataclasses import dataclass, field
from typing import Mapping, Optional

from fastapi import Request

from mcplatform.config import proxy_settings


def _hostname(host: str) -> str:
    # strip an optional :port
    return host.rsplit(":", 1)[0] if ":" in host else host


def is_localhost(host: str) -> bool:
    return "localhost" in host or _hostname(host) == "127.0.0.1"


def public_scheme_for(host: str) -> str:
    """Scheme used when building absolute URLs on *host*."""
    if proxy_settings.public_scheme:
        return proxy_settings.public_scheme
    return "http" if is_localhost(host) else "https"


def extract_subdomain(host: Optional[str]) -> Optional[str]:
    """Return the leading label of *host*, or None if it has no subdomain.

    ``slug.localhost[:port]`` needs two labels, anything else needs at least
    three (``slug.domain.tld``).
    """
    if not host:
        return None
    parts = _hostname(host.strip()).split(".")
    minimum = 2 if is_localhost(host) else 3
    if len(parts) < minimum or not parts[0]:
        return None
    return parts[0].lower()


@dataclass(frozen=True)
class RequestContext:
    """Everything a handler may read from the incoming request."""

    host: Optional[str]
    scheme: str = "https"
    query: Mapping[str, str] = field(default_factory=dict)
    authorization: Optional[str] = None
    content_type: Optional[str] = None
    body: bytes = b""

    @classmethod
    def build(
        cls,
        host: Optional[str],
        query: Optional[Mapping[str, str]] = None,
        authorization: Optional[str] = None,
        content_type: Optional[str] = None,
        body: bytes = b"",
    ) -> "RequestContext":
        scheme = public_scheme_for(host) if host else "https"
        return cls(
            host=host,
            scheme=scheme,
            query=dict(query or {}),
            authorization=authorization,
            content_type=content_type,
            body=body,
        )

    @classmethod
    async def from_request(cls, request: Request, read_body: bool = False) -> "RequestContext":
        body = await request.body() if read_body else b""
        return cls.build(
            host=request.headers.get("host"),
            query=dict(request.query_params),
            authorization=request.headers.get("authorization"),
            content_type=request.headers.get("content-type"),
            body=body,
        )

    @property
    def subdomain(self) -> Optional[str]:
        return extract_subdomain(self.host)

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.host}"

    @property
    def callback_url(self) -> str:
        return f"{self.origin}/oauth/callback"
