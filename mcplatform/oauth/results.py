"""Handler outcomes.

Every proxy handler returns exactly one of these values and the router
renders it once. Errors found before a trusted redirect target is known
are ``DirectError``; after that they are ``RedirectError``.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from fastapi.responses import JSONResponse, RedirectResponse, Response

from mcplatform.utils import append_query


@dataclass(frozen=True)
class DirectError:
    """An OAuth error returned to the caller as an HTTP status."""

    status_code: int
    error: str
    description: str
    headers: dict[str, str] = field(default_factory=dict)

    def to_body(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}


@dataclass(frozen=True)
class RedirectError:
    """An OAuth error delivered by redirecting to the client's redirect_uri."""

    redirect_uri: str
    error: str
    description: str
    state: Optional[str] = None

    @property
    def location(self) -> str:
        return append_query(
            self.redirect_uri,
            {
                "error": self.error,
                "error_description": self.description,
                "state": self.state,
            },
        )


@dataclass(frozen=True)
class Redirect:
    """A successful redirect."""

    location: str


@dataclass(frozen=True)
class JsonResult:
    status_code: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)


HandlerResult = Union[DirectError, RedirectError, Redirect, JsonResult]


def render(result: HandlerResult, extra_headers: Optional[dict[str, str]] = None) -> Response:
    """Turn a handler outcome into a Starlette response."""
    headers = dict(extra_headers or {})
    if isinstance(result, (Redirect, RedirectError)):
        return RedirectResponse(result.location, status_code=302, headers=headers)
    if isinstance(result, DirectError):
        headers.update(result.headers)
        return JSONResponse(result.to_body(), status_code=result.status_code, headers=headers)
    if isinstance(result, JsonResult):
        headers.update(result.headers)
        return JSONResponse(result.body, status_code=result.status_code, headers=headers)
    raise TypeError(f"Unknown handler result: {result!r}")
