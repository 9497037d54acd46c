from typing import Literal, Optional

from pydantic import AnyUrl, BaseModel, EmailStr, Field, TypeAdapter, ValidationError, field_validator

_URL_ADAPTER = TypeAdapter(AnyUrl)

TOKEN_AUTH_METHODS = ("client_secret_basic", "client_secret_post")


def check_absolute_url(value: str) -> str:
    """Reject anything that does not parse as an absolute URL.

    The original string is returned untouched so that later comparisons stay
    exact (no trailing-slash normalisation).
    """
    try:
        _URL_ADAPTER.validate_python(value)
    except ValidationError:
        raise ValueError(f"Invalid URL: {value!r}")
    return value


def describe_validation_error(exc: ValidationError) -> str:
    """First error of *exc* as ``field: message``."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    msg = first.get("msg", "Invalid value")
    return f"{loc}: {msg}" if loc else msg


class AuthorizationRequest(BaseModel):
    """RFC 6749 section 4.1.1 authorization request."""
    response_type: Literal["code"]
    client_id: str = Field(min_length=1)
    redirect_uri: str
    scope: Optional[str] = None
    state: Optional[str] = None
    code_challenge: Optional[str] = Field(default=None, min_length=43, max_length=128)
    code_challenge_method: Optional[Literal["S256"]] = None

    @field_validator("redirect_uri")
    @classmethod
    def validate_redirect_uri(cls, v: str) -> str:
        return check_absolute_url(v)


class ClientRegistrationRequest(BaseModel):
    """RFC 7591 client metadata accepted by ``POST /oauth/register``."""
    redirect_uris: list[str] = Field(min_length=1)
    client_name: Optional[str] = None
    token_endpoint_auth_method: Optional[Literal["client_secret_basic", "client_secret_post"]] = None
    grant_types: Optional[list[Literal["authorization_code", "refresh_token"]]] = None
    response_types: Optional[list[Literal["code"]]] = None
    scope: Optional[str] = None
    contacts: Optional[list[EmailStr]] = None
    logo_uri: Optional[str] = None
    client_uri: Optional[str] = None
    policy_uri: Optional[str] = None
    tos_uri: Optional[str] = None

    @field_validator("redirect_uris")
    @classmethod
    def validate_redirect_uris(cls, v: list[str]) -> list[str]:
        return [check_absolute_url(uri) for uri in v]

    @field_validator("logo_uri", "client_uri", "policy_uri", "tos_uri")
    @classmethod
    def validate_uris(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return check_absolute_url(v)


class TokenRequest(BaseModel):
    """RFC 6749 token request (authorization_code and refresh_token grants)."""
    grant_type: Literal["authorization_code", "refresh_token"]
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    code_verifier: Optional[str] = None
    refresh_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None

    @field_validator("redirect_uri")
    @classmethod
    def validate_redirect_uri(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return check_absolute_url(v)
