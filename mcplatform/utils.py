"""Shared utility functions."""
import secrets
import string
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

# 62-character alphanumeric alphabet for opaque identifiers
ID_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase

# Random-part lengths for row ids and for bearer values (states, codes, tokens)
ROW_ID_LENGTH = 16
TOKEN_LENGTH = 32


def nanoid(length: int = 8) -> str:
    """Generate a random alphanumeric string from a CSPRNG."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def gen_id(prefix: str = "", length: int = 8) -> str:
    """Generate a short prefixed ID, e.g. ``mas_Xy12AbC9``."""
    return f"{prefix}{nanoid(length)}"


def append_query(url: str, params: dict) -> str:
    """Return *url* with *params* merged into its query string.

    Existing parameters are kept unless overridden; ``None`` values are skipped.
    """
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update({k: v for k, v in params.items() if v is not None})
    return urlunsplit(
        (parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment)
    )
