"""PKCE (RFC 7636) verification. Only the S256 method is supported."""

import base64
import hashlib
import hmac

S256 = "S256"


def compute_s256_challenge(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_verifier(code_verifier: str, code_challenge: str, method: str = S256) -> bool:
    """Check *code_verifier* against the stored challenge in constant time."""
    if method != S256:
        return False
    if not 43 <= len(code_verifier) <= 128:
        return False
    try:
        expected = compute_s256_challenge(code_verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected.encode("ascii"), code_challenge.encode("utf-8"))
