"""Symmetric encryption for upstream credentials at rest.

Encryption scheme: AES-256-GCM
  - 256-bit key from SECRET_ENCRYPTION_KEY env var (or ephemeral)
  - Random 96-bit nonce per encryption operation
  - 128-bit authentication tag (GCM default)
  - Stored format: base64( nonce[12] + ciphertext + tag[16] )

Encrypted values:
  custom_oauth_configs.client_secret
  upstream_oauth_tokens.access_token / refresh_token

Usage:
    from mcplatform.crypto import encrypt_secret, decrypt_secret, mask_secret

    ct  = encrypt_secret("upstream-client-secret")
    pt  = decrypt_secret(ct)
    preview = mask_secret("mcp_secret_abcdef123456")  # "mcp_sec...3456"
"""

import base64
import os
import secrets as _secrets
import warnings
from functools import lru_cache

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_KEY_ENV_VAR = "SECRET_ENCRYPTION_KEY"
_NONCE_BYTES = 12
_TAG_BYTES = 16


@lru_cache(maxsize=1)
def _get_key() -> bytes:
    """Return the 32-byte AES key.

    Reads SECRET_ENCRYPTION_KEY (hex-encoded) from the environment. Without
    it an ephemeral key is generated, so values encrypted by one process
    cannot be read after a restart.
    """
    raw = os.environ.get(_KEY_ENV_VAR, "").strip()
    if raw:
        key_bytes = bytes.fromhex(raw)
        if len(key_bytes) != 32:
            raise ValueError(
                f"{_KEY_ENV_VAR} must be a 64-character hex string (32 bytes). "
                'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"'
            )
        return key_bytes

    warnings.warn(
        f"{_KEY_ENV_VAR} is not set; upstream credentials are encrypted with an "
        "ephemeral key and will not be readable after restart.",
        stacklevel=3,
    )
    return _secrets.token_bytes(32)


def encrypt_secret(plaintext: str) -> str:
    """Encrypt *plaintext* and return a base64-encoded token."""
    aesgcm = AESGCM(_get_key())
    nonce = _secrets.token_bytes(_NONCE_BYTES)
    ct_with_tag = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + ct_with_tag).decode("ascii")


def decrypt_secret(token: str) -> str:
    """Decrypt a token produced by :func:`encrypt_secret`.

    Raises :class:`ValueError` if the token is malformed or authentication fails.
    """
    try:
        blob = base64.b64decode(token.encode("ascii"), validate=True)
    except Exception as exc:
        raise ValueError(f"Invalid secret token (base64 decode failed): {exc}") from exc

    if len(blob) < _NONCE_BYTES + _TAG_BYTES:
        raise ValueError("Invalid secret token (too short)")

    nonce = blob[:_NONCE_BYTES]
    ct_with_tag = blob[_NONCE_BYTES:]

    aesgcm = AESGCM(_get_key())
    try:
        plaintext_bytes = aesgcm.decrypt(nonce, ct_with_tag, None)
    except Exception as exc:
        raise ValueError(
            "Secret decryption failed: the data may have been tampered with "
            "or the encryption key has changed."
        ) from exc

    return plaintext_bytes.decode("utf-8")


def mask_secret(plaintext: str) -> str:
    """Return a short masked preview of *plaintext* for logs.

    Examples:
      "mcp_code_Abc123Def456Ghi789"  ->  "mcp_code...i789"
      "short"                        ->  "***"
    """
    if not plaintext or len(plaintext) < 8:
        return "***"
    visible_start = min(8, len(plaintext) // 3)
    visible_end = min(4, len(plaintext) // 4)
    return f"{plaintext[:visible_start]}...{plaintext[-visible_end:]}"
