"""PKCE and state helpers shared by every provider."""

from __future__ import annotations

import base64
import hashlib
import secrets


CODE_VERIFIER_MIN_LENGTH = 43
CODE_VERIFIER_MAX_LENGTH = 128


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def generate_code_verifier(length: int = 64) -> str:
    """Return a random verifier of ``length`` url-safe characters (43-128)."""
    if not CODE_VERIFIER_MIN_LENGTH <= length <= CODE_VERIFIER_MAX_LENGTH:
        raise ValueError(
            f"code verifier length must be between {CODE_VERIFIER_MIN_LENGTH} "
            f"and {CODE_VERIFIER_MAX_LENGTH}"
        )
    return _b64url(secrets.token_bytes(length))[:length]


def generate_code_challenge(code_verifier: str) -> str:
    """S256 challenge: base64url(sha256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _b64url(digest)


def generate_state() -> str:
    return secrets.token_urlsafe(32)
