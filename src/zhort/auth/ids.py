"""Prefixed base32 ID generators and validators.

Scheme
------
* Generate 20 random bytes from the OS CSPRNG -> base32-encode (lowercase, no padding).
* Replace the first character with a prefix:
  - 'u' for user IDs
  - 'k' for internal credential (key) IDs
  - 's' for session IDs

Flow references and challenge nonces are separate, longer URL-safe tokens.
"""

from __future__ import annotations

import base64
import secrets

_ID_LEN = 32
_ALLOWED_CHARS = frozenset("abcdefghijklmnopqrstuvwxyz234567")

# 32 bytes of nonce; well above the 16 byte floor for WebAuthn challenges.
CHALLENGE_BYTES = 32


def random_base32(nbytes: int = 20) -> str:
    """Return a lowercase base32 string (no padding) from *nbytes* random bytes.

    *nbytes* must be a multiple of 5 to avoid RFC 4648 padding.
    """
    if nbytes <= 0 or nbytes % 5 != 0:
        raise ValueError("nbytes must be a positive multiple of 5")
    return base64.b32encode(secrets.token_bytes(nbytes)).decode("ascii").lower()


def _prefixed(prefix: str) -> str:
    return prefix + random_base32()[1:]


def new_user_id() -> str:
    return _prefixed("u")


def new_key_id() -> str:
    return _prefixed("k")


def new_session_id() -> str:
    return _prefixed("s")


def new_flow_id() -> str:
    """Opaque reference correlating a challenge with its verification call."""
    return secrets.token_urlsafe(32)


def new_challenge() -> bytes:
    return secrets.token_bytes(CHALLENGE_BYTES)


def _is_prefixed(value: str, prefix: str) -> bool:
    return (
        len(value) == _ID_LEN
        and value[:1] == prefix
        and all(c in _ALLOWED_CHARS for c in value[1:])
    )


def is_user_id(value: str) -> bool:
    return _is_prefixed(value, "u")


def is_key_id(value: str) -> bool:
    return _is_prefixed(value, "k")


def is_session_id(value: str) -> bool:
    return _is_prefixed(value, "s")
