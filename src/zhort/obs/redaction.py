"""Redaction utilities – strip secrets from log and security-event payloads."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

# Header names that must never appear in logs.
_SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
    }
)

# Metadata keys whose values are always masked.
_SENSITIVE_KEYS = frozenset(
    {
        "session_token",
        "token",
        "signature",
        "authorization",
        "cookie",
        "public_key",
        "challenge",
    }
)

# Patterns matched in values.
_SECRET_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"eyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]+"),  # JWT-like
]


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return a copy of *headers* with sensitive entries masked."""
    out: dict[str, str] = {}
    for k, v in headers.items():
        if k.lower() in _SENSITIVE_HEADERS:
            out[k] = "[REDACTED]"
        else:
            out[k] = v
    return out


def redact_value(value: str) -> str:
    """Replace known secret patterns in *value* with ``[REDACTED]``."""
    result = value
    for pat in _SECRET_PATTERNS:
        result = pat.sub("[REDACTED]", result)
    return result


def redact_mapping(data: Mapping[str, Any]) -> dict[str, Any]:
    """Mask sensitive keys and secret-looking strings, recursing into nested mappings."""
    out: dict[str, Any] = {}
    for k, v in data.items():
        if k.lower() in _SENSITIVE_KEYS:
            out[k] = "[REDACTED]"
        elif isinstance(v, Mapping):
            out[k] = redact_mapping(v)
        elif isinstance(v, str):
            out[k] = redact_value(v)
        else:
            out[k] = v
    return out
