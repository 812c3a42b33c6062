"""Authentication and authorisation error taxonomy.

Authentication failures all derive from :class:`AuthenticationFailed`. Routers
collapse them into one generic denial so callers cannot tell which step failed;
the specific ``code`` is kept for security-event metadata.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. ``code`` is a stable identifier safe to log."""

    code = "AUTH_ERROR"


class AuthenticationFailed(AuthError):
    code = "AUTHENTICATION_FAILED"


class UserNotFound(AuthenticationFailed):
    code = "USER_NOT_FOUND"


class ChallengeNotFound(AuthenticationFailed):
    """Challenge missing, expired, already consumed or of the wrong kind."""

    code = "CHALLENGE_NOT_FOUND"


class CredentialNotRecognized(AuthenticationFailed):
    code = "CREDENTIAL_NOT_RECOGNIZED"


class SignatureInvalid(AuthenticationFailed):
    """Assertion or attestation failed verification (signature, origin, RP, nonce)."""

    code = "SIGNATURE_INVALID"


class PossibleCloneDetected(AuthenticationFailed):
    code = "POSSIBLE_CLONE_DETECTED"


class Unauthenticated(AuthError):
    code = "UNAUTHENTICATED"


class Forbidden(AuthError):
    code = "FORBIDDEN"


class StoreUnavailable(AuthError):
    """Transient failure of the credential or session store."""

    code = "STORE_UNAVAILABLE"


class PasskeyNotFound(AuthError):
    code = "PASSKEY_NOT_FOUND"


GENERIC_AUTH_FAILURE = "Authentication failed"
