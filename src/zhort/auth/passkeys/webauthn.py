"""Thin wrapper around py_webauthn for option construction and verification."""

from __future__ import annotations

import json
from base64 import urlsafe_b64decode, urlsafe_b64encode
from dataclasses import dataclass
from typing import Any

from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import (
    parse_authentication_credential_json,
    parse_registration_credential_json,
)
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.exceptions import InvalidRegistrationResponse
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AttestationFormat,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from zhort.config import Settings

SUPPORTED_ALGORITHMS = [
    COSEAlgorithmIdentifier.ECDSA_SHA_256,
    COSEAlgorithmIdentifier.EDDSA,
    COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,
]

# Identical on every allowed credential, decoys included.
_ALLOW_TRANSPORTS = [AuthenticatorTransport.INTERNAL, AuthenticatorTransport.HYBRID]


def _uv(settings: Settings) -> UserVerificationRequirement:
    """Map setting string to webauthn enum value."""
    return UserVerificationRequirement(settings.user_verification)


def _require_uv(settings: Settings) -> bool:
    return _uv(settings) == UserVerificationRequirement.REQUIRED


def bytes_to_base64url(b: bytes) -> str:
    return urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def base64url_to_bytes(s: str) -> bytes:
    padding = 4 - len(s) % 4
    if padding != 4:
        s += "=" * padding
    return urlsafe_b64decode(s)


def credential_id_from_json(credential_json: dict[str, Any]) -> str | None:
    """Return the canonical base64url credential id a response claims, if any."""
    raw = credential_json.get("rawId") or credential_json.get("id")
    if not isinstance(raw, str) or not raw:
        return None
    try:
        return bytes_to_base64url(base64url_to_bytes(raw))
    except ValueError:
        return None


def make_authentication_options(
    *,
    rp_id: str,
    challenge: bytes,
    settings: Settings,
    allow_credentials: list[str] | None = None,
) -> dict[str, Any]:
    """Build PublicKeyCredentialRequestOptions and return as JSON-safe dict."""
    opts = generate_authentication_options(
        rp_id=rp_id,
        challenge=challenge,
        timeout=settings.webauthn_ttl_seconds * 1000,
        user_verification=_uv(settings),
        allow_credentials=[
            PublicKeyCredentialDescriptor(
                id=base64url_to_bytes(cid), transports=list(_ALLOW_TRANSPORTS)
            )
            for cid in allow_credentials or []
        ],
    )
    result: dict[str, Any] = json.loads(options_to_json(opts))
    result.setdefault("allowCredentials", [])
    return result


def make_registration_options(
    *,
    rp_id: str,
    rp_name: str,
    user_id: bytes,
    user_name: str,
    user_display_name: str,
    challenge: bytes,
    settings: Settings,
    exclude_credentials: list[str] | None = None,
) -> dict[str, Any]:
    """Build PublicKeyCredentialCreationOptions and return as JSON-safe dict."""
    opts = generate_registration_options(
        rp_id=rp_id,
        rp_name=rp_name,
        user_id=user_id,
        user_name=user_name,
        user_display_name=user_display_name,
        challenge=challenge,
        timeout=settings.webauthn_ttl_seconds * 1000,
        attestation=AttestationConveyancePreference.NONE,
        authenticator_selection=AuthenticatorSelectionCriteria(
            resident_key=ResidentKeyRequirement.PREFERRED,
            user_verification=_uv(settings),
        ),
        exclude_credentials=[
            PublicKeyCredentialDescriptor(id=base64url_to_bytes(cid))
            for cid in exclude_credentials or []
        ],
        supported_pub_key_algs=SUPPORTED_ALGORITHMS,
    )
    result: dict[str, Any] = json.loads(options_to_json(opts))
    result.setdefault("excludeCredentials", [])
    return result


@dataclass(frozen=True)
class RegisteredCredential:
    credential_id: bytes
    public_key: bytes
    sign_count: int
    transports: list[str] | None
    device_type: str


def verify_registration(
    *,
    credential_json: dict[str, Any],
    expected_challenge: bytes,
    expected_rp_id: str,
    expected_origin: str,
    settings: Settings,
) -> RegisteredCredential:
    """Verify a registration response.

    Raises ``webauthn.helpers.exceptions.WebAuthnException`` subclasses on failure.
    """
    cred = parse_registration_credential_json(json.dumps(credential_json))
    verified = verify_registration_response(
        credential=cred,
        expected_challenge=expected_challenge,
        expected_rp_id=expected_rp_id,
        expected_origin=expected_origin,
        require_user_verification=_require_uv(settings),
        supported_pub_key_algs=SUPPORTED_ALGORITHMS,
    )
    if verified.fmt != AttestationFormat.NONE:
        raise InvalidRegistrationResponse("Only none attestation is accepted")
    transports = cred.response.transports
    return RegisteredCredential(
        credential_id=verified.credential_id,
        public_key=verified.credential_public_key,
        sign_count=verified.sign_count,
        transports=[t.value for t in transports] if transports is not None else None,
        device_type=(
            "platform"
            if cred.authenticator_attachment == AuthenticatorAttachment.PLATFORM
            else "cross-platform"
        ),
    )


def verify_authentication(
    *,
    credential_json: dict[str, Any],
    expected_challenge: bytes,
    expected_rp_id: str,
    expected_origin: str,
    credential_public_key: bytes,
    settings: Settings,
) -> tuple[bytes, int]:
    """Verify an authentication response.

    Returns ``(credential_id, new_sign_count)``. The counter is reported, not
    judged: clone detection needs the stored value read in the same update.
    """
    cred = parse_authentication_credential_json(json.dumps(credential_json))
    verified = verify_authentication_response(
        credential=cred,
        expected_challenge=expected_challenge,
        expected_rp_id=expected_rp_id,
        expected_origin=expected_origin,
        credential_public_key=credential_public_key,
        credential_current_sign_count=0,
        require_user_verification=_require_uv(settings),
    )
    return verified.credential_id, verified.new_sign_count
