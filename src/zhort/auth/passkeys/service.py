"""Passkey (WebAuthn) business logic - challenge lifecycle, verification, credential management."""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import timedelta
from typing import Any

from webauthn.helpers.exceptions import WebAuthnException

from zhort.audit.log import SecurityEventLog
from zhort.audit.models import SecurityEventKind
from zhort.auth.errors import (
    ChallengeNotFound,
    CredentialNotRecognized,
    Forbidden,
    PasskeyNotFound,
    PossibleCloneDetected,
    SignatureInvalid,
    UserNotFound,
)
from zhort.auth.gate import Action, Principal, Resource
from zhort.auth.guard import RequestGuard
from zhort.auth.ids import is_key_id, new_challenge, new_flow_id, new_key_id
from zhort.auth.models import PasskeyCredential, PendingChallenge, User, utcnow
from zhort.auth.passkeys.webauthn import (
    base64url_to_bytes,
    bytes_to_base64url,
    credential_id_from_json,
    make_authentication_options,
    make_registration_options,
    verify_authentication,
    verify_registration,
)
from zhort.auth.sessions import IssuedSession, SessionManager
from zhort.auth.store import ChallengeStore, CredentialStore, UserStore, normalize_email
from zhort.config import Settings

logger = logging.getLogger(__name__)

KIND_AUTHENTICATE = "authenticate"
KIND_REGISTER = "register"


class PasskeyAuthenticator:
    """Issues challenges, verifies passkey responses and hands out sessions.

    Every pending challenge is consumed by the first verification attempt that
    names it, whatever the outcome. Every failed verification is recorded as an
    ``auth_failure`` security event carrying the specific error code.
    """

    def __init__(
        self,
        *,
        users: UserStore,
        credentials: CredentialStore,
        challenges: ChallengeStore,
        sessions: SessionManager,
        events: SecurityEventLog,
        settings: Settings,
    ) -> None:
        self._users = users
        self._credentials = credentials
        self._challenges = challenges
        self._sessions = sessions
        self._events = events
        self._settings = settings

    # -----------------------------------------------------------------------
    # Challenge helpers
    # -----------------------------------------------------------------------

    async def _issue_challenge(
        self,
        *,
        kind: str,
        user_id: str | None,
        subject: str | None,
        allowed: list[str] | None,
    ) -> tuple[PendingChallenge, bytes]:
        challenge_bytes = new_challenge()
        now = utcnow()
        flow = PendingChallenge(
            id=new_flow_id(),
            challenge=bytes_to_base64url(challenge_bytes),
            kind=kind,
            user_id=user_id,
            subject=subject,
            allowed_credential_ids=allowed,
            rp_id=self._settings.effective_rp_id(),
            origin=self._settings.effective_origin(),
            created_at=now,
            expires_at=now + timedelta(seconds=self._settings.webauthn_ttl_seconds),
        )
        await self._challenges.put(flow)
        return flow, challenge_bytes

    async def _take_challenge(
        self, flow_id: str, kind: str, user_id: str | None = None
    ) -> PendingChallenge:
        """Consume the flow; missing, expired, wrong kind and wrong owner all look the same."""
        flow = await self._challenges.take(flow_id)
        if flow is None or flow.kind != kind or flow.is_expired():
            raise ChallengeNotFound("Unknown or expired challenge")
        if user_id is not None and flow.user_id != user_id:
            raise ChallengeNotFound("Unknown or expired challenge")
        return flow

    def _decoy_credential_ids(self, subject: str) -> list[str]:
        """Stable stand-in credential ids for emails with no usable passkey."""
        digest = hmac.new(
            self._settings.effective_signing_key().encode("utf-8"),
            b"decoy-credential:" + subject.encode("utf-8"),
            hashlib.sha256,
        ).digest()
        return [bytes_to_base64url(digest)]

    # -----------------------------------------------------------------------
    # Authentication
    # -----------------------------------------------------------------------

    async def start_authentication(self, email: str | None = None) -> tuple[str, dict[str, Any]]:
        """Begin passkey login - return (flow_id, options).

        Without an email this is a discoverable-credential flow. Unknown emails
        and accounts without passkeys receive a challenge of the same shape,
        bound to decoy credential ids, unless concealment is switched off.
        """
        subject = normalize_email(email) if email else None
        user_id: str | None = None
        allowed: list[str] | None = None

        if subject is not None:
            user = await self._users.get_by_email(subject)
            # Unknown emails still pay for a credential lookup.
            creds = await self._credentials.list_for_user(user.id if user is not None else "")
            if user is None and not self._settings.conceal_unknown_users:
                await self._events.append(
                    SecurityEventKind.AUTH_FAILURE,
                    subject,
                    reason=UserNotFound.code,
                    stage="start",
                )
                raise UserNotFound("User not found")
            if user is not None and creds:
                user_id = user.id
                allowed = [c.credential_id for c in creds]
            else:
                allowed = self._decoy_credential_ids(subject)

        flow, challenge_bytes = await self._issue_challenge(
            kind=KIND_AUTHENTICATE, user_id=user_id, subject=subject, allowed=allowed
        )
        options = make_authentication_options(
            rp_id=flow.rp_id,
            challenge=challenge_bytes,
            settings=self._settings,
            allow_credentials=allowed,
        )
        return flow.id, options

    async def verify_authentication(
        self,
        flow_id: str,
        credential_json: dict[str, Any],
        **context: Any,
    ) -> IssuedSession:
        """Complete passkey login - verify assertion, advance counter, issue a session."""
        attempt: dict[str, Any] = {"subject": None, "key_id": None}
        try:
            issued, stored = await self._verify_assertion(flow_id, credential_json, attempt)
        except Exception as exc:
            await self._events.append(
                SecurityEventKind.AUTH_FAILURE,
                attempt["subject"],
                reason=getattr(exc, "code", "INTERNAL_ERROR"),
                key_id=attempt["key_id"],
                **context,
            )
            raise

        await self._events.append(
            SecurityEventKind.AUTH_SUCCESS,
            issued.session.user_id,
            key_id=stored.id,
            session_id=issued.session.id,
            credential_flagged=stored.flagged_at is not None,
            **context,
        )
        return issued

    async def _verify_assertion(
        self,
        flow_id: str,
        credential_json: dict[str, Any],
        attempt: dict[str, Any],
    ) -> tuple[IssuedSession, PasskeyCredential]:
        flow = await self._take_challenge(flow_id, KIND_AUTHENTICATE)
        attempt["subject"] = flow.subject

        credential_id = credential_id_from_json(credential_json)
        if credential_id is None:
            raise CredentialNotRecognized("Assertion carries no credential id")
        if flow.allowed_credential_ids is not None and (
            credential_id not in flow.allowed_credential_ids
        ):
            raise CredentialNotRecognized("Credential not allowed for this challenge")
        stored = await self._credentials.get_by_credential_id(credential_id)
        if stored is None or (flow.user_id is not None and stored.user_id != flow.user_id):
            raise CredentialNotRecognized("Unknown credential")
        attempt["key_id"] = stored.id
        attempt["subject"] = attempt["subject"] or stored.user_id

        try:
            _, presented_count = verify_authentication(
                credential_json=credential_json,
                expected_challenge=base64url_to_bytes(flow.challenge),
                expected_rp_id=flow.rp_id,
                expected_origin=flow.origin,
                credential_public_key=stored.public_key,
                settings=self._settings,
            )
        except WebAuthnException as exc:
            raise SignatureInvalid(str(exc)) from None

        now = utcnow()
        stored_count = stored.sign_count
        if stored_count > 0 and presented_count <= stored_count:
            await self._credentials.flag(stored.id, now)
            await self._events.append(
                SecurityEventKind.CREDENTIAL_FLAGGED,
                stored.user_id,
                key_id=stored.id,
                stored_count=stored_count,
                presented_count=presented_count,
            )
            logger.warning("passkey %s presented a non-increasing signature counter", stored.id)
            raise PossibleCloneDetected("Signature counter did not increase")
        if not await self._credentials.compare_and_set_counter(
            stored.id, stored_count, presented_count, now
        ):
            raise PossibleCloneDetected("Signature counter changed concurrently")

        if (user := await self._users.get_by_id(stored.user_id)) is None:
            raise UserNotFound("Credential owner no longer exists")
        issued = await self._sessions.issue(user.id)
        return issued, stored

    # -----------------------------------------------------------------------
    # Registration (authenticated - adds a passkey to an existing account)
    # -----------------------------------------------------------------------

    async def start_registration(self, user: User) -> tuple[str, dict[str, Any]]:
        existing = await self._credentials.list_for_user(user.id)
        flow, challenge_bytes = await self._issue_challenge(
            kind=KIND_REGISTER, user_id=user.id, subject=user.email, allowed=None
        )
        options = make_registration_options(
            rp_id=flow.rp_id,
            rp_name=self._settings.rp_name,
            user_id=user.id.encode("utf-8"),
            user_name=user.email,
            user_display_name=user.email,
            challenge=challenge_bytes,
            settings=self._settings,
            exclude_credentials=[c.credential_id for c in existing],
        )
        return flow.id, options

    async def finish_registration(
        self,
        flow_id: str,
        credential_json: dict[str, Any],
        user: User,
        device_name: str | None = None,
        **context: Any,
    ) -> PasskeyCredential:
        try:
            cred = await self._register(flow_id, credential_json, user, device_name)
        except Exception as exc:
            await self._events.append(
                SecurityEventKind.AUTH_FAILURE,
                user.id,
                reason=getattr(exc, "code", "INTERNAL_ERROR"),
                stage="register",
                **context,
            )
            raise
        await self._events.append(
            SecurityEventKind.PASSKEY_REGISTERED,
            user.id,
            key_id=cred.id,
            device_type=cred.device_type,
            **context,
        )
        return cred

    async def _register(
        self,
        flow_id: str,
        credential_json: dict[str, Any],
        user: User,
        device_name: str | None,
    ) -> PasskeyCredential:
        flow = await self._take_challenge(flow_id, KIND_REGISTER, user_id=user.id)
        try:
            verified = verify_registration(
                credential_json=credential_json,
                expected_challenge=base64url_to_bytes(flow.challenge),
                expected_rp_id=flow.rp_id,
                expected_origin=flow.origin,
                settings=self._settings,
            )
        except WebAuthnException as exc:
            raise SignatureInvalid(str(exc)) from None

        credential_id = bytes_to_base64url(verified.credential_id)
        if await self._credentials.get_by_credential_id(credential_id) is not None:
            raise CredentialNotRecognized("Credential already registered")

        label = (device_name or "").strip() or "Unknown Device"
        now = utcnow()
        return await self._credentials.insert(
            PasskeyCredential(
                id=new_key_id(),
                user_id=user.id,
                credential_id=credential_id,
                public_key=verified.public_key,
                sign_count=verified.sign_count,
                device_name=label[:255],
                device_type=verified.device_type,
                transports=verified.transports,
                created_at=now,
            )
        )

    # -----------------------------------------------------------------------
    # List & delete
    # -----------------------------------------------------------------------

    async def list_credentials(self, user_id: str) -> list[PasskeyCredential]:
        """Most recently used first; never-used credentials last, newest first."""
        return await self._credentials.list_for_user(user_id)

    async def remove_passkey(self, principal: Principal, key_id: str, guard: RequestGuard) -> None:
        """Delete a passkey owned by *principal* (or any passkey, for a superadmin).

        Someone else's passkey is reported as not found once the denial is logged.
        """
        if not is_key_id(key_id) or (cred := await self._credentials.get_by_id(key_id)) is None:
            raise PasskeyNotFound("Passkey not found")
        try:
            await guard.authorize(
                principal, Action.PASSKEY_DELETE, Resource("passkey", cred.id, cred.user_id)
            )
        except Forbidden:
            raise PasskeyNotFound("Passkey not found") from None
        await self._credentials.delete(cred.id)
        await self._events.append(
            SecurityEventKind.PASSKEY_REMOVED,
            principal.user_id,
            key_id=cred.id,
            owner_id=cred.user_id,
        )

    # -----------------------------------------------------------------------
    # Cleanup
    # -----------------------------------------------------------------------

    async def prune_expired_challenges(self) -> int:
        """Delete expired pending challenges. Returns count deleted."""
        return await self._challenges.prune_expired(utcnow())
