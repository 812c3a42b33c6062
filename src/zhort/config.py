"""Environment-driven configuration using pydantic-settings."""

from __future__ import annotations

import secrets
import warnings

from pydantic import PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration. All values can be overridden via env vars prefixed ``ZHORT_``."""

    model_config = SettingsConfigDict(
        env_prefix="ZHORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- environment ---
    env: str = "development"
    log_level: str = "INFO"

    # --- database ---
    database_url: str = "sqlite:///./zhort.db"

    # --- sessions ---
    session_signing_key: str = ""
    session_algorithm: str = "HS256"
    session_ttl_minutes: int = 60 * 24 * 7
    session_cookie_name: str = "zhort_session"

    # --- WebAuthn / Passkeys ---
    rp_id: str = ""
    rp_name: str = "Zhort"
    origin: str = ""
    webauthn_ttl_seconds: int = 60
    user_verification: str = "preferred"
    conceal_unknown_users: bool = True

    # --- admin ---
    # Comma-separated list, e.g. "alice@example.com,bob@example.com"
    super_admins: str = ""

    _ephemeral_signing_key: str | None = PrivateAttr(default=None)

    def superadmin_allowlist(self) -> frozenset[str]:
        """Return the lower-cased superadmin emails. Empty config means nobody is admin."""
        return frozenset(
            entry.strip().lower() for entry in self.super_admins.split(",") if entry.strip()
        )

    def effective_signing_key(self) -> str:
        """Return the session signing key, generating one ephemeral key per instance in dev."""
        if self.session_signing_key:
            return self.session_signing_key
        if self.env == "production":
            raise RuntimeError("ZHORT_SESSION_SIGNING_KEY must be set in production mode.")
        if self._ephemeral_signing_key is None:
            warnings.warn(
                "Using an ephemeral session signing key. "
                "Set ZHORT_SESSION_SIGNING_KEY for production.",
                UserWarning,
                stacklevel=2,
            )
            self._ephemeral_signing_key = secrets.token_urlsafe(32)
        return self._ephemeral_signing_key

    def effective_rp_id(self) -> str:
        """Return the WebAuthn relying party ID."""
        if self.rp_id:
            return self.rp_id
        if self.env == "production":
            raise RuntimeError("ZHORT_RP_ID must be set in production mode.")
        warnings.warn(
            "Using 'localhost' as WebAuthn RP ID. Set ZHORT_RP_ID for production.",
            UserWarning,
            stacklevel=2,
        )
        return "localhost"

    def effective_origin(self) -> str:
        """Return the expected WebAuthn origin."""
        if self.origin:
            return self.origin
        if self.env == "production":
            raise RuntimeError("ZHORT_ORIGIN must be set in production mode.")
        warnings.warn(
            "Using 'http://localhost:3000' as WebAuthn origin. Set ZHORT_ORIGIN for production.",
            UserWarning,
            stacklevel=2,
        )
        return "http://localhost:3000"
