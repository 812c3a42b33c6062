"""Auth SQLAlchemy models."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, Index, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from zhort.auth.ids import new_key_id, new_session_id, new_user_id
from zhort.db.base import Base


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------


class User(Base):
    __tablename__ = "zhort_users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_user_id)
    # Stored lower-cased; lookups are case-insensitive.
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ---------------------------------------------------------------------------
# PasskeyCredential  (many-to-one with User)
# ---------------------------------------------------------------------------


class PasskeyCredential(Base):
    __tablename__ = "zhort_passkey_credentials"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_key_id)
    user_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    credential_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)  # base64url
    public_key: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)  # COSE_Key
    sign_count: Mapped[int] = mapped_column(nullable=False, default=0)
    device_name: Mapped[str] = mapped_column(String(255), nullable=False, default="Unknown Device")
    device_type: Mapped[str] = mapped_column(String(20), nullable=False, default="platform")
    transports: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Set when a non-increasing signature counter was seen.
    flagged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# PendingChallenge  (ceremony state, consumed exactly once)
# ---------------------------------------------------------------------------


class PendingChallenge(Base):
    __tablename__ = "zhort_pending_challenges"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    challenge: Mapped[str] = mapped_column(Text, nullable=False)  # base64url-encoded
    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # "authenticate" | "register"
    user_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    subject: Mapped[str | None] = mapped_column(String(320), nullable=True)
    # None means any registered credential (discoverable flow).
    allowed_credential_ids: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    rp_id: Mapped[str] = mapped_column(String(255), nullable=False)
    origin: Mapped[str] = mapped_column(String(512), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_zhort_pending_challenges_expires_at", "expires_at"),)

    def is_expired(self, now: datetime | None = None) -> bool:
        return as_utc(self.expires_at) <= (now or utcnow())


# ---------------------------------------------------------------------------
# AuthSession
# ---------------------------------------------------------------------------


class AuthSession(Base):
    __tablename__ = "zhort_sessions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_session_id)
    user_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def is_expired(self, now: datetime | None = None) -> bool:
        return as_utc(self.expires_at) <= (now or utcnow())
