"""Common test fixtures and helpers."""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
import subprocess
import sys
from datetime import datetime

import cbor2
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from sqlalchemy.orm import Session

from zhort.audit.log import BestEffortWriter, SecurityEventLog
from zhort.auth.ids import new_key_id, new_user_id
from zhort.auth.models import (
    AuthSession,
    PasskeyCredential,
    PendingChallenge,
    User,
    utcnow,
)
from zhort.auth.passkeys.service import PasskeyAuthenticator
from zhort.auth.passkeys.webauthn import bytes_to_base64url
from zhort.auth.sessions import SessionManager
from zhort.auth.store import normalize_email
from zhort.config import Settings
from zhort.db.engine import create_engine_from_url

RP_ID = "localhost"
ORIGIN = "http://localhost:3000"
SIGNING_KEY = "test-signing-key-0123456789abcdefghijklmnop"
ADMIN_EMAIL = "admin@example.com"


def run_cli(*args: str, env_override: dict[str, str] | None = None) -> subprocess.CompletedProcess:
    """Run the CLI via ``python -m zhort``."""
    env = os.environ.copy()
    if env_override:
        env.update(env_override)
    return subprocess.run(
        [sys.executable, "-m", "zhort", *args],
        capture_output=True,
        text=True,
        env=env,
    )


# ---------------------------------------------------------------------------
# Software passkey
# ---------------------------------------------------------------------------


class SoftwareAuthenticator:
    """A P-256 passkey that produces real WebAuthn responses."""

    def __init__(self, *, rp_id: str = RP_ID, origin: str = ORIGIN, sign_count: int = 0) -> None:
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.credential_id = os.urandom(32)
        self.rp_id = rp_id
        self.origin = origin
        self.sign_count = sign_count

    @property
    def credential_id_b64(self) -> str:
        return bytes_to_base64url(self.credential_id)

    def cose_public_key(self) -> bytes:
        numbers = self.private_key.public_key().public_numbers()
        return cbor2.dumps(
            {
                1: 2,
                3: -7,
                -1: 1,
                -2: numbers.x.to_bytes(32, "big"),
                -3: numbers.y.to_bytes(32, "big"),
            }
        )

    def _client_data(self, kind: str, challenge: str, origin: str | None) -> bytes:
        return json.dumps(
            {
                "type": kind,
                "challenge": challenge,
                "origin": origin or self.origin,
                "crossOrigin": False,
            }
        ).encode()

    def _auth_data(self, flags: int, counter: int, rp_id: str | None) -> bytes:
        rp_hash = hashlib.sha256((rp_id or self.rp_id).encode()).digest()
        return rp_hash + bytes([flags]) + counter.to_bytes(4, "big")

    def get_assertion(
        self,
        challenge: str,
        *,
        counter: int | None = None,
        origin: str | None = None,
        rp_id: str | None = None,
        user_verified: bool = True,
    ) -> dict:
        """Sign *challenge* (base64url). Without *counter* the internal counter is bumped."""
        if counter is None:
            self.sign_count += 1
            counter = self.sign_count
        client_data = self._client_data("webauthn.get", challenge, origin)
        auth_data = self._auth_data(0x01 | (0x04 if user_verified else 0), counter, rp_id)
        signature = self.private_key.sign(
            auth_data + hashlib.sha256(client_data).digest(), ec.ECDSA(hashes.SHA256())
        )
        return {
            "id": self.credential_id_b64,
            "rawId": self.credential_id_b64,
            "type": "public-key",
            "response": {
                "clientDataJSON": bytes_to_base64url(client_data),
                "authenticatorData": bytes_to_base64url(auth_data),
                "signature": bytes_to_base64url(signature),
                "userHandle": None,
            },
        }

    def create(
        self,
        challenge: str,
        *,
        origin: str | None = None,
        attachment: str = "platform",
        fmt: str = "none",
        self_attest: bool = False,
    ) -> dict:
        """Answer a registration challenge, with ``none`` attestation by default."""
        client_data = self._client_data("webauthn.create", challenge, origin)
        auth_data = (
            self._auth_data(0x01 | 0x04 | 0x40, self.sign_count, None)
            + bytes(16)
            + len(self.credential_id).to_bytes(2, "big")
            + self.credential_id
            + self.cose_public_key()
        )
        att_stmt: dict = {}
        if self_attest:
            signed = auth_data + hashlib.sha256(client_data).digest()
            att_stmt = {"alg": -7, "sig": self.private_key.sign(signed, ec.ECDSA(hashes.SHA256()))}
        attestation = cbor2.dumps({"fmt": fmt, "attStmt": att_stmt, "authData": auth_data})
        return {
            "id": self.credential_id_b64,
            "rawId": self.credential_id_b64,
            "type": "public-key",
            "response": {
                "clientDataJSON": bytes_to_base64url(client_data),
                "attestationObject": bytes_to_base64url(attestation),
                "transports": ["internal"],
            },
            "authenticatorAttachment": attachment,
        }


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------


class MemoryUserStore:
    def __init__(self) -> None:
        self.items: dict[str, User] = {}

    def add(self, email: str) -> User:
        user = User(
            id=new_user_id(), email=normalize_email(email), role="user", created_at=utcnow()
        )
        self.items[user.id] = user
        return user

    async def get_by_id(self, user_id: str) -> User | None:
        return self.items.get(user_id)

    async def get_by_email(self, email: str) -> User | None:
        wanted = normalize_email(email)
        return next((u for u in self.items.values() if u.email == wanted), None)

    async def list_all(self) -> list[User]:
        return list(self.items.values())

    async def delete(self, user_id: str) -> None:
        self.items.pop(user_id, None)


class MemoryCredentialStore:
    def __init__(self) -> None:
        self.items: dict[str, PasskeyCredential] = {}

    def add(self, user: User, authenticator: SoftwareAuthenticator, sign_count: int = 0):
        cred = PasskeyCredential(
            id=new_key_id(),
            user_id=user.id,
            credential_id=authenticator.credential_id_b64,
            public_key=authenticator.cose_public_key(),
            sign_count=sign_count,
            device_name="Test Device",
            device_type="platform",
            created_at=utcnow(),
            last_used_at=None,
            flagged_at=None,
        )
        self.items[cred.id] = cred
        return cred

    async def get_by_id(self, key_id: str) -> PasskeyCredential | None:
        return self.items.get(key_id)

    async def get_by_credential_id(self, credential_id: str) -> PasskeyCredential | None:
        return next((c for c in self.items.values() if c.credential_id == credential_id), None)

    async def list_for_user(self, user_id: str) -> list[PasskeyCredential]:
        return [c for c in self.items.values() if c.user_id == user_id]

    async def insert(self, credential: PasskeyCredential) -> PasskeyCredential:
        self.items[credential.id] = credential
        return credential

    async def compare_and_set_counter(
        self, key_id: str, expected: int, new: int, used_at: datetime
    ) -> bool:
        cred = self.items.get(key_id)
        if cred is None or cred.sign_count != expected:
            return False
        cred.sign_count = new
        cred.last_used_at = used_at
        return True

    async def flag(self, key_id: str, at: datetime) -> None:
        cred = self.items[key_id]
        if cred.flagged_at is None:
            cred.flagged_at = at

    async def delete(self, key_id: str) -> None:
        self.items.pop(key_id, None)

    async def delete_for_user(self, user_id: str) -> None:
        for key_id in [k for k, c in self.items.items() if c.user_id == user_id]:
            del self.items[key_id]


class MemoryChallengeStore:
    def __init__(self) -> None:
        self.items: dict[str, PendingChallenge] = {}

    async def put(self, challenge: PendingChallenge) -> None:
        self.items[challenge.id] = challenge

    async def take(self, flow_id: str) -> PendingChallenge | None:
        # Yield first so concurrent callers really interleave.
        await asyncio.sleep(0)
        return self.items.pop(flow_id, None)

    async def prune_expired(self, now: datetime) -> int:
        expired = [k for k, c in self.items.items() if c.is_expired(now)]
        for k in expired:
            del self.items[k]
        return len(expired)


class MemorySessionStore:
    def __init__(self) -> None:
        self.items: dict[str, AuthSession] = {}

    async def insert(self, session: AuthSession) -> AuthSession:
        self.items[session.id] = session
        return session

    async def get(self, session_id: str) -> AuthSession | None:
        return self.items.get(session_id)

    async def delete(self, session_id: str) -> None:
        self.items.pop(session_id, None)

    async def delete_for_user(self, user_id: str) -> int:
        doomed = [k for k, s in self.items.items() if s.user_id == user_id]
        for k in doomed:
            del self.items[k]
        return len(doomed)


class RecordingSink:
    def __init__(self) -> None:
        self.records: list[dict] = []

    async def write(self, record: dict) -> None:
        self.records.append(record)

    def kinds(self) -> list[str]:
        return [r["kind"] for r in self.records]

    def of_kind(self, kind: str) -> list[dict]:
        return [r for r in self.records if r["kind"] == kind]


class FailingSink:
    async def write(self, record: dict) -> None:
        raise RuntimeError("sink is down")


class MemoryCore:
    """The auth core wired to in-memory stores."""

    def __init__(self, settings: Settings, *, failing_events: bool = False) -> None:
        self.settings = settings
        self.users = MemoryUserStore()
        self.credentials = MemoryCredentialStore()
        self.challenges = MemoryChallengeStore()
        self.session_store = MemorySessionStore()
        self.sink = RecordingSink()
        sinks = [FailingSink()] if failing_events else [self.sink]
        self.events = SecurityEventLog(BestEffortWriter(sinks, channel="security-event"))
        self.sessions = SessionManager(self.session_store, settings)
        self.authenticator = PasskeyAuthenticator(
            users=self.users,
            credentials=self.credentials,
            challenges=self.challenges,
            sessions=self.sessions,
            events=self.events,
            settings=settings,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def core_settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        env="development",
        session_signing_key=SIGNING_KEY,
        rp_id=RP_ID,
        origin=ORIGIN,
        super_admins=ADMIN_EMAIL,
    )


@pytest.fixture()
def core(core_settings) -> MemoryCore:
    return MemoryCore(core_settings)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    db_path = tmp_path / "zhort_test.db"
    return Settings(
        database_url=f"sqlite:///{db_path}",
        env="development",
        session_signing_key=SIGNING_KEY,
        rp_id=RP_ID,
        origin=ORIGIN,
        super_admins=ADMIN_EMAIL,
    )


@pytest.fixture()
def sync_db(settings):
    """A synchronous session on the test database, for seeding and assertions."""
    engine = create_engine_from_url(settings.database_url)
    import zhort.audit.models  # noqa: F401
    import zhort.links.models  # noqa: F401
    from zhort.db.base import Base

    Base.metadata.create_all(engine)
    with Session(engine, expire_on_commit=False) as session:
        yield session
    engine.dispose()


def seed_user(db: Session, email: str) -> User:
    user = User(email=normalize_email(email))
    db.add(user)
    db.commit()
    return user


def seed_passkey(
    db: Session, user: User, authenticator: SoftwareAuthenticator, sign_count: int = 0
) -> PasskeyCredential:
    cred = PasskeyCredential(
        user_id=user.id,
        credential_id=authenticator.credential_id_b64,
        public_key=authenticator.cose_public_key(),
        sign_count=sign_count,
        device_name="Test Device",
    )
    db.add(cred)
    db.commit()
    return cred


@pytest.fixture()
def app(settings):
    from zhort.app import create_app

    return create_app(settings)


@pytest.fixture()
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as c:
        yield c


def http_login(client, passkey: SoftwareAuthenticator, email: str | None = None) -> str:
    """Run the login ceremony over HTTP and return the session token."""
    start = client.post("/auth/passkey/login/start", json={"email": email})
    assert start.status_code == 200, start.text
    body = start.json()
    finish = client.post(
        "/auth/passkey/login/finish",
        json={
            "flow_id": body["flow_id"],
            "credential": passkey.get_assertion(body["options"]["challenge"]),
        },
    )
    assert finish.status_code == 200, finish.text
    return finish.json()["session_token"]


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
