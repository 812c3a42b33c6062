"""Tests for the operator CLI."""

from __future__ import annotations

import json
from datetime import timedelta

from conftest import SoftwareAuthenticator, run_cli
from sqlalchemy.orm import Session

from zhort.auth.models import AuthSession, PasskeyCredential, PendingChallenge, User, utcnow
from zhort.cli import EXIT_BAD_ARGS, EXIT_CONFLICT, EXIT_DB_ERROR, EXIT_NOT_FOUND, EXIT_OK
from zhort.db.engine import create_engine_from_url


def _init_db(tmp_path) -> str:
    db_url = f"sqlite:///{tmp_path}/cli_test.db"
    result = run_cli("db", "init", "--db", db_url)
    assert result.returncode == EXIT_OK, result.stderr
    return db_url


def _seed(db_url: str, *rows) -> None:
    engine = create_engine_from_url(db_url)
    with Session(engine, expire_on_commit=False) as session:
        session.add_all(rows)
        session.commit()
    engine.dispose()


class TestCLIHelp:
    def test_help_returns_zero(self):
        result = run_cli("--help")
        assert result.returncode == 0
        assert "zhort" in result.stdout

    def test_no_command_is_bad_args(self):
        result = run_cli()
        assert result.returncode == EXIT_BAD_ARGS


class TestCLIDb:
    def test_ping_sqlite(self, tmp_path):
        result = run_cli("db", "ping", "--db", f"sqlite:///{tmp_path}/ping.db")
        assert result.returncode == EXIT_OK
        assert json.loads(result.stdout) == {"ok": True}

    def test_ping_unreachable(self, tmp_path):
        result = run_cli("db", "ping", "--db", f"sqlite:///{tmp_path}/missing/dir/x.db")
        assert result.returncode == EXIT_DB_ERROR
        assert "database unreachable" in result.stderr

    def test_init_creates_tables(self, tmp_path):
        result = run_cli("db", "init", "--db", f"sqlite:///{tmp_path}/init.db", "--pretty")
        assert result.returncode == EXIT_OK
        tables = json.loads(result.stdout)["tables"]
        assert "zhort_users" in tables
        assert "zhort_security_events" in tables
        assert "zhort_link_history" in tables

    def test_database_url_from_environment(self, tmp_path):
        db_url = f"sqlite:///{tmp_path}/env.db"
        result = run_cli("db", "ping", env_override={"ZHORT_DATABASE_URL": db_url})
        assert result.returncode == EXIT_OK


class TestCLIUsers:
    def test_create_and_list(self, tmp_path):
        db_url = _init_db(tmp_path)
        created = run_cli("users", "create", "--email", " Alice@Example.com ", "--db", db_url)
        assert created.returncode == EXIT_OK
        assert json.loads(created.stdout)["email"] == "alice@example.com"

        listed = run_cli("users", "list", "--db", db_url, "--format", "jsonl")
        assert listed.returncode == EXIT_OK
        lines = [json.loads(line) for line in listed.stdout.splitlines()]
        assert [u["email"] for u in lines] == ["alice@example.com"]

    def test_duplicate_email_conflicts(self, tmp_path):
        db_url = _init_db(tmp_path)
        first = run_cli("users", "create", "--email", "a@example.com", "--db", db_url)
        assert first.returncode == EXIT_OK
        dup = run_cli("users", "create", "--email", "A@example.com", "--db", db_url)
        assert dup.returncode == EXIT_CONFLICT

    def test_invalid_email(self, tmp_path):
        db_url = _init_db(tmp_path)
        result = run_cli("users", "create", "--email", "nope", "--db", db_url)
        assert result.returncode == EXIT_BAD_ARGS


class TestCLIPasskeys:
    def test_list_hides_key_material(self, tmp_path):
        db_url = _init_db(tmp_path)
        user = User(email="alice@example.com")
        passkey = SoftwareAuthenticator()
        _seed(db_url, user)
        _seed(
            db_url,
            PasskeyCredential(
                user_id=user.id,
                credential_id=passkey.credential_id_b64,
                public_key=passkey.cose_public_key(),
                device_name="Phone",
            ),
        )

        result = run_cli("passkeys", "list", "--email", "alice@example.com", "--db", db_url)
        assert result.returncode == EXIT_OK
        data = json.loads(result.stdout)
        assert len(data) == 1
        assert data[0]["device_name"] == "Phone"
        assert "public_key" not in data[0]
        assert "credential_id" not in data[0]

    def test_unknown_user(self, tmp_path):
        db_url = _init_db(tmp_path)
        result = run_cli("passkeys", "list", "--email", "ghost@example.com", "--db", db_url)
        assert result.returncode == EXIT_NOT_FOUND


class TestCLIUpkeep:
    def test_prune_expired_challenges(self, tmp_path):
        db_url = _init_db(tmp_path)
        now = utcnow()
        _seed(
            db_url,
            *[
                PendingChallenge(
                    id=f"flow-{offset}",
                    challenge="c",
                    kind="authenticate",
                    rp_id="localhost",
                    origin="http://localhost:3000",
                    expires_at=now + timedelta(seconds=offset),
                )
                for offset in (-300, -10, 300)
            ],
        )
        result = run_cli("challenges", "prune", "--db", db_url)
        assert result.returncode == EXIT_OK
        assert json.loads(result.stdout)["deleted"] == 2

    def test_revoke_requires_yes(self, tmp_path):
        db_url = _init_db(tmp_path)
        result = run_cli("sessions", "revoke", "--email", "a@example.com", "--db", db_url)
        assert result.returncode == EXIT_BAD_ARGS
        assert "--yes" in result.stderr

    def test_revoke_sessions(self, tmp_path):
        db_url = _init_db(tmp_path)
        user = User(email="alice@example.com")
        _seed(db_url, user)
        later = utcnow() + timedelta(hours=1)
        _seed(
            db_url,
            AuthSession(user_id=user.id, expires_at=later),
            AuthSession(user_id=user.id, expires_at=later),
        )

        result = run_cli("sessions", "revoke", "--user-id", user.id, "--yes", "--db", db_url)
        assert result.returncode == EXIT_OK
        data = json.loads(result.stdout)
        assert data["user_id"] == user.id
        assert data["revoked"] == 2
