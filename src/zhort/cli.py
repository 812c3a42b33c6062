"""zhort operator CLI.

Provides ``zhort`` console script and ``python -m zhort`` entry point.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from zhort.db.engine import create_engine_from_url

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------
EXIT_OK = 0
EXIT_NOT_FOUND = 1
EXIT_BAD_ARGS = 2
EXIT_CONFLICT = 3
EXIT_DB_ERROR = 4


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.isoformat()


def _output(data: Any, *, fmt: str = "json", pretty: bool = False) -> None:
    if fmt == "jsonl":
        if isinstance(data, list):
            for item in data:
                print(json.dumps(item, default=str))
        else:
            print(json.dumps(data, default=str))
    else:
        indent = 2 if pretty else None
        print(json.dumps(data, default=str, indent=indent))


def _err(msg: str) -> None:
    print(msg, file=sys.stderr)


def _require_yes(args: argparse.Namespace) -> bool:
    if not getattr(args, "yes", False):
        _err("--yes is required for mutating commands")
        return False
    return True


def _user_dict(user: Any) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "created_at": _iso(user.created_at),
    }


def _passkey_dict(cred: Any) -> dict:
    """Serialize a PasskeyCredential to a safe dict (no credential_id, public_key)."""
    return {
        "id": cred.id,
        "user_id": cred.user_id,
        "device_name": cred.device_name,
        "device_type": cred.device_type,
        "sign_count": cred.sign_count,
        "transports": cred.transports,
        "created_at": _iso(cred.created_at),
        "last_used_at": _iso(cred.last_used_at),
        "flagged_at": _iso(cred.flagged_at),
    }


def _get_db_url(args: argparse.Namespace) -> str:
    """Resolve the database URL from --db flag or environment."""
    if getattr(args, "db", None):
        return str(args.db)
    return os.environ.get("ZHORT_DATABASE_URL", "sqlite:///./zhort.db")


def _resolve_user(session: Session, args: argparse.Namespace):  # type: ignore[no-untyped-def]
    from zhort.auth.models import User
    from zhort.auth.store import normalize_email

    if args.user_id:
        stmt = select(User).where(User.id == args.user_id)
    else:
        stmt = select(User).where(User.email == normalize_email(args.email))
    return session.execute(stmt).scalars().first()


# ---------------------------------------------------------------------------
# DB commands
# ---------------------------------------------------------------------------


def _cmd_db_ping(args: argparse.Namespace) -> int:
    engine = create_engine_from_url(_get_db_url(args))
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        _output({"ok": True}, fmt=args.format, pretty=args.pretty)
        return EXIT_OK
    except SQLAlchemyError as exc:
        _err(f"database unreachable: {exc.__class__.__name__}")
        return EXIT_DB_ERROR
    finally:
        engine.dispose()


def _cmd_db_init(args: argparse.Namespace) -> int:
    import zhort.audit.models  # noqa: F401
    import zhort.auth.models  # noqa: F401
    import zhort.links.models  # noqa: F401
    from zhort.db.base import Base

    engine = create_engine_from_url(_get_db_url(args))
    try:
        Base.metadata.create_all(engine)
        _output(
            {"ok": True, "tables": sorted(Base.metadata.tables)},
            fmt=args.format,
            pretty=args.pretty,
        )
        return EXIT_OK
    finally:
        engine.dispose()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def _cmd_users_create(args: argparse.Namespace) -> int:
    from zhort.auth.models import User
    from zhort.auth.store import normalize_email

    email = normalize_email(args.email)
    if "@" not in email:
        _err("invalid email")
        return EXIT_BAD_ARGS

    engine = create_engine_from_url(_get_db_url(args))
    try:
        with Session(engine) as session:
            user = User(email=email, role=args.role)
            session.add(user)
            try:
                session.commit()
            except IntegrityError:
                _err("user already exists")
                return EXIT_CONFLICT
            session.refresh(user)
            _output(_user_dict(user), fmt=args.format, pretty=args.pretty)
        return EXIT_OK
    finally:
        engine.dispose()


def _cmd_users_list(args: argparse.Namespace) -> int:
    from zhort.auth.models import User

    engine = create_engine_from_url(_get_db_url(args))
    try:
        with Session(engine) as session:
            stmt = select(User).order_by(User.created_at).offset(args.offset).limit(args.limit)
            users = session.execute(stmt).scalars().all()
            _output([_user_dict(u) for u in users], fmt=args.format, pretty=args.pretty)
        return EXIT_OK
    finally:
        engine.dispose()


# ---------------------------------------------------------------------------
# Passkeys
# ---------------------------------------------------------------------------


def _cmd_passkeys_list(args: argparse.Namespace) -> int:
    from zhort.auth.models import PasskeyCredential

    engine = create_engine_from_url(_get_db_url(args))
    try:
        with Session(engine) as session:
            user = _resolve_user(session, args)
            if user is None:
                _err("user not found")
                return EXIT_NOT_FOUND
            stmt = (
                select(PasskeyCredential)
                .where(PasskeyCredential.user_id == user.id)
                .order_by(PasskeyCredential.created_at)
            )
            creds = session.execute(stmt).scalars().all()
            _output([_passkey_dict(c) for c in creds], fmt=args.format, pretty=args.pretty)
        return EXIT_OK
    finally:
        engine.dispose()


# ---------------------------------------------------------------------------
# Challenges / sessions
# ---------------------------------------------------------------------------


def _cmd_challenges_prune(args: argparse.Namespace) -> int:
    from zhort.auth.models import PendingChallenge, utcnow

    engine = create_engine_from_url(_get_db_url(args))
    try:
        with Session(engine) as session:
            result = session.execute(
                delete(PendingChallenge).where(PendingChallenge.expires_at < utcnow())
            )
            session.commit()
            _output({"ok": True, "deleted": result.rowcount}, fmt=args.format, pretty=args.pretty)
        return EXIT_OK
    finally:
        engine.dispose()


def _cmd_sessions_revoke(args: argparse.Namespace) -> int:
    if not _require_yes(args):
        return EXIT_BAD_ARGS

    from zhort.auth.models import AuthSession

    engine = create_engine_from_url(_get_db_url(args))
    try:
        with Session(engine) as session:
            user = _resolve_user(session, args)
            if user is None:
                _err("user not found")
                return EXIT_NOT_FOUND
            result = session.execute(delete(AuthSession).where(AuthSession.user_id == user.id))
            session.commit()
            _output(
                {"ok": True, "user_id": user.id, "revoked": result.rowcount},
                fmt=args.format,
                pretty=args.pretty,
            )
        return EXIT_OK
    finally:
        engine.dispose()


# ---------------------------------------------------------------------------
# Argument parser construction
# ---------------------------------------------------------------------------


def _add_user_selector(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--user-id", default=None, help="User ID (u...)")
    group.add_argument("--email", default=None, help="User email")


def _build_parser() -> argparse.ArgumentParser:
    # Common flags shared by all leaf subcommands
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--db", default=None, help="Database URL override")
    common.add_argument(
        "--format", choices=["json", "jsonl"], default="json", help="Output format"
    )
    common.add_argument("--pretty", action="store_true", default=False, help="Pretty-print output")

    parser = argparse.ArgumentParser(prog="zhort", description="zhort operator CLI")
    subparsers = parser.add_subparsers(dest="command")

    # ---- db ----
    db_parser = subparsers.add_parser("db", help="Database operations")
    db_sub = db_parser.add_subparsers(dest="db_command")
    db_sub.add_parser("ping", parents=[common], help="Check database connectivity")
    db_sub.add_parser("init", parents=[common], help="Create all tables")

    # ---- users ----
    users_parser = subparsers.add_parser("users", help="User management")
    users_sub = users_parser.add_subparsers(dest="users_command")

    users_create = users_sub.add_parser("create", parents=[common], help="Create a user")
    users_create.add_argument("--email", required=True, help="User email")
    users_create.add_argument("--role", default="user", help="Role label (default: user)")

    users_list = users_sub.add_parser("list", parents=[common], help="List users")
    users_list.add_argument("--limit", type=int, default=100, help="Max rows")
    users_list.add_argument("--offset", type=int, default=0, help="Offset")

    # ---- passkeys ----
    passkeys_parser = subparsers.add_parser("passkeys", help="Passkey management")
    passkeys_sub = passkeys_parser.add_subparsers(dest="passkeys_command")
    passkeys_list = passkeys_sub.add_parser(
        "list", parents=[common], help="List passkeys for a user"
    )
    _add_user_selector(passkeys_list)

    # ---- challenges ----
    challenges_parser = subparsers.add_parser("challenges", help="Pending challenge upkeep")
    challenges_sub = challenges_parser.add_subparsers(dest="challenges_command")
    challenges_sub.add_parser("prune", parents=[common], help="Delete expired challenges")

    # ---- sessions ----
    sessions_parser = subparsers.add_parser("sessions", help="Session management")
    sessions_sub = sessions_parser.add_subparsers(dest="sessions_command")
    sessions_revoke = sessions_sub.add_parser(
        "revoke", parents=[common], help="Revoke every session of a user"
    )
    _add_user_selector(sessions_revoke)
    sessions_revoke.add_argument("--yes", action="store_true", help="Confirm mutation")

    return parser


# ---------------------------------------------------------------------------
# Command dispatch
# ---------------------------------------------------------------------------

_COMMANDS = {
    ("db", "ping"): _cmd_db_ping,
    ("db", "init"): _cmd_db_init,
    ("users", "create"): _cmd_users_create,
    ("users", "list"): _cmd_users_list,
    ("passkeys", "list"): _cmd_passkeys_list,
    ("challenges", "prune"): _cmd_challenges_prune,
    ("sessions", "revoke"): _cmd_sessions_revoke,
}


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point. Returns an integer exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_BAD_ARGS

    sub = getattr(args, f"{args.command}_command", None)
    handler = _COMMANDS.get((args.command, sub))
    if handler is None:
        parser.parse_args([args.command, "--help"])
        return EXIT_BAD_ARGS
    return handler(args)
