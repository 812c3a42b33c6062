"""Best-effort security event log and audit trail."""

from __future__ import annotations

import logging

import pytest
from conftest import FailingSink, RecordingSink
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from zhort.audit.log import (
    AuditTrail,
    BestEffortWriter,
    LoggingRecordSink,
    SecurityEventLog,
    build_audit_trail,
    build_security_event_log,
)
from zhort.audit.models import AuditAction, AuditEntry, SecurityEvent, SecurityEventKind
from zhort.config import Settings
from zhort.db.base import Base
from zhort.db.engine import create_async_engine_from_settings


class TestBestEffortWriter:
    async def test_delivers_to_every_sink(self):
        a, b = RecordingSink(), RecordingSink()
        writer = BestEffortWriter([a, b], channel="test")
        assert await writer.write({"kind": "x"}) is True
        assert a.records == b.records == [{"kind": "x"}]

    async def test_failing_sink_is_reported_not_raised(self, caplog):
        healthy = RecordingSink()
        writer = BestEffortWriter([FailingSink(), healthy], channel="security-event")
        with caplog.at_level(logging.ERROR, logger="zhort.audit.log"):
            assert await writer.write({"kind": "auth_failure"}) is False
        assert healthy.records == [{"kind": "auth_failure"}]
        assert "dropped security-event record (auth_failure) via FailingSink" in caplog.text


class TestSecurityEventLog:
    async def test_record_shape(self):
        sink = RecordingSink()
        log = SecurityEventLog(BestEffortWriter([sink], channel="security-event"))
        await log.append(SecurityEventKind.AUTH_SUCCESS, "u-alice", ip="127.0.0.1")

        [record] = sink.records
        assert record["kind"] == "auth_success"
        assert record["subject"] == "u-alice"
        assert record["details"] == {"ip": "127.0.0.1"}
        assert record["created_at"].tzinfo is not None

    async def test_secrets_are_redacted(self):
        sink = RecordingSink()
        log = SecurityEventLog(BestEffortWriter([sink], channel="security-event"))
        jwt_like = "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9.eyJzdWIiOiJ1In0"
        await log.append(
            SecurityEventKind.AUTH_FAILURE,
            None,
            session_token="abc",
            note=f"token was {jwt_like}",
            nested={"signature": "xyz", "ok": 1},
        )
        details = sink.records[0]["details"]
        assert details["session_token"] == "[REDACTED]"
        assert details["note"] == "token was [REDACTED]"
        assert details["nested"] == {"signature": "[REDACTED]", "ok": 1}

    async def test_logging_sink_emits_json_line(self, caplog):
        log = SecurityEventLog(BestEffortWriter([LoggingRecordSink()], channel="security-event"))
        with caplog.at_level(logging.INFO, logger="zhort.security"):
            await log.append(SecurityEventKind.PRIVILEGE_DENIED, "u-bob", action="admin:access")
        assert "[SECURITY]" in caplog.text
        assert '"kind": "privilege_denied"' in caplog.text


class TestAuditTrail:
    async def test_record_shape(self):
        sink = RecordingSink()
        trail = AuditTrail(BestEffortWriter([sink], channel="audit"))
        diff = {"title": {"from": "a", "to": "b"}}
        await trail.append("42", "u-alice", AuditAction.UPDATED, diff)

        [record] = sink.records
        assert record["resource_id"] == "42"
        assert record["actor_id"] == "u-alice"
        assert record["action"] == "updated"
        assert record["changes"] == {"title": {"from": "a", "to": "b"}}

    async def test_failure_never_reaches_caller(self):
        trail = AuditTrail(BestEffortWriter([FailingSink()], channel="audit"))
        await trail.append("42", None, AuditAction.DELETED)


@pytest.fixture()
async def session_factory(settings):
    engine = create_async_engine_from_settings(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


class TestSqlSinks:
    async def test_security_events_persist(self, session_factory):
        log = build_security_event_log(session_factory)
        await log.append(SecurityEventKind.CREDENTIAL_FLAGGED, "u-alice", key_id="k1")

        async with session_factory() as db:
            rows = (await db.execute(select(SecurityEvent))).scalars().all()
        assert len(rows) == 1
        assert rows[0].kind == "credential_flagged"
        assert rows[0].details == {"key_id": "k1"}

    async def test_audit_entries_persist(self, session_factory):
        trail = build_audit_trail(session_factory)
        await trail.append("7", "u-alice", AuditAction.EXPIRED)

        async with session_factory() as db:
            rows = (await db.execute(select(AuditEntry))).scalars().all()
        assert [(r.resource_id, r.action, r.changes) for r in rows] == [("7", "expired", None)]

    async def test_missing_table_is_dropped_quietly(self, tmp_path, caplog):
        engine = create_async_engine_from_settings(
            Settings(database_url=f"sqlite:///{tmp_path / 'bare.db'}")
        )
        try:
            trail = build_audit_trail(async_sessionmaker(engine, expire_on_commit=False))
            with caplog.at_level(logging.ERROR, logger="zhort.audit.log"):
                await trail.append("7", None, AuditAction.DELETED)
            assert "dropped audit record (deleted)" in caplog.text
        finally:
            await engine.dispose()
