"""Security event log and audit trail.

Both are write-only and best-effort. Every sink write goes through
:class:`BestEffortWriter`, the one place where write failures are caught,
reported on this module's logger and dropped. Callers never see an exception
from ``append`` and its outcome never changes their result.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from zhort.audit.models import AuditAction, AuditEntry, SecurityEvent, SecurityEventKind
from zhort.auth.models import utcnow
from zhort.db.base import Base
from zhort.obs.redaction import redact_mapping

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("zhort.security")


class RecordSink(Protocol):
    async def write(self, record: dict[str, Any]) -> None: ...


class SqlRecordSink:
    """Insert each record as a row of *model*, in a session of its own."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], model: type[Base]
    ) -> None:
        self._session_factory = session_factory
        self._model = model

    async def write(self, record: dict[str, Any]) -> None:
        async with self._session_factory() as db:
            db.add(self._model(**record))
            await db.commit()


class LoggingRecordSink:
    """Mirror records to a logger as single-line JSON."""

    def __init__(
        self, target: logging.Logger = security_logger, prefix: str = "[SECURITY]"
    ) -> None:
        self._target = target
        self._prefix = prefix

    async def write(self, record: dict[str, Any]) -> None:
        self._target.info("%s %s", self._prefix, json.dumps(record, default=str, sort_keys=True))


class BestEffortWriter:
    def __init__(self, sinks: Sequence[RecordSink], channel: str) -> None:
        self._sinks = list(sinks)
        self._channel = channel

    async def write(self, record: dict[str, Any]) -> bool:
        """Attempt every sink. Returns False when any sink dropped the record."""
        delivered = True
        for sink in self._sinks:
            try:
                await sink.write(record)
            except Exception:  # noqa: BLE001
                delivered = False
                logger.exception(
                    "dropped %s record (%s) via %s",
                    self._channel,
                    record.get("kind") or record.get("action"),
                    type(sink).__name__,
                )
        return delivered


class SecurityEventLog:
    def __init__(self, writer: BestEffortWriter) -> None:
        self._writer = writer

    async def append(
        self, kind: SecurityEventKind, subject: str | None, **details: Any
    ) -> None:
        record = {
            "kind": kind.value,
            "subject": subject,
            "details": redact_mapping(details),
            "created_at": utcnow(),
        }
        await self._writer.write(record)


class AuditTrail:
    def __init__(self, writer: BestEffortWriter) -> None:
        self._writer = writer

    async def append(
        self,
        resource_id: str,
        actor_id: str | None,
        action: AuditAction,
        changes: dict[str, Any] | None = None,
    ) -> None:
        record = {
            "resource_id": resource_id,
            "actor_id": actor_id,
            "action": action.value,
            "changes": changes,
            "created_at": utcnow(),
        }
        await self._writer.write(record)


def build_security_event_log(
    session_factory: async_sessionmaker[AsyncSession],
) -> SecurityEventLog:
    sinks: list[RecordSink] = [
        LoggingRecordSink(),
        SqlRecordSink(session_factory, SecurityEvent),
    ]
    return SecurityEventLog(BestEffortWriter(sinks, channel="security-event"))


def build_audit_trail(session_factory: async_sessionmaker[AsyncSession]) -> AuditTrail:
    return AuditTrail(
        BestEffortWriter([SqlRecordSink(session_factory, AuditEntry)], channel="audit")
    )
