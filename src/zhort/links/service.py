"""Link mutations. Callers are expected to have passed the request guard."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from zhort.audit.log import AuditTrail
from zhort.audit.models import AuditAction
from zhort.auth.errors import StoreUnavailable
from zhort.auth.models import utcnow
from zhort.links.models import Link


async def get_link(db: AsyncSession, link_id: int) -> Link | None:
    try:
        result = await db.execute(select(Link).filter(Link.id == link_id))
    except SQLAlchemyError as exc:
        raise StoreUnavailable("link lookup failed") from exc
    return result.scalars().first()


async def update_link(
    db: AsyncSession,
    link: Link,
    changes: dict[str, Any],
    *,
    actor_id: str,
    audit: AuditTrail,
) -> Link:
    """Apply *changes* and record a before/after diff of the fields that moved."""
    diff: dict[str, dict[str, Any]] = {}
    for field, value in changes.items():
        before = getattr(link, field)
        if before != value:
            diff[field] = {"from": before, "to": value}
            setattr(link, field, value)
    if not diff:
        return link

    link.updated_at = utcnow()
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreUnavailable("link update failed") from exc
    await audit.append(str(link.id), actor_id, AuditAction.UPDATED, diff)
    return link


async def delete_link(db: AsyncSession, link: Link, *, actor_id: str, audit: AuditTrail) -> None:
    snapshot = link.snapshot()
    try:
        await db.delete(link)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreUnavailable("link delete failed") from exc
    await audit.append(str(link.id), actor_id, AuditAction.DELETED, snapshot)
