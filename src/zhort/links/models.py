"""Link model (minimal shape; shortening itself lives elsewhere)."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from zhort.auth.models import utcnow
from zhort.db.base import Base


class Link(Base):
    __tablename__ = "zhort_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    long_url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # None for anonymous links; only superadmins may change those.
    user_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def snapshot(self) -> dict[str, str | None]:
        return {
            "short_code": self.short_code,
            "long_url": self.long_url,
            "title": self.title,
            "user_id": self.user_id,
        }
