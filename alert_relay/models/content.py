"""Read-only view of the content repositories.

These tables are owned by the ingestion side of the host application.
The alert subsystem only queries them through the content matcher.
"""

import uuid
from datetime import datetime

from sqlalchemy import Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from alert_relay.models.base import Base


class ContentItem(Base):
    """An article, event or publication in one content domain."""

    __tablename__ = "content_items"
    __table_args__ = (Index("ix_content_items_domain_saved", "domain", "saved_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain: Mapped[str] = mapped_column(String(50), index=True)
    content_type: Mapped[str] = mapped_column(String(20), default="article")
    title: Mapped[str] = mapped_column(String(500))
    summary: Mapped[str | None] = mapped_column(Text)
    source: Mapped[str | None] = mapped_column(String(255), index=True)
    link: Mapped[str | None] = mapped_column(String(2048))
    published_at: Mapped[datetime] = mapped_column(index=True)
    saved_at: Mapped[datetime] = mapped_column()

    def __repr__(self) -> str:
        return f"<ContentItem {self.domain}:{self.content_type}:{self.id}>"


class ContentLike(Base):
    """A user's like on a content item, used for team-activity digests."""

    __tablename__ = "content_likes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_id: Mapped[int] = mapped_column(Integer, index=True)
    domain: Mapped[str] = mapped_column(String(50))
    content_type: Mapped[str] = mapped_column(String(20), default="article")
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    team: Mapped[str | None] = mapped_column(String(100), index=True)
    created_at: Mapped[datetime] = mapped_column()
