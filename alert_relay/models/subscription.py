"""Alert subscriptions (user notification preferences)."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Enum, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from alert_relay.models.base import Base, TimestampMixin


class Cadence(str, enum.Enum):
    """Notification frequency of a subscription."""

    IMMEDIATE = "immediate"
    HOURLY_DIGEST = "hourly_digest"
    DAILY_DIGEST = "daily_digest"
    WEEKLY_DIGEST = "weekly_digest"


class AlertSubscription(Base, TimestampMixin):
    """A user's alert preference.

    Created and edited by the settings surface. The digest scheduler only
    writes last_sent_at and next_due_at.
    """

    __tablename__ = "alert_subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    name: Mapped[str] = mapped_column(String(255), default="My Alert")
    user_name: Mapped[str | None] = mapped_column(String(255))
    cadence: Mapped[Cadence] = mapped_column(
        Enum(
            Cadence,
            values_callable=lambda e: [x.value for x in e],
            name="cadence",
            native_enum=False,
            length=20,
        ),
        index=True,
    )

    # Filters
    keywords: Mapped[list[str]] = mapped_column(JSON, default=list)
    sources: Mapped[list[str]] = mapped_column(JSON, default=list)
    domains: Mapped[list[str]] = mapped_column(JSON, default=list)
    include_articles: Mapped[bool] = mapped_column(Boolean, default=True)
    include_events: Mapped[bool] = mapped_column(Boolean, default=True)
    include_publications: Mapped[bool] = mapped_column(Boolean, default=True)
    team_only: Mapped[bool] = mapped_column(Boolean, default=False)
    team: Mapped[str | None] = mapped_column(String(100))

    # Delivery
    email: Mapped[str] = mapped_column(String(255))
    timezone: Mapped[str] = mapped_column(String(50), default="UTC")
    send_hour: Mapped[int] = mapped_column(Integer, default=9)
    send_weekday: Mapped[int] = mapped_column(Integer, default=0)  # 0 = Monday
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    email_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    # Owned by the digest scheduler
    last_sent_at: Mapped[datetime | None] = mapped_column(default=None)
    next_due_at: Mapped[datetime | None] = mapped_column(default=None)

    def content_types(self) -> list[str]:
        """Content types enabled by the subscription's flags."""
        types = []
        if self.include_articles:
            types.append("article")
        if self.include_events:
            types.append("event")
        if self.include_publications:
            types.append("publication")
        return types

    def __repr__(self) -> str:
        return f"<AlertSubscription {self.id} {self.cadence.value}>"
