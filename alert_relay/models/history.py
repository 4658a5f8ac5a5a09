"""Delivery history (audit trail of every queued alert email)."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from alert_relay.models.base import Base, TimestampMixin

HISTORY_PENDING = "pending"
HISTORY_SENT = "sent"
HISTORY_FAILED = "failed"
HISTORY_CANCELLED = "cancelled"


class AlertHistory(Base, TimestampMixin):
    """Outcome of one queued email, kept after queue retention removes the row."""

    __tablename__ = "alert_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    queue_item_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("email_queue.id", ondelete="SET NULL"), unique=True
    )
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True)
    recipient: Mapped[str] = mapped_column(String(255))
    subject: Mapped[str] = mapped_column(String(500))
    alert_type: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(20), default=HISTORY_PENDING, index=True)
    error_message: Mapped[str | None] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    sent_at: Mapped[datetime | None] = mapped_column(default=None)

    # Engagement tracking (populated by the tracking endpoints, not this service)
    opened_at: Mapped[datetime | None] = mapped_column(default=None)
    clicked_at: Mapped[datetime | None] = mapped_column(default=None)
    open_count: Mapped[int] = mapped_column(Integer, default=0)
    click_count: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        return f"<AlertHistory {self.recipient} status={self.status}>"
