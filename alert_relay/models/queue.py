"""Durable outbound email queue."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, Enum, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from alert_relay.core.datetime_utils import utc_now
from alert_relay.models.base import Base, TimestampMixin


class QueueStatus(str, enum.Enum):
    """Queue item state machine.

    queued -> processing -> sent | failed
    failed -> queued while attempts < max_attempts
    queued -> cancelled
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (QueueStatus.SENT, QueueStatus.FAILED, QueueStatus.CANCELLED)

# Higher runs first
PRIORITY_DIGEST = 5
PRIORITY_IMMEDIATE = 7
PRIORITY_TEST = 10


class EmailQueueItem(Base, TimestampMixin):
    """One outbound email and its delivery bookkeeping."""

    __tablename__ = "email_queue"
    __table_args__ = (
        Index("ix_email_queue_claim", "status", "priority", "scheduled_for"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("alert_subscriptions.id", ondelete="SET NULL"), index=True
    )

    # Message
    destination: Mapped[str] = mapped_column(String(255))
    subject: Mapped[str] = mapped_column(String(500))
    body: Mapped[str] = mapped_column(Text)
    html_body: Mapped[str | None] = mapped_column(Text)
    alert_type: Mapped[str | None] = mapped_column(String(50))
    content_keys: Mapped[list[str]] = mapped_column(JSON, default=list)

    # Scheduling
    priority: Mapped[int] = mapped_column(Integer, default=PRIORITY_DIGEST)
    scheduled_for: Mapped[datetime] = mapped_column(default=utc_now)
    status: Mapped[QueueStatus] = mapped_column(
        Enum(
            QueueStatus,
            values_callable=lambda e: [x.value for x in e],
            name="queuestatus",
            native_enum=False,
            length=20,
        ),
        default=QueueStatus.QUEUED,
    )

    # Attempt bookkeeping
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    last_error: Mapped[str | None] = mapped_column(Text)
    last_attempt_at: Mapped[datetime | None] = mapped_column(default=None)
    claimed_by: Mapped[str | None] = mapped_column(String(255))
    claimed_at: Mapped[datetime | None] = mapped_column(default=None)
    sent_at: Mapped[datetime | None] = mapped_column(default=None)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now)

    def __repr__(self) -> str:
        return f"<EmailQueueItem {self.id} status={self.status.value} attempts={self.attempts}>"
