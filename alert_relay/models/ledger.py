"""Dedup ledger of content already notified per subscription."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from alert_relay.models.base import Base


class AlertContentSent(Base):
    """Records that a content item was queued for a subscription.

    Written in the same transaction as the queue row, so an entry exists
    only if the notification was durably queued. The unique constraint is
    what serializes concurrent digest runs for the same subscription.
    """

    __tablename__ = "alert_content_sent"
    __table_args__ = (
        UniqueConstraint(
            "subscription_id",
            "domain",
            "content_type",
            "content_id",
            name="uq_alert_content_sent_key",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("alert_subscriptions.id", ondelete="CASCADE"), index=True
    )
    domain: Mapped[str] = mapped_column(String(50))
    content_type: Mapped[str] = mapped_column(String(20))
    content_id: Mapped[str] = mapped_column(String(64))
    sent_at: Mapped[datetime] = mapped_column(index=True)

    def __repr__(self) -> str:
        return (
            f"<AlertContentSent {self.subscription_id} "
            f"{self.domain}:{self.content_type}:{self.content_id}>"
        )
