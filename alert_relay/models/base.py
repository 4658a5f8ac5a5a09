from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from alert_relay.core.datetime_utils import utc_now


class Base(DeclarativeBase):
    """Base class for the alert tables.

    Timestamps are stored as naive UTC; conversion to a subscription's
    timezone happens only in the scheduler.
    """

    type_annotation_map: dict[Any, Any] = {
        datetime: DateTime(timezone=False),
        dict: JSON,
    }


class TimestampMixin:
    """Adds created_at, set on insert."""

    created_at: Mapped[datetime] = mapped_column(default=utc_now)
