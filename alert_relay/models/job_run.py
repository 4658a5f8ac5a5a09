"""Execution history of the digest, queue and cleanup entry points."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from alert_relay.models.base import Base


class JobRun(Base):
    """One run of an entry point, whichever way it was triggered.

    job_id names the entry point (digest_daily_digest, queue_process,
    queue_cleanup). stats holds the run's counters, e.g. queued/empty for a
    digest run or sent/requeued for a delivery batch.
    """

    __tablename__ = "job_runs"
    __table_args__ = (
        CheckConstraint("outcome IN ('success', 'error')", name="ck_job_runs_outcome"),
        Index("ix_job_runs_job_started", "job_id", "started_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[str] = mapped_column(String(100))
    trigger: Mapped[str] = mapped_column(String(20), default="cron")  # cron, scheduler, cli
    scheduled_at: Mapped[datetime]
    started_at: Mapped[datetime]
    finished_at: Mapped[datetime]
    outcome: Mapped[str] = mapped_column(String(20))
    error: Mapped[str | None] = mapped_column(Text)
    stats: Mapped[dict | None] = mapped_column(JSON)

    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def __repr__(self) -> str:
        return f"<JobRun {self.job_id} {self.outcome} via {self.trigger}>"
