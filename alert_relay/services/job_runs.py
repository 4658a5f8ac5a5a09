"""Job run bookkeeping and the retention job shared by all entry points."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from alert_relay.config import get_config
from alert_relay.core.datetime_utils import utc_now
from alert_relay.core.logging import get_logger
from alert_relay.models.job_run import JobRun
from alert_relay.services import ledger, queue_store

logger = get_logger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_ERROR = "error"


async def record_job_run(
    db: AsyncSession,
    job_id: str,
    *,
    trigger: str,
    started_at: datetime,
    outcome: str,
    error: str | None = None,
    stats: dict[str, Any] | None = None,
    scheduled_at: datetime | None = None,
) -> JobRun:
    """Record one execution of an entry point and commit it."""
    job_run = JobRun(
        job_id=job_id,
        trigger=trigger,
        scheduled_at=scheduled_at or started_at,
        started_at=started_at,
        finished_at=utc_now(),
        outcome=outcome,
        error=error,
        stats=stats or None,
    )
    db.add(job_run)
    await db.commit()
    return job_run


@asynccontextmanager
async def track_job(
    db: AsyncSession,
    job_id: str,
    trigger: str,
) -> AsyncIterator[dict[str, Any]]:
    """Record the wrapped block as a JobRun, with the stats it fills in.

    On error the session is rolled back, the failed run is recorded and
    the exception propagates.

    Example:
        async with track_job(db, "queue_process", trigger="cron") as stats:
            result = await process_queue(db, transport, worker_id=worker_id)
            stats.update(result.to_dict())
    """
    started_at = utc_now()
    stats: dict[str, Any] = {}
    try:
        yield stats
    except Exception as e:
        await db.rollback()
        try:
            await record_job_run(
                db,
                job_id,
                trigger=trigger,
                started_at=started_at,
                outcome=OUTCOME_ERROR,
                error=str(e),
                stats=stats,
            )
        except Exception as record_error:
            logger.bind(job_id=job_id, error=str(record_error)).error(
                "failed_to_record_job_result"
            )
        raise

    await record_job_run(
        db,
        job_id,
        trigger=trigger,
        started_at=started_at,
        outcome=OUTCOME_SUCCESS,
        stats=stats,
    )


async def run_retention(db: AsyncSession, *, now: datetime | None = None) -> dict[str, int]:
    """Delete finished queue rows and prune the dedup ledger, then commit."""
    config = get_config()
    now = now or utc_now()

    deleted = await queue_store.cleanup(db, config.queue.retention_days, now=now)
    pruned = await ledger.prune(
        db,
        timedelta(days=config.digest.ledger_retention_days),
        lookback=timedelta(days=config.digest.dedup_lookback_days),
        now=now,
    )
    await db.commit()
    return {"deleted": deleted, "ledger_pruned": pruned}
