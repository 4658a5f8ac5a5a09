"""Cron trigger endpoints.

Called by an external scheduler with `Authorization: Bearer <CRON_SECRET>`.
Every endpoint is idempotent: calling it again with nothing to do is a
200 no-op.
"""

import time
from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from alert_relay.core.logging import get_logger
from alert_relay.dependencies import DBSession, Transport, WorkerId, verify_cron
from alert_relay.models.subscription import Cadence
from alert_relay.schemas.cron import CronErrorResponse, CronRunResponse
from alert_relay.services.delivery import process_queue
from alert_relay.services.digest_scheduler import run_digests
from alert_relay.services.job_runs import run_retention, track_job

logger = get_logger(__name__)

router = APIRouter(
    dependencies=[Depends(verify_cron)],
    responses={
        401: {"model": CronErrorResponse, "description": "Missing or wrong cron secret"},
        500: {"model": CronErrorResponse, "description": "Misconfiguration or run failure"},
    },
)

TRIGGER = "cron"


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


async def _digest_run(db: DBSession, cadence: Cadence, label: str) -> CronRunResponse:
    started = time.perf_counter()
    async with track_job(db, f"digest_{cadence.value}", trigger=TRIGGER) as stats:
        result = await run_digests(db, cadence)
        stats.update(result.to_dict())

    logger.bind(cadence=cadence.value, **result.to_dict()).info("cron_digest_completed")
    return CronRunResponse(
        success=True,
        message=f"{label} processed: {result.queued} queued, {result.empty} with no new content",
        processed=result.processed,
        queued=result.queued,
        failed=result.errors,
        duration_ms=_elapsed_ms(started),
        timestamp=_timestamp(),
    )


@router.get("/digest/weekly", response_model=CronRunResponse)
async def weekly_digest(db: DBSession) -> CronRunResponse:
    """Enqueue weekly digests for subscriptions due in their timezone."""
    return await _digest_run(db, Cadence.WEEKLY_DIGEST, "Weekly digests")


@router.get("/digest/daily", response_model=CronRunResponse)
async def daily_digest(db: DBSession) -> CronRunResponse:
    """Enqueue daily digests for subscriptions due in their timezone."""
    return await _digest_run(db, Cadence.DAILY_DIGEST, "Daily digests")


@router.get("/digest/hourly", response_model=CronRunResponse)
async def hourly_digest(db: DBSession) -> CronRunResponse:
    """Enqueue hourly digests."""
    return await _digest_run(db, Cadence.HOURLY_DIGEST, "Hourly digests")


@router.get("/digest/immediate", response_model=CronRunResponse)
async def immediate_alerts(db: DBSession) -> CronRunResponse:
    """Enqueue immediate alerts for content published today."""
    return await _digest_run(db, Cadence.IMMEDIATE, "Immediate alerts")


@router.get("/queue/process", response_model=CronRunResponse)
async def process_email_queue(
    db: DBSession,
    transport: Transport,
    worker_id: WorkerId,
) -> CronRunResponse:
    """Run one delivery batch: claim due emails and send them."""
    started = time.perf_counter()
    async with track_job(db, "queue_process", trigger=TRIGGER) as stats:
        result = await process_queue(db, transport, worker_id=worker_id)
        stats.update(result.to_dict())

    return CronRunResponse(
        success=True,
        message=(
            f"Processed {result.processed} emails: {result.sent} sent, "
            f"{result.requeued} requeued, {result.failed} failed"
        ),
        processed=result.processed,
        sent=result.sent,
        failed=result.failed,
        requeued=result.requeued,
        duration_ms=_elapsed_ms(started),
        timestamp=_timestamp(),
    )


@router.get("/queue/cleanup", response_model=CronRunResponse)
async def cleanup_email_queue(db: DBSession) -> CronRunResponse:
    """Delete finished queue rows past retention and prune the dedup ledger."""
    started = time.perf_counter()
    async with track_job(db, "queue_cleanup", trigger=TRIGGER) as stats:
        result = await run_retention(db)
        stats.update(result)

    return CronRunResponse(
        success=True,
        message=(
            f"Deleted {result['deleted']} queue items, "
            f"pruned {result['ledger_pruned']} ledger entries"
        ),
        deleted=result["deleted"],
        duration_ms=_elapsed_ms(started),
        timestamp=_timestamp(),
    )
