"""
APScheduler integration for FastAPI.

Optional in-process alternative to the external cron trigger, for
single-host deployments (SCHEDULER_ENABLED=true). Runs the same service
functions the cron endpoints call, with cron expressions from config.yml.

Jobs:
- Immediate alerts: every few minutes
- Hourly digest: top of every hour
- Daily / weekly digests: hourly, each subscription fires at its local send hour
- Queue processing: every few minutes
- Cleanup: once a day
"""

from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger

from alert_relay.config import get_config, get_settings
from alert_relay.core.database import AsyncSessionLocal
from alert_relay.core.logging import get_logger
from alert_relay.core.security import generate_worker_id
from alert_relay.models.subscription import Cadence

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncScheduler | None = None

TRIGGER = "scheduler"


async def digest_job(cadence: str) -> None:
    """Run the digest scheduler for one cadence."""
    from alert_relay.services.digest_scheduler import run_digests
    from alert_relay.services.job_runs import track_job

    cadence_enum = Cadence(cadence)
    async with AsyncSessionLocal() as db:
        try:
            async with track_job(db, f"digest_{cadence}", trigger=TRIGGER) as stats:
                result = await run_digests(db, cadence_enum)
                stats.update(result.to_dict())
        except Exception as e:
            logger.bind(cadence=cadence, error=str(e)).error("scheduled_digest_job_failed")
            raise  # Re-raise so APScheduler records the failure


async def queue_job() -> None:
    """Run one delivery worker batch."""
    from alert_relay.services.delivery import process_queue
    from alert_relay.services.email_service import get_transport
    from alert_relay.services.job_runs import track_job

    settings = get_settings()
    worker_id = settings.worker_id or generate_worker_id("scheduler")
    async with AsyncSessionLocal() as db:
        try:
            async with track_job(db, "queue_process", trigger=TRIGGER) as stats:
                result = await process_queue(db, get_transport(settings), worker_id=worker_id)
                stats.update(result.to_dict())
        except Exception as e:
            logger.bind(error=str(e)).error("scheduled_queue_job_failed")
            raise


async def cleanup_job() -> None:
    """Apply queue retention and prune the dedup ledger."""
    from alert_relay.services.job_runs import run_retention, track_job

    async with AsyncSessionLocal() as db:
        try:
            async with track_job(db, "queue_cleanup", trigger=TRIGGER) as stats:
                stats.update(await run_retention(db))
        except Exception as e:
            logger.bind(error=str(e)).error("scheduled_cleanup_job_failed")
            raise


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the in-process scheduler if enabled."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    config = get_config().scheduler

    # Schedules are rebuilt from config on every start
    scheduler = AsyncScheduler(data_store=MemoryDataStore())

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    schedules: list[tuple[str, Any, CronTrigger, dict]] = [
        (
            "digest_immediate",
            digest_job,
            CronTrigger(minute=config.immediate_minutes),
            {"cadence": Cadence.IMMEDIATE.value},
        ),
        (
            "digest_hourly",
            digest_job,
            CronTrigger(minute=config.digest_minute),
            {"cadence": Cadence.HOURLY_DIGEST.value},
        ),
        # Daily and weekly run every hour; each subscription is due at its own local hour
        (
            "digest_daily",
            digest_job,
            CronTrigger(minute=config.digest_minute),
            {"cadence": Cadence.DAILY_DIGEST.value},
        ),
        (
            "digest_weekly",
            digest_job,
            CronTrigger(minute=config.digest_minute),
            {"cadence": Cadence.WEEKLY_DIGEST.value},
        ),
        ("queue_process", queue_job, CronTrigger(minute=config.queue_minutes), {}),
        ("queue_cleanup", cleanup_job, CronTrigger(hour=config.cleanup_hour, minute=30), {}),
    ]

    for schedule_id, func, trigger, kwargs in schedules:
        await scheduler.add_schedule(
            func,
            trigger,
            id=schedule_id,
            kwargs=kwargs,
            conflict_policy=ConflictPolicy.replace,
        )

    # Start the scheduler's background worker to actually process jobs
    await scheduler.start_in_background()

    logger.bind(jobs=[s[0] for s in schedules]).info("scheduler_started")
    return scheduler


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None
