"""Delivery worker: drains due queue items through the mail transport.

Safe to run concurrently: rows are claimed with conditional updates, and
each item's outcome is committed before the next transport call.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from alert_relay.config import get_config
from alert_relay.core.datetime_utils import utc_now
from alert_relay.core.logging import get_logger
from alert_relay.core.retry import RetryPolicy
from alert_relay.models.queue import EmailQueueItem
from alert_relay.services import queue_store
from alert_relay.services.email_service import MailTransport

logger = get_logger(__name__)


@dataclass
class DeliveryStats:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    requeued: int = 0
    released: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


async def _deliver_one(
    db: AsyncSession,
    item: EmailQueueItem,
    transport: MailTransport,
    *,
    worker_id: str,
    timeout: float,
    policy: RetryPolicy,
    stats: DeliveryStats,
    now: datetime | None = None,
) -> None:
    log = logger.bind(
        queue_item_id=str(item.id),
        destination=item.destination,
        attempt=item.attempts + 1,
        worker_id=worker_id,
    )
    error: str | None = None
    try:
        await asyncio.wait_for(
            transport.send(item.destination, item.subject, item.body, item.html_body),
            timeout=timeout,
        )
    except TimeoutError:
        # A send running in a worker thread cannot be cancelled: the provider
        # may still accept it, so a retry after a timeout can deliver twice.
        error = f"Send timed out after {timeout}s; provider may still deliver"
        log.bind(timeout_seconds=timeout).warning("email_send_timed_out")
    except Exception as e:
        # Provider rejections and network errors share the retry counter
        error = str(e) or type(e).__name__
        log.bind(error=error).warning("email_send_failed")

    if error is not None:
        outcome = await queue_store.mark_failed(
            db, item, worker_id, error, policy=policy, now=now or utc_now()
        )
        if outcome == queue_store.REQUEUED:
            stats.requeued += 1
        elif outcome == queue_store.FAILED:
            stats.failed += 1
    else:
        if await queue_store.mark_sent(db, item, worker_id, now=now or utc_now()):
            stats.sent += 1
            log.info("email_delivered")

    await db.commit()


async def process_queue(
    db: AsyncSession,
    transport: MailTransport,
    *,
    worker_id: str,
    batch_size: int | None = None,
    now: datetime | None = None,
) -> DeliveryStats:
    """Run one delivery batch.

    Releases stale claims, claims up to batch_size due items and sends each
    one. A failure of one item (exception or timeout) is a failed attempt
    for that item only.

    Args:
        db: Database session
        transport: Mail transport used for every item
        worker_id: Identity recorded on claims
        batch_size: Maximum items per batch (defaults to config)
        now: Fixed clock for tests; defaults to the current time at each step

    Returns:
        DeliveryStats for the batch; all zeros with an empty queue
    """
    config = get_config().queue
    policy = RetryPolicy.from_config(config.backoff)
    batch_size = batch_size or config.batch_size
    claim_time = now or utc_now()
    stats = DeliveryStats()

    stats.released = await queue_store.release_stale_claims(
        db,
        timedelta(minutes=config.stale_claim_minutes),
        policy=policy,
        now=claim_time,
    )
    await db.commit()

    items = await queue_store.claim_batch(db, worker_id, batch_size, now=claim_time)
    if not items:
        logger.bind(worker_id=worker_id, released=stats.released).debug("queue_empty")
        return stats

    # Detached so a per-item rollback does not expire the rest of the batch
    for item in items:
        db.expunge(item)

    logger.bind(worker_id=worker_id, claimed=len(items)).info("queue_batch_claimed")

    for item in items:
        stats.processed += 1
        try:
            await _deliver_one(
                db,
                item,
                transport,
                worker_id=worker_id,
                timeout=config.send_timeout_seconds,
                policy=policy,
                stats=stats,
                now=now,
            )
        except Exception as e:
            # Bookkeeping failed; the claim stays and is released as stale later
            await db.rollback()
            logger.bind(queue_item_id=str(item.id), error=str(e)).error(
                "queue_item_bookkeeping_failed"
            )

    logger.bind(worker_id=worker_id, **stats.to_dict()).info("queue_batch_complete")
    return stats
