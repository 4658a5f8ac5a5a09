"""Queue store: the durable email queue and its state transitions.

Every transition is a conditional UPDATE on the row's current state, so
concurrent workers never both win the same transition:

- claim:   queued -> processing      (WHERE status = 'queued')
- sent:    processing -> sent        (WHERE status = 'processing' AND claimed_by = me)
- failed:  processing -> queued|failed
- cancel:  queued -> cancelled

Functions flush but do not commit, except claim_batch, whose claims must
be durable before any network call is made.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from alert_relay.config import get_config
from alert_relay.core.datetime_utils import utc_now
from alert_relay.core.logging import get_logger
from alert_relay.core.retry import RetryPolicy
from alert_relay.models.history import (
    HISTORY_CANCELLED,
    HISTORY_FAILED,
    HISTORY_PENDING,
    HISTORY_SENT,
    AlertHistory,
)
from alert_relay.models.queue import (
    PRIORITY_DIGEST,
    TERMINAL_STATUSES,
    EmailQueueItem,
    QueueStatus,
)

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 2000

# Outcomes of a failed attempt
REQUEUED = "requeued"
FAILED = "failed"
CLAIM_LOST = "claim_lost"


async def enqueue_email(
    db: AsyncSession,
    *,
    destination: str,
    subject: str,
    body: str,
    html_body: str | None = None,
    subscription_id: uuid.UUID | None = None,
    priority: int = PRIORITY_DIGEST,
    scheduled_for: datetime | None = None,
    max_attempts: int | None = None,
    alert_type: str | None = None,
    content_keys: list[str] | None = None,
    now: datetime | None = None,
) -> EmailQueueItem:
    """Add an email to the queue along with its pending history record.

    Args:
        db: Database session
        destination: Recipient email address
        subject: Email subject
        body: Plain-text body
        html_body: Optional HTML body
        subscription_id: Subscription that produced the email, if any
        priority: Higher is sent first
        scheduled_for: Earliest send time (defaults to now)
        max_attempts: Delivery attempts before giving up (defaults to config)
        alert_type: Cadence or "test", for reporting
        content_keys: "domain:type:id" keys the email references
        now: Reference time

    Returns:
        The queued item (flushed, not committed)
    """
    now = now or utc_now()
    item = EmailQueueItem(
        id=uuid.uuid4(),
        subscription_id=subscription_id,
        destination=destination,
        subject=subject,
        body=body,
        html_body=html_body,
        priority=priority,
        scheduled_for=scheduled_for or now,
        status=QueueStatus.QUEUED,
        attempts=0,
        max_attempts=max_attempts or get_config().queue.max_attempts,
        alert_type=alert_type,
        content_keys=content_keys or [],
        created_at=now,
        updated_at=now,
    )
    db.add(item)

    history = AlertHistory(
        queue_item_id=item.id,
        subscription_id=subscription_id,
        recipient=destination,
        subject=subject,
        alert_type=alert_type,
        status=HISTORY_PENDING,
        created_at=now,
    )
    db.add(history)
    await db.flush()

    logger.bind(
        queue_item_id=str(item.id),
        destination=destination,
        priority=priority,
        alert_type=alert_type,
    ).info("email_enqueued")
    return item


async def claim_batch(
    db: AsyncSession,
    worker_id: str,
    batch_size: int,
    *,
    now: datetime | None = None,
) -> list[EmailQueueItem]:
    """Atomically claim up to batch_size due items for a worker.

    Candidates are due queued rows with attempts left, ordered by
    priority DESC, scheduled_for ASC. Each is claimed with a conditional
    update, and only rows whose update affected exactly one row are
    returned, so a row raced away by another worker is simply skipped.

    Commits the claims before returning.
    """
    now = now or utc_now()
    result = await db.execute(
        select(EmailQueueItem.id)
        .where(
            EmailQueueItem.status == QueueStatus.QUEUED,
            EmailQueueItem.scheduled_for <= now,
            EmailQueueItem.attempts < EmailQueueItem.max_attempts,
        )
        .order_by(EmailQueueItem.priority.desc(), EmailQueueItem.scheduled_for.asc())
        .limit(batch_size)
        .with_for_update(skip_locked=True)
    )
    candidate_ids = list(result.scalars().all())
    if not candidate_ids:
        await db.commit()
        return []

    claimed_ids = []
    for item_id in candidate_ids:
        if await try_claim(db, item_id, worker_id, now=now):
            claimed_ids.append(item_id)
    await db.commit()

    if len(claimed_ids) < len(candidate_ids):
        logger.bind(
            worker_id=worker_id,
            candidates=len(candidate_ids),
            claimed=len(claimed_ids),
        ).info("claims_lost_to_other_workers")

    if not claimed_ids:
        return []

    items_result = await db.execute(
        select(EmailQueueItem)
        .where(EmailQueueItem.id.in_(claimed_ids))
        .order_by(EmailQueueItem.priority.desc(), EmailQueueItem.scheduled_for.asc())
        .execution_options(populate_existing=True)
    )
    return list(items_result.scalars().all())


async def try_claim(
    db: AsyncSession,
    item_id: uuid.UUID,
    worker_id: str,
    *,
    now: datetime | None = None,
) -> bool:
    """Claim one row if it is still queued. Returns True if this call won."""
    now = now or utc_now()
    result = await db.execute(
        update(EmailQueueItem)
        .where(
            EmailQueueItem.id == item_id,
            EmailQueueItem.status == QueueStatus.QUEUED,
        )
        .values(
            status=QueueStatus.PROCESSING,
            claimed_by=worker_id,
            claimed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _update_history(
    db: AsyncSession, queue_item_id: uuid.UUID, **values: Any
) -> None:
    await db.execute(
        update(AlertHistory)
        .where(AlertHistory.queue_item_id == queue_item_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def mark_sent(
    db: AsyncSession,
    item: EmailQueueItem,
    worker_id: str,
    *,
    now: datetime | None = None,
) -> bool:
    """Transition a claimed item to sent and its history record to sent.

    Returns:
        False if the claim was lost (the stale-claim sweep took the row)
    """
    now = now or utc_now()
    result = await db.execute(
        update(EmailQueueItem)
        .where(
            EmailQueueItem.id == item.id,
            EmailQueueItem.status == QueueStatus.PROCESSING,
            EmailQueueItem.claimed_by == worker_id,
        )
        .values(
            status=QueueStatus.SENT,
            sent_at=now,
            last_attempt_at=now,
            attempts=EmailQueueItem.attempts + 1,
            last_error=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.bind(queue_item_id=str(item.id), worker_id=worker_id).warning(
            "sent_after_claim_lost"
        )
        return False

    await _update_history(db, item.id, status=HISTORY_SENT, sent_at=now, error_message=None)
    return True


async def mark_failed(
    db: AsyncSession,
    item: EmailQueueItem,
    worker_id: str | None,
    error: str,
    *,
    policy: RetryPolicy,
    now: datetime | None = None,
) -> str:
    """Record a failed attempt on a claimed item.

    Increments attempts and stores the error. With attempts left the row
    goes straight back to queued, scheduled after the backoff delay.
    Otherwise it stays failed (terminal) and its history becomes failed.

    Args:
        db: Database session
        item: The claimed item, as loaded at claim time
        worker_id: The claim holder
        error: Error message from the transport
        policy: Backoff policy for the next attempt
        now: Failure time

    Returns:
        REQUEUED, FAILED, or CLAIM_LOST if the row is no longer ours
    """
    now = now or utc_now()
    attempts = item.attempts + 1
    terminal = attempts >= item.max_attempts
    error = error[:MAX_ERROR_LENGTH]

    values: dict[str, Any] = {
        "attempts": attempts,
        "last_error": error,
        "last_attempt_at": now,
        "updated_at": now,
    }
    if terminal:
        values["status"] = QueueStatus.FAILED
    else:
        values.update(
            status=QueueStatus.QUEUED,
            scheduled_for=now + policy.delay(attempts),
            claimed_by=None,
            claimed_at=None,
        )

    result = await db.execute(
        update(EmailQueueItem)
        .where(
            EmailQueueItem.id == item.id,
            EmailQueueItem.status == QueueStatus.PROCESSING,
            EmailQueueItem.claimed_by == worker_id,
            EmailQueueItem.attempts == item.attempts,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.bind(queue_item_id=str(item.id), worker_id=worker_id).warning(
            "failure_after_claim_lost"
        )
        return CLAIM_LOST

    if terminal:
        await _update_history(
            db,
            item.id,
            status=HISTORY_FAILED,
            error_message=error,
            retry_count=attempts,
        )
        logger.bind(
            queue_item_id=str(item.id),
            attempts=attempts,
            error=error,
        ).error("email_permanently_failed")
        return FAILED

    await _update_history(db, item.id, retry_count=attempts, error_message=error)
    logger.bind(
        queue_item_id=str(item.id),
        attempts=attempts,
        max_attempts=item.max_attempts,
        retry_at=values["scheduled_for"].isoformat(),
    ).warning("email_requeued")
    return REQUEUED


async def release_stale_claims(
    db: AsyncSession,
    stale_after: timedelta,
    *,
    policy: RetryPolicy,
    now: datetime | None = None,
) -> int:
    """Treat processing rows claimed longer than stale_after as failed attempts.

    A worker that crashed mid-batch leaves its rows in processing. The
    next worker run counts that as a failed attempt and requeues (or
    terminally fails) the row.

    Returns:
        Number of released rows
    """
    now = now or utc_now()
    cutoff = now - stale_after
    result = await db.execute(
        select(EmailQueueItem)
        .where(
            EmailQueueItem.status == QueueStatus.PROCESSING,
            EmailQueueItem.claimed_at < cutoff,
        )
        .execution_options(populate_existing=True)
    )
    stale_items = list(result.scalars().all())

    released = 0
    for item in stale_items:
        outcome = await mark_failed(
            db,
            item,
            item.claimed_by,
            f"Claim expired: worker {item.claimed_by} did not finish within {stale_after}",
            policy=policy,
            now=now,
        )
        if outcome != CLAIM_LOST:
            released += 1

    if released:
        logger.bind(released=released).warning("stale_claims_released")
    return released


async def cancel(
    db: AsyncSession,
    item_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> bool:
    """Cancel a queued item. Items already processing cannot be cancelled.

    Returns:
        True if the item was queued and is now cancelled
    """
    now = now or utc_now()
    result = await db.execute(
        update(EmailQueueItem)
        .where(
            EmailQueueItem.id == item_id,
            EmailQueueItem.status == QueueStatus.QUEUED,
        )
        .values(status=QueueStatus.CANCELLED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    await _update_history(db, item_id, status=HISTORY_CANCELLED)
    logger.bind(queue_item_id=str(item_id)).info("email_cancelled")
    return True


async def requeue(
    db: AsyncSession,
    item_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> bool:
    """Put a failed item with attempts left back in the queue, due now.

    Returns:
        True if the item was requeued
    """
    now = now or utc_now()
    result = await db.execute(
        update(EmailQueueItem)
        .where(
            EmailQueueItem.id == item_id,
            EmailQueueItem.status == QueueStatus.FAILED,
            EmailQueueItem.attempts < EmailQueueItem.max_attempts,
        )
        .values(
            status=QueueStatus.QUEUED,
            scheduled_for=now,
            claimed_by=None,
            claimed_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    await _update_history(db, item_id, status=HISTORY_PENDING)
    logger.bind(queue_item_id=str(item_id)).info("email_requeued_by_operator")
    return True


async def cleanup(
    db: AsyncSession,
    older_than_days: int = 30,
    *,
    now: datetime | None = None,
) -> int:
    """Delete finished (sent, failed, cancelled) items older than the retention window.

    History records survive; their queue_item_id is nulled by the foreign key.

    Returns:
        Number of deleted queue rows
    """
    cutoff = (now or utc_now()) - timedelta(days=older_than_days)
    result = await db.execute(
        delete(EmailQueueItem).where(
            EmailQueueItem.status.in_(TERMINAL_STATUSES),
            EmailQueueItem.updated_at < cutoff,
        )
    )
    deleted = result.rowcount or 0
    logger.bind(deleted=deleted, older_than_days=older_than_days).info("queue_cleaned_up")
    return deleted


async def queue_stats(db: AsyncSession) -> dict[str, Any]:
    """Get counts per status and the next scheduled send time."""
    result = await db.execute(
        select(EmailQueueItem.status, func.count(EmailQueueItem.id)).group_by(
            EmailQueueItem.status
        )
    )
    counts = {status.value: 0 for status in QueueStatus}
    for status, count in result.all():
        counts[QueueStatus(status).value] = count

    next_result = await db.execute(
        select(func.min(EmailQueueItem.scheduled_for)).where(
            EmailQueueItem.status == QueueStatus.QUEUED
        )
    )
    next_scheduled = next_result.scalar()

    return {
        "total": sum(counts.values()),
        **counts,
        "next_scheduled": next_scheduled.isoformat() if next_scheduled else None,
    }
