"""Digest scheduler: turns due subscriptions into queued emails.

For each active subscription of a cadence whose send time has come in its
own timezone, finds new matching content, drops what the subscription was
already notified about, records the rest in the dedup ledger and enqueues
one email, all in a single transaction per subscription.

Bookkeeping (last_sent_at, next_due_at) advances even when nothing new
matched, so an empty run is not retried until the next occurrence.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from alert_relay.config import get_config
from alert_relay.core.datetime_utils import (
    local_send_hour,
    next_hour,
    next_local_occurrence,
    to_local,
    utc_now,
)
from alert_relay.core.logging import get_logger
from alert_relay.models.queue import PRIORITY_DIGEST, PRIORITY_IMMEDIATE, PRIORITY_TEST
from alert_relay.models.subscription import AlertSubscription, Cadence
from alert_relay.services import ledger, queue_store
from alert_relay.services.email_templates import render_digest
from alert_relay.services.matcher import find_candidates

logger = get_logger(__name__)

# Minimum spacing between two sends of the same subscription
MIN_INTERVALS = {
    Cadence.HOURLY_DIGEST: timedelta(minutes=50),
    Cadence.DAILY_DIGEST: timedelta(hours=20),
    Cadence.WEEKLY_DIGEST: timedelta(days=6),
}

# Window start when a subscription has never been sent
DEFAULT_WINDOWS = {
    Cadence.HOURLY_DIGEST: timedelta(hours=1),
    Cadence.DAILY_DIGEST: timedelta(hours=24),
    Cadence.WEEKLY_DIGEST: timedelta(days=7),
}


@dataclass
class DigestRunStats:
    processed: int = 0
    queued: int = 0
    skipped: int = 0
    empty: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def is_due(subscription: AlertSubscription, now: datetime) -> bool:
    """Check whether a subscription should be processed at `now`.

    immediate and hourly subscriptions are eligible every run. Daily ones
    need the local hour to equal send_hour (or the hour it shifts to when
    send_hour falls in a DST gap); weekly ones additionally need
    the local weekday to equal send_weekday. In all cases next_due_at must
    have passed and the last send must be older than the cadence's minimum
    interval.
    """
    if subscription.next_due_at is not None and now < subscription.next_due_at:
        return False

    cadence = subscription.cadence
    min_interval = MIN_INTERVALS.get(cadence)
    if (
        min_interval is not None
        and subscription.last_sent_at is not None
        and now - subscription.last_sent_at < min_interval
    ):
        return False

    if cadence in (Cadence.IMMEDIATE, Cadence.HOURLY_DIGEST):
        return True

    local = to_local(now, subscription.timezone)
    if local.hour != local_send_hour(now, subscription.timezone, subscription.send_hour):
        return False
    if cadence == Cadence.WEEKLY_DIGEST:
        return local.weekday() == subscription.send_weekday
    return True


def window_start(subscription: AlertSubscription, now: datetime) -> datetime:
    """Start of the content window: the last send, or a cadence default."""
    if subscription.last_sent_at is not None:
        return subscription.last_sent_at
    if subscription.cadence == Cadence.IMMEDIATE:
        return now - timedelta(minutes=get_config().digest.immediate_lookback_minutes)
    return now - DEFAULT_WINDOWS[subscription.cadence]


def compute_next_due(subscription: AlertSubscription, now: datetime) -> datetime | None:
    """Next time the subscription becomes eligible after a run at `now`."""
    cadence = subscription.cadence
    if cadence == Cadence.IMMEDIATE:
        return None
    if cadence == Cadence.HOURLY_DIGEST:
        return next_hour(now)
    if cadence == Cadence.DAILY_DIGEST:
        return next_local_occurrence(now, subscription.timezone, subscription.send_hour)
    return next_local_occurrence(
        now,
        subscription.timezone,
        subscription.send_hour,
        weekday=subscription.send_weekday,
    )


def _advance(subscription: AlertSubscription, now: datetime) -> None:
    subscription.last_sent_at = now
    subscription.next_due_at = compute_next_due(subscription, now)


async def _due_subscription_ids(db: AsyncSession, cadence: Cadence) -> list:
    result = await db.execute(
        select(AlertSubscription.id)
        .where(
            AlertSubscription.cadence == cadence,
            AlertSubscription.is_active.is_(True),
            AlertSubscription.email_enabled.is_(True),
        )
        .order_by(AlertSubscription.created_at)
    )
    return list(result.scalars().all())


async def _lock_subscription(db: AsyncSession, subscription_id) -> AlertSubscription | None:
    """Load a subscription row, skipping it if another run holds its lock."""
    result = await db.execute(
        select(AlertSubscription)
        .where(AlertSubscription.id == subscription_id)
        .with_for_update(skip_locked=True)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def process_subscription(
    db: AsyncSession,
    subscription: AlertSubscription,
    now: datetime,
) -> bool:
    """Match, dedup, record and enqueue for one due subscription.

    Does not commit. Returns True if an email was enqueued.
    """
    config = get_config().digest
    cadence = subscription.cadence
    log = logger.bind(subscription_id=str(subscription.id), cadence=cadence.value)

    candidates = await find_candidates(
        db,
        subscription,
        window_start(subscription, now),
        now=now,
        published_today_only=cadence == Cadence.IMMEDIATE,
        limit=config.max_items,
    )

    seen = await ledger.already_notified(
        db, subscription.id, timedelta(days=config.dedup_lookback_days), now=now
    )
    fresh = [c for c in candidates if c.key not in seen]

    # Only items this run recorded are sent; a concurrent run that lost
    # every ledger race enqueues nothing
    recorded = []
    for candidate in fresh:
        if await ledger.record(db, subscription.id, candidate, now=now):
            recorded.append(candidate)

    if not recorded:
        _advance(subscription, now)
        log.bind(candidates=len(candidates)).debug("no_new_content")
        return False

    email = render_digest(subscription, recorded, cadence, now=now)
    item = await queue_store.enqueue_email(
        db,
        destination=subscription.email,
        subject=email.subject,
        body=email.text,
        html_body=email.html,
        subscription_id=subscription.id,
        priority=PRIORITY_IMMEDIATE if cadence == Cadence.IMMEDIATE else PRIORITY_DIGEST,
        alert_type=cadence.value,
        content_keys=[c.key_str for c in recorded],
        now=now,
    )
    _advance(subscription, now)

    log.bind(queue_item_id=str(item.id), items=len(recorded)).info("digest_enqueued")
    return True


async def run_digests(
    db: AsyncSession,
    cadence: Cadence,
    *,
    now: datetime | None = None,
) -> DigestRunStats:
    """Evaluate every active subscription of a cadence and enqueue due digests.

    Each subscription is handled in its own transaction with its row
    locked, and the due-check is repeated after locking, so overlapping
    invocations are no-ops. An error in one subscription is logged, rolled
    back and counted, and the run continues.

    Args:
        db: Database session
        cadence: Which subscriptions to evaluate
        now: Reference time (defaults to current UTC time)

    Returns:
        DigestRunStats with processed, queued, skipped, empty and errors counts
    """
    now = now or utc_now()
    stats = DigestRunStats()

    subscription_ids = await _due_subscription_ids(db, cadence)
    logger.bind(cadence=cadence.value, subscriptions=len(subscription_ids)).info(
        "digest_run_started"
    )

    for subscription_id in subscription_ids:
        try:
            subscription = await _lock_subscription(db, subscription_id)
            if subscription is None:
                stats.skipped += 1
                await db.commit()
                continue

            if not is_due(subscription, now):
                stats.skipped += 1
                await db.commit()
                continue

            stats.processed += 1
            if await process_subscription(db, subscription, now):
                stats.queued += 1
            else:
                stats.empty += 1
            await db.commit()
        except Exception as e:
            await db.rollback()
            stats.errors += 1
            logger.bind(
                subscription_id=str(subscription_id),
                cadence=cadence.value,
                error=str(e),
            ).error("digest_subscription_failed")

    logger.bind(cadence=cadence.value, **stats.to_dict()).info("digest_run_complete")
    return stats


async def enqueue_test_email(
    db: AsyncSession,
    destination: str,
    *,
    now: datetime | None = None,
):
    """Queue a test email at the highest priority. Does not commit."""
    now = now or utc_now()
    portal_name = get_config().digest.portal_name
    return await queue_store.enqueue_email(
        db,
        destination=destination,
        subject=f"{portal_name} - Test Alert",
        body=(
            f"This is a test email from {portal_name} alerts.\n\n"
            f"Sent at {now.isoformat()} UTC. If you received it, delivery is working."
        ),
        priority=PRIORITY_TEST,
        alert_type="test",
        now=now,
    )
