"""Dedup ledger: which content each subscription has already been sent."""

import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from alert_relay.core.datetime_utils import utc_now
from alert_relay.core.logging import get_logger
from alert_relay.models.ledger import AlertContentSent
from alert_relay.schemas.content import ContentCandidate, ContentKey

logger = get_logger(__name__)

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


async def already_notified(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    lookback: timedelta,
    *,
    now: datetime | None = None,
) -> set[ContentKey]:
    """Get the content keys recorded for a subscription within the lookback window.

    Args:
        db: Database session
        subscription_id: Subscription to check
        lookback: How far back to look (e.g. 7 days)
        now: Reference time (defaults to current UTC time)

    Returns:
        Set of (domain, content_type, content_id) tuples
    """
    cutoff = (now or utc_now()) - lookback
    result = await db.execute(
        select(
            AlertContentSent.domain,
            AlertContentSent.content_type,
            AlertContentSent.content_id,
        ).where(
            AlertContentSent.subscription_id == subscription_id,
            AlertContentSent.sent_at > cutoff,
        )
    )
    return {(row.domain, row.content_type, row.content_id) for row in result}


async def record(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    candidate: ContentCandidate,
    *,
    now: datetime | None = None,
) -> bool:
    """Record that a candidate was queued for a subscription.

    Idempotent: a second insert for the same key is a no-op. Concurrent
    writers are serialized by the unique constraint and only the first one
    gets True back.

    Returns:
        True if this call created the entry, False if it already existed
    """
    values = {
        "id": uuid.uuid4(),
        "subscription_id": subscription_id,
        "domain": candidate.domain,
        "content_type": candidate.content_type,
        "content_id": candidate.content_id,
        "sent_at": now or utc_now(),
    }

    dialect = db.get_bind().dialect.name
    insert_fn = _UPSERT_INSERTS.get(dialect)

    if insert_fn is not None:
        stmt = (
            insert_fn(AlertContentSent)
            .values(**values)
            .on_conflict_do_nothing(
                index_elements=["subscription_id", "domain", "content_type", "content_id"]
            )
        )
        result = await db.execute(stmt)
        inserted = result.rowcount == 1
    else:
        try:
            async with db.begin_nested():
                db.add(AlertContentSent(**values))
                await db.flush()
            inserted = True
        except IntegrityError:
            inserted = False

    if not inserted:
        logger.bind(
            subscription_id=str(subscription_id),
            content_key=candidate.key_str,
        ).debug("ledger_entry_exists")
    return inserted


async def prune(
    db: AsyncSession,
    retention: timedelta,
    *,
    lookback: timedelta,
    now: datetime | None = None,
) -> int:
    """Delete ledger entries older than the retention window.

    Never deletes entries younger than the dedup lookback, whatever
    retention is configured, or content could be notified twice.

    Returns:
        Number of deleted entries
    """
    cutoff = (now or utc_now()) - max(retention, lookback)
    result = await db.execute(delete(AlertContentSent).where(AlertContentSent.sent_at < cutoff))
    deleted = result.rowcount or 0
    logger.bind(deleted=deleted, cutoff=cutoff.isoformat()).info("ledger_pruned")
    return deleted
