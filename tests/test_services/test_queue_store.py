"""Tests for the email queue state machine."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from alert_relay.core.retry import RetryPolicy
from alert_relay.models.history import AlertHistory
from alert_relay.models.queue import EmailQueueItem, QueueStatus
from alert_relay.services import queue_store

pytestmark = pytest.mark.asyncio

POLICY = RetryPolicy()


async def _reload(db_session, item_id) -> EmailQueueItem:
    result = await db_session.execute(
        select(EmailQueueItem)
        .where(EmailQueueItem.id == item_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _history(db_session, item_id) -> AlertHistory:
    result = await db_session.execute(
        select(AlertHistory)
        .where(AlertHistory.queue_item_id == item_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestEnqueue:
    async def test_creates_queued_row_and_pending_history(self, db_session, now):
        item = await queue_store.enqueue_email(
            db_session,
            destination="reader@example.com",
            subject="Energy Watch - Daily Digest",
            body="2 new items",
            alert_type="daily_digest",
            content_keys=["esg:article:1", "esg:article:2"],
            now=now,
        )
        await db_session.commit()

        stored = await _reload(db_session, item.id)
        assert stored.status == QueueStatus.QUEUED
        assert stored.attempts == 0
        assert stored.max_attempts == 3
        assert stored.scheduled_for == now
        assert stored.content_keys == ["esg:article:1", "esg:article:2"]

        history = await _history(db_session, item.id)
        assert history.status == "pending"
        assert history.recipient == "reader@example.com"


class TestClaimBatch:
    async def test_orders_by_priority_then_schedule(self, db_session, queue_item_factory, now):
        digest_early = await queue_item_factory(
            destination="early@example.com", scheduled_for=now - timedelta(hours=2)
        )
        digest_late = await queue_item_factory(
            destination="late@example.com", scheduled_for=now - timedelta(hours=1)
        )
        test_send = await queue_item_factory(destination="admin@example.com", priority=10)

        claimed = await queue_store.claim_batch(db_session, "worker-a", 10, now=now)

        assert [i.id for i in claimed] == [test_send.id, digest_early.id, digest_late.id]
        assert all(i.status == QueueStatus.PROCESSING for i in claimed)
        assert all(i.claimed_by == "worker-a" for i in claimed)

    async def test_skips_future_and_exhausted_items(self, db_session, queue_item_factory, now):
        await queue_item_factory(scheduled_for=now + timedelta(minutes=5))
        await queue_item_factory(attempts=3, max_attempts=3)
        due = await queue_item_factory()

        claimed = await queue_store.claim_batch(db_session, "worker-a", 10, now=now)

        assert [i.id for i in claimed] == [due.id]

    async def test_respects_batch_size(self, db_session, queue_item_factory, now):
        for _ in range(5):
            await queue_item_factory()

        claimed = await queue_store.claim_batch(db_session, "worker-a", 2, now=now)

        assert len(claimed) == 2

    async def test_claimed_rows_are_not_claimed_again(self, db_session, queue_item_factory, now):
        await queue_item_factory()

        first = await queue_store.claim_batch(db_session, "worker-a", 10, now=now)
        second = await queue_store.claim_batch(db_session, "worker-b", 10, now=now)

        assert len(first) == 1
        assert second == []

    async def test_conditional_claim_has_one_winner(self, db_session, queue_item_factory, now):
        item = await queue_item_factory()

        assert await queue_store.try_claim(db_session, item.id, "worker-a", now=now) is True
        assert await queue_store.try_claim(db_session, item.id, "worker-b", now=now) is False

        stored = await _reload(db_session, item.id)
        assert stored.claimed_by == "worker-a"

    async def test_empty_queue(self, db_session, now):
        assert await queue_store.claim_batch(db_session, "worker-a", 10, now=now) == []


class TestMarkSent:
    async def test_transitions_row_and_history(self, db_session, queue_item_factory, now):
        await queue_item_factory()
        [item] = await queue_store.claim_batch(db_session, "worker-a", 10, now=now)

        assert await queue_store.mark_sent(db_session, item, "worker-a", now=now) is True
        await db_session.commit()

        stored = await _reload(db_session, item.id)
        assert stored.status == QueueStatus.SENT
        assert stored.sent_at == now
        assert stored.attempts == 1
        history = await _history(db_session, item.id)
        assert history.status == "sent"
        assert history.sent_at == now

    async def test_requires_the_claim(self, db_session, queue_item_factory, now):
        await queue_item_factory()
        [item] = await queue_store.claim_batch(db_session, "worker-a", 10, now=now)

        assert await queue_store.mark_sent(db_session, item, "worker-b", now=now) is False

        stored = await _reload(db_session, item.id)
        assert stored.status == QueueStatus.PROCESSING


class TestMarkFailed:
    async def test_requeues_with_backoff(self, db_session, queue_item_factory, now):
        await queue_item_factory(attempts=0)
        [item] = await queue_store.claim_batch(db_session, "worker-a", 10, now=now)

        outcome = await queue_store.mark_failed(
            db_session, item, "worker-a", "connection reset", policy=POLICY, now=now
        )
        await db_session.commit()

        assert outcome == queue_store.REQUEUED
        stored = await _reload(db_session, item.id)
        assert stored.status == QueueStatus.QUEUED
        assert stored.attempts == 1
        assert stored.last_error == "connection reset"
        assert stored.scheduled_for == now + timedelta(minutes=5)
        assert stored.claimed_by is None

    async def test_terminal_after_last_attempt(self, db_session, queue_item_factory, now):
        await queue_item_factory(attempts=2, max_attempts=3)
        [item] = await queue_store.claim_batch(db_session, "worker-a", 10, now=now)

        outcome = await queue_store.mark_failed(
            db_session, item, "worker-a", "mailbox unavailable", policy=POLICY, now=now
        )
        await db_session.commit()

        assert outcome == queue_store.FAILED
        stored = await _reload(db_session, item.id)
        assert stored.status == QueueStatus.FAILED
        assert stored.attempts == 3
        history = await _history(db_session, item.id)
        assert history.status == "failed"
        assert history.error_message == "mailbox unavailable"
        assert history.retry_count == 3

    async def test_long_errors_truncated(self, db_session, queue_item_factory, now):
        await queue_item_factory()
        [item] = await queue_store.claim_batch(db_session, "worker-a", 10, now=now)

        await queue_store.mark_failed(
            db_session, item, "worker-a", "x" * 5000, policy=POLICY, now=now
        )

        stored = await _reload(db_session, item.id)
        assert len(stored.last_error) == queue_store.MAX_ERROR_LENGTH


class TestReleaseStaleClaims:
    async def test_expired_claim_counts_as_failed_attempt(
        self, db_session, queue_item_factory, now
    ):
        await queue_item_factory(now=now - timedelta(hours=1))
        [item] = await queue_store.claim_batch(
            db_session, "crashed-worker", 10, now=now - timedelta(minutes=30)
        )

        released = await queue_store.release_stale_claims(
            db_session, timedelta(minutes=10), policy=POLICY, now=now
        )
        await db_session.commit()

        assert released == 1
        stored = await _reload(db_session, item.id)
        assert stored.status == QueueStatus.QUEUED
        assert stored.attempts == 1
        assert "crashed-worker" in stored.last_error

    async def test_recent_claims_untouched(self, db_session, queue_item_factory, now):
        await queue_item_factory()
        await queue_store.claim_batch(db_session, "busy-worker", 10, now=now)

        released = await queue_store.release_stale_claims(
            db_session, timedelta(minutes=10), policy=POLICY, now=now + timedelta(minutes=2)
        )

        assert released == 0


class TestCancel:
    async def test_cancels_queued_item(self, db_session, queue_item_factory):
        item = await queue_item_factory()

        assert await queue_store.cancel(db_session, item.id) is True
        await db_session.commit()

        stored = await _reload(db_session, item.id)
        assert stored.status == QueueStatus.CANCELLED
        assert (await _history(db_session, item.id)).status == "cancelled"

    async def test_processing_item_cannot_be_cancelled(
        self, db_session, queue_item_factory, now
    ):
        await queue_item_factory()
        [item] = await queue_store.claim_batch(db_session, "worker-a", 10, now=now)

        assert await queue_store.cancel(db_session, item.id) is False
        stored = await _reload(db_session, item.id)
        assert stored.status == QueueStatus.PROCESSING


class TestRequeue:
    async def test_failed_item_with_attempts_left(self, db_session, queue_item_factory, now):
        item = await queue_item_factory(attempts=1)
        item.status = QueueStatus.FAILED
        await db_session.commit()

        assert await queue_store.requeue(db_session, item.id, now=now) is True

        stored = await _reload(db_session, item.id)
        assert stored.status == QueueStatus.QUEUED
        assert stored.scheduled_for == now

    async def test_exhausted_item_stays_failed(self, db_session, queue_item_factory, now):
        item = await queue_item_factory(attempts=3, max_attempts=3)
        item.status = QueueStatus.FAILED
        await db_session.commit()

        assert await queue_store.requeue(db_session, item.id, now=now) is False


class TestCleanup:
    async def test_deletes_old_finished_rows_only(self, db_session, queue_item_factory, now):
        old_sent = await queue_item_factory(now=now - timedelta(days=40))
        old_sent.status = QueueStatus.SENT
        old_queued = await queue_item_factory(now=now - timedelta(days=40))
        recent_sent = await queue_item_factory(now=now - timedelta(days=2))
        recent_sent.status = QueueStatus.SENT
        await db_session.commit()

        deleted = await queue_store.cleanup(db_session, 30, now=now)
        await db_session.commit()

        assert deleted == 1
        remaining = (await db_session.execute(select(EmailQueueItem.id))).scalars().all()
        assert set(remaining) == {old_queued.id, recent_sent.id}

    async def test_every_terminal_status_is_deleted(self, db_session, queue_item_factory, now):
        old = now - timedelta(days=40)
        items = {}
        for status in (
            QueueStatus.SENT,
            QueueStatus.FAILED,
            QueueStatus.CANCELLED,
            QueueStatus.PROCESSING,
        ):
            item = await queue_item_factory(now=old)
            item.status = status
            items[status] = item.id
        await db_session.commit()

        deleted = await queue_store.cleanup(db_session, 30, now=now)
        await db_session.commit()

        assert deleted == 3
        remaining = (await db_session.execute(select(EmailQueueItem.id))).scalars().all()
        assert remaining == [items[QueueStatus.PROCESSING]]


class TestQueueStats:
    async def test_counts_per_status(self, db_session, queue_item_factory, now):
        await queue_item_factory(scheduled_for=now + timedelta(minutes=30))
        cancelled = await queue_item_factory()
        await queue_store.cancel(db_session, cancelled.id)
        await db_session.commit()

        stats = await queue_store.queue_stats(db_session)

        assert stats["total"] == 2
        assert stats["queued"] == 1
        assert stats["cancelled"] == 1
        assert stats["sent"] == 0
        assert stats["next_scheduled"] == (now + timedelta(minutes=30)).isoformat()
