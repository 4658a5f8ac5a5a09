"""Tests for the dedup ledger."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from alert_relay.core.datetime_utils import utc_now
from alert_relay.models.ledger import AlertContentSent
from alert_relay.schemas.content import ContentCandidate
from alert_relay.services import ledger

pytestmark = pytest.mark.asyncio


def _candidate(content_id: str = "42", domain: str = "esg") -> ContentCandidate:
    return ContentCandidate(
        domain=domain,
        content_type="article",
        content_id=content_id,
        published_at=utc_now(),
        title="Carbon pricing update",
    )


async def _count(db_session) -> int:
    result = await db_session.execute(select(func.count(AlertContentSent.id)))
    return result.scalar()


class TestRecord:
    async def test_first_writer_wins(self, db_session, subscription_factory, now):
        sub = await subscription_factory()

        assert await ledger.record(db_session, sub.id, _candidate(), now=now) is True
        assert await ledger.record(db_session, sub.id, _candidate(), now=now) is False
        assert await _count(db_session) == 1

    async def test_same_item_for_different_subscriptions(
        self, db_session, subscription_factory, now
    ):
        first = await subscription_factory()
        second = await subscription_factory()

        assert await ledger.record(db_session, first.id, _candidate(), now=now) is True
        assert await ledger.record(db_session, second.id, _candidate(), now=now) is True

    async def test_key_includes_domain(self, db_session, subscription_factory, now):
        sub = await subscription_factory()

        assert await ledger.record(db_session, sub.id, _candidate(domain="esg"), now=now)
        assert await ledger.record(db_session, sub.id, _candidate(domain="credit"), now=now)


class TestAlreadyNotified:
    async def test_returns_keys_within_lookback(self, db_session, subscription_factory, now):
        sub = await subscription_factory()
        await ledger.record(db_session, sub.id, _candidate("recent"), now=now - timedelta(days=2))
        await ledger.record(db_session, sub.id, _candidate("stale"), now=now - timedelta(days=9))

        keys = await ledger.already_notified(db_session, sub.id, timedelta(days=7), now=now)

        assert keys == {("esg", "article", "recent")}

    async def test_scoped_to_subscription(self, db_session, subscription_factory, now):
        first = await subscription_factory()
        second = await subscription_factory()
        await ledger.record(db_session, first.id, _candidate(), now=now)

        keys = await ledger.already_notified(db_session, second.id, timedelta(days=7), now=now)
        assert keys == set()


class TestPrune:
    async def test_deletes_entries_past_retention(self, db_session, subscription_factory, now):
        sub = await subscription_factory()
        await ledger.record(db_session, sub.id, _candidate("old"), now=now - timedelta(days=40))
        await ledger.record(db_session, sub.id, _candidate("new"), now=now - timedelta(days=3))

        deleted = await ledger.prune(
            db_session, timedelta(days=30), lookback=timedelta(days=7), now=now
        )

        assert deleted == 1
        assert await _count(db_session) == 1

    async def test_never_prunes_inside_lookback(self, db_session, subscription_factory, now):
        """A retention shorter than the dedup lookback is widened to the lookback."""
        sub = await subscription_factory()
        await ledger.record(db_session, sub.id, _candidate(), now=now - timedelta(days=5))

        deleted = await ledger.prune(
            db_session, timedelta(days=1), lookback=timedelta(days=7), now=now
        )

        assert deleted == 0
