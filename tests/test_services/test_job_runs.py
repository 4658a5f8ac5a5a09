"""Tests for job run bookkeeping and retention."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from alert_relay.models.job_run import JobRun
from alert_relay.models.queue import QueueStatus
from alert_relay.services.job_runs import OUTCOME_ERROR, OUTCOME_SUCCESS, run_retention, track_job

pytestmark = pytest.mark.asyncio


async def _job_runs(db_session) -> list[JobRun]:
    result = await db_session.execute(select(JobRun))
    return list(result.scalars().all())


class TestTrackJob:
    async def test_records_success_with_stats(self, db_session):
        async with track_job(db_session, "queue_process", trigger="cli") as stats:
            stats.update({"processed": 2, "sent": 2})

        [job_run] = await _job_runs(db_session)
        assert job_run.job_id == "queue_process"
        assert job_run.trigger == "cli"
        assert job_run.outcome == OUTCOME_SUCCESS
        assert job_run.stats == {"processed": 2, "sent": 2}

    async def test_records_error_and_reraises(self, db_session):
        with pytest.raises(RuntimeError, match="database went away"):
            async with track_job(db_session, "digest_daily_digest", trigger="scheduler"):
                raise RuntimeError("database went away")

        [job_run] = await _job_runs(db_session)
        assert job_run.outcome == OUTCOME_ERROR
        assert job_run.error == "database went away"


class TestRunRetention:
    async def test_deletes_old_rows_and_reports_counts(self, db_session, queue_item_factory, now):
        old = await queue_item_factory(now=now - timedelta(days=45))
        old.status = QueueStatus.CANCELLED
        await db_session.commit()

        result = await run_retention(db_session, now=now)

        assert result == {"deleted": 1, "ledger_pruned": 0}
