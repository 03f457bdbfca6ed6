"""
Test: WeaveWorker
=================

Run jobs from the queue go through WeaveService; busy or gated scopes
are skipped and drained candidates are never lost.
"""
from unittest.mock import AsyncMock

import pytest

from models.domain import Phase
from services.job_queue import JobQueue
from workers.weave_worker import WeaveWorker

from factories import SCOPE, candidate_payload


@pytest.fixture
def job_queue():
    queue = AsyncMock(spec=JobQueue)
    queue.drain_candidates.return_value = []
    return queue


@pytest.fixture
def worker(service, job_queue):
    return WeaveWorker(service, job_queue)


class TestJobs:

    @pytest.mark.asyncio
    async def test_bootstrap_job_runs(self, worker, store):
        await worker.handle_job({'scope': SCOPE, 'phase': 'bootstrap'})

        assert worker.jobs_processed == 1
        assert worker.last_report['status'] == 'bootstrap_complete'
        assert (await store.get_scope(SCOPE)).status == 'bootstrap_complete'

    @pytest.mark.asyncio
    async def test_scrape_drains_candidate_queue(self, worker, job_queue, store):
        await worker.handle_job({'scope': SCOPE, 'phase': 'bootstrap'})
        job_queue.drain_candidates.return_value = [
            candidate_payload("Food pantry open", "https://a.example.org/1"),
            candidate_payload("Warming center", "https://b.example.org/1", "aid", 1),
        ]

        await worker.handle_job({'scope': SCOPE, 'phase': 'scrape'})

        job_queue.drain_candidates.assert_awaited_with(SCOPE, limit=worker.drain_limit)
        assert worker.last_report['details']['scrape']['created'] == 2
        assert len(store.signals) == 2

    @pytest.mark.asyncio
    async def test_missing_phase_means_full_run(self, worker):
        await worker.handle_job({'scope': SCOPE})

        assert worker.last_report['phase'] == Phase.FULL_RUN.value
        assert worker.last_report['status'] == 'complete'

    @pytest.mark.asyncio
    async def test_busy_scope_is_skipped(self, worker, job_queue, store):
        await store.set_scope_status(SCOPE, Phase.SYNTHESIS.running_status)

        await worker.handle_job({'scope': SCOPE, 'phase': 'full_run'})

        assert worker.jobs_skipped == 1
        assert worker.jobs_processed == 0
        job_queue.drain_candidates.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gated_phase_is_skipped(self, worker):
        await worker.handle_job({'scope': SCOPE, 'phase': 'supervisor'})

        assert worker.jobs_skipped == 1
        assert worker.last_report is None

    @pytest.mark.asyncio
    async def test_failed_run_requeues_candidates(self, worker, job_queue, service):
        batch = [candidate_payload("Food pantry open", "https://a.example.org/1")]
        job_queue.drain_candidates.return_value = batch
        service.reconciler.reconcile_batch = AsyncMock(side_effect=RuntimeError("neo4j down"))

        await worker.handle_job({'scope': SCOPE, 'phase': 'full_run'})

        assert worker.jobs_failed == 1
        job_queue.submit_candidate.assert_awaited_once_with(SCOPE, batch[0])

    @pytest.mark.asyncio
    async def test_lost_race_requeues_without_failing(self, worker, job_queue, service):
        batch = [candidate_payload("Food pantry open", "https://a.example.org/1")]
        job_queue.drain_candidates.return_value = batch

        async def steal_scope(*args, **kwargs):
            await service.store.set_scope_status(SCOPE, Phase.SCRAPE.running_status)
            return await real_run(*args, **kwargs)

        real_run = service.run_phase
        service.run_phase = steal_scope

        await worker.handle_job({'scope': SCOPE, 'phase': 'full_run'})

        assert worker.jobs_failed == 0
        assert worker.jobs_processed == 1
        job_queue.submit_candidate.assert_awaited_once_with(SCOPE, batch[0])

    @pytest.mark.asyncio
    async def test_stop_before_scrape_keeps_drained_candidates(self, worker, job_queue, service, store):
        batch = [candidate_payload("Food pantry open", "https://a.example.org/1")]
        job_queue.drain_candidates.return_value = batch
        real_ensure_schema = store.ensure_schema

        async def stop_during_bootstrap():
            await real_ensure_schema()
            await store.set_stop_requested(SCOPE, True)

        store.ensure_schema = stop_during_bootstrap

        await worker.handle_job({'scope': SCOPE, 'phase': 'full_run'})

        assert worker.last_report['stopped'] is True
        assert 'scrape' not in worker.last_report['details']
        assert await store.take_deferred_candidates(SCOPE) == batch
        job_queue.submit_candidate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deferred_batch_is_reconciled_next_run(self, worker, job_queue, service, store):
        batch = [candidate_payload("Food pantry open", "https://a.example.org/1")]
        job_queue.drain_candidates.return_value = batch
        real_ensure_schema = store.ensure_schema

        async def stop_once():
            await real_ensure_schema()
            await store.set_stop_requested(SCOPE, True)
            store.ensure_schema = real_ensure_schema

        store.ensure_schema = stop_once
        await worker.handle_job({'scope': SCOPE, 'phase': 'full_run'})

        job_queue.drain_candidates.return_value = []
        await worker.handle_job({'scope': SCOPE, 'phase': 'full_run'})

        assert worker.last_report['details']['scrape']['created'] == 1
        assert len(store.signals) == 1
