"""
Weave Worker - runs weave phases for scopes on request

Architecture:
- Consumes run jobs {scope, phase} from Redis (queue:weave:run)
- SCRAPE drains queue:signals:{scope} and reconciles the batch
- Every run goes through WeaveService.run_phase, so the durable scope
  lock in Neo4j is shared by all workers; a busy scope is skipped, not
  queued

Flow: Extraction → queue:signals:{scope} ─┐
      Scheduler/API → queue:weave:run ────┴→ WeaveWorker → Neo4j
"""
import logging
from typing import Optional, Tuple

from models.domain import Phase, is_running
from services.job_queue import JobQueue
from services.worker_base import BaseWorker
from weave.errors import PhaseNotEnabledError, ScopeBusyError
from weave.service import WeaveService

logger = logging.getLogger(__name__)


class WeaveWorker(BaseWorker):
    """
    One worker drives one run at a time. Horizontal scaling is safe: the
    run lock lives in the graph, not in this process.
    """

    QUEUE_NAME = JobQueue.RUN_QUEUE

    def __init__(
        self,
        service: WeaveService,
        job_queue: JobQueue,
        worker_id: int = 1,
        drain_limit: int = 1000,
    ):
        super().__init__(
            job_queue=job_queue,
            worker_name=f"weave-worker-{worker_id}",
            queue_name=self.QUEUE_NAME,
        )
        self.service = service
        self.drain_limit = drain_limit
        self.last_report: Optional[dict] = None

    async def get_state(self, job: dict) -> dict:
        return await self.service.get_scope_status(job['scope'])

    async def should_process(self, job: dict, state: dict) -> Tuple[bool, str]:
        if is_running(state.get('status')):
            return False, f"scope busy ({state['status']})"
        phase = Phase.parse(job.get('phase', Phase.FULL_RUN.value))
        if not state['phase_enabled'].get(phase.value, False):
            return False, f"{phase.value} not enabled in status {state.get('status')}"
        return True, "enabled"

    async def process(self, job: dict, state: dict):
        scope = job['scope']
        phase = Phase.parse(job.get('phase', Phase.FULL_RUN.value))

        candidates = None
        if phase in (Phase.SCRAPE, Phase.FULL_RUN):
            candidates = await self.job_queue.drain_candidates(scope, limit=self.drain_limit)
            logger.info(f"📥 [{scope}] drained {len(candidates)} candidates")

        try:
            report = await self.service.run_phase(scope, phase, candidates=candidates)
        except (ScopeBusyError, PhaseNotEnabledError) as e:
            # Lost the race to another worker
            await self._requeue(scope, candidates)
            logger.warning(f"⚠️  [{scope}] {e}")
            return
        except Exception:
            await self._requeue(scope, candidates)
            raise

        self.last_report = report.to_dict()
        logger.info(f"📊 [{scope}] {phase.value} → {report.status} (run_seq={report.run_seq})")

    async def _requeue(self, scope: str, candidates):
        """Put a drained batch back so the next SCRAPE sees it."""
        for candidate in candidates or []:
            await self.job_queue.submit_candidate(scope, candidate)
        if candidates:
            logger.info(f"↩️  [{scope}] re-queued {len(candidates)} candidates")


async def main():
    """Run the weave worker."""
    import os

    from config import create_job_queue, create_neo4j_service, create_weave_service

    neo4j = await create_neo4j_service()
    job_queue = await create_job_queue()
    service = create_weave_service(neo4j)
    worker = WeaveWorker(service, job_queue, worker_id=int(os.getenv('WORKER_ID', 1)))

    try:
        await worker.start()
    finally:
        await neo4j.close()
        await job_queue.close()
