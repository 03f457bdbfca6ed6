"""
Base worker class for weave workers

Redis queue consumption (BRPOP) with signal handling and per-job error
isolation. Subclasses decide whether a job is runnable and do the work.
"""
import asyncio
import signal
import logging
from typing import Tuple
from services.job_queue import JobQueue

logger = logging.getLogger(__name__)


class BaseWorker:
    """
    Base class for weave workers

    - Signal handling (graceful shutdown)
    - Redis queue consumption (BRPOP)
    - Per-job failure accounting; one bad job never stops the loop
    """

    def __init__(
        self,
        job_queue: JobQueue,
        worker_name: str,
        queue_name: str
    ):
        self.job_queue = job_queue
        self.worker_name = worker_name
        self.queue_name = queue_name
        self.running = False
        self.jobs_processed = 0
        self.jobs_skipped = 0
        self.jobs_failed = 0

    async def start(self):
        """
        Main worker loop

        Continuously:
        1. BRPOP from queue (blocks until job available)
        2. Fetch current state for the job
        3. Decide if the job can run now
        4. Process it
        """
        self._setup_signal_handlers()

        self.running = True
        logger.info(f"[{self.worker_name}] Started, listening on {self.queue_name}")

        while self.running:
            try:
                job = await self.job_queue.dequeue(self.queue_name, timeout=5)
                if job:
                    await self.handle_job(job)

            except asyncio.CancelledError:
                logger.info(f"[{self.worker_name}] Received cancellation signal")
                break
            except Exception as e:
                logger.error(f"[{self.worker_name}] Worker loop error: {e}", exc_info=True)
                await asyncio.sleep(1)

        logger.info(
            f"[{self.worker_name}] Shutting down. "
            f"Processed: {self.jobs_processed}, Skipped: {self.jobs_skipped}, Failed: {self.jobs_failed}"
        )

    async def handle_job(self, job: dict):
        """Run one job through get_state -> should_process -> process."""
        logger.debug(f"[{self.worker_name}] Received job: {job}")
        try:
            state = await self.get_state(job)
            should_process, reason = await self.should_process(job, state)

            if should_process:
                logger.info(f"[{self.worker_name}] Processing job {job}")
                await self.process(job, state)
                self.jobs_processed += 1
            else:
                self.jobs_skipped += 1
                logger.info(f"[{self.worker_name}] Skipping job {job}: {reason}")

        except Exception as e:
            self.jobs_failed += 1
            await self.handle_error(job, e)

    def _setup_signal_handlers(self):
        """Setup graceful shutdown on SIGTERM/SIGINT"""
        def shutdown_handler(signum, frame):
            logger.info(f"[{self.worker_name}] Received signal {signum}, shutting down...")
            self.running = False

        signal.signal(signal.SIGTERM, shutdown_handler)
        signal.signal(signal.SIGINT, shutdown_handler)

    async def process(self, job: dict, state: dict):
        """Override in subclass - do the actual work"""
        raise NotImplementedError(f"{self.__class__.__name__} must implement process()")

    async def should_process(self, job: dict, state: dict) -> Tuple[bool, str]:
        """
        Decide whether the job can run now.

        Returns:
            (should_process, reason)
        """
        raise NotImplementedError(f"{self.__class__.__name__} must implement should_process()")

    async def get_state(self, job: dict) -> dict:
        """Override in subclass to fetch whatever should_process needs"""
        raise NotImplementedError(f"{self.__class__.__name__} must implement get_state()")

    async def handle_error(self, job: dict, error: Exception):
        """
        Handle job processing error

        Default: Log error. Override for retry logic.
        """
        logger.error(
            f"[{self.worker_name}] Error processing job {job}: {error}",
            exc_info=True
        )
