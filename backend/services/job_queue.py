"""
Redis-based job queue for weave workers

Uses LPUSH/BRPOP for efficient queue consumption

Queue types:
- Run queue: queue:weave:run - {scope, phase} jobs consumed by WeaveWorker
- Candidate queues: queue:signals:{scope} - extraction output, drained
  by the SCRAPE phase for that scope
"""
import json
import redis.asyncio as redis
from typing import Optional, List


class JobQueue:
    """
    Redis-based job queue system

    Queues:
    - 'queue:weave:run'          → WeaveWorker consumes run requests
    - 'queue:signals:{scope}'    → candidate signals waiting for SCRAPE

    Workers use BRPOP (blocking pop) for efficient consumption
    Each job is consumed by exactly ONE worker (round-robin)
    """

    RUN_QUEUE = 'queue:weave:run'
    SIGNALS_QUEUE = 'queue:signals:{scope}'

    def __init__(self, redis_url: str):
        self.redis = None
        self.redis_url = redis_url

    async def connect(self):
        """Initialize Redis connection"""
        self.redis = await redis.from_url(self.redis_url, decode_responses=True)

    async def close(self):
        """Close Redis connection"""
        if self.redis:
            await self.redis.close()

    async def enqueue(self, queue_name: str, job: dict):
        """
        Add job to queue

        Example:
            await queue.enqueue('queue:weave:run', {
                'scope': 'city:oakland',
                'phase': 'full_run'
            })
        """
        await self.redis.lpush(queue_name, json.dumps(job, default=str))

    async def dequeue(self, queue_name: str, timeout: int = 5) -> Optional[dict]:
        """
        Blocking pop from queue (BRPOP)

        Blocks until job available or timeout
        Returns None on timeout
        """
        result = await self.redis.brpop(queue_name, timeout=timeout)
        if result:
            # result is a tuple: (queue_name, job_json)
            return json.loads(result[1])
        return None

    async def drain(self, queue_name: str, limit: int = 1000) -> List[dict]:
        """
        Take up to `limit` jobs without blocking, oldest first.

        LRANGE and LTRIM run in one MULTI block so a concurrent LPUSH is
        either fully in the batch or left on the list.
        """
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrange(queue_name, -limit, -1)
            pipe.ltrim(queue_name, 0, -limit - 1)
            items, _ = await pipe.execute()
        # LPUSH puts the newest at the head
        return [json.loads(item) for item in reversed(items)]

    # Weave helpers

    @classmethod
    def signals_queue(cls, scope: str) -> str:
        return cls.SIGNALS_QUEUE.format(scope=scope)

    async def submit_run(self, scope: str, phase: str = 'full_run'):
        """
        Ask a WeaveWorker to run a phase for a scope.

        Example:
            await queue.submit_run('city:oakland', 'synthesis')
        """
        await self.enqueue(self.RUN_QUEUE, {'scope': scope, 'phase': phase})

    async def submit_candidate(self, scope: str, candidate: dict):
        """Queue an extracted candidate signal for the next SCRAPE of `scope`."""
        await self.enqueue(self.signals_queue(scope), candidate)

    async def drain_candidates(self, scope: str, limit: int = 1000) -> List[dict]:
        return await self.drain(self.signals_queue(scope), limit=limit)
