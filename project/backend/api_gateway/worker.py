"""
Composite job worker.

Takes jobs from the Redis queue and runs them through the orchestrator, up to
settings.max_concurrent_jobs at a time.
"""

import asyncio
from typing import Optional, Set

from api_gateway.orchestrator import CompositeOrchestrator
from api_gateway.services.queue_service import (
    QUEUE_NAME,
    mark_processing,
    requeue_interrupted,
    unmark_processing
)
from shared.config import settings
from shared.errors import JobNotFoundError, RetryableError
from shared.logging import get_logger
from shared.redis_client import RedisClient, redis_client

logger = get_logger(__name__)

POP_TIMEOUT = 5
ERROR_BACKOFF = 5


class CompositeWorker:
    """
    Queue consumer.

    Args:
        orchestrator: Runs each job (built from settings when omitted)
        redis: Redis client holding the queue
        max_concurrent_jobs: Jobs in flight at once
    """

    def __init__(
        self,
        orchestrator: Optional[CompositeOrchestrator] = None,
        redis: Optional[RedisClient] = None,
        max_concurrent_jobs: Optional[int] = None
    ):
        self.orchestrator = orchestrator or CompositeOrchestrator()
        self.redis = redis or redis_client
        self.max_concurrent_jobs = max_concurrent_jobs or settings.max_concurrent_jobs
        self.semaphore = asyncio.Semaphore(self.max_concurrent_jobs)
        self._tasks: Set[asyncio.Task] = set()

    async def process_job(self, job_data: dict) -> None:
        """
        Run one queued job.

        Job failures are recorded by the orchestrator; anything raised here is
        logged so one bad job cannot stop the worker.
        """
        composite_id = job_data.get("composite_id")
        if not composite_id:
            logger.error("Invalid job data", extra={"job_data": job_data})
            return

        logger.info("Processing job", extra={"job_id": composite_id})
        try:
            composite = await self.orchestrator.run(composite_id)
            logger.info(
                "Job processed",
                extra={"job_id": composite_id, "status": composite.status.value}
            )
        except JobNotFoundError as e:
            logger.error("Queued job does not exist", exc_info=e, extra={"job_id": composite_id})
        except Exception as e:
            logger.error("Unexpected error processing job", exc_info=e, extra={"job_id": composite_id})

    async def _run_tracked(self, job_data: dict) -> None:
        composite_id = job_data.get("composite_id")
        try:
            if composite_id:
                await mark_processing(composite_id, self.redis)
            await self.process_job(job_data)
            if composite_id:
                await unmark_processing(composite_id, self.redis)
        except Exception as e:
            logger.error("Failed to track job", exc_info=e, extra={"job_id": composite_id})
        finally:
            self.semaphore.release()

    def active_jobs(self) -> int:
        return len(self._tasks)

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Consume the queue until cancelled or `stop_event` is set.

        A slot is reserved before popping, so a job is only taken off the queue
        when it can start immediately.
        """
        logger.info(
            "Worker started",
            extra={"queue_name": QUEUE_NAME, "max_concurrent_jobs": self.max_concurrent_jobs}
        )

        try:
            while stop_event is None or not stop_event.is_set():
                await self.semaphore.acquire()
                try:
                    job_data = await self.redis.pop(QUEUE_NAME, timeout=POP_TIMEOUT)
                except RetryableError as e:
                    self.semaphore.release()
                    logger.error("Error in worker loop", exc_info=e)
                    await asyncio.sleep(ERROR_BACKOFF)
                    continue

                if job_data is None:
                    self.semaphore.release()
                    continue

                task = asyncio.create_task(self._run_tracked(job_data))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        except asyncio.CancelledError:
            logger.info("Worker loop cancelled", extra={"active_jobs": self.active_jobs()})
            # Interrupted jobs stay in the processing set and are requeued on next start
            for task in list(self._tasks):
                task.cancel()
            raise

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Worker stopped")


async def main():
    """Main entry point for the worker process."""
    worker = CompositeWorker()
    try:
        await requeue_interrupted(worker.redis)
        await worker.run()
    except asyncio.CancelledError:
        logger.info("Worker stopped by signal")
    except Exception as e:
        logger.error("Worker crashed", exc_info=e)
        raise
    finally:
        await worker.redis.close()


if __name__ == "__main__":
    asyncio.run(main())
