"""Background ingestion worker - asyncio queue with a fixed pool of tasks."""

import asyncio
import logging
from dataclasses import dataclass
from uuid import UUID

from backend.app.docs.ingest import IngestionPipeline
from backend.app.errors import RagError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionJob:
    """Queued request to ingest a pending document."""

    document_id: UUID
    tenant_id: UUID
    raw_text: str | None = None


class IngestionWorker:
    """Runs queued ingestions off the request path.

    Completion is observable through the document status; submit() returns
    as soon as the job is queued.
    """

    def __init__(self, pipeline: IngestionPipeline, *, workers: int = 2) -> None:
        if workers <= 0:
            raise ValueError("workers must be positive")
        self._pipeline = pipeline
        self._workers = workers
        self._queue: asyncio.Queue[IngestionJob] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        """Spawn worker tasks on the running event loop."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._run(), name=f"ingestion-worker-{i}")
            for i in range(self._workers)
        ]
        logger.info(f"Started {self._workers} ingestion workers")

    async def stop(self) -> None:
        """Cancel worker tasks.

        An ingestion cut short is marked as failed. Queued jobs that were not
        started are discarded; their documents stay pending for
        resume_pending().
        """
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._tasks = []
        logger.info("Stopped ingestion workers")

    async def submit(self, job: IngestionJob) -> None:
        await self._queue.put(job)

    async def resume_pending(self) -> int:
        """Queue every pending document, including ones left by a previous run.

        Returns:
            Number of jobs queued
        """
        pending = await self._pipeline.recover_interrupted()
        for document in pending:
            await self.submit(IngestionJob(document.document_id, document.team_id))
        if pending:
            logger.info(f"Queued {len(pending)} pending documents for ingestion")
        return len(pending)

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._pipeline.ingest(job.document_id, job.tenant_id, job.raw_text)
            except RagError as e:
                # Conflict or not-found: another worker owns it or it was deleted
                logger.warning(f"Skipped ingestion of document {job.document_id}: {e.message}")
            except Exception:
                logger.exception(f"Ingestion worker crashed on document {job.document_id}")
            finally:
                self._queue.task_done()
