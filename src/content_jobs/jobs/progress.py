"""Best-effort progress side channel for running executors."""

from __future__ import annotations

import logging
import queue
import threading

from sqlalchemy.exc import SQLAlchemyError

from content_jobs.jobs.models import ProgressUpdate
from content_jobs.jobs.repository import JobRepository

logger = logging.getLogger(__name__)

_STOP = object()


class ProgressReporter:
    """Forwards executor progress to the job store without ever blocking or raising.

    Updates go through a bounded queue drained by one daemon thread. A full
    queue drops the update; a storage error is logged and discarded.
    """

    def __init__(
        self,
        *,
        repository: JobRepository,
        job_id: str,
        max_pending: int = 256,
        log_every: int = 0,
    ) -> None:
        self.repository = repository
        self.job_id = job_id
        self.log_every = log_every
        self.dropped = 0
        self._queue: queue.Queue[object] = queue.Queue(maxsize=max(1, max_pending))
        self._thread = threading.Thread(
            target=self._drain,
            name=f"progress-{job_id[:8]}",
            daemon=True,
        )
        self._thread.start()

    def __call__(
        self,
        *,
        total_items: int | None = None,
        processed_items: int | None = None,
        failed_items: int | None = None,
    ) -> None:
        update = ProgressUpdate(
            total_items=total_items,
            processed_items=processed_items,
            failed_items=failed_items,
        )
        try:
            self._queue.put_nowait(update)
        except queue.Full:
            self.dropped += 1
            logger.debug("Dropped progress update for job %s (queue full).", self.job_id)

    def close(self, timeout: float = 5.0) -> None:
        """Flush queued updates and stop the drain thread."""

        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("Progress queue for job %s did not drain in time.", self.job_id)
            return
        self._thread.join(timeout=timeout)

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            if not isinstance(item, ProgressUpdate):
                continue
            try:
                self._persist(item)
            except (SQLAlchemyError, RuntimeError, ValueError) as error:
                logger.warning("Failed to persist progress for job %s: %s", self.job_id, error)

    def _persist(self, update: ProgressUpdate) -> None:
        if not self.repository.report_progress(job_id=self.job_id, update=update):
            return
        if (
            self.log_every <= 0
            or update.processed_items is None
            or update.processed_items % self.log_every != 0
        ):
            return
        job = self.repository.get_job(job_id=self.job_id)
        if job is not None:
            self.repository.system_log.log_job_progress(
                job_id=self.job_id,
                processed_items=job.processed_items,
                total_items=job.total_items,
                failed_items=job.failed_items,
            )
