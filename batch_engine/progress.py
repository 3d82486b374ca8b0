"""
Progress reporting for batch jobs.
Derives percentage complete and time remaining from stored counters.
"""

import math
from typing import Optional

from config.constants import BATCH_ERROR_LIST_LIMIT
from config.logging_config import get_logger

from .clock import Clock, system_clock
from .job_store import JobStore
from .models import JobProgress, JobStatus

logger = get_logger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class JobProgressReporter:
    """
    Read-only view over the job store.

    Usage:
        reporter = JobProgressReporter(store)
        progress = reporter.get_job_progress(job_id)
        if progress:
            print(progress.percentage, progress.estimated_time_remaining_ms)
    """

    def __init__(
        self,
        store: JobStore,
        clock: Optional[Clock] = None,
        error_limit: int = BATCH_ERROR_LIST_LIMIT,
    ):
        self.store = store
        self.clock = clock or system_clock
        self.error_limit = error_limit

    def get_job_progress(self, job_id: str) -> Optional[JobProgress]:
        """
        Get job progress and status.

        Returns:
            JobProgress, or None if the job id is unknown
        """
        job = self.store.get_job(job_id)
        if job is None:
            return None

        percentage = 0
        if job.total_items > 0:
            percentage = _round_half_up(job.processed_items / job.total_items * 100)

        # Estimate time remaining from the average time per processed item
        eta_ms = None
        if job.status == JobStatus.PROCESSING and job.processed_items > 0 and job.started_at:
            elapsed_ms = max(self.clock.time() - job.started_at, 0.0) * 1000
            avg_ms_per_item = elapsed_ms / job.processed_items
            remaining = job.total_items - job.processed_items
            eta_ms = math.ceil(avg_ms_per_item * remaining)

        return JobProgress(
            job_id=job.id,
            status=job.status,
            total=job.total_items,
            processed=job.processed_items,
            successful=job.successful_items,
            failed=job.failed_items,
            percentage=percentage,
            estimated_time_remaining_ms=eta_ms,
            errors=self.store.list_errors(job_id, self.error_limit),
        )
