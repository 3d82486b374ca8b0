"""
Batch job execution engine.
Rate-limited, chunked, retrying processing of item batches with persisted progress.
"""

from .clock import Clock, system_clock
from .exceptions import (
    BatchEngineError,
    JobNotFoundError,
    RateLimiterStoppedError,
    WorkUnitError,
)
from .models import (
    JobStatus,
    ItemStatus,
    BatchJob,
    ItemResult,
    ErrorRecord,
    JobCounters,
    JobProgress,
)
from .rate_limiter import (
    RateLimitConfig,
    TokenBucketRateLimiter,
    RATE_LIMIT_TIERS,
    create_rate_limiter,
)
from .job_store import JobStore, SQLiteJobStore
from .progress import JobProgressReporter
from .work_units import WorkUnit, CallableWorkUnit, HttpWorkUnit, SimulatedWorkUnit
from .schemas import BatchRequest, BatchStartResponse
from .processor import BatchProcessor, JobContext

__all__ = [
    # Time
    'Clock',
    'system_clock',
    # Errors
    'BatchEngineError',
    'JobNotFoundError',
    'RateLimiterStoppedError',
    'WorkUnitError',
    # Data model
    'JobStatus',
    'ItemStatus',
    'BatchJob',
    'ItemResult',
    'ErrorRecord',
    'JobCounters',
    'JobProgress',
    # Rate limiting
    'RateLimitConfig',
    'TokenBucketRateLimiter',
    'RATE_LIMIT_TIERS',
    'create_rate_limiter',
    # Persistence
    'JobStore',
    'SQLiteJobStore',
    # Progress
    'JobProgressReporter',
    # Work units
    'WorkUnit',
    'CallableWorkUnit',
    'HttpWorkUnit',
    'SimulatedWorkUnit',
    # Submission
    'BatchRequest',
    'BatchStartResponse',
    # Processor
    'BatchProcessor',
    'JobContext',
]
