#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Batch job data model - jobs, per-item results, error records and progress.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, List, Dict, Any

from config.constants import BATCH_JOB_TYPE


class JobStatus(str, Enum):
    """Job lifecycle states"""
    PENDING = "pending"          # Job created, processing not started
    PROCESSING = "processing"    # Chunks being dispatched
    COMPLETED = "completed"      # All chunks processed, at least one success
    FAILED = "failed"            # Every item failed, or orchestration error
    CANCELLED = "cancelled"      # Cancelled by user

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})


class ItemStatus(str, Enum):
    """Outcome of one item within a job"""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"          # Job cancelled while item waited for a token


@dataclass
class ErrorRecord:
    """One failed attempt at processing an item"""
    job_id: str
    item_id: str
    error_message: str
    attempt_number: int
    timestamp: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ItemResult:
    """Final outcome of processing one item"""
    item_id: str
    status: ItemStatus
    payload: Any = None
    error: Optional[str] = None
    processing_time_ms: float = 0.0
    attempts: int = 0

    @property
    def success(self) -> bool:
        return self.status == ItemStatus.SUCCESS


@dataclass
class JobCounters:
    """Cumulative counters for a job, owned by the job's processing task"""
    processed: int = 0
    successful: int = 0
    failed: int = 0

    def add(self, results: List[ItemResult]):
        """Fold a chunk of item results into the counters (skipped items are not counted)"""
        for result in results:
            if result.status == ItemStatus.SUCCESS:
                self.successful += 1
            elif result.status == ItemStatus.FAILED:
                self.failed += 1
        self.processed = self.successful + self.failed


@dataclass
class BatchJob:
    """A batch job record as persisted by the job store"""

    # Identification
    id: str
    job_type: str = BATCH_JOB_TYPE

    # Status & progress
    status: JobStatus = JobStatus.PENDING
    total_items: int = 0
    processed_items: int = 0
    successful_items: int = 0
    failed_items: int = 0

    # Original item ids, requested concurrency, rate limit hint
    metadata: Dict[str, Any] = field(default_factory=dict)

    # Timestamps (epoch seconds)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    cancelled_at: Optional[float] = None
    created_at: Optional[float] = None
    updated_at: Optional[float] = None

    # Attached by list_active_jobs()
    errors: List[ErrorRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        data = asdict(self)
        data['status'] = self.status.value
        return data


@dataclass
class JobProgress:
    """Derived progress view of a job"""
    job_id: str
    status: JobStatus
    total: int
    processed: int
    successful: int
    failed: int
    percentage: int
    estimated_time_remaining_ms: Optional[int] = None
    errors: List[ErrorRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "progress": {
                "total": self.total,
                "processed": self.processed,
                "successful": self.successful,
                "failed": self.failed,
                "percentage": self.percentage,
            },
            "estimated_time_remaining_ms": self.estimated_time_remaining_ms,
            "errors": [e.to_dict() for e in self.errors],
        }
