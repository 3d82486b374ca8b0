"""
Batch submission models

Pydantic models validating what callers hand to BatchProcessor.start_batch().
"""

from pydantic import BaseModel, Field
from typing import List, Optional

from config.constants import (
    BATCH_DEFAULT_CONCURRENCY,
    BATCH_MAX_CONCURRENCY,
    BATCH_MAX_ITEMS,
    RATE_LIMIT_MIN_PER_MINUTE,
    RATE_LIMIT_MAX_PER_MINUTE,
)


class BatchRequest(BaseModel):
    """Request to process a list of items"""
    item_ids: List[str] = Field(
        ...,
        min_length=1,
        max_length=BATCH_MAX_ITEMS,
        description="Identifiers of the items to process, in order",
    )
    concurrency: int = Field(
        default=BATCH_DEFAULT_CONCURRENCY,
        ge=1,
        le=BATCH_MAX_CONCURRENCY,
        description="Items dispatched together per chunk",
    )
    rate_limit_per_minute: Optional[int] = Field(
        default=None,
        ge=RATE_LIMIT_MIN_PER_MINUTE,
        le=RATE_LIMIT_MAX_PER_MINUTE,
        description="Rate limit hint recorded with the job",
    )


class BatchStartResponse(BaseModel):
    """What a caller gets back after submitting a batch"""
    job_id: str
    status: str = "pending"
    total_items: int
    estimated_duration_ms: int
