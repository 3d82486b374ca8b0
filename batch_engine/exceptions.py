"""
Batch engine exceptions.
"""


class BatchEngineError(Exception):
    """Base exception for batch engine errors"""
    pass


class JobNotFoundError(BatchEngineError):
    """Raised when a job id does not exist in the store"""
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class RateLimiterStoppedError(BatchEngineError):
    """Raised to waiters when the rate limiter is stopped"""
    pass


class WorkUnitError(BatchEngineError):
    """Work unit returned an unusable response"""
    pass
