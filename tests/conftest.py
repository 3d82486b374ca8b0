"""
Pytest configuration and shared fixtures for batch engine tests.
"""
import asyncio
import sys
import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Generator, List

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from batch_engine.clock import Clock
from batch_engine.job_store import SQLiteJobStore
from batch_engine.rate_limiter import RateLimitConfig, TokenBucketRateLimiter


class FakeClock(Clock):
    """Clock whose sleeps return immediately and advance time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.mono = 0.0
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    def monotonic(self) -> float:
        return self.mono

    def advance(self, seconds: float):
        self.now += seconds
        self.mono += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        # Still yield so other tasks run
        await asyncio.sleep(0)


async def _wait_until(predicate, timeout: float = 2.0):
    """Poll until predicate() is true, yielding to the event loop."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(temp_dir: Path, fake_clock: FakeClock) -> Generator[SQLiteJobStore, None, None]:
    """SQLite job store in a temporary file, stamped by the fake clock."""
    job_store = SQLiteJobStore(temp_dir / "batch_jobs.db", clock=fake_clock)
    yield job_store
    job_store.close()


@pytest.fixture
def limiter() -> TokenBucketRateLimiter:
    """Large, non-refilling bucket: tokens never run out in ordinary tests."""
    return TokenBucketRateLimiter(
        RateLimitConfig(capacity=1000, refill_interval_ms=1000, tier="test"),
        auto_refill=False,
    )


@pytest.fixture
def wait_until():
    """Async helper: await wait_until(lambda: ...)"""
    return _wait_until
