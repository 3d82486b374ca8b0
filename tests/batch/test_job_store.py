"""
Unit tests for batch_engine.job_store module.

Tests SQLiteJobStore persistence, status transitions and error log.
"""

import pytest

from batch_engine.exceptions import JobNotFoundError
from batch_engine.job_store import SQLiteJobStore
from batch_engine.models import JobStatus


class TestCreateJob:
    """Tests for job creation."""

    def test_create_and_get(self, store, fake_clock):
        job_id = store.create_job(3, {"item_ids": ["a", "b", "c"], "concurrency": 2})
        job = store.get_job(job_id)

        assert job.id == job_id
        assert job.status == JobStatus.PENDING
        assert job.job_type == "annotation_generation"
        assert job.total_items == 3
        assert job.processed_items == 0
        assert job.metadata["item_ids"] == ["a", "b", "c"]
        assert job.started_at == fake_clock.now
        assert job.completed_at is None

    def test_ids_unique(self, store):
        ids = {store.create_job(1, {}) for _ in range(10)}
        assert len(ids) == 10

    def test_custom_job_type(self, store):
        job_id = store.create_job(1, {}, job_type="thumbnails")
        assert store.get_job(job_id).job_type == "thumbnails"

    def test_get_unknown(self, store):
        assert store.get_job("missing") is None

    def test_persists_across_connections(self, temp_dir):
        db_path = temp_dir / "nested" / "jobs.db"
        first = SQLiteJobStore(db_path)
        job_id = first.create_job(2, {"concurrency": 1})
        first.close()

        second = SQLiteJobStore(db_path)
        try:
            assert second.get_job(job_id).total_items == 2
        finally:
            second.close()


class TestStatusTransitions:
    """Tests for update_job_status."""

    def test_processing(self, store):
        job_id = store.create_job(1, {})
        assert store.update_job_status(job_id, JobStatus.PROCESSING) is True
        job = store.get_job(job_id)
        assert job.status == JobStatus.PROCESSING
        assert job.completed_at is None

    @pytest.mark.parametrize("status", [JobStatus.COMPLETED, JobStatus.FAILED])
    def test_finished_sets_completed_at(self, store, fake_clock, status):
        job_id = store.create_job(1, {})
        fake_clock.advance(5)
        store.update_job_status(job_id, status)

        job = store.get_job(job_id)
        assert job.status == status
        assert job.completed_at == fake_clock.now
        assert job.cancelled_at is None

    def test_cancelled_sets_timestamps(self, store, fake_clock):
        job_id = store.create_job(1, {})
        store.update_job_status(job_id, JobStatus.CANCELLED)

        job = store.get_job(job_id)
        assert job.cancelled_at == fake_clock.now
        assert job.completed_at == fake_clock.now

    def test_terminal_status_is_final(self, store):
        """A cancelled job is never overwritten by completed."""
        job_id = store.create_job(1, {})
        store.update_job_status(job_id, JobStatus.CANCELLED)

        assert store.update_job_status(job_id, JobStatus.COMPLETED) is False
        assert store.update_job_status(job_id, JobStatus.PROCESSING) is False
        assert store.get_job(job_id).status == JobStatus.CANCELLED

    def test_repeat_terminal_status_keeps_timestamp(self, store, fake_clock):
        job_id = store.create_job(1, {})
        store.update_job_status(job_id, JobStatus.CANCELLED)
        cancelled_at = store.get_job(job_id).cancelled_at

        fake_clock.advance(30)
        assert store.update_job_status(job_id, JobStatus.CANCELLED) is True
        assert store.get_job(job_id).cancelled_at == cancelled_at

    def test_unknown_job(self, store):
        with pytest.raises(JobNotFoundError):
            store.update_job_status("missing", JobStatus.PROCESSING)


class TestProgressAndErrors:
    """Tests for counters and the error log."""

    def test_update_progress(self, store):
        job_id = store.create_job(5, {})
        store.update_job_progress(job_id, 3, 2, 1)

        job = store.get_job(job_id)
        assert (job.processed_items, job.successful_items, job.failed_items) == (3, 2, 1)

    def test_update_progress_unknown_job(self, store):
        with pytest.raises(JobNotFoundError):
            store.update_job_progress("missing", 1, 1, 0)

    def test_errors_most_recent_first(self, store, fake_clock):
        job_id = store.create_job(2, {})
        store.append_error(job_id, "a", "boom", 1)
        fake_clock.advance(1)
        store.append_error(job_id, "a", "boom again", 2)
        store.append_error(job_id, "b", "bad input", 1)

        errors = store.list_errors(job_id)
        assert [(e.item_id, e.attempt_number) for e in errors] == [("b", 1), ("a", 2), ("a", 1)]
        assert errors[0].error_message == "bad input"
        assert errors[0].job_id == job_id

    def test_errors_limit(self, store):
        job_id = store.create_job(1, {})
        for attempt in range(1, 6):
            store.append_error(job_id, "a", "boom", attempt)

        assert len(store.list_errors(job_id, limit=2)) == 2

    def test_errors_scoped_to_job(self, store):
        first = store.create_job(1, {})
        second = store.create_job(1, {})
        store.append_error(first, "a", "boom", 1)

        assert store.list_errors(second) == []

    def test_append_error_unknown_job(self, store):
        with pytest.raises(JobNotFoundError):
            store.append_error("missing", "a", "boom", 1)


class TestListJobs:
    """Tests for list_jobs."""

    def test_filter_by_status(self, store, fake_clock):
        pending = store.create_job(1, {})
        fake_clock.advance(1)
        processing = store.create_job(1, {})
        store.update_job_status(processing, JobStatus.PROCESSING)
        fake_clock.advance(1)
        done = store.create_job(1, {})
        store.update_job_status(done, JobStatus.COMPLETED)

        active = store.list_jobs(statuses=[JobStatus.PENDING, JobStatus.PROCESSING])
        assert [j.id for j in active] == [processing, pending]

        assert [j.id for j in store.list_jobs()] == [done, processing, pending]

    def test_limit(self, store):
        for _ in range(4):
            store.create_job(1, {})

        assert len(store.list_jobs(limit=3)) == 3
        assert len(store.list_jobs(limit=None)) == 4
