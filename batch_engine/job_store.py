#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Job Store - persistence boundary for batch jobs and their error log

JobStore is the interface the batch processor writes through. SQLiteJobStore
keeps a job table and an error-log table in a single SQLite file; one
connection is shared and every statement runs under a lock, so the store can
be used by several jobs at once.
"""

import json
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterable, Union

from config.constants import BATCH_JOB_TYPE, BATCH_ERROR_LIST_LIMIT
from config.logging_config import get_logger

from .clock import Clock, system_clock
from .exceptions import JobNotFoundError
from .models import BatchJob, ErrorRecord, JobStatus

logger = get_logger(__name__)


class JobStore(ABC):
    """
    Abstract job store.
    All stores must implement these methods.
    """

    @abstractmethod
    def create_job(
        self,
        total_items: int,
        metadata: Dict[str, Any],
        job_type: str = BATCH_JOB_TYPE,
    ) -> str:
        """Create a job in pending status and return its id"""
        pass

    @abstractmethod
    def update_job_status(self, job_id: str, status: JobStatus) -> bool:
        """
        Set job status and the matching timestamps.

        Re-applying a job's current terminal status is a no-op.

        Returns:
            False if the job is already in a different terminal status
        """
        pass

    @abstractmethod
    def update_job_progress(
        self,
        job_id: str,
        processed_items: int,
        successful_items: int,
        failed_items: int,
    ) -> None:
        """Overwrite the job's cumulative counters"""
        pass

    @abstractmethod
    def append_error(
        self,
        job_id: str,
        item_id: str,
        error_message: str,
        attempt_number: int,
    ) -> None:
        """Record one failed attempt"""
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[BatchJob]:
        pass

    @abstractmethod
    def list_errors(self, job_id: str, limit: int = BATCH_ERROR_LIST_LIMIT) -> List[ErrorRecord]:
        """Error records for a job, most recent first"""
        pass

    @abstractmethod
    def list_jobs(
        self,
        statuses: Optional[Iterable[JobStatus]] = None,
        limit: Optional[int] = 100,
    ) -> List[BatchJob]:
        """Jobs, most recent first, optionally filtered by status (limit=None for all)"""
        pass

    def close(self):
        """Release resources"""
        pass


class SQLiteJobStore(JobStore):
    """SQLite-backed job store"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", clock: Optional[Clock] = None):
        """
        Initialize job store

        Args:
            db_path: Path to SQLite database, or ":memory:"
            clock: Time source for timestamps
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.clock = clock or system_clock
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")

        self._init_db()
        logger.debug(f"SQLiteJobStore initialized: {self.db_path}")

    @contextmanager
    def _transaction(self):
        """Serialize access to the shared connection and commit on success."""
        with self._lock:
            cursor = self.conn.cursor()
            try:
                yield cursor
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise
            finally:
                cursor.close()

    def _init_db(self):
        """Initialize database schema"""
        with self._transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS batch_jobs (
                    id TEXT PRIMARY KEY,
                    job_type TEXT NOT NULL DEFAULT 'annotation_generation',
                    status TEXT NOT NULL DEFAULT 'pending',

                    -- Progress
                    total_items INTEGER NOT NULL DEFAULT 0,
                    processed_items INTEGER NOT NULL DEFAULT 0,
                    successful_items INTEGER NOT NULL DEFAULT 0,
                    failed_items INTEGER NOT NULL DEFAULT 0,

                    -- Metadata (JSON)
                    metadata TEXT,

                    -- Timestamps
                    started_at REAL,
                    completed_at REAL,
                    cancelled_at REAL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS batch_job_errors (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT NOT NULL REFERENCES batch_jobs(id) ON DELETE CASCADE,
                    item_id TEXT NOT NULL,
                    error_message TEXT NOT NULL,
                    attempt_number INTEGER NOT NULL DEFAULT 1,
                    created_at REAL NOT NULL
                )
            """)

            # Indexes for performance
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_batch_jobs_status
                ON batch_jobs(status)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_batch_jobs_created_at
                ON batch_jobs(created_at DESC)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_batch_job_errors_job_id
                ON batch_job_errors(job_id)
            """)

    def create_job(
        self,
        total_items: int,
        metadata: Dict[str, Any],
        job_type: str = BATCH_JOB_TYPE,
    ) -> str:
        job_id = uuid.uuid4().hex
        now = self.clock.time()

        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO batch_jobs (
                    id, job_type, status,
                    total_items, processed_items, successful_items, failed_items,
                    metadata, started_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, 0, 0, 0, ?, ?, ?, ?)
            """, (
                job_id, job_type, JobStatus.PENDING.value,
                total_items,
                json.dumps(metadata), now, now, now,
            ))

        logger.debug(f"Job record created: {job_id} ({total_items} items)")
        return job_id

    def update_job_status(self, job_id: str, status: JobStatus) -> bool:
        status = JobStatus(status)
        now = self.clock.time()

        with self._transaction() as cursor:
            cursor.execute("SELECT status FROM batch_jobs WHERE id = ?", (job_id,))
            row = cursor.fetchone()
            if row is None:
                raise JobNotFoundError(job_id)

            # Terminal timestamps are written once
            current = JobStatus(row["status"])
            if current.is_terminal:
                if current != status:
                    logger.warning(
                        f"Job {job_id}: ignoring transition {current.value} -> {status.value}"
                    )
                return current == status

            if status in (JobStatus.COMPLETED, JobStatus.FAILED):
                cursor.execute("""
                    UPDATE batch_jobs
                    SET status = ?, completed_at = ?, updated_at = ?
                    WHERE id = ?
                """, (status.value, now, now, job_id))
            elif status == JobStatus.CANCELLED:
                cursor.execute("""
                    UPDATE batch_jobs
                    SET status = ?, cancelled_at = ?, completed_at = ?, updated_at = ?
                    WHERE id = ?
                """, (status.value, now, now, now, job_id))
            else:
                cursor.execute("""
                    UPDATE batch_jobs
                    SET status = ?, updated_at = ?
                    WHERE id = ?
                """, (status.value, now, job_id))

        return True

    def update_job_progress(
        self,
        job_id: str,
        processed_items: int,
        successful_items: int,
        failed_items: int,
    ) -> None:
        with self._transaction() as cursor:
            cursor.execute("""
                UPDATE batch_jobs
                SET processed_items = ?, successful_items = ?, failed_items = ?, updated_at = ?
                WHERE id = ?
            """, (processed_items, successful_items, failed_items, self.clock.time(), job_id))

            if cursor.rowcount == 0:
                raise JobNotFoundError(job_id)

    def append_error(
        self,
        job_id: str,
        item_id: str,
        error_message: str,
        attempt_number: int,
    ) -> None:
        try:
            with self._transaction() as cursor:
                cursor.execute("""
                    INSERT INTO batch_job_errors (
                        job_id, item_id, error_message, attempt_number, created_at
                    ) VALUES (?, ?, ?, ?, ?)
                """, (job_id, item_id, error_message, attempt_number, self.clock.time()))
        except sqlite3.IntegrityError as e:
            raise JobNotFoundError(job_id) from e

    def get_job(self, job_id: str) -> Optional[BatchJob]:
        with self._transaction() as cursor:
            cursor.execute("SELECT * FROM batch_jobs WHERE id = ?", (job_id,))
            row = cursor.fetchone()

        if row:
            return self._row_to_job(row)
        return None

    def list_errors(self, job_id: str, limit: int = BATCH_ERROR_LIST_LIMIT) -> List[ErrorRecord]:
        with self._transaction() as cursor:
            cursor.execute("""
                SELECT job_id, item_id, error_message, attempt_number, created_at
                FROM batch_job_errors
                WHERE job_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            """, (job_id, limit))
            rows = cursor.fetchall()

        return [
            ErrorRecord(
                job_id=row["job_id"],
                item_id=row["item_id"],
                error_message=row["error_message"],
                attempt_number=row["attempt_number"],
                timestamp=row["created_at"],
            )
            for row in rows
        ]

    def list_jobs(
        self,
        statuses: Optional[Iterable[JobStatus]] = None,
        limit: Optional[int] = 100,
    ) -> List[BatchJob]:
        # SQLite treats a negative LIMIT as unbounded
        limit = -1 if limit is None else limit

        with self._transaction() as cursor:
            if statuses:
                values = [JobStatus(s).value for s in statuses]
                placeholders = ", ".join("?" for _ in values)
                cursor.execute(f"""
                    SELECT * FROM batch_jobs
                    WHERE status IN ({placeholders})
                    ORDER BY created_at DESC, rowid DESC
                    LIMIT ?
                """, (*values, limit))
            else:
                cursor.execute("""
                    SELECT * FROM batch_jobs
                    ORDER BY created_at DESC, rowid DESC
                    LIMIT ?
                """, (limit,))
            rows = cursor.fetchall()

        return [self._row_to_job(row) for row in rows]

    def _row_to_job(self, row: sqlite3.Row) -> BatchJob:
        """Convert database row to BatchJob"""
        data = dict(row)
        data['status'] = JobStatus(data['status'])
        data['metadata'] = json.loads(data['metadata']) if data.get('metadata') else {}
        return BatchJob(**data)

    def close(self):
        """Close database connection"""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
