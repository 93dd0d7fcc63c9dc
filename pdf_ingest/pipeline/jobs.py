from __future__ import annotations

import datetime as dt
import threading
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Dict, Optional

from loguru import logger

MAX_STATUS_ERROR_LEN = 500


class JobState(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PoolExhaustedError(RuntimeError):
    """Submission rejected because every worker and queue slot is taken."""


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class JobStatus:
    """Live progress of one ingestion job.

    Counters only go up. The state leaves PROCESSING exactly once; later
    ``complete``/``fail`` calls are ignored.
    """

    def __init__(self, job_id: str, total_files: int = 0):
        self.job_id = job_id
        self.status = JobState.PROCESSING
        self.total_files = total_files
        self.documents_processed = 0
        self.chunks_processed = 0
        self.documents_failed = 0
        self.documents_skipped = 0
        self.start_time = _now()
        self.end_time: Optional[dt.datetime] = None
        self.error_message: Optional[str] = None
        self.export_file_name: Optional[str] = None
        self._lock = threading.Lock()

    def set_total_files(self, n: int) -> None:
        with self._lock:
            self.total_files = n

    def increment_documents(self) -> int:
        with self._lock:
            self.documents_processed += 1
            return self.documents_processed

    def add_chunks(self, n: int) -> None:
        with self._lock:
            self.chunks_processed += n

    def increment_failed(self) -> None:
        with self._lock:
            self.documents_failed += 1

    def increment_skipped(self) -> None:
        with self._lock:
            self.documents_skipped += 1

    @property
    def done(self) -> int:
        """Documents handled so far, whatever the outcome."""
        with self._lock:
            return self.documents_processed + self.documents_failed + self.documents_skipped

    @property
    def is_terminal(self) -> bool:
        return self.status is not JobState.PROCESSING

    def complete(self, export_file_name: Optional[str] = None) -> bool:
        with self._lock:
            if self.status is not JobState.PROCESSING:
                return False
            self.export_file_name = export_file_name
            self.status = JobState.COMPLETED
            self.end_time = _now()
            return True

    def fail(self, message: str) -> bool:
        with self._lock:
            if self.status is not JobState.PROCESSING:
                return False
            message = message or "unknown error"
            self.error_message = message[:MAX_STATUS_ERROR_LEN]
            self.status = JobState.FAILED
            self.end_time = _now()
            return True

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            d = {
                "job_id": self.job_id,
                "status": self.status.value,
                "total_files": self.total_files,
                "documents_processed": self.documents_processed,
                "chunks_processed": self.chunks_processed,
                "documents_failed": self.documents_failed,
                "documents_skipped": self.documents_skipped,
                "start_time": self.start_time.isoformat(),
                "end_time": self.end_time.isoformat() if self.end_time else None,
                "error_message": self.error_message,
                "export_file_name": self.export_file_name,
            }
        return {k: v for k, v in d.items() if v is not None}


class JobRegistry:
    """job_id -> JobStatus; drops the oldest finished jobs past ``max_tracked_jobs``."""

    def __init__(self, max_tracked_jobs: Optional[int] = 1000):
        self.max_tracked_jobs = max_tracked_jobs
        self._jobs: "OrderedDict[str, JobStatus]" = OrderedDict()
        self._lock = threading.Lock()

    def create(self, job_id: str, total_files: int = 0) -> JobStatus:
        status = JobStatus(job_id, total_files)
        with self._lock:
            self._jobs[job_id] = status
            self._evict()
        return status

    def get(self, job_id: str) -> Optional[JobStatus]:
        with self._lock:
            return self._jobs.get(job_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _evict(self) -> None:
        if not self.max_tracked_jobs:
            return
        excess = len(self._jobs) - self.max_tracked_jobs
        if excess <= 0:
            return
        # running jobs stay, whatever their age
        for job_id in [j for j, s in self._jobs.items() if s.is_terminal][:excess]:
            del self._jobs[job_id]
            logger.debug(f"Evicted finished job {job_id} from registry")


class BoundedExecutor:
    """ThreadPoolExecutor with a hard cap on running + queued tasks."""

    def __init__(self, max_workers: int, queue_size: int, name: str = "worker"):
        self.max_workers = max_workers
        self.queue_size = queue_size
        self.name = name
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._slots = threading.BoundedSemaphore(max_workers + queue_size)
        logger.info(f"Initialized {name} executor: workers={max_workers}, queue={queue_size}")

    def submit(self, fn: Callable, *args, timeout: Optional[float] = None, **kwargs) -> Future:
        """Run ``fn`` on the pool.

        Without ``timeout`` a full pool rejects at once; with one, the caller
        waits up to ``timeout`` seconds for a free slot. Either way a rejection
        is logged and raised as PoolExhaustedError.
        """
        acquired = self._slots.acquire(timeout=timeout) if timeout else self._slots.acquire(blocking=False)
        if not acquired:
            logger.warning(f"{self.name} task rejected - queue full. "
                           f"Max concurrent: {self.max_workers}, queue: {self.queue_size}")
            raise PoolExhaustedError(f"{self.name} pool exhausted "
                                     f"({self.max_workers} workers, queue {self.queue_size})")
        try:
            fut = self._pool.submit(fn, *args, **kwargs)
        except BaseException:
            self._slots.release()
            raise
        fut.add_done_callback(lambda _: self._slots.release())
        return fut

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
