# pdf_ingest/pipeline/orchestrator.py
"""Batch ingestion jobs.

A job is admitted to a small bounded executor and runs there in the
background; callers poll its JobStatus by id. Two strategies share one
per-document unit (dedup → audit row → download → ingest → audit update):

- SequentialStreamingOrchestrator: one document at a time, each result goes
  straight to the export file. Memory is bounded by a single document.
- ParallelBatchedOrchestrator: documents fan out over a worker pool; results
  are held until every worker is done, then exported grouped by document.
"""
from __future__ import annotations

import shutil
import tempfile
import threading
import time
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import wait
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from loguru import logger

from .export import ChunkExportWriter
from .ingest import IngestionPipeline
from .jobs import BoundedExecutor, JobRegistry, JobStatus, PoolExhaustedError
from ..db.audit import AuditStore, DuplicateDocumentError
from ..db.models import DOC_COMPLETED, DOC_PROCESSING, utcnow
from ..fetch.arxiv import ArxivClient, FetchError
from ..preprocess.models import IngestionResult, PendingInput
from ..settings import Settings, resolve_thread_count

ARXIV_EXPORT_PREFIX = "arxiv-"


def new_job_id(prefix: str = "job_") -> str:
    return prefix + str(uuid.uuid4())[:12]


def _error_text(e: BaseException) -> str:
    return str(e) or e.__class__.__name__


class _Progress:
    """Logs roughly every 10% of the batch, at least every ``every`` documents."""

    def __init__(self, status: JobStatus, every: int):
        self.status = status
        self.every = every
        self.started = time.monotonic()

    @property
    def interval(self) -> int:
        return max(1, min(self.status.total_files // 10, self.every))

    def tick(self) -> None:
        s = self.status
        done, total = s.done, s.total_files
        if done % self.interval and done != total:
            return
        rate = done / max(time.monotonic() - self.started, 1e-6)
        logger.info(f"[{s.job_id}] Progress: {done}/{total} documents "
                    f"({s.documents_processed} processed, {s.documents_skipped} skipped, "
                    f"{s.documents_failed} failed), {s.chunks_processed} chunks, {rate:.1f} docs/sec")


class IngestionOrchestrator(ABC):
    strategy = "base"

    def __init__(self, pipeline: IngestionPipeline, audit: AuditStore, settings: Settings,
                 fetcher: Optional[ArxivClient] = None, registry: Optional[JobRegistry] = None):
        self.pipeline = pipeline
        self.audit = audit
        self.fetcher = fetcher
        self.ingestion = settings.ingestion
        self.export = settings.export
        self.registry = registry or JobRegistry(settings.ingestion.max_tracked_jobs)
        # PROCESSING rows older than this were left behind by an earlier run
        self._started_at = utcnow()
        self._job_executor = BoundedExecutor(self.ingestion.job_workers, self.ingestion.job_queue,
                                             name="ingest-job")
        if self.export.enabled:
            Path(self.export.path).mkdir(parents=True, exist_ok=True)
            logger.info(f"Chunk export enabled → {Path(self.export.path).resolve()}")
        else:
            logger.info("Chunk export is disabled")

    # ---------- public API ----------
    def start_job(self, inputs: Sequence[PendingInput]) -> str:
        inputs = list(inputs)
        job_id = new_job_id()
        status = self.registry.create(job_id, len(inputs))
        logger.info(f"[{job_id}] Job created - {len(inputs)} files queued ({self.strategy})")
        self._admit(status, lambda: inputs, "", owned=inputs)
        return job_id

    def start_local_job(self, paths: Iterable[Path]) -> str:
        """Ingest files in place; they are never deleted."""
        return self.start_job([
            PendingInput(display_name=Path(p).name, source_path=Path(p), delete_after=False)
            for p in sorted(paths)
        ])

    def start_category_job(self, category: str, max_results: int) -> str:
        fetcher = self._require_fetcher()
        job_id = new_job_id("arxiv_")
        # total_files is only known once the catalog answers
        status = self.registry.create(job_id, 0)
        logger.info(f"[{job_id}] arXiv category job created: category={category}, maxResults={max_results}")

        def load() -> List[PendingInput]:
            papers = fetcher.search_by_category(category, max_results)
            logger.info(f"[{job_id}] arXiv API returned {len(papers)} papers, starting ingestion")
            return [PendingInput(display_name=p.file_name, paper_id=p.paper_id, pdf_url=p.pdf_url,
                                 title=p.title, authors=p.authors or None) for p in papers]

        self._admit(status, load, ARXIV_EXPORT_PREFIX)
        return job_id

    def start_paper_ids_job(self, paper_ids: Sequence[str]) -> str:
        self._require_fetcher()
        ids = [p.strip() for p in paper_ids if p and p.strip()]
        job_id = new_job_id("arxiv_")
        status = self.registry.create(job_id, len(ids))
        logger.info(f"[{job_id}] arXiv paper IDs job created: {len(ids)} papers")
        inputs = [PendingInput(display_name=pid.replace("/", "_") + ".pdf", paper_id=pid) for pid in ids]
        self._admit(status, lambda: inputs, ARXIV_EXPORT_PREFIX)
        return job_id

    def get_status(self, job_id: str) -> Optional[JobStatus]:
        return self.registry.get(job_id)

    def shutdown(self, wait: bool = True) -> None:
        self._job_executor.shutdown(wait=wait)

    # ---------- job lifecycle ----------
    def _require_fetcher(self) -> ArxivClient:
        if self.fetcher is None:
            raise RuntimeError("arXiv ingestion requires an ArxivClient")
        return self.fetcher

    def _admit(self, status: JobStatus, load: Callable[[], List[PendingInput]], prefix: str,
               owned: Sequence[PendingInput] = ()) -> None:
        try:
            self._job_executor.submit(self._run_job, status, load, prefix)
        except PoolExhaustedError as e:
            self._discard_owned(owned)
            status.fail(_error_text(e))

    def _run_job(self, status: JobStatus, load: Callable[[], List[PendingInput]], prefix: str) -> None:
        job_id = status.job_id
        workdir = Path(tempfile.mkdtemp(prefix=f"ingest-{job_id}-"))
        logger.debug(f"[{job_id}] Temp directory: {workdir}")
        inputs: List[PendingInput] = []
        writer: Optional[ChunkExportWriter] = None
        export_name: Optional[str] = None
        error = "job interrupted"
        ok = False
        started = time.monotonic()
        try:
            inputs = load()
            status.set_total_files(len(inputs))
            if self.export.enabled:
                writer = ChunkExportWriter(self.export.path, job_id, prefix).open()
            self._process_batch(status, inputs, workdir, writer)
            export_name = writer.close() if writer else None
            ok = True
        except Exception as e:
            error = _error_text(e)
            logger.exception(f"[{job_id}] Job crashed: {e}")
            if writer is not None:
                writer.abort()
        finally:
            # clean up before the status turns terminal, pollers may act on it right away
            self._discard_owned(inputs)
            shutil.rmtree(workdir, ignore_errors=True)
            logger.debug(f"[{job_id}] Cleaned up temp directory: {workdir}")
            if ok:
                status.complete(export_name)
                logger.info(f"[{job_id}] Job completed — {status.documents_processed} processed, "
                            f"{status.documents_skipped} skipped, {status.documents_failed} failed, "
                            f"{status.chunks_processed} chunks, {time.monotonic() - started:.1f}s")
            else:
                status.fail(error)

    @abstractmethod
    def _process_batch(self, status: JobStatus, inputs: List[PendingInput], workdir: Path,
                       writer: Optional[ChunkExportWriter]) -> None:
        ...

    @staticmethod
    def _discard_owned(inputs: Iterable[PendingInput]) -> None:
        # uploads left behind by a crashed job
        for item in inputs:
            if item.delete_after and item.source_path is not None:
                Path(item.source_path).unlink(missing_ok=True)

    # ---------- one document ----------
    def _materialize(self, item: PendingInput, workdir: Path) -> Path:
        if item.is_remote:
            if self.fetcher is None:
                raise FetchError(f"no arXiv client to download {item.paper_id}")
            return self.fetcher.download_pdf(item.paper_id, workdir, pdf_url=item.pdf_url)
        return Path(item.source_path)

    def _process_one(self, status: JobStatus, item: PendingInput, workdir: Path,
                     progress: _Progress) -> Optional[IngestionResult]:
        """Returns the result, or None when the document was skipped or failed."""
        job_id, name = status.job_id, item.display_name
        record_id = None
        source: Optional[Path] = None
        try:
            existing = self.audit.find_by_name(name)
            if existing is not None:
                if existing.status == DOC_COMPLETED:
                    logger.debug(f"[{job_id}] Skipping already-ingested: {name}")
                    status.increment_skipped()
                    return None
                if existing.status == DOC_PROCESSING and self._in_flight(existing.created_at):
                    logger.debug(f"[{job_id}] {name} is being processed by another worker, skipping")
                    status.increment_skipped()
                    return None
                logger.debug(f"[{job_id}] Re-processing {existing.status.lower()} document: {name}")
                self.audit.delete(existing.id)

            document_id = str(uuid.uuid4())
            try:
                record = self.audit.create(name, document_id, title=item.title, author=item.authors)
            except DuplicateDocumentError:
                logger.debug(f"[{job_id}] {name} claimed by another worker, skipping")
                status.increment_skipped()
                return None
            record_id = record.id

            source = self._materialize(item, workdir)
            size = source.stat().st_size
            result = self.pipeline.ingest(source, name, document_id)
            self.audit.mark_completed(record_id, result, size)
            status.increment_documents()
            status.add_chunks(len(result.chunks))
        except Exception as e:
            status.increment_failed()
            logger.error(f"[{job_id}] FAILED: {name} → {e}")
            if record_id is not None:
                self._record_failure(job_id, record_id, name, e)
            return None
        finally:
            owned = source if item.is_remote else item.source_path
            if item.delete_after and owned is not None:
                Path(owned).unlink(missing_ok=True)
            progress.tick()

        logger.debug(f"[{job_id}] Done: {name} → {result.total_pages} pages, {len(result.chunks)} chunks")
        return result

    def _in_flight(self, created_at) -> bool:
        return created_at is not None and created_at >= self._started_at

    def _record_failure(self, job_id: str, record_id: int, name: str, error: BaseException) -> None:
        try:
            self.audit.mark_failed(record_id, _error_text(error))
        except Exception as db_error:
            logger.error(f"[{job_id}] DB update failed for {name}: {db_error}")


class SequentialStreamingOrchestrator(IngestionOrchestrator):
    strategy = "sequential"

    def _process_batch(self, status, inputs, workdir, writer):
        progress = _Progress(status, self.ingestion.progress_every)
        for item in inputs:
            result = self._process_one(status, item, workdir, progress)
            if result is not None and writer is not None:
                writer.write_result(result)


class ParallelBatchedOrchestrator(IngestionOrchestrator):
    strategy = "parallel"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._workers = BoundedExecutor(resolve_thread_count(self.ingestion.threads),
                                        self.ingestion.worker_queue, name="ingest-worker")

    def _process_batch(self, status, inputs, workdir, writer):
        progress = _Progress(status, self.ingestion.progress_every)
        results: Dict[str, IngestionResult] = {}
        lock = threading.Lock()

        def unit(item: PendingInput) -> None:
            result = self._process_one(status, item, workdir, progress)
            if result is not None:
                with lock:
                    results[result.document_id] = result

        futures = []
        try:
            for item in inputs:
                futures.append(self._workers.submit(unit, item, timeout=self.ingestion.submit_timeout))
        finally:
            # the temp dir must outlive every submitted unit
            wait(futures)
        for f in futures:
            f.result()

        if writer is not None:
            for result in results.values():
                writer.write_result(result)
        results.clear()

    def shutdown(self, wait: bool = True) -> None:
        super().shutdown(wait=wait)
        self._workers.shutdown(wait=wait)


def build_orchestrator(settings: Settings, pipeline: IngestionPipeline, audit: AuditStore,
                       fetcher: Optional[ArxivClient] = None) -> IngestionOrchestrator:
    cls = ParallelBatchedOrchestrator if settings.ingestion.strategy == "parallel" \
        else SequentialStreamingOrchestrator
    logger.info(f"Using {cls.strategy} ingestion strategy")
    return cls(pipeline, audit, settings, fetcher=fetcher)
