# pdf_ingest/pipeline/export.py
"""Per-job JSON export of chunk records.

One file per job, written as a JSON array one record at a time so a job never
has to hold every chunk in memory:
  {export.path}/[arxiv-]2026-02-12T18-45-30-123-<job_id>.json
"""
from __future__ import annotations

import datetime as dt
import json
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from ..preprocess.models import Chunk, IngestionResult


def chunk_position(chunk_index: int, total_chunks: int) -> str:
    if chunk_index == 0:
        return "start"
    if chunk_index == total_chunks - 1:
        return "end"
    return "middle"


def build_export_record(chunk: Chunk, result: IngestionResult) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {"source": result.file_name}
    # title/author only when the document actually has them
    if result.title is not None:
        metadata["title"] = result.title
    if result.author is not None:
        metadata["author"] = result.author
    metadata.update(
        page_number=chunk.page_number,
        total_pages=result.total_pages,
        chunk_index=chunk.chunk_index,
        chunk_position=chunk_position(chunk.chunk_index, len(result.chunks)),
        token_count=chunk.token_count,
        created_at=chunk.created_at.isoformat(),
    )
    return {
        "id": chunk.chunk_id,
        "document_id": chunk.document_id,
        "content": chunk.content,
        "metadata": metadata,
    }


def export_file_name(prefix: str, job_id: str, now: Optional[dt.datetime] = None) -> str:
    now = now or dt.datetime.now()
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}"
    return f"{prefix}{stamp}-{job_id}.json"


class ChunkExportWriter:
    """Streaming writer for one job's export file.

    ``write_result`` appends every chunk of one document; ``close`` terminates
    the array; ``abort`` removes the partial file.
    """

    def __init__(self, export_dir: Path, job_id: str, prefix: str = ""):
        self.export_dir = Path(export_dir)
        self.file_name = export_file_name(prefix, job_id)
        self.path = self.export_dir / self.file_name
        self.records_written = 0
        self._fh = None

    def open(self) -> "ChunkExportWriter":
        self.export_dir.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("w", encoding="utf-8")
        self._fh.write("[")
        logger.debug(f"Opened export file {self.path}")
        return self

    def write_result(self, result: IngestionResult) -> int:
        if self._fh is None:
            raise OSError(f"export file {self.file_name} is not open")
        for chunk in result.chunks:
            sep = ",\n" if self.records_written else "\n"
            self._fh.write(sep + json.dumps(build_export_record(chunk, result), ensure_ascii=False))
            self.records_written += 1
        self._fh.flush()
        return len(result.chunks)

    def close(self) -> str:
        if self._fh is not None:
            self._fh.write("\n]\n")
            self._fh.close()
            self._fh = None
            logger.info(f"Exported {self.records_written} chunks to {self.path}")
        return self.file_name

    def abort(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            finally:
                self._fh = None
        self.path.unlink(missing_ok=True)
        logger.warning(f"Removed partial export {self.path}")

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            self.abort()
