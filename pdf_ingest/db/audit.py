from __future__ import annotations

from typing import Dict, List, Optional

from sqlalchemy import func, select
from loguru import logger
from sqlalchemy.exc import IntegrityError

from .models import (
    DOC_COMPLETED, DOC_FAILED, DOC_PROCESSING, ProcessedDocumentORM, make_session_factory, utcnow,
)
from ..preprocess.models import IngestionResult

MAX_FIELD_LEN = 2000


class DuplicateDocumentError(Exception):
    """A record for this file name already exists."""


def truncate(value: Optional[str], max_len: int = MAX_FIELD_LEN) -> Optional[str]:
    if value is None:
        return None
    return value if len(value) <= max_len else value[:max_len]


class AuditStore:
    """One row per processed document; used for dedup and processing history.

    Every call opens its own session, so workers can share one store.
    """

    def __init__(self, db_url: str):
        self._session = make_session_factory(db_url)

    def create(self, file_name: str, document_id: str, title: str | None = None,
               author: str | None = None, file_size_bytes: int | None = None) -> ProcessedDocumentORM:
        row = ProcessedDocumentORM(
            file_name=file_name, document_id=document_id, status=DOC_PROCESSING,
            title=truncate(title), author=truncate(author), file_size_bytes=file_size_bytes,
        )
        with self._session() as s:
            try:
                s.add(row); s.commit()
            except IntegrityError as e:
                s.rollback()
                raise DuplicateDocumentError(file_name) from e
        return row

    def find_by_name(self, file_name: str) -> Optional[ProcessedDocumentORM]:
        with self._session() as s:
            return s.scalars(
                select(ProcessedDocumentORM).where(ProcessedDocumentORM.file_name == file_name)
            ).first()

    def get(self, record_id: int) -> Optional[ProcessedDocumentORM]:
        with self._session() as s:
            return s.get(ProcessedDocumentORM, record_id)

    def update(self, record_id: int, **fields) -> bool:
        """Returns False, with a warning, when the record no longer exists."""
        with self._session() as s:
            row = s.get(ProcessedDocumentORM, record_id)
            if row is None:
                logger.warning(f"Audit record {record_id} not found, dropping update {sorted(fields)}")
                return False
            for k, v in fields.items():
                setattr(row, k, v)
            s.commit()
        return True

    def mark_completed(self, record_id: int, result: IngestionResult,
                       file_size_bytes: int | None = None) -> bool:
        fields = dict(
            status=DOC_COMPLETED,
            total_pages=result.total_pages,
            total_chunks=len(result.chunks),
            total_tokens=result.total_tokens,
            processed_at=utcnow(),
        )
        # keep catalog metadata when the PDF itself carries none
        if result.title:
            fields["title"] = truncate(result.title)
        if result.author:
            fields["author"] = truncate(result.author)
        if file_size_bytes is not None:
            fields["file_size_bytes"] = file_size_bytes
        return self.update(record_id, **fields)

    def mark_failed(self, record_id: int, error: str) -> bool:
        return self.update(record_id, status=DOC_FAILED, error_message=truncate(error),
                           processed_at=utcnow())

    def delete(self, record_id: int) -> None:
        with self._session() as s:
            row = s.get(ProcessedDocumentORM, record_id)
            if row is not None:
                s.delete(row); s.commit()

    def recent(self, limit: int = 50) -> List[ProcessedDocumentORM]:
        with self._session() as s:
            return list(s.scalars(
                select(ProcessedDocumentORM)
                .order_by(ProcessedDocumentORM.id.desc())
                .limit(limit)
            ))

    def status_counts(self) -> Dict[str, int]:
        with self._session() as s:
            rows = s.execute(
                select(ProcessedDocumentORM.status, func.count()).group_by(ProcessedDocumentORM.status)
            ).all()
        return {status: int(n) for status, n in rows}
