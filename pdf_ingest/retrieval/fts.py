# pdf_ingest/retrieval/fts.py
"""SQLite FTS5 chunk index (bm25 ranking)."""
from __future__ import annotations

import re
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional, Sequence

from loguru import logger
from pydantic import BaseModel

from ..preprocess.models import Chunk


class IndexWriteError(OSError):
    pass


class SearchHit(BaseModel):
    chunk_id: str
    document_id: str
    content: str
    page_number: int
    chunk_index: int
    score: float


_SCHEMA = """
CREATE VIRTUAL TABLE IF NOT EXISTS fts_chunk USING fts5(
    content,
    chunk_id UNINDEXED,
    document_id UNINDEXED,
    page_number UNINDEXED,
    chunk_index UNINDEXED,
    token_count UNINDEXED,
    created_at UNINDEXED
);
"""


def sanitize_query(q: str) -> List[str]:
    # strip fts5 syntax so user text can't break MATCH
    q = re.sub(r'["\'*?(){}:\[\]\\^+\-]', " ", q or "")
    q = re.sub(r"\b(AND|OR|NOT|NEAR)\b", " ", q, flags=re.IGNORECASE)
    return [t for t in q.split() if t]


class FtsIndex:
    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        con = self._connect()
        try:
            con.executescript(_SCHEMA)
        finally:
            con.close()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.path), timeout=30)

    def index_chunks(self, chunks: Sequence[Chunk]) -> None:
        """Add all chunks of one document and commit once."""
        if not chunks:
            return
        rows = [(c.content, c.chunk_id, c.document_id, c.page_number, c.chunk_index,
                 c.token_count, c.created_at.isoformat()) for c in chunks]
        with self._write_lock:
            con = self._connect()
            try:
                con.executemany(
                    "INSERT INTO fts_chunk(content, chunk_id, document_id, page_number, "
                    "chunk_index, token_count, created_at) VALUES (?,?,?,?,?,?,?)",
                    rows,
                )
                con.commit()
            except sqlite3.Error as e:
                con.rollback()
                raise IndexWriteError(f"index write failed for {chunks[0].document_id}: {e}") from e
            finally:
                con.close()
        logger.info(f"Indexed and committed {len(chunks)} chunks for document {chunks[0].document_id}")

    def delete_by_document_id(self, document_id: str) -> int:
        with self._write_lock:
            con = self._connect()
            try:
                cur = con.execute("DELETE FROM fts_chunk WHERE document_id = ?", (document_id,))
                con.commit()
                deleted = cur.rowcount
            except sqlite3.Error as e:
                raise IndexWriteError(f"delete failed for {document_id}: {e}") from e
            finally:
                con.close()
        logger.info(f"Deleted {deleted} chunks for document {document_id}")
        return deleted

    def count(self) -> int:
        con = self._connect()
        try:
            return int(con.execute("SELECT COUNT(*) FROM fts_chunk").fetchone()[0])
        finally:
            con.close()

    def _match(self, con: sqlite3.Connection, match: str, top_k: int,
               document_id: Optional[str]) -> List[SearchHit]:
        sql = """
        SELECT chunk_id, document_id, content, page_number, chunk_index, bm25(fts_chunk) AS r
        FROM fts_chunk
        WHERE fts_chunk MATCH ?
        {doc_filter}
        ORDER BY r ASC
        LIMIT ?
        """.format(doc_filter="AND document_id = ?" if document_id else "")
        params: list = [match]
        if document_id:
            params.append(document_id)
        params.append(int(top_k))
        rows = con.execute(sql, params).fetchall()
        # bm25() is lower-is-better and negative; flip it so larger = better
        return [SearchHit(chunk_id=cid, document_id=did, content=text, page_number=int(page),
                          chunk_index=int(idx), score=-float(r))
                for cid, did, text, page, idx, r in rows]

    def search(self, query: str, top_k: int = 10, document_id: Optional[str] = None) -> List[SearchHit]:
        terms = sanitize_query(query)
        if not terms:
            return []
        con = self._connect()
        try:
            hits = self._match(con, " AND ".join(f'"{t}"' for t in terms), top_k, document_id)
            if not hits:
                # broader OR-prefix fallback, e.g. "rag* OR faiss*"
                hits = self._match(con, " OR ".join(f'"{t}"*' for t in terms[:6]), top_k, document_id)
        except sqlite3.OperationalError as e:
            logger.error(f"FTS query failed: {e}")
            return []
        finally:
            con.close()
        return hits
