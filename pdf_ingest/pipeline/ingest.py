import uuid
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from ..preprocess.chunk import chunk_document
from ..preprocess.clean import full_clean
from ..preprocess.extract import extract_pdf
from ..preprocess.models import ExtractedDocument, IngestionResult
from ..retrieval.fts import FtsIndex
from ..settings import ChunkingSettings

Extractor = Callable[[Path], ExtractedDocument]


class IngestionPipeline:
    """extract → clean → chunk → index, one document per call."""

    def __init__(self, index: FtsIndex, chunking: ChunkingSettings,
                 extractor: Extractor = extract_pdf):
        self.index = index
        self.chunking = chunking
        self.extractor = extractor

    def ingest(self, source: Path, display_name: str,
               document_id: Optional[str] = None) -> IngestionResult:
        if not document_id or not document_id.strip():
            document_id = str(uuid.uuid4())
        logger.info(f"Ingesting {display_name} as {document_id}")

        doc = self.extractor(Path(source))
        pages = [full_clean(p) for p in doc.pages]

        c = self.chunking
        chunks = chunk_document(pages, document_id, chunk_size=c.chunk_size, overlap=c.overlap,
                                min_chunk_size=c.min_chunk_size, lookback=c.sentence_lookback)
        self.index.index_chunks(chunks)

        total_tokens = sum(ch.token_count for ch in chunks)
        logger.info(f"{display_name}: {len(pages)} pages, {len(chunks)} chunks, {total_tokens} tokens")
        return IngestionResult(
            document_id=document_id,
            file_name=display_name,
            total_pages=len(pages),
            total_tokens=total_tokens,
            title=doc.title,
            author=doc.author,
            chunks=chunks,
        )

    def delete_document(self, document_id: str) -> int:
        return self.index.delete_by_document_id(document_id)

    def indexed_chunk_count(self) -> int:
        return self.index.count()
