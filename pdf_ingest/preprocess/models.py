from pydantic import BaseModel, ConfigDict, Field
import datetime as dt
from pathlib import Path
from typing import List, Optional

def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)

class Chunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    content: str
    page_number: int = Field(ge=1)
    chunk_index: int = Field(ge=0)
    token_count: int = Field(gt=0)
    created_at: dt.datetime = Field(default_factory=_utcnow)

class IngestionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    file_name: str
    total_pages: int
    total_tokens: int
    title: Optional[str] = None
    author: Optional[str] = None
    chunks: List[Chunk] = Field(default_factory=list)

class ExtractedDocument(BaseModel):
    pages: List[str]
    title: Optional[str] = None
    author: Optional[str] = None

class PendingInput(BaseModel):
    """A local file or a remote paper to ingest.

    Exactly one of ``source_path`` / ``paper_id`` is set. ``delete_after`` marks
    sources owned by the job (uploads, downloads) that are removed once processed.
    """
    model_config = ConfigDict(frozen=True)

    display_name: str
    source_path: Optional[Path] = None
    paper_id: Optional[str] = None
    delete_after: bool = True
    title: Optional[str] = None     # catalog metadata, used when the PDF has none
    authors: Optional[str] = None
    pdf_url: Optional[str] = None     # feed link for remote papers

    @property
    def is_remote(self) -> bool:
        return self.paper_id is not None
