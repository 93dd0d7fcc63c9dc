# /web/api.py
# FastAPI front for the PDF ingestion service
# - Ingest: uploads, local directories, arXiv categories / paper ids (all async jobs)
# - Status polling, document deletion, stats, FTS search
# Run: uvicorn web.api:app --port 8000

import shutil
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel, Field

from pdf_ingest.retrieval.fts import IndexWriteError
from pdf_ingest.preprocess.models import PendingInput
from pdf_ingest.service import Services, build_services

PDF_CONTENT_TYPE = "application/pdf"


# ========= request / response models =========
class IngestResponse(BaseModel):
    job_id: Optional[str] = None
    status: str
    message: str
    files_submitted: Optional[int] = None


class LocalIngestReq(BaseModel):
    directory: str


class ArxivCategoryReq(BaseModel):
    category: str = Field(min_length=1)          # e.g. cs.AI, cs.CL
    max_results: int = Field(100, ge=1, le=50000)


class ArxivPaperIdsReq(BaseModel):
    paper_ids: List[str] = Field(min_length=1)


class SearchReq(BaseModel):
    query: str
    top_k: int = Field(10, ge=1, le=100)
    document_id: Optional[str] = None


# ========= helpers =========
def _services(request: Request) -> Services:
    return request.app.state.services


def _status_or_404(request: Request, job_id: str) -> dict:
    status = _services(request).orchestrator.get_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail={"error": "Job not found", "job_id": job_id})
    return status.to_dict()


def _save_upload(upload: UploadFile, upload_dir: Path) -> Path:
    upload_dir.mkdir(parents=True, exist_ok=True)
    # unique on disk; the original name is kept as the display name
    target = upload_dir / f"{uuid.uuid4().hex[:12]}_{Path(upload.filename or 'upload.pdf').name}"
    with target.open("wb") as fh:
        shutil.copyfileobj(upload.file, fh)
    return target


def _search(request: Request, query: str, top_k: int, document_id: Optional[str]) -> dict:
    if not query or not query.strip():
        raise HTTPException(status_code=400, detail="Query must not be empty")
    t0 = time.time()
    hits = _services(request).index.search(query, top_k=top_k, document_id=document_id or None)
    return {"query": query, "total_hits": len(hits), "hits": [h.model_dump() for h in hits],
            "search_ms": int((time.time() - t0) * 1000)}


# ========= ingest =========
ingest = APIRouter(prefix="/api/v1/ingest", tags=["ingest"])


@ingest.post("/pdf", status_code=202, response_model=IngestResponse, response_model_exclude_none=True)
def ingest_pdf(request: Request, file: List[UploadFile] = File(...)):
    logger.info(f"Received PDF ingestion request - {len(file)} file(s)")
    for f in file:
        if f.content_type != PDF_CONTENT_TYPE:
            raise HTTPException(status_code=400,
                                detail=f"Invalid file type for '{f.filename}'. Only PDF files are accepted.")
        if f.size == 0:
            raise HTTPException(status_code=400, detail=f"File is empty: {f.filename}")

    svc = _services(request)
    inputs = []
    for f in file:
        path = _save_upload(f, svc.settings.storage.upload_dir)
        inputs.append(PendingInput(display_name=Path(f.filename).name, source_path=path, delete_after=True))
    job_id = svc.orchestrator.start_job(inputs)
    return IngestResponse(job_id=job_id, status="PROCESSING", files_submitted=len(inputs),
                          message=f"{len(inputs)} file(s) submitted for processing")


@ingest.post("/local", status_code=202, response_model=IngestResponse, response_model_exclude_none=True)
def ingest_local(request: Request, req: LocalIngestReq):
    root = Path(req.directory).expanduser()
    if not root.is_dir():
        raise HTTPException(status_code=400, detail=f"Not a directory: {req.directory}")
    pdfs = sorted(p for p in root.iterdir() if p.is_file() and p.suffix.lower() == ".pdf")
    if not pdfs:
        raise HTTPException(status_code=400, detail=f"No PDF files found in {req.directory}")
    job_id = _services(request).orchestrator.start_local_job(pdfs)
    return IngestResponse(job_id=job_id, status="PROCESSING", files_submitted=len(pdfs),
                          message=f"{len(pdfs)} local file(s) submitted for processing")


@ingest.get("/status/{job_id}")
def ingest_status(request: Request, job_id: str):
    return _status_or_404(request, job_id)


@ingest.delete("/document/{document_id}")
def delete_document(request: Request, document_id: str):
    try:
        deleted = _services(request).pipeline.delete_document(document_id)
    except IndexWriteError as e:
        raise HTTPException(status_code=500, detail=f"Failed to delete document: {e}")
    return {"status": "deleted", "document_id": document_id, "chunks_deleted": deleted}


@ingest.get("/stats")
def ingest_stats(request: Request):
    svc = _services(request)
    return {"total_chunks": svc.pipeline.indexed_chunk_count(), "documents": svc.audit.status_counts()}


@ingest.get("/documents")
def recent_documents(request: Request, limit: int = Query(50, ge=1, le=500)):
    rows = _services(request).audit.recent(limit)
    return [{
        "file_name": r.file_name, "document_id": r.document_id, "status": r.status,
        "total_pages": r.total_pages, "total_chunks": r.total_chunks, "total_tokens": r.total_tokens,
        "error_message": r.error_message,
        "processed_at": r.processed_at.isoformat() if r.processed_at else None,
    } for r in rows]


# ========= arXiv =========
arxiv = APIRouter(prefix="/api/v1/arxiv", tags=["arxiv"])


@arxiv.post("/ingest", status_code=202, response_model=IngestResponse, response_model_exclude_none=True)
def arxiv_ingest(request: Request, req: ArxivCategoryReq):
    logger.info(f"arXiv category ingestion request: category={req.category}, maxResults={req.max_results}")
    job_id = _services(request).orchestrator.start_category_job(req.category, req.max_results)
    return IngestResponse(job_id=job_id, status="PROCESSING",
                          message=f"arXiv ingestion started for category '{req.category}' "
                                  f"(max {req.max_results} papers)")


@arxiv.post("/ingest/papers", status_code=202, response_model=IngestResponse,
            response_model_exclude_none=True)
def arxiv_ingest_papers(request: Request, req: ArxivPaperIdsReq):
    logger.info(f"arXiv paper IDs ingestion request: {len(req.paper_ids)} papers")
    job_id = _services(request).orchestrator.start_paper_ids_job(req.paper_ids)
    return IngestResponse(job_id=job_id, status="PROCESSING", files_submitted=len(req.paper_ids),
                          message=f"{len(req.paper_ids)} arXiv paper(s) submitted for processing")


@arxiv.get("/status/{job_id}")
def arxiv_status(request: Request, job_id: str):
    return _status_or_404(request, job_id)


# ========= search =========
search = APIRouter(prefix="/api/v1/search", tags=["search"])


@search.get("")
def search_get(request: Request, q: str = Query(...), top_k: int = Query(10, ge=1, le=100),
               document_id: Optional[str] = None):
    return _search(request, q, top_k, document_id)


@search.post("")
def search_post(request: Request, req: SearchReq):
    return _search(request, req.query, req.top_k, req.document_id)


# ========= FastAPI app =========
def create_app(services: Optional[Services] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services or build_services()
        yield
        app.state.services.close(wait=False)

    app = FastAPI(title="PDF Ingest API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"], allow_credentials=True,
        allow_methods=["*"], allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        return {"status": "UP"}

    app.include_router(ingest)
    app.include_router(arxiv)
    app.include_router(search)
    return app


app = create_app()
