"""Wires settings → stores → pipeline → orchestrator for the API and CLI runners."""
from __future__ import annotations

from typing import Optional

from loguru import logger

from .db.audit import AuditStore
from .fetch.arxiv import ArxivClient
from .pipeline.ingest import Extractor, IngestionPipeline
from .pipeline.orchestrator import IngestionOrchestrator, build_orchestrator
from .preprocess.extract import extract_pdf
from .retrieval.fts import FtsIndex
from .settings import Settings, load_settings
from . import config


class Services:
    def __init__(self, settings: Settings, audit: AuditStore, index: FtsIndex,
                 pipeline: IngestionPipeline, fetcher: ArxivClient,
                 orchestrator: IngestionOrchestrator):
        self.settings = settings
        self.audit = audit
        self.index = index
        self.pipeline = pipeline
        self.fetcher = fetcher
        self.orchestrator = orchestrator

    def close(self, wait: bool = True) -> None:
        self.orchestrator.shutdown(wait=wait)
        self.fetcher.close()


def build_services(settings: Optional[Settings] = None, extractor: Extractor = extract_pdf,
                   fetcher: Optional[ArxivClient] = None) -> Services:
    settings = settings or load_settings(config.CONFIG_PATH)
    st = settings.storage
    logger.info(f"Audit DB: {st.db_url} | FTS index: {st.index_path}")
    audit = AuditStore(st.db_url)
    index = FtsIndex(st.index_path)
    pipeline = IngestionPipeline(index, settings.chunking, extractor=extractor)
    fetcher = fetcher or ArxivClient(settings.arxiv)
    orchestrator = build_orchestrator(settings, pipeline, audit, fetcher=fetcher)
    return Services(settings, audit, index, pipeline, fetcher, orchestrator)
